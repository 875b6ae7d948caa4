"""
Pterodactyl Application API Service
Handles panel user and server provisioning for the private and public panels
"""

import logging
from typing import Dict, List, Optional, Any

import httpx

from config import PanelConfig, PanelType
from services.errors import ConfigError, ProviderError

logger = logging.getLogger(__name__)

SERVER_DESCRIPTION = "Order Panel? Kunjungi toko kami"

# Fixed resource policy for every provisioned server
IO_WEIGHT = 500
FEATURE_LIMITS = {"databases": 5, "backups": 5, "allocations": 1}

SERVER_ENVIRONMENT = {
    "GIT_ADDRESS": "",
    "BRANCH": "",
    "USERNAME": "",
    "ACCESS_TOKEN": "",
    "CMD_RUN": "npm start",
    "AUTO_UPDATE": "0",
    "NODE_PACKAGES": "",
    "UNNODE_PACKAGES": "",
    "CUSTOM_ENVIRONMENT_VARIABLES": "",
    "USER_UPLOAD": "true",
}

USERS_PER_PAGE = 100


def is_user_taken_error(error: ProviderError) -> bool:
    """True when the panel rejected user creation because the username/email exists"""
    detail = (error.detail or str(error)).lower()
    return error.status_code == 422 and "already been taken" in detail


class PterodactylService:
    """Pterodactyl application API wrapper bound to one panel backend"""

    def __init__(
        self,
        panel_type: PanelType,
        panel_config: PanelConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        if not panel_config.is_configured():
            raise ConfigError(f"Pterodactyl {PanelType(panel_type).value} panel is missing domain or API key")

        self.panel_type = PanelType(panel_type)
        self.config = panel_config
        self.base_url = f"{panel_config.domain.rstrip('/')}/api/application"
        self.headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Bearer {panel_config.api_key}",
        }
        self._transport = transport
        self._timeout = timeout

    @property
    def panel_url(self) -> str:
        return self.config.domain.rstrip("/")

    async def _request(self, method: str, endpoint: str, json: Optional[Dict[str, Any]] = None,
                       params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send one API request; any failure surfaces as ProviderError"""
        url = f"{self.base_url}{endpoint}"
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                response = await client.request(method, url, headers=self.headers, json=json, params=params)
        except httpx.HTTPError as e:
            logger.error(f"❌ Pterodactyl {self.panel_type.value} {method} {endpoint} transport error: {e}")
            raise ProviderError(f"Panel API unreachable: {e}") from e

        if not response.is_success:
            detail = self._error_detail(response)
            logger.error(f"❌ Pterodactyl {self.panel_type.value} {method} {endpoint}: HTTP {response.status_code} - {detail}")
            raise ProviderError(
                detail or f"API request failed with status {response.status_code}",
                status_code=response.status_code,
                detail=detail,
            )

        if response.status_code == 204 or not response.content:
            return {}

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                f"Panel API returned non-JSON body for {method} {endpoint}",
                status_code=response.status_code,
                detail=response.text[:500],
            ) from e
        if not isinstance(data, dict):
            raise ProviderError(f"Unexpected panel response shape for {method} {endpoint}",
                                status_code=response.status_code)
        return data

    @staticmethod
    def _error_detail(response: httpx.Response) -> Optional[str]:
        try:
            errors = response.json().get("errors") or []
        except ValueError:
            return response.text[:500] or None
        if errors and isinstance(errors[0], dict):
            return errors[0].get("detail")
        return None

    @staticmethod
    def _attributes(data: Dict[str, Any], what: str) -> Dict[str, Any]:
        attributes = data.get("attributes")
        if not isinstance(attributes, dict) or "id" not in attributes:
            raise ProviderError(f"Malformed {what} response: missing attributes.id")
        return attributes

    # === Users ===

    async def create_user(self, username: str, email: str, password: str) -> int:
        """Create a panel user and return its id"""
        data = await self._request("POST", "/users", json={
            "username": username,
            "email": email,
            "first_name": username,
            "last_name": "User",
            "password": password,
        })
        user_id = int(self._attributes(data, "user")["id"])
        logger.info(f"✅ Pterodactyl {self.panel_type.value}: created user {username} (id={user_id})")
        return user_id

    async def list_users(self) -> List[Dict[str, Any]]:
        """
        List every panel user as {id, username, email}

        Follows pagination to the last page. Errors propagate; an empty list
        only ever means the panel has no users.
        """
        users: List[Dict[str, Any]] = []
        page = 1
        while True:
            data = await self._request("GET", "/users", params={"page": page, "per_page": USERS_PER_PAGE})
            for item in data.get("data") or []:
                attributes = item.get("attributes") or {}
                users.append({
                    "id": attributes.get("id"),
                    "username": attributes.get("username", ""),
                    "email": attributes.get("email", ""),
                })

            pagination = (data.get("meta") or {}).get("pagination") or {}
            total_pages = int(pagination.get("total_pages") or 1)
            if page >= total_pages:
                break
            page += 1

        logger.info(f"📊 Listed {len(users)} users from {self.panel_type.value} panel")
        return users

    async def delete_user(self, user_id: int) -> bool:
        """Best-effort delete; failures are logged and reported as False"""
        try:
            await self._request("DELETE", f"/users/{user_id}")
            logger.info(f"✅ Deleted panel user {user_id} on {self.panel_type.value} panel")
            return True
        except ProviderError as e:
            if e.status_code == 404:
                logger.info(f"✅ Panel user {user_id} already deleted (404) - treating as success")
                return True
            logger.error(f"❌ Failed to delete panel user {user_id}: {e}")
            return False

    # === Servers ===

    async def get_egg(self) -> Dict[str, Any]:
        data = await self._request("GET", f"/nests/{self.config.nest}/eggs/{self.config.egg}")
        attributes = data.get("attributes")
        if not isinstance(attributes, dict):
            raise ProviderError("Malformed egg response: missing attributes")
        return attributes

    def _resolve_docker_image(self, egg: Dict[str, Any]) -> str:
        images = egg.get("docker_images") or {}
        wanted = self.config.docker_image
        if wanted in images:
            return images[wanted]
        if wanted in images.values():
            return wanted
        raise ConfigError(
            f"Docker image {wanted} not available in egg {self.config.egg} "
            f"(nest {self.config.nest}) on {self.panel_type.value} panel"
        )

    async def add_server(self, user_id: int, name: str, memory: int, disk: int, cpu: int) -> int:
        """
        Create a server owned by user_id and return its id

        Resolves the configured egg for its startup command and container image.
        Resource limits are submitted verbatim: memory/disk in MB, cpu in
        percent of one core.
        """
        egg = await self.get_egg()
        startup = egg.get("startup")
        if not startup:
            raise ConfigError(f"Egg {self.config.egg} has no startup command")
        docker_image = self._resolve_docker_image(egg)

        data = await self._request("POST", "/servers", json={
            "name": name,
            "description": SERVER_DESCRIPTION,
            "user": user_id,
            "egg": int(self.config.egg),
            "docker_image": docker_image,
            "startup": startup,
            "environment": dict(SERVER_ENVIRONMENT),
            "limits": {
                "memory": memory,
                "swap": 0,
                "disk": disk,
                "io": IO_WEIGHT,
                "cpu": cpu,
            },
            "feature_limits": dict(FEATURE_LIMITS),
            "deploy": {
                "locations": [int(self.config.location)],
                "dedicated_ip": False,
                "port_range": [],
            },
        })
        server_id = int(self._attributes(data, "server")["id"])
        logger.info(f"✅ Pterodactyl {self.panel_type.value}: created server {server_id} for user {user_id}")
        return server_id

    async def list_servers(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/servers")
        return [
            {
                "id": item.get("attributes", {}).get("id"),
                "name": item.get("attributes", {}).get("name"),
                "user": item.get("attributes", {}).get("user"),
            }
            for item in data.get("data") or []
        ]

    async def delete_server(self, server_id: int) -> bool:
        """Best-effort delete; failures are logged and reported as False"""
        try:
            await self._request("DELETE", f"/servers/{server_id}")
            logger.info(f"✅ Deleted panel server {server_id} on {self.panel_type.value} panel")
            return True
        except ProviderError as e:
            if e.status_code == 404:
                logger.info(f"✅ Panel server {server_id} already deleted (404) - treating as success")
                return True
            logger.error(f"❌ Failed to delete panel server {server_id}: {e}")
            return False


class PanelRegistry:
    """One PterodactylService per panel type, built once from configuration"""

    def __init__(self, services: Dict[PanelType, PterodactylService]):
        self._services = {PanelType(k): v for k, v in services.items()}

    @classmethod
    def from_config(cls, panels: Dict[PanelType, PanelConfig],
                    transport: Optional[httpx.AsyncBaseTransport] = None) -> "PanelRegistry":
        services = {}
        for panel_type, panel_config in panels.items():
            if panel_config.is_configured():
                services[panel_type] = PterodactylService(panel_type, panel_config, transport=transport)
            else:
                logger.warning(f"⚠️ Pterodactyl {panel_type.value} panel not configured - orders for it will fail")
        return cls(services)

    def get(self, panel_type: PanelType) -> PterodactylService:
        try:
            return self._services[PanelType(panel_type)]
        except KeyError:
            raise ConfigError(f"No Pterodactyl backend configured for {PanelType(panel_type).value} panels") from None
