"""
Provisioning Orchestrator - panel user + server creation for a paid transaction

State machine per run:
- awaiting-provision -> user-created -> provisioned
- createUser failure: nothing to roll back (taken username/email gets its own stage)
- addServer failure: best-effort deleteUser rollback, original error is reported

The orchestrator never touches the transaction store. Callers check the
transaction status, claim it, and persist the returned ProvisionResult.
"""

import logging

from models.payment_models import Transaction, ProvisionResult
from plans import Plan
from pricing_utils import generate_password
from services.errors import ProviderError, ConfigError, ProvisionFailed
from services.pterodactyl import PanelRegistry, is_user_taken_error

logger = logging.getLogger(__name__)


class ProvisioningOrchestrator:
    """Creates exactly one panel account per call"""

    def __init__(self, panels: PanelRegistry, password_length: int = 10):
        self.panels = panels
        self.password_length = password_length

    async def provision(self, transaction: Transaction, plan: Plan) -> ProvisionResult:
        tid = transaction.transaction_id
        try:
            panel = self.panels.get(transaction.panel_type)
        except ConfigError as e:
            logger.error(f"❌ PROVISION {tid}: no {transaction.panel_type.value} panel backend - {e}")
            raise ProvisionFailed(f"Panel backend unavailable: {e}", cause=e, stage="resolve_panel") from e

        password = generate_password(self.password_length)
        panel_url = panel.panel_url

        logger.info(f"🚀 PROVISION {tid}: creating {plan.id} account '{transaction.username}' "
                    f"on {transaction.panel_type.value} panel")

        try:
            user_id = await panel.create_user(transaction.username, transaction.email, password)
        except ProviderError as e:
            if is_user_taken_error(e):
                logger.error(f"❌ PROVISION {tid}: username '{transaction.username}' or email already on the panel")
                raise ProvisionFailed(f"Panel account already exists: {e}", cause=e, stage="user_exists") from e
            logger.error(f"❌ PROVISION {tid}: createUser failed - {e}")
            raise ProvisionFailed(f"Could not create panel user: {e}", cause=e, stage="create_user") from e

        try:
            server_id = await panel.add_server(
                user_id=user_id,
                name=f"{transaction.username}'s Server",
                memory=plan.memory,
                disk=plan.disk,
                cpu=plan.cpu,
            )
        except (ProviderError, ConfigError) as e:
            logger.error(f"❌ PROVISION {tid}: addServer failed - {e}; rolling back user {user_id}")
            rolled_back = await panel.delete_user(user_id)
            if not rolled_back:
                logger.error(f"🚨 PROVISION {tid}: rollback of panel user {user_id} failed - manual cleanup required")
            raise ProvisionFailed(f"Could not create panel server: {e}", cause=e, stage="add_server") from e

        logger.info(f"✅ PROVISION {tid}: user {user_id} / server {server_id} ready at {panel_url}")
        return ProvisionResult(
            provider_user_id=user_id,
            provider_server_id=server_id,
            generated_password=password,
            panel_url=panel_url,
        )
