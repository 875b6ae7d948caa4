"""
Centralized configuration for the panel shop
Resolved once from environment variables (and .env) and injected into services
"""

import os
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Any

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()


class PanelType(str, Enum):
    PRIVATE = "private"
    PUBLIC = "public"


class AccessType(str, Enum):
    REGULAR = "regular"
    ADMIN = "admin"


DEFAULT_DOCKER_IMAGE = "ghcr.io/parkervcp/yolks:nodejs_20"


@dataclass(frozen=True)
class PanelConfig:
    """Credentials and placement for one Pterodactyl backend"""
    domain: str
    api_key: str
    nest: str = "5"
    egg: str = "15"
    location: str = "1"
    docker_image: str = DEFAULT_DOCKER_IMAGE

    def is_configured(self) -> bool:
        return bool(self.domain and self.api_key)


@dataclass(frozen=True)
class PaymentConfig:
    api_id: str = ""
    api_key: str = ""
    base_url: str = "https://sakurupiah.id/api"
    method: str = "QRIS2"
    expiry_hours: int = 24
    callback_url: str = ""
    return_url: str = ""
    payer_phone: str = "6280000000000"

    def is_configured(self) -> bool:
        return bool(self.api_id and self.api_key)


@dataclass(frozen=True)
class FeeConfig:
    fee_min: int = 10
    fee_max: int = 50
    fee_percent: float = 0.7


@dataclass(frozen=True)
class WarrantyConfig:
    warranty_days: int = 12
    replace_limit: int = 3


@dataclass(frozen=True)
class EmailConfig:
    host: str = ""
    port: int = 587
    use_tls: bool = True
    user: str = ""
    password: str = ""
    sender: str = ""

    def is_configured(self) -> bool:
        return bool(self.host and self.user and self.password)


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str = ""
    owner_id: str = ""

    def is_configured(self) -> bool:
        return bool(self.bot_token and self.owner_id)


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = ""
    encryption_key: str = ""


@dataclass(frozen=True)
class AppConfig:
    panels: Dict[PanelType, PanelConfig]
    payment: PaymentConfig = field(default_factory=PaymentConfig)
    fee: FeeConfig = field(default_factory=FeeConfig)
    warranty: WarrantyConfig = field(default_factory=WarrantyConfig)
    email: EmailConfig = field(default_factory=EmailConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    app_name: str = "My Panel Shop"
    community_link: str = ""

    def panel(self, panel_type: PanelType) -> PanelConfig:
        return self.panels[PanelType(panel_type)]

    def validate(self) -> Dict[str, Any]:
        """Collect configuration problems without raising"""
        issues = []
        for panel_type, panel in self.panels.items():
            if not panel.is_configured():
                issues.append(f"Pterodactyl {panel_type.value} panel missing domain or API key")
        if not self.payment.is_configured():
            issues.append("SAKURU_API_ID / SAKURU_API_KEY not set")
        if not self.database.url:
            issues.append("DATABASE_URL not set")
        if not self.database.encryption_key:
            issues.append("DATABASE_ENCRYPTION_KEY not set - panel passwords use a derived default key")
        if not self.email.is_configured():
            issues.append("SMTP credentials not set - credential emails disabled")
        if not self.telegram.is_configured():
            issues.append("TELEGRAM_BOT_TOKEN / TELEGRAM_OWNER_ID not set - owner alerts disabled")
        if self.fee.fee_min > self.fee.fee_max:
            issues.append(f"APP_FEE_MIN ({self.fee.fee_min}) is greater than APP_FEE_MAX ({self.fee.fee_max})")
        return {"valid": not issues, "issues": issues}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"⚠️ Invalid integer for {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"⚠️ Invalid number for {name}={raw!r}, using {default}")
        return default


def _panel_from_env(prefix: str) -> PanelConfig:
    return PanelConfig(
        domain=os.getenv(f"{prefix}_DOMAIN", "").rstrip("/"),
        api_key=os.getenv(f"{prefix}_API_KEY", ""),
        nest=os.getenv(f"{prefix}_NESTS", "5"),
        egg=os.getenv(f"{prefix}_EGG", "15"),
        location=os.getenv(f"{prefix}_LOCATION", "1"),
        docker_image=os.getenv(f"{prefix}_DOCKER_IMAGE", DEFAULT_DOCKER_IMAGE),
    )


def load_config() -> AppConfig:
    """Build configuration from the current environment"""
    email_user = os.getenv("EMAIL_SENDER_USER", "")
    return AppConfig(
        panels={
            PanelType.PRIVATE: _panel_from_env("PTERODACTYL_PRIVATE"),
            PanelType.PUBLIC: _panel_from_env("PTERODACTYL_PUBLIC"),
        },
        payment=PaymentConfig(
            api_id=os.getenv("SAKURU_API_ID", ""),
            api_key=os.getenv("SAKURU_API_KEY", ""),
            base_url=os.getenv("SAKURU_BASE_URL", "https://sakurupiah.id/api").rstrip("/"),
            method=os.getenv("SAKURU_METHOD", "QRIS2"),
            expiry_hours=_env_int("SAKURU_EXPIRED_HOURS", 24),
            callback_url=os.getenv("SAKURU_CALLBACK_URL", ""),
            return_url=os.getenv("SAKURU_RETURN_URL", ""),
        ),
        fee=FeeConfig(
            fee_min=_env_int("APP_FEE_MIN", 10),
            fee_max=_env_int("APP_FEE_MAX", 50),
            fee_percent=_env_float("APP_FEE_PERCENT", 0.7),
        ),
        warranty=WarrantyConfig(
            warranty_days=_env_int("GARANSI_DAYS", 12),
            replace_limit=_env_int("GARANSI_REPLACE_LIMIT", 3),
        ),
        email=EmailConfig(
            host=os.getenv("EMAIL_SENDER_HOST", ""),
            port=_env_int("EMAIL_SENDER_PORT", 587),
            use_tls=os.getenv("EMAIL_SENDER_SECURE", "true").lower() == "true",
            user=email_user,
            password=os.getenv("EMAIL_SENDER_PASSWORD", ""),
            sender=os.getenv("EMAIL_SENDER_FROM", f"Panel <{email_user or 'no-reply@example.com'}>"),
        ),
        telegram=TelegramConfig(
            bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
            owner_id=os.getenv("TELEGRAM_OWNER_ID", ""),
        ),
        database=DatabaseConfig(
            url=os.getenv("DATABASE_URL", ""),
            encryption_key=os.getenv("DATABASE_ENCRYPTION_KEY", ""),
        ),
        app_name=os.getenv("APP_NAME", "My Panel Shop"),
        community_link=os.getenv("WHATSAPP_GROUP_LINK", ""),
    )


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the process-wide configuration (loaded on first use)"""
    global _config
    if _config is None:
        _config = load_config()
        logger.info("🔧 Configuration loaded")
    return _config
