"""
Transaction and panel account records
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Any, FrozenSet

from config import PanelType, AccessType
from utils.timezone_utils import utc_now, to_utc


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PROVISIONING = "provisioning"  # claimed by exactly one reconciler
    COMPLETED = "completed"
    FAILED = "failed"


# Status only moves forward; COMPLETED -> COMPLETED refreshes panel details on warranty replacement
ALLOWED_TRANSITIONS: Dict[TransactionStatus, FrozenSet[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({TransactionStatus.PAID, TransactionStatus.FAILED}),
    TransactionStatus.PAID: frozenset({TransactionStatus.PROVISIONING, TransactionStatus.FAILED}),
    TransactionStatus.PROVISIONING: frozenset({TransactionStatus.COMPLETED, TransactionStatus.FAILED}),
    TransactionStatus.COMPLETED: frozenset({TransactionStatus.COMPLETED}),
    TransactionStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset({TransactionStatus.COMPLETED, TransactionStatus.FAILED})


def can_transition(current: TransactionStatus, new: TransactionStatus) -> bool:
    return TransactionStatus(new) in ALLOWED_TRANSITIONS[TransactionStatus(current)]


@dataclass(frozen=True)
class PanelDetails:
    username: str
    password: str
    server_id: int
    panel_url: str
    user_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "username": self.username,
            "password": self.password,
            "serverId": self.server_id,
            "panelUrl": self.panel_url,
            "userId": self.user_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PanelDetails":
        return cls(
            username=data["username"],
            password=data["password"],
            server_id=int(data["serverId"]),
            panel_url=data.get("panelUrl") or "",
            user_id=data.get("userId"),
        )


@dataclass(frozen=True)
class ProvisionResult:
    """Outcome of a successful provisioning run"""
    provider_user_id: int
    provider_server_id: int
    generated_password: str
    panel_url: str

    def panel_details(self, username: str) -> PanelDetails:
        return PanelDetails(
            username=username,
            password=self.generated_password,
            server_id=self.provider_server_id,
            panel_url=self.panel_url,
            user_id=self.provider_user_id,
        )


@dataclass(frozen=True)
class Transaction:
    transaction_id: str
    provider_transaction_id: str
    plan_id: str
    username: str
    email: str
    amount: int
    fee: int
    total: int
    qr_image_url: str
    expiration_time: datetime
    panel_type: PanelType = PanelType.PRIVATE
    access_type: AccessType = AccessType.REGULAR
    status: TransactionStatus = TransactionStatus.PENDING
    created_at: datetime = field(default_factory=utc_now)
    panel_details: Optional[PanelDetails] = None
    replace_used: int = 0

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """A pending payment window that has passed; derived, never stored"""
        now = to_utc(now) if now is not None else utc_now()
        return self.status is TransactionStatus.PENDING and now > to_utc(self.expiration_time)

    def with_status(self, status: TransactionStatus,
                    panel_details: Optional[PanelDetails] = None) -> "Transaction":
        return replace(self, status=TransactionStatus(status),
                       panel_details=panel_details if panel_details is not None else self.panel_details)

    def to_public_dict(self, include_credentials: bool = True) -> Dict[str, Any]:
        data = {
            "transactionId": self.transaction_id,
            "providerTransactionId": self.provider_transaction_id,
            "planId": self.plan_id,
            "username": self.username,
            "email": self.email,
            "amount": self.amount,
            "fee": self.fee,
            "total": self.total,
            "qrImageUrl": self.qr_image_url,
            "expirationTime": to_utc(self.expiration_time).isoformat(),
            "panelType": self.panel_type.value,
            "accessType": self.access_type.value,
            "status": self.status.value,
            "createdAt": to_utc(self.created_at).isoformat(),
            "replaceUsed": self.replace_used,
            "panelDetails": None,
        }
        if include_credentials and self.panel_details is not None:
            data["panelDetails"] = self.panel_details.to_dict()
        return data
