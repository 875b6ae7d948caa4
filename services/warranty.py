"""
Warranty claims - replacement panel accounts for completed purchases

A claim is allowed while both the warranty window and the replacement
allowance have something left, the claimant knows the purchase email, and
the original account is gone from the panel.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from config import WarrantyConfig
from models.payment_models import Transaction, TransactionStatus, PanelDetails
from plans import PLANS, Plan, find_plan
from services.errors import NotFound, PlanNotFound, WarrantyRejected
from services.notifications import NotificationDispatcher
from services.provisioning import ProvisioningOrchestrator
from services.pterodactyl import PanelRegistry
from services.reconciler import TransactionLocks
from services.transaction_store import TransactionStore
from utils.timezone_utils import days_since

logger = logging.getLogger(__name__)

MAX_EMAIL_ATTEMPTS = 3
LOCKOUT_SECONDS = 300


@dataclass(frozen=True)
class WarrantyStatus:
    remaining_days: int
    remaining_replace: int
    warranty_days: int
    replace_limit: int

    @property
    def eligible(self) -> bool:
        return self.remaining_days > 0 and self.remaining_replace > 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "remainingDays": self.remaining_days,
            "remainingReplace": self.remaining_replace,
            "warrantyDays": self.warranty_days,
            "replaceLimit": self.replace_limit,
            "eligible": self.eligible,
        }


@dataclass(frozen=True)
class WarrantyClaimResult:
    panel_details: PanelDetails
    replace_used: int
    remaining_replace: int


def compute_warranty(created_at: datetime, replace_used: int, config: WarrantyConfig,
                     now: Optional[datetime] = None) -> WarrantyStatus:
    return WarrantyStatus(
        remaining_days=config.warranty_days - days_since(created_at, now),
        remaining_replace=config.replace_limit - (replace_used or 0),
        warranty_days=config.warranty_days,
        replace_limit=config.replace_limit,
    )


class EmailAttemptLimiter:
    """
    Locks a transaction's claim form after repeated wrong emails.

    A streak of failures is forgotten once lockout_seconds pass without a new
    one, and expired entries are pruned whenever a failure is recorded.
    """

    def __init__(self, max_attempts: int = MAX_EMAIL_ATTEMPTS, lockout_seconds: float = LOCKOUT_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.max_attempts = max_attempts
        self.lockout_seconds = lockout_seconds
        self._clock = clock
        # key -> (consecutive failures, time of the last one)
        self._failures: Dict[str, Tuple[int, float]] = {}
        self._locked_until: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._failures.keys() | self._locked_until.keys())

    def _prune(self, now: float):
        for key in [k for k, until in self._locked_until.items() if now >= until]:
            del self._locked_until[key]
            self._failures.pop(key, None)
        for key in [k for k, (_, last) in self._failures.items()
                    if k not in self._locked_until and now - last >= self.lockout_seconds]:
            del self._failures[key]

    def is_locked(self, key: str) -> bool:
        until = self._locked_until.get(key)
        if until is None:
            return False
        if self._clock() >= until:
            del self._locked_until[key]
            self._failures.pop(key, None)
            return False
        return True

    def record_failure(self, key: str) -> bool:
        """Count a wrong email; returns True when this failure locked the form"""
        now = self._clock()
        self._prune(now)
        count = self._failures.get(key, (0, now))[0] + 1
        self._failures[key] = (count, now)
        if count >= self.max_attempts:
            self._locked_until[key] = now + self.lockout_seconds
            logger.warning(f"🔒 WARRANTY {key}: locked for {self.lockout_seconds:.0f}s after {count} wrong emails")
            return True
        return False

    def reset(self, key: str):
        self._failures.pop(key, None)
        self._locked_until.pop(key, None)


class WarrantyService:

    def __init__(
        self,
        store: TransactionStore,
        panels: PanelRegistry,
        orchestrator: ProvisioningOrchestrator,
        dispatcher: NotificationDispatcher,
        config: WarrantyConfig,
        catalog: Tuple[Plan, ...] = PLANS,
        locks: Optional[TransactionLocks] = None,
        limiter: Optional[EmailAttemptLimiter] = None,
    ):
        self.store = store
        self.panels = panels
        self.orchestrator = orchestrator
        self.dispatcher = dispatcher
        self.config = config
        self.catalog = catalog
        self.locks = locks or TransactionLocks()
        self.limiter = limiter or EmailAttemptLimiter()

    async def _load(self, transaction_id: str) -> Transaction:
        transaction = await self.store.find_by_id(transaction_id)
        if transaction is None:
            raise NotFound(f"Transaction {transaction_id} not found")
        return transaction

    async def get_status(self, transaction_id: str, now: Optional[datetime] = None) -> Tuple[Transaction, WarrantyStatus]:
        transaction = await self._load(transaction_id)
        if transaction.status is not TransactionStatus.COMPLETED:
            raise WarrantyRejected("Selesaikan pembayaran terlebih dahulu sebelum klaim garansi", "not_completed")
        return transaction, compute_warranty(transaction.created_at, transaction.replace_used, self.config, now)

    async def claim(self, transaction_id: str, email: str, now: Optional[datetime] = None) -> WarrantyClaimResult:
        """
        Provision a replacement account for a completed transaction.

        Raises:
            NotFound: unknown transaction id
            WarrantyRejected: not eligible (reason says why)
            PlanNotFound: plan vanished from the catalog
            ProviderError: panel user listing failed
            ProvisionFailed: replacement could not be created (transaction unchanged)
        """
        async with self.locks.hold(transaction_id):
            transaction, status = await self.get_status(transaction_id, now)

            if status.remaining_days <= 0:
                raise WarrantyRejected("Masa garansi sudah habis", "expired")
            if status.remaining_replace <= 0:
                raise WarrantyRejected("Batas penggantian garansi sudah tercapai", "limit_reached")

            if self.limiter.is_locked(transaction_id):
                raise WarrantyRejected("Terlalu banyak percobaan, coba lagi nanti", "locked")
            if email.strip().lower() != transaction.email.lower():
                if self.limiter.record_failure(transaction_id):
                    raise WarrantyRejected("Form dikunci karena 3x gagal. Coba lagi dalam 5 menit", "locked")
                raise WarrantyRejected("Email tidak sesuai dengan transaksi ini", "email_mismatch")

            plan = find_plan(transaction.plan_id, transaction.panel_type, transaction.access_type,
                             catalog=self.catalog)
            if plan is None:
                raise PlanNotFound(f"Plan {transaction.plan_id} not found")

            users = await self.panels.get(transaction.panel_type).list_users()
            username_l = transaction.username.lower()
            email_l = transaction.email.lower()
            if any((u.get("username") or "").lower() == username_l or (u.get("email") or "").lower() == email_l
                   for u in users):
                raise WarrantyRejected("Akun panel masih aktif. Garansi belum bisa digunakan", "account_active")

            logger.info(f"🛡️ WARRANTY {transaction_id}: provisioning replacement "
                        f"({status.remaining_days}d / {status.remaining_replace} replacements left)")
            result = await self.orchestrator.provision(transaction, plan)
            panel_details = result.panel_details(transaction.username)

            await self.store.transition_status(
                transaction_id, [TransactionStatus.COMPLETED], TransactionStatus.COMPLETED,
                panel_details=panel_details,
            )
            replace_used = await self.store.increment_replace_used(transaction_id)
            if replace_used is None:
                replace_used = transaction.replace_used + 1
            self.limiter.reset(transaction_id)

            self.dispatcher.dispatch_completion(
                transaction.with_status(TransactionStatus.COMPLETED, panel_details=panel_details),
                plan.name,
                panel_details,
            )
            logger.info(f"✅ WARRANTY {transaction_id}: replacement server {panel_details.server_id} "
                        f"(replacement {replace_used}/{self.config.replace_limit})")

            return WarrantyClaimResult(
                panel_details=panel_details,
                replace_used=replace_used,
                remaining_replace=self.config.replace_limit - replace_used,
            )
