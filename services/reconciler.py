"""
Payment Status Reconciler - drives pending -> paid -> completed/failed

Externally triggered (status-check button, QR page timer, provider callback).
Every run for one transaction is serialized by an in-process lock, and the
paid -> provisioning claim is a conditional store update so that only one
caller ever provisions, even across processes.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import database
from models.payment_models import Transaction, TransactionStatus, PanelDetails, TERMINAL_STATUSES
from plans import PLANS, Plan, find_plan
from services.errors import NotFound, PlanNotFound, ProvisionFailed
from services.notifications import NotificationDispatcher
from services.provisioning import ProvisioningOrchestrator
from services.sakurupiah import SakurupiahService, GatewayStatus
from services.transaction_store import TransactionStore

logger = logging.getLogger(__name__)


class TransactionLocks:
    """Per-transaction asyncio locks, released from the registry once unused"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, transaction_id: str):
        lock = self._locks.setdefault(transaction_id, asyncio.Lock())
        self._waiters[transaction_id] = self._waiters.get(transaction_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[transaction_id] -= 1
            if self._waiters[transaction_id] == 0:
                del self._waiters[transaction_id]
                del self._locks[transaction_id]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass(frozen=True)
class ReconcileResult:
    status: TransactionStatus
    panel_details: Optional[PanelDetails] = None
    show_community_prompt: bool = False
    gateway_status: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "status": self.status.value,
            "panelDetails": self.panel_details.to_dict() if self.panel_details else None,
            "showCommunityPrompt": self.show_community_prompt,
        }


class PaymentReconciler:

    def __init__(
        self,
        store: TransactionStore,
        gateway: SakurupiahService,
        orchestrator: ProvisioningOrchestrator,
        dispatcher: NotificationDispatcher,
        catalog: Tuple[Plan, ...] = PLANS,
        locks: Optional[TransactionLocks] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.orchestrator = orchestrator
        self.dispatcher = dispatcher
        self.catalog = catalog
        self.locks = locks or TransactionLocks()

    async def reconcile(self, transaction_id: str) -> ReconcileResult:
        """
        Advance one transaction as far as the gateway allows.

        completed and failed are terminal and never call the gateway. A
        transaction already claimed for provisioning by another caller is
        reported as-is.

        Raises:
            NotFound: unknown transaction id
            GatewayError: status could not be verified (no state change)
            PlanNotFound: plan vanished from the catalog (transaction marked failed)
            ProvisionFailed: panel account could not be created (transaction marked failed)
        """
        async with self.locks.hold(transaction_id):
            transaction = await self._load(transaction_id)

            if transaction.status in TERMINAL_STATUSES:
                return ReconcileResult(transaction.status, panel_details=transaction.panel_details)
            if transaction.status is TransactionStatus.PROVISIONING:
                logger.info(f"⏳ RECONCILE {transaction_id}: provisioning already in progress")
                return ReconcileResult(TransactionStatus.PROVISIONING)

            gateway_status = None
            if transaction.status is TransactionStatus.PENDING:
                result = await self.gateway.poll_status(transaction.provider_transaction_id)
                gateway_status = result.raw_status
                effective = result.effective_status
                logger.info(f"🔍 RECONCILE {transaction_id}: gateway reports {result.raw_status!r} -> {effective.value}")

                if effective is GatewayStatus.PENDING:
                    return ReconcileResult(TransactionStatus.PENDING, gateway_status=gateway_status)

                if effective is GatewayStatus.FAILED:
                    await self.store.transition_status(
                        transaction_id, [TransactionStatus.PENDING], TransactionStatus.FAILED
                    )
                    logger.info(f"❌ RECONCILE {transaction_id}: payment failed at gateway")
                    return await self._current(transaction_id, gateway_status)

                if not await self.store.transition_status(
                    transaction_id, [TransactionStatus.PENDING], TransactionStatus.PAID
                ):
                    return await self._current(transaction_id, gateway_status)
                transaction = transaction.with_status(TransactionStatus.PAID)
                logger.info(f"💰 RECONCILE {transaction_id}: payment confirmed")

            return await self._provision_paid(transaction, gateway_status)

    async def _load(self, transaction_id: str) -> Transaction:
        transaction = await self.store.find_by_id(transaction_id)
        if transaction is None:
            raise NotFound(f"Transaction {transaction_id} not found")
        return transaction

    async def _current(self, transaction_id: str, gateway_status: Optional[str] = None) -> ReconcileResult:
        transaction = await self._load(transaction_id)
        return ReconcileResult(
            transaction.status,
            panel_details=transaction.panel_details if transaction.status is TransactionStatus.COMPLETED else None,
            gateway_status=gateway_status,
        )

    async def _provision_paid(self, transaction: Transaction, gateway_status: Optional[str]) -> ReconcileResult:
        tid = transaction.transaction_id

        plan = find_plan(transaction.plan_id, transaction.panel_type, transaction.access_type, catalog=self.catalog)
        if plan is None:
            await self.store.transition_status(tid, [TransactionStatus.PAID], TransactionStatus.FAILED)
            logger.error(f"❌ RECONCILE {tid}: plan {transaction.plan_id} "
                         f"({transaction.panel_type.value}/{transaction.access_type.value}) not in catalog")
            raise PlanNotFound(f"Plan {transaction.plan_id} not found")

        if not await self.store.transition_status(tid, [TransactionStatus.PAID], TransactionStatus.PROVISIONING):
            logger.info(f"🔒 RECONCILE {tid}: provisioning claimed by another worker")
            return await self._current(tid, gateway_status)

        try:
            result = await self.orchestrator.provision(transaction, plan)
        except Exception as e:
            failure = e if isinstance(e, ProvisionFailed) else ProvisionFailed(
                f"Unexpected provisioning error: {e}", cause=e, stage="unknown"
            )
            try:
                await self.store.transition_status(tid, [TransactionStatus.PROVISIONING], TransactionStatus.FAILED)
                logger.error(f"❌ RECONCILE {tid}: provisioning failed, transaction marked failed - {e}")
            except database.DatabaseError as db_error:
                logger.critical(f"🚨 RECONCILE {tid}: provisioning failed ({e}) and the failed status could not "
                                f"be persisted - {db_error}; record left in provisioning, manual review required")
            if failure is e:
                raise
            raise failure from e

        panel_details = result.panel_details(transaction.username)
        try:
            persisted = await self.store.transition_status(
                tid, [TransactionStatus.PROVISIONING], TransactionStatus.COMPLETED, panel_details=panel_details
            )
        except database.DatabaseError as db_error:
            logger.critical(f"🚨 RECONCILE {tid}: panel user {result.provider_user_id} / server "
                            f"{result.provider_server_id} created but completion was not persisted - "
                            f"{db_error}; manual review required")
            return ReconcileResult(TransactionStatus.PROVISIONING, gateway_status=gateway_status)
        if not persisted:
            logger.critical(f"🚨 RECONCILE {tid}: panel user {result.provider_user_id} / server "
                            f"{result.provider_server_id} created but completion was not persisted - "
                            f"manual review required")
            return await self._current(tid, gateway_status)

        completed = transaction.with_status(TransactionStatus.COMPLETED, panel_details=panel_details)
        self.dispatcher.dispatch_completion(completed, plan.name, panel_details)
        logger.info(f"🎉 RECONCILE {tid}: completed with server {panel_details.server_id}")

        return ReconcileResult(
            TransactionStatus.COMPLETED,
            panel_details=panel_details,
            show_community_prompt=True,
            gateway_status=gateway_status,
        )
