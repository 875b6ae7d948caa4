"""
Public transaction history and storefront stats
"""

import logging
from typing import Any, Dict, List, Tuple

from models.payment_models import Transaction
from plans import PLANS, Plan, find_plan, get_plan
from pricing_utils import mask_email
from services.transaction_store import TransactionStore
from utils.timezone_utils import to_utc

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50
UNKNOWN_PLAN = "Unknown Plan"


class HistoryService:

    def __init__(self, store: TransactionStore, catalog: Tuple[Plan, ...] = PLANS):
        self.store = store
        self.catalog = catalog

    def plan_name(self, transaction: Transaction) -> str:
        plan = (find_plan(transaction.plan_id, transaction.panel_type, transaction.access_type, catalog=self.catalog)
                or get_plan(transaction.plan_id, catalog=self.catalog))
        return plan.name if plan else UNKNOWN_PLAN

    async def recent(self, limit: int = HISTORY_LIMIT) -> List[Dict[str, Any]]:
        """Latest transactions, newest first, with masked emails and no credentials"""
        transactions = await self.store.list_recent(min(limit, HISTORY_LIMIT))
        return [
            {
                "transactionId": t.transaction_id,
                "email": mask_email(t.email),
                "planId": t.plan_id,
                "planName": self.plan_name(t),
                "total": t.total,
                "createdAt": to_utc(t.created_at).isoformat(),
                "status": t.status.value,
            }
            for t in transactions
        ]

    async def stats(self) -> Dict[str, int]:
        return await self.store.stats()
