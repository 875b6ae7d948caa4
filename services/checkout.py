"""
Checkout - plan resolution, fee computation and QRIS intent creation
"""

import logging
from typing import Any, Dict, List, Tuple

from config import FeeConfig, PanelType, AccessType
from models.payment_models import Transaction, TransactionStatus
from plans import PLANS, Plan, find_plan, list_plans
from pricing_utils import calculate_total, generate_transaction_id
from services.errors import PlanNotFound, UserExists
from services.pterodactyl import PanelRegistry
from services.sakurupiah import SakurupiahService, LineItem
from services.transaction_store import TransactionStore
from utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


class CheckoutService:

    def __init__(
        self,
        store: TransactionStore,
        gateway: SakurupiahService,
        panels: PanelRegistry,
        fee: FeeConfig,
        catalog: Tuple[Plan, ...] = PLANS,
    ):
        self.store = store
        self.gateway = gateway
        self.panels = panels
        self.fee = fee
        self.catalog = catalog

    def quote(self, plan: Plan) -> Tuple[int, int]:
        """(fee, total) for a plan under the configured fee bounds"""
        return calculate_total(plan.price, self.fee.fee_min, self.fee.fee_max, self.fee.fee_percent)

    def list_offers(self, panel_type: PanelType = PanelType.PRIVATE,
                    access_type: AccessType = AccessType.REGULAR) -> List[Dict[str, Any]]:
        """Plans for one panel/access tier with the fee and total a buyer would pay"""
        offers = []
        for plan in list_plans(panel_type, access_type, catalog=self.catalog):
            fee, total = self.quote(plan)
            offers.append({
                "planId": plan.id,
                "name": plan.name,
                "memory": plan.memory,
                "disk": plan.disk,
                "cpu": plan.cpu,
                "price": plan.price,
                "fee": fee,
                "total": total,
                "features": list(plan.features),
            })
        return offers

    async def create_payment(
        self,
        plan_id: str,
        username: str,
        email: str,
        panel_type: PanelType = PanelType.PRIVATE,
        access_type: AccessType = AccessType.REGULAR,
    ) -> Transaction:
        """
        Create a QRIS payment and persist it as a pending transaction.

        The username and email must be free on the target panel, otherwise
        a paid order could never be provisioned. The gateway intent is
        created next; a GatewayError leaves nothing behind. If the provider
        reports anything but a pending payment on creation the record is
        stored as failed so it can never be provisioned.
        """
        plan = find_plan(plan_id, panel_type, access_type, catalog=self.catalog)
        if plan is None:
            raise PlanNotFound(f"Plan {plan_id} ({PanelType(panel_type).value}/{AccessType(access_type).value}) not found")

        existing = await self.check_user_exists(username, email, plan.type)
        if existing["usernameExists"]:
            logger.info(f"🚫 CHECKOUT: username '{username}' already on the {plan.type.value} panel")
            raise UserExists(f"Username {username} sudah digunakan", "username")
        if existing["emailExists"]:
            logger.info(f"🚫 CHECKOUT: email already on the {plan.type.value} panel")
            raise UserExists("Email sudah terdaftar di panel", "email")

        fee, total = self.quote(plan)
        transaction_id = generate_transaction_id()

        intent = await self.gateway.create_intent(
            transaction_id=transaction_id,
            payer_name=username,
            payer_email=email,
            amount_total=total,
            line_items=[LineItem(name=plan.name, price=plan.price, qty=1)],
        )

        status = TransactionStatus.PENDING
        if intent.payment_status != "pending":
            logger.warning(f"⚠️ CHECKOUT {transaction_id}: gateway returned payment_status "
                           f"{intent.payment_status!r} on creation - storing as failed")
            status = TransactionStatus.FAILED

        transaction = Transaction(
            transaction_id=transaction_id,
            provider_transaction_id=intent.provider_transaction_id,
            plan_id=plan.id,
            username=username,
            email=email,
            amount=plan.price,
            fee=fee,
            total=total,
            qr_image_url=intent.qr_image_url,
            expiration_time=intent.expiration_time,
            panel_type=plan.type,
            access_type=plan.access,
            status=status,
            created_at=utc_now(),
        )
        await self.store.create(transaction)
        logger.info(f"🧾 CHECKOUT {transaction_id}: {plan.name} for {username} - total {total} (fee {fee})")
        return transaction

    async def check_user_exists(self, username: str, email: str,
                                panel_type: PanelType = PanelType.PRIVATE) -> Dict[str, bool]:
        """Case-insensitive availability check; ProviderError propagates"""
        users = await self.panels.get(panel_type).list_users()
        username_l = username.lower()
        email_l = email.lower()
        return {
            "usernameExists": any((u.get("username") or "").lower() == username_l for u in users),
            "emailExists": any((u.get("email") or "").lower() == email_l for u in users),
        }
