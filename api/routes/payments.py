"""
Payment Routes - checkout, invoice view and status checks
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from api.dependencies import get_checkout, get_reconciler, get_store, get_services, ShopServices
from api.schemas.payments import CreatePaymentRequest
from config import AccessType, PanelType
from services.checkout import CheckoutService
from services.errors import NotFound
from services.reconciler import PaymentReconciler
from services.transaction_store import TransactionStore

logger = logging.getLogger(__name__)

router = APIRouter()

EXPIRED_MESSAGE = "Waktu pembayaran telah habis, silakan buat pesanan baru"


@router.get("/plans")
async def list_plans(
    panel_type: PanelType = Query(PanelType.PRIVATE),
    access_type: AccessType = Query(AccessType.REGULAR),
    checkout: CheckoutService = Depends(get_checkout),
):
    return {"success": True, "plans": checkout.list_offers(panel_type, access_type)}


@router.post("/payments", status_code=status.HTTP_201_CREATED)
async def create_payment(
    body: CreatePaymentRequest,
    checkout: CheckoutService = Depends(get_checkout),
):
    """Create a QRIS payment for a plan"""
    transaction = await checkout.create_payment(
        plan_id=body.plan_id,
        username=body.username,
        email=body.email,
        panel_type=body.panel_type,
        access_type=body.access_type,
    )
    return {
        "success": True,
        "transactionId": transaction.transaction_id,
        "transaction": transaction.to_public_dict(include_credentials=False),
    }


@router.get("/payments/{transaction_id}")
async def get_payment(
    transaction_id: str,
    store: TransactionStore = Depends(get_store),
    services: ShopServices = Depends(get_services),
):
    """Invoice view; credentials are only present once completed"""
    transaction = await store.find_by_id(transaction_id)
    if transaction is None:
        raise NotFound(f"Transaction {transaction_id} not found")

    data = transaction.to_public_dict(include_credentials=True)
    data["expired"] = transaction.is_expired()
    data["communityLink"] = services.config.community_link or None
    return {"success": True, "transaction": data}


@router.post("/payments/{transaction_id}/check")
async def check_payment(
    transaction_id: str,
    store: TransactionStore = Depends(get_store),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Reconcile a transaction against the payment gateway"""
    transaction = await store.find_by_id(transaction_id)
    if transaction is None:
        raise NotFound(f"Transaction {transaction_id} not found")
    if transaction.is_expired():
        logger.info(f"⌛ CHECK {transaction_id}: payment window expired")
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=EXPIRED_MESSAGE)

    result = await reconciler.reconcile(transaction_id)
    return {"success": True, **result.to_dict()}


@router.get("/panel/users/exists")
async def check_user_exists(
    username: str = Query(..., min_length=1),
    email: str = Query(..., min_length=1),
    panel_type: PanelType = Query(PanelType.PRIVATE),
    checkout: CheckoutService = Depends(get_checkout),
):
    """Username/email availability on the selected panel"""
    result = await checkout.check_user_exists(username, email, panel_type)
    return {"success": True, **result}
