"""
Warranty Routes - eligibility and replacement claims
"""
from fastapi import APIRouter, Depends

from api.dependencies import get_warranty
from api.schemas.payments import WarrantyClaimRequest
from pricing_utils import mask_email
from services.warranty import WarrantyService

router = APIRouter()


@router.get("/warranty/{transaction_id}")
async def warranty_status(transaction_id: str, warranty: WarrantyService = Depends(get_warranty)):
    transaction, status = await warranty.get_status(transaction_id)
    return {
        "success": True,
        "transactionId": transaction.transaction_id,
        "username": transaction.username,
        "email": mask_email(transaction.email),
        "planId": transaction.plan_id,
        "replaceUsed": transaction.replace_used,
        **status.to_dict(),
    }


@router.post("/warranty/{transaction_id}/claim")
async def claim_warranty(
    transaction_id: str,
    body: WarrantyClaimRequest,
    warranty: WarrantyService = Depends(get_warranty),
):
    result = await warranty.claim(transaction_id, body.email)
    return {
        "success": True,
        "panelDetails": result.panel_details.to_dict(),
        "replaceUsed": result.replace_used,
        "remainingReplace": result.remaining_replace,
    }
