"""
History Routes - recent transactions and storefront stats
"""
from fastapi import APIRouter, Depends, Query

from api.dependencies import get_history
from services.history import HistoryService, HISTORY_LIMIT

router = APIRouter()


@router.get("/transactions")
async def list_transactions(
    limit: int = Query(HISTORY_LIMIT, ge=1, le=HISTORY_LIMIT),
    history: HistoryService = Depends(get_history),
):
    return {"success": True, "transactions": await history.recent(limit)}


@router.get("/stats")
async def get_stats(history: HistoryService = Depends(get_history)):
    return await history.stats()
