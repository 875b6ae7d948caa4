"""Tests for the public transaction history and stats."""
import asyncio
from datetime import timedelta

from models.payment_models import TransactionStatus
from services.history import HistoryService, UNKNOWN_PLAN
from utils.timezone_utils import utc_now


def _seed(store, make_transaction, make_panel_details):
    now = utc_now()
    rows = [
        make_transaction(transaction_id="T1", username="budi", created_at=now - timedelta(hours=3),
                         status=TransactionStatus.COMPLETED, panel_details=make_panel_details()),
        make_transaction(transaction_id="T2", username="budi", created_at=now - timedelta(hours=2),
                         status=TransactionStatus.COMPLETED, panel_details=make_panel_details()),
        make_transaction(transaction_id="T3", username="sari", email="sari.dewi@mail.id",
                         created_at=now - timedelta(hours=1), plan_id="retired"),
    ]
    for row in rows:
        asyncio.run(store.create(row))


class TestHistory:
    def test_recent_newest_first_and_masked(self, store, make_transaction, make_panel_details):
        _seed(store, make_transaction, make_panel_details)

        items = asyncio.run(HistoryService(store).recent())

        assert [i["transactionId"] for i in items] == ["T3", "T2", "T1"]
        assert items[0]["email"] == "sar***@mail.id"
        assert items[0]["planName"] == UNKNOWN_PLAN
        assert items[1]["planName"] == "Panel UNLI Private"
        assert "panelDetails" not in items[1]

    def test_limit_is_capped(self, store, make_transaction, make_panel_details):
        _seed(store, make_transaction, make_panel_details)
        assert len(asyncio.run(HistoryService(store).recent(limit=2))) == 2

    def test_stats_count_completed_only(self, store, make_transaction, make_panel_details):
        _seed(store, make_transaction, make_panel_details)
        stats = asyncio.run(HistoryService(store).stats())
        assert stats == {"totalUsers": 1, "totalServers": 2, "totalPurchases": 2}
