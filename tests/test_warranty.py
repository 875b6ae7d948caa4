"""Tests for warranty eligibility and replacement claims."""
import asyncio
from datetime import timedelta

import pytest

from config import WarrantyConfig
from models.payment_models import TransactionStatus
from services.errors import NotFound, ProviderError, ProvisionFailed, WarrantyRejected
from services.provisioning import ProvisioningOrchestrator
from services.warranty import EmailAttemptLimiter, WarrantyService, compute_warranty
from utils.timezone_utils import utc_now


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _service(store, panels, dispatcher, config, limiter=None):
    return WarrantyService(store, panels, ProvisioningOrchestrator(panels), dispatcher, config, limiter=limiter)


def _completed(store, make_transaction, make_panel_details, **kwargs):
    transaction = make_transaction(status=TransactionStatus.COMPLETED, panel_details=make_panel_details(), **kwargs)
    asyncio.run(store.create(transaction))
    return transaction.transaction_id


class TestEligibility:
    def test_fresh_purchase(self):
        status = compute_warranty(utc_now(), 0, WarrantyConfig(12, 3))
        assert status.remaining_days == 12
        assert status.remaining_replace == 3
        assert status.eligible

    def test_days_are_floored(self):
        now = utc_now()
        status = compute_warranty(now - timedelta(days=11, hours=23), 0, WarrantyConfig(12, 3), now=now)
        assert status.remaining_days == 1
        assert status.eligible

    def test_window_closed(self):
        now = utc_now()
        status = compute_warranty(now - timedelta(days=12), 0, WarrantyConfig(12, 3), now=now)
        assert status.remaining_days == 0
        assert not status.eligible

    def test_replacements_used_up(self):
        status = compute_warranty(utc_now(), 3, WarrantyConfig(12, 3))
        assert status.remaining_replace == 0
        assert not status.eligible


class TestAttemptLimiter:
    def test_locks_after_three_failures(self):
        clock = _Clock()
        limiter = EmailAttemptLimiter(clock=clock)
        assert limiter.record_failure("T") is False
        assert limiter.record_failure("T") is False
        assert limiter.record_failure("T") is True
        assert limiter.is_locked("T")

    def test_lock_expires_after_five_minutes(self):
        clock = _Clock()
        limiter = EmailAttemptLimiter(clock=clock)
        for _ in range(3):
            limiter.record_failure("T")
        clock.now += 299
        assert limiter.is_locked("T")
        clock.now += 1
        assert not limiter.is_locked("T")
        assert limiter.record_failure("T") is False

    def test_stale_failures_are_pruned(self):
        clock = _Clock()
        limiter = EmailAttemptLimiter(clock=clock)
        limiter.record_failure("A")
        limiter.record_failure("B")
        limiter.record_failure("B")
        assert len(limiter) == 2

        clock.now += 300
        limiter.record_failure("C")

        assert len(limiter) == 1

    def test_streak_restarts_after_quiet_period(self):
        clock = _Clock()
        limiter = EmailAttemptLimiter(clock=clock)
        limiter.record_failure("T")
        limiter.record_failure("T")
        clock.now += 300
        assert limiter.record_failure("T") is False
        assert not limiter.is_locked("T")


class TestClaim:
    def test_window_expired_rejected_regardless_of_replacements(
        self, store, panels, panel, dispatcher, warranty_config, make_transaction, make_panel_details,
    ):
        tid = _completed(store, make_transaction, make_panel_details,
                         created_at=utc_now() - timedelta(days=13), replace_used=0)

        with pytest.raises(WarrantyRejected) as exc_info:
            asyncio.run(_service(store, panels, dispatcher, warranty_config).claim(tid, "budi@example.com"))

        assert exc_info.value.reason == "expired"
        assert panel.created_users == []

    def test_account_still_on_panel_rejected(
        self, store, panels, panel, dispatcher, warranty_config, make_transaction, make_panel_details,
    ):
        tid = _completed(store, make_transaction, make_panel_details)
        panel.users.append({"id": 7, "username": "BUDI", "email": "other@example.com"})

        with pytest.raises(WarrantyRejected) as exc_info:
            asyncio.run(_service(store, panels, dispatcher, warranty_config).claim(tid, "budi@example.com"))

        assert exc_info.value.reason == "account_active"
        assert panel.created_users == []
        assert store.records[tid].replace_used == 0

    def test_successful_replacement(
        self, store, panels, panel, dispatcher, warranty_config, make_transaction, make_panel_details,
    ):
        tid = _completed(store, make_transaction, make_panel_details, replace_used=1)

        result = asyncio.run(_service(store, panels, dispatcher, warranty_config).claim(tid, " Budi@Example.com "))

        record = store.records[tid]
        assert result.replace_used == 2
        assert result.remaining_replace == 1
        assert record.status is TransactionStatus.COMPLETED
        assert record.replace_used == 2
        assert record.panel_details.server_id == panel.created_servers[0]["id"]
        assert record.panel_details.password == panel.created_users[0]["password"]
        assert len(dispatcher.calls) == 1

    def test_limit_reached(
        self, store, panels, panel, dispatcher, warranty_config, make_transaction, make_panel_details,
    ):
        tid = _completed(store, make_transaction, make_panel_details, replace_used=3)

        with pytest.raises(WarrantyRejected) as exc_info:
            asyncio.run(_service(store, panels, dispatcher, warranty_config).claim(tid, "budi@example.com"))
        assert exc_info.value.reason == "limit_reached"

    def test_wrong_email_then_lock(
        self, store, panels, panel, dispatcher, warranty_config, make_transaction, make_panel_details,
    ):
        tid = _completed(store, make_transaction, make_panel_details)
        service = _service(store, panels, dispatcher, warranty_config, limiter=EmailAttemptLimiter(clock=_Clock()))

        reasons = []
        for _ in range(4):
            with pytest.raises(WarrantyRejected) as exc_info:
                asyncio.run(service.claim(tid, "someone@example.com"))
            reasons.append(exc_info.value.reason)

        assert reasons == ["email_mismatch", "email_mismatch", "locked", "locked"]
        with pytest.raises(WarrantyRejected) as exc_info:
            asyncio.run(service.claim(tid, "budi@example.com"))
        assert exc_info.value.reason == "locked"
        assert panel.created_users == []

    def test_not_completed(self, store, panels, dispatcher, warranty_config, make_transaction):
        transaction = make_transaction(status=TransactionStatus.PENDING)
        asyncio.run(store.create(transaction))

        with pytest.raises(WarrantyRejected) as exc_info:
            asyncio.run(_service(store, panels, dispatcher, warranty_config)
                        .claim(transaction.transaction_id, "budi@example.com"))
        assert exc_info.value.reason == "not_completed"

    def test_unknown_transaction(self, store, panels, dispatcher, warranty_config):
        with pytest.raises(NotFound):
            asyncio.run(_service(store, panels, dispatcher, warranty_config).claim("nope", "a@b.id"))

    def test_panel_listing_error_propagates(
        self, store, panels, panel, dispatcher, warranty_config, make_transaction, make_panel_details,
    ):
        tid = _completed(store, make_transaction, make_panel_details)
        panel.list_users_error = ProviderError("down", status_code=502)

        with pytest.raises(ProviderError):
            asyncio.run(_service(store, panels, dispatcher, warranty_config).claim(tid, "budi@example.com"))
        assert panel.created_users == []

    def test_failed_replacement_keeps_old_details(
        self, store, panels, panel, dispatcher, warranty_config, make_transaction, make_panel_details, provider_error,
    ):
        tid = _completed(store, make_transaction, make_panel_details)
        panel.add_server_error = provider_error("no allocation", status_code=422)

        with pytest.raises(ProvisionFailed):
            asyncio.run(_service(store, panels, dispatcher, warranty_config).claim(tid, "budi@example.com"))

        record = store.records[tid]
        assert record.panel_details == make_panel_details()
        assert record.replace_used == 0
        assert dispatcher.calls == []
