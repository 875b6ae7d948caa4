"""Shared fakes and builders for the storefront tests."""
import asyncio
from dataclasses import replace
from datetime import timedelta
from typing import Dict, List, Optional

import pytest

from config import PanelType, AccessType, WarrantyConfig
from models.payment_models import Transaction, TransactionStatus, PanelDetails, can_transition
from services.errors import DuplicateError, ProviderError
from services.pterodactyl import PanelRegistry
from services.sakurupiah import StatusResult, map_provider_status
from utils.timezone_utils import utc_now


class FakeStore:
    """In-memory TransactionStore with the same conditional-update semantics."""

    def __init__(self):
        self.records: Dict[str, Transaction] = {}
        self.history: Dict[str, List[TransactionStatus]] = {}
        self.write_errors: Dict[TransactionStatus, Exception] = {}

    def _write(self, transaction: Transaction):
        previous = self.records.get(transaction.transaction_id)
        if previous is not None:
            assert can_transition(previous.status, transaction.status), (
                f"illegal transition {previous.status} -> {transaction.status}"
            )
        self.records[transaction.transaction_id] = transaction
        self.history.setdefault(transaction.transaction_id, []).append(transaction.status)

    async def create(self, transaction: Transaction) -> Transaction:
        if transaction.transaction_id in self.records:
            raise DuplicateError(transaction.transaction_id)
        self._write(transaction)
        return transaction

    async def find_by_id(self, transaction_id: str) -> Optional[Transaction]:
        await asyncio.sleep(0)
        return self.records.get(transaction_id)

    async def update_status(self, transaction_id, new_status, panel_details=None) -> bool:
        current = self.records.get(transaction_id)
        if current is None:
            return False
        self._write(current.with_status(new_status, panel_details=panel_details))
        return True

    async def transition_status(self, transaction_id, from_statuses, new_status, panel_details=None) -> bool:
        await asyncio.sleep(0)
        if new_status in self.write_errors:
            raise self.write_errors[new_status]
        current = self.records.get(transaction_id)
        if current is None or current.status not in set(from_statuses):
            return False
        self._write(current.with_status(new_status, panel_details=panel_details))
        return True

    async def increment_replace_used(self, transaction_id) -> Optional[int]:
        current = self.records.get(transaction_id)
        if current is None:
            return None
        self.records[transaction_id] = replace(current, replace_used=current.replace_used + 1)
        return current.replace_used + 1

    async def list_recent(self, limit: int = 50) -> List[Transaction]:
        ordered = sorted(self.records.values(), key=lambda t: t.created_at, reverse=True)
        return ordered[:limit]

    async def stats(self) -> Dict[str, int]:
        completed = [t for t in self.records.values() if t.status is TransactionStatus.COMPLETED]
        return {
            "totalUsers": len({t.username for t in completed}),
            "totalServers": len(completed),
            "totalPurchases": len(completed),
        }


class FakePanel:
    """Stands in for PterodactylService with scriptable failures."""

    def __init__(self, panel_url="https://panel.example.com"):
        self.panel_url = panel_url
        self.users: List[Dict] = []
        self.created_users: List[Dict] = []
        self.created_servers: List[Dict] = []
        self.deleted_users: List[int] = []
        self.create_user_error: Optional[Exception] = None
        self.add_server_error: Optional[Exception] = None
        self.list_users_error: Optional[Exception] = None
        self.delete_user_result = True
        self._next_user_id = 100
        self._next_server_id = 500

    async def create_user(self, username, email, password):
        await asyncio.sleep(0)
        if self.create_user_error:
            raise self.create_user_error
        self._next_user_id += 1
        user = {"id": self._next_user_id, "username": username, "email": email, "password": password}
        self.created_users.append(user)
        self.users.append(user)
        return self._next_user_id

    async def add_server(self, user_id, name, memory, disk, cpu):
        await asyncio.sleep(0)
        if self.add_server_error:
            raise self.add_server_error
        self._next_server_id += 1
        self.created_servers.append({
            "id": self._next_server_id, "user": user_id, "name": name,
            "memory": memory, "disk": disk, "cpu": cpu,
        })
        return self._next_server_id

    async def delete_user(self, user_id):
        self.deleted_users.append(user_id)
        if self.delete_user_result:
            self.users = [u for u in self.users if u["id"] != user_id]
        return self.delete_user_result

    async def list_users(self):
        if self.list_users_error:
            raise self.list_users_error
        return [{"id": u["id"], "username": u["username"], "email": u["email"]} for u in self.users]


class FakeGateway:
    """Payment gateway whose poll results are queued per test."""

    def __init__(self, statuses=None):
        self.statuses = list(statuses or [])
        self.poll_calls: List[str] = []
        self.poll_error: Optional[Exception] = None

    async def poll_status(self, provider_transaction_id):
        self.poll_calls.append(provider_transaction_id)
        await asyncio.sleep(0)
        if self.poll_error:
            raise self.poll_error
        raw = self.statuses.pop(0) if len(self.statuses) > 1 else (self.statuses[0] if self.statuses else "pending")
        return StatusResult(status=map_provider_status(raw), raw_status=raw)


class FakeDispatcher:
    def __init__(self):
        self.calls = []

    def dispatch_completion(self, transaction, plan_name, panel_details):
        self.calls.append((transaction, plan_name, panel_details))
        return True

    async def drain(self):
        return None


def build_transaction(**kwargs) -> Transaction:
    created_at = kwargs.pop("created_at", utc_now())
    defaults = dict(
        transaction_id="TRX20261019000000ABCDEF",
        provider_transaction_id="SKR-123",
        plan_id="unli",
        username="budi",
        email="budi@example.com",
        amount=15000,
        fee=12,
        total=15012,
        qr_image_url="https://sakurupiah.id/qr/SKR-123.png",
        expiration_time=created_at + timedelta(hours=24),
        panel_type=PanelType.PRIVATE,
        access_type=AccessType.REGULAR,
        status=TransactionStatus.PENDING,
        created_at=created_at,
    )
    defaults.update(kwargs)
    return Transaction(**defaults)


def build_panel_details(**kwargs) -> PanelDetails:
    defaults = dict(username="budi", password="Secret123x", server_id=42,
                    panel_url="https://panel.example.com", user_id=7)
    defaults.update(kwargs)
    return PanelDetails(**defaults)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def panel():
    return FakePanel()


@pytest.fixture
def panels(panel):
    return PanelRegistry({PanelType.PRIVATE: panel})


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def warranty_config():
    return WarrantyConfig(warranty_days=12, replace_limit=3)


@pytest.fixture
def make_transaction():
    return build_transaction


@pytest.fixture
def make_panel_details():
    return build_panel_details


@pytest.fixture
def provider_error():
    def _make(message="boom", status_code=500, detail=None):
        return ProviderError(message, status_code=status_code, detail=detail)
    return _make
