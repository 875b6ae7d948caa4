"""
Transaction Store - persistence for payment records
CRUD only: lifecycle rules are enforced by the callers through conditional transitions
"""

import base64
import hashlib
import json
import logging
from typing import Optional, Dict, List, Any, Iterable

import psycopg2
from cryptography.fernet import Fernet, InvalidToken

import database
from config import PanelType, AccessType
from models.payment_models import Transaction, TransactionStatus, PanelDetails
from services.errors import DuplicateError

logger = logging.getLogger(__name__)

_COLUMNS = """
    transaction_id, provider_transaction_id, plan_id, username, email,
    amount, fee, total, qr_image_url, expiration_time, panel_type, access_type,
    status, panel_details, replace_used, created_at
"""


class TransactionStore:
    """PostgreSQL-backed store over the payments table"""

    def __init__(self, encryption_secret: str = ""):
        self._init_encryption(encryption_secret)

    def _init_encryption(self, secret: str):
        """Fernet key derived from DATABASE_ENCRYPTION_KEY for panel passwords at rest"""
        if not secret:
            logger.warning("⚠️ DATABASE_ENCRYPTION_KEY not set - using derived default key")
            secret = "default-key-change-in-production"
        key = base64.urlsafe_b64encode(hashlib.sha256(secret.encode()).digest())
        self.cipher = Fernet(key)

    def encrypt_password(self, password: str) -> str:
        return self.cipher.encrypt(password.encode()).decode()

    def decrypt_password(self, encrypted: str) -> str:
        return self.cipher.decrypt(encrypted.encode()).decode()

    def _serialize_details(self, details: PanelDetails) -> str:
        data = details.to_dict()
        data["password"] = self.encrypt_password(details.password)
        return json.dumps(data)

    def _deserialize_details(self, raw: Any) -> Optional[PanelDetails]:
        if raw is None:
            return None
        data = dict(json.loads(raw) if isinstance(raw, str) else raw)
        try:
            data["password"] = self.decrypt_password(data["password"])
        except InvalidToken:
            logger.error(f"❌ Could not decrypt panel password for server {data.get('serverId')}")
            data["password"] = ""
        return PanelDetails.from_dict(data)

    def _row_to_transaction(self, row: Dict[str, Any]) -> Transaction:
        return Transaction(
            transaction_id=row["transaction_id"],
            provider_transaction_id=row["provider_transaction_id"],
            plan_id=row["plan_id"],
            username=row["username"],
            email=row["email"],
            amount=int(row["amount"]),
            fee=int(row["fee"]),
            total=int(row["total"]),
            qr_image_url=row["qr_image_url"] or "",
            expiration_time=row["expiration_time"],
            panel_type=PanelType(row["panel_type"] or PanelType.PRIVATE.value),
            access_type=AccessType(row["access_type"] or AccessType.REGULAR.value),
            status=TransactionStatus(row["status"]),
            created_at=row["created_at"],
            panel_details=self._deserialize_details(row.get("panel_details")),
            replace_used=int(row.get("replace_used") or 0),
        )

    async def create(self, transaction: Transaction) -> Transaction:
        """Insert a new record; DuplicateError if the transaction id already exists"""
        try:
            await database.execute_update(f"""
                INSERT INTO payments ({_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """, (
                transaction.transaction_id,
                transaction.provider_transaction_id,
                transaction.plan_id,
                transaction.username,
                transaction.email,
                transaction.amount,
                transaction.fee,
                transaction.total,
                transaction.qr_image_url,
                transaction.expiration_time,
                transaction.panel_type.value,
                transaction.access_type.value,
                transaction.status.value,
                self._serialize_details(transaction.panel_details) if transaction.panel_details else None,
                transaction.replace_used,
                transaction.created_at,
            ))
        except psycopg2.IntegrityError as e:
            raise DuplicateError(f"Transaction {transaction.transaction_id} already exists") from e

        logger.info(f"✅ Payment record created: {transaction.transaction_id} ({transaction.status.value})")
        return transaction

    async def find_by_id(self, transaction_id: str) -> Optional[Transaction]:
        rows = await database.execute_query(
            f"SELECT {_COLUMNS} FROM payments WHERE transaction_id = %s",
            (transaction_id,),
        )
        return self._row_to_transaction(rows[0]) if rows else None

    async def update_status(self, transaction_id: str, new_status: TransactionStatus,
                            panel_details: Optional[PanelDetails] = None) -> bool:
        """Unconditional status write; returns whether a record matched"""
        if panel_details is not None:
            affected = await database.execute_update("""
                UPDATE payments SET status = %s, panel_details = %s, updated_at = CURRENT_TIMESTAMP
                WHERE transaction_id = %s
            """, (TransactionStatus(new_status).value, self._serialize_details(panel_details), transaction_id))
        else:
            affected = await database.execute_update("""
                UPDATE payments SET status = %s, updated_at = CURRENT_TIMESTAMP
                WHERE transaction_id = %s
            """, (TransactionStatus(new_status).value, transaction_id))
        return affected > 0

    async def transition_status(self, transaction_id: str, from_statuses: Iterable[TransactionStatus],
                                new_status: TransactionStatus,
                                panel_details: Optional[PanelDetails] = None) -> bool:
        """
        Compare-and-swap status write: only applies while the current status is
        one of from_statuses. Exactly one concurrent caller can win a claim.
        """
        expected = [TransactionStatus(s).value for s in from_statuses]
        details = self._serialize_details(panel_details) if panel_details is not None else None
        affected = await database.execute_update("""
            UPDATE payments
            SET status = %s,
                panel_details = COALESCE(%s::jsonb, panel_details),
                updated_at = CURRENT_TIMESTAMP
            WHERE transaction_id = %s AND status = ANY(%s)
        """, (TransactionStatus(new_status).value, details, transaction_id, expected))
        return affected == 1

    async def increment_replace_used(self, transaction_id: str) -> Optional[int]:
        """Bump the warranty replacement counter; None when the record is absent"""
        affected = await database.execute_update("""
            UPDATE payments SET replace_used = COALESCE(replace_used, 0) + 1, updated_at = CURRENT_TIMESTAMP
            WHERE transaction_id = %s
        """, (transaction_id,))
        if not affected:
            return None
        transaction = await self.find_by_id(transaction_id)
        return transaction.replace_used if transaction else None

    async def list_recent(self, limit: int = 50) -> List[Transaction]:
        rows = await database.execute_query(
            f"SELECT {_COLUMNS} FROM payments ORDER BY created_at DESC LIMIT %s",
            (limit,),
        )
        return [self._row_to_transaction(row) for row in rows]

    async def stats(self) -> Dict[str, int]:
        rows = await database.execute_query("""
            SELECT COUNT(*) AS total_purchases, COUNT(DISTINCT username) AS total_users
            FROM payments WHERE status = 'completed'
        """)
        row = rows[0] if rows else {}
        purchases = int(row.get("total_purchases") or 0)
        return {
            "totalUsers": int(row.get("total_users") or 0),
            "totalServers": purchases,
            "totalPurchases": purchases,
        }
