"""
Sakurupiah service implementation for QRIS payment processing
Creates payment intents and polls transaction status
"""

import hmac
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Any, Union

import httpx

from config import PaymentConfig
from services.errors import GatewayError
from utils.timezone_utils import parse_provider_timestamp

logger = logging.getLogger(__name__)

SUCCESS_ENVELOPE = "200"


class GatewayStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNKNOWN = "unknown"


# Provider wording (lowercased) -> status
STATUS_MAPPING = {
    'pending': GatewayStatus.PENDING,
    'menunggu': GatewayStatus.PENDING,
    'berhasil': GatewayStatus.SUCCEEDED,
    'sukses': GatewayStatus.SUCCEEDED,
    'success': GatewayStatus.SUCCEEDED,
    'paid': GatewayStatus.SUCCEEDED,
    'gagal': GatewayStatus.FAILED,
    'failed': GatewayStatus.FAILED,
    'expired': GatewayStatus.FAILED,
    'kadaluarsa': GatewayStatus.FAILED,
    'dibatalkan': GatewayStatus.FAILED,
}


@dataclass(frozen=True)
class LineItem:
    name: str
    price: int
    qty: int = 1


@dataclass(frozen=True)
class PaymentIntent:
    provider_transaction_id: str
    qr_image_url: str
    expiration_time: datetime
    payment_status: str


@dataclass(frozen=True)
class StatusResult:
    status: GatewayStatus
    raw_status: Optional[str]

    @property
    def effective_status(self) -> GatewayStatus:
        """UNKNOWN never drives a terminal transition; it reads as PENDING"""
        if self.status is GatewayStatus.UNKNOWN:
            return GatewayStatus.PENDING
        return self.status


def map_provider_status(raw_status: Optional[str]) -> GatewayStatus:
    """
    Map the provider's free-text status to a GatewayStatus, case-insensitively.

    Unrecognized wording maps to UNKNOWN, which callers treat as pending so a
    transient or new provider string can never fail a paid order. Every such
    occurrence is logged.
    """
    normalized = str(raw_status or "").strip().lower()
    status = STATUS_MAPPING.get(normalized)
    if status is None:
        logger.warning(f"⚠️ SAKURUPIAH: Unrecognized payment status {raw_status!r} - treating as pending")
        return GatewayStatus.UNKNOWN
    return status


class SakurupiahService:
    """Sakurupiah QRIS payment gateway client"""

    def __init__(self, config: PaymentConfig, transport: Optional[httpx.AsyncBaseTransport] = None,
                 timeout: float = 30.0):
        self.config = config
        self._transport = transport
        self._timeout = timeout

        if config.is_configured():
            logger.info("🔧 Sakurupiah service initialized with API id and key")
        else:
            logger.info("🔧 Sakurupiah service initialized (missing credentials)")

    def is_available(self) -> bool:
        return self.config.is_configured()

    def sign(self, merchant_ref: str, amount: int) -> str:
        """HMAC-SHA256 over api_id + method + merchant_ref + amount"""
        message = f"{self.config.api_id}{self.config.method}{merchant_ref}{amount}"
        return hmac.new(self.config.api_key.encode('utf-8'), message.encode('utf-8'), hashlib.sha256).hexdigest()

    def verify_callback_signature(self, raw_body: bytes, signature: str) -> bool:
        """Verify a callback body signed with the API key - STRICT, unsigned callbacks fail"""
        if not self.config.api_key or not signature:
            logger.error("❌ SAKURUPIAH: Missing API key or callback signature")
            return False
        expected = hmac.new(self.config.api_key.encode('utf-8'), raw_body, hashlib.sha256).hexdigest()
        is_valid = hmac.compare_digest(signature, expected)
        if not is_valid:
            logger.error("❌ SAKURUPIAH: Callback signature verification failed")
        return is_valid

    async def _post_form(self, endpoint: str, form: Dict[str, Union[str, List[str]]]) -> Dict[str, Any]:
        url = f"{self.config.base_url}/{endpoint}"
        headers = {"Authorization": f"Bearer {self.config.api_key}"}
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                response = await client.post(url, data=form, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"❌ SAKURUPIAH {endpoint} transport error: {e}")
            raise GatewayError(f"Payment gateway unreachable: {e}") from e

        raw = response.text
        try:
            payload = response.json()
        except ValueError:
            logger.error(f"❌ SAKURUPIAH {endpoint} returned NON-JSON (HTTP {response.status_code}): {raw[:500]}")
            raise GatewayError("Payment gateway did not return JSON", raw_body=raw,
                               status_code=response.status_code) from None

        if not isinstance(payload, dict):
            raise GatewayError("Unexpected payment gateway response shape", raw_body=raw,
                               status_code=response.status_code)

        if str(payload.get("status")) != SUCCESS_ENVELOPE:
            message = payload.get("message") or f"Payment gateway reported status {payload.get('status')!r}"
            logger.error(f"❌ SAKURUPIAH {endpoint} failure: {message}")
            raise GatewayError(message, raw_body=raw, status_code=response.status_code)

        return payload

    @staticmethod
    def _first_record(payload: Dict[str, Any], raw_hint: str) -> Dict[str, Any]:
        data = payload.get("data")
        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            raise GatewayError("Payment gateway response has no data record", raw_body=raw_hint)
        return data[0]

    async def create_intent(
        self,
        transaction_id: str,
        payer_name: str,
        payer_email: str,
        amount_total: int,
        line_items: List[LineItem],
    ) -> PaymentIntent:
        """Create a QRIS payment for merchant reference transaction_id"""
        if not self.is_available():
            raise GatewayError("Payment gateway credentials are not configured")

        # Line items go out as parallel produk[] / qty[] / harga[] arrays
        form: Dict[str, Union[str, List[str]]] = {
            "api_id": self.config.api_id,
            "method": self.config.method,
            "name": payer_name,
            "email": payer_email,
            "phone": self.config.payer_phone,
            "amount": str(amount_total),
            "merchant_fee": "1",
            "merchant_ref": transaction_id,
            "expired": str(self.config.expiry_hours),
            "produk[]": [item.name for item in line_items],
            "qty[]": [str(item.qty) for item in line_items],
            "harga[]": [str(item.price) for item in line_items],
        }
        if self.config.callback_url:
            form["callback_url"] = self.config.callback_url
        if self.config.return_url:
            form["return_url"] = self.config.return_url
        form["signature"] = self.sign(transaction_id, amount_total)

        logger.info(f"💰 SAKURUPIAH: Creating QRIS intent {transaction_id} for Rp{amount_total}")
        payload = await self._post_form("create.php", form)
        record = self._first_record(payload, str(payload))

        try:
            intent = PaymentIntent(
                provider_transaction_id=str(record["trx_id"]),
                qr_image_url=str(record.get("qr") or ""),
                expiration_time=parse_provider_timestamp(record["expired"]),
                payment_status=str(record.get("payment_status") or "pending").lower(),
            )
        except (KeyError, ValueError) as e:
            raise GatewayError(f"Malformed payment intent record: {e}", raw_body=str(payload)) from e

        logger.info(f"✅ SAKURUPIAH: Intent {transaction_id} -> {intent.provider_transaction_id}")
        return intent

    async def poll_status(self, provider_transaction_id: str) -> StatusResult:
        """Check the provider's status for one transaction"""
        if not self.is_available():
            raise GatewayError("Payment gateway credentials are not configured")

        payload = await self._post_form("status-transaction.php", {
            "api_id": self.config.api_id,
            "method": "status",
            "trx_id": provider_transaction_id,
        })
        record = self._first_record(payload, str(payload))
        raw_status = record.get("status")
        return StatusResult(status=map_provider_status(raw_status), raw_status=raw_status)
