"""
Pricing utility functions for panel orders
Handles the QRIS service fee, transaction ids and generated credentials
"""

import secrets
import string
import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_CEILING
from typing import Tuple

logger = logging.getLogger(__name__)

PASSWORD_ALPHABET = string.ascii_letters + string.digits


def calculate_fee(price: int, fee_min: int, fee_max: int, fee_percent: float) -> int:
    """
    Service fee for a plan price: percent of the price rounded up,
    clamped to [fee_min, fee_max]. Pure function of its inputs.
    """
    if fee_min > fee_max:
        raise ValueError(f"fee_min ({fee_min}) must not exceed fee_max ({fee_max})")
    raw = (Decimal(price) * Decimal(str(fee_percent)) / Decimal(100)).to_integral_value(rounding=ROUND_CEILING)
    return int(min(max(raw, Decimal(fee_min)), Decimal(fee_max)))


def calculate_total(price: int, fee_min: int, fee_max: int, fee_percent: float) -> Tuple[int, int]:
    """Return (fee, total) where total == price + fee"""
    fee = calculate_fee(price, fee_min, fee_max, fee_percent)
    return fee, price + fee


def generate_transaction_id() -> str:
    """Opaque merchant reference, e.g. TRX20261019083015A1B2C3"""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"TRX{stamp}{secrets.token_hex(3).upper()}"


def generate_password(length: int = 10) -> str:
    if length < 8:
        raise ValueError("Panel passwords must be at least 8 characters")
    while True:
        password = "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
        # Pterodactyl rejects passwords without mixed case and a digit
        if (any(c.islower() for c in password)
                and any(c.isupper() for c in password)
                and any(c.isdigit() for c in password)):
            return password


def format_rupiah(amount: int) -> str:
    """Format an IDR amount as Rp15.012"""
    return "Rp" + f"{int(amount):,}".replace(",", ".")


def mask_email(email: str) -> str:
    """Keep the first 3 characters of the local part: abc***@domain"""
    if "@" not in email:
        return "***"
    local, domain = email.split("@", 1)
    return f"{local[:3]}***@{domain}"
