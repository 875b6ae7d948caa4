"""
Request bodies for the storefront API
"""
from pydantic import BaseModel, Field

from config import PanelType, AccessType

USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class CreatePaymentRequest(BaseModel):
    plan_id: str = Field(..., min_length=1, max_length=32)
    username: str = Field(..., min_length=3, max_length=32, pattern=USERNAME_PATTERN)
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    panel_type: PanelType = PanelType.PRIVATE
    access_type: AccessType = AccessType.REGULAR


class WarrantyClaimRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
