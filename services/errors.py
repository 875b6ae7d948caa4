"""
Error taxonomy shared by the payment and provisioning services
Transport and provider failures are converted to these at component boundaries
"""

from typing import Optional


class ShopError(Exception):
    """Base class for all panel shop errors"""


class GatewayError(ShopError):
    """Payment provider unreachable, returned non-JSON, or reported failure"""

    def __init__(self, message: str, raw_body: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.raw_body = raw_body
        self.status_code = status_code


class ProviderError(ShopError):
    """Panel API unreachable or rejected the request"""

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class ConfigError(ShopError):
    """Plan or panel configuration is inconsistent"""


class NotFound(ShopError):
    """Transaction or plan is absent"""


class PlanNotFound(NotFound, ConfigError):
    """Catalog no longer has the plan a transaction refers to"""


class DuplicateError(ShopError):
    """Transaction id collision on create"""


class ProvisionFailed(ShopError):
    """Panel account could not be provisioned; nothing is left behind on the panel"""

    def __init__(self, message: str, cause: Optional[BaseException] = None, stage: str = "create_user"):
        super().__init__(message)
        self.cause = cause
        self.stage = stage


class WarrantyRejected(ShopError):
    """Warranty claim is not permitted for this transaction"""

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason


class UserExists(ShopError):
    """Username or email is already registered on the target panel"""

    def __init__(self, message: str, field: str):
        super().__init__(message)
        self.field = field
