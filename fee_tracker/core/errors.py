from enum import Enum
from pydantic import BaseModel
from typing import Optional

class ErrorCode(str, Enum):
    RATE_LIMITED = "RATE_LIMITED"
    MISSING_CREDENTIALS = "MISSING_CREDENTIALS"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    INVALID_NETWORK = "INVALID_NETWORK"
    COLLECTION_FAILED = "COLLECTION_FAILED"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN = "UNKNOWN"

class ErrorResponse(BaseModel):
    error_code: ErrorCode
    message: str  # User-friendly message
    details: Optional[str] = None  # Technical details (only in dev mode)
    retry_after: Optional[int] = None  # Seconds to wait before retry
    hint: Optional[str] = None

# Custom Exception Classes
class FeeTrackerError(Exception):
    def __init__(self, code: ErrorCode, user_msg: str, details: str = None):
        self.code = code
        self.user_msg = user_msg
        self.details = details
        super().__init__(user_msg)

class ConfigurationError(FeeTrackerError):
    """A required credential or setting is missing. Retrying will not help."""
    def __init__(self, setting: str):
        super().__init__(
            ErrorCode.MISSING_CREDENTIALS,
            "Live data is not configured.",
            f"{setting} is not set"
        )
        self.setting = setting

class ProviderError(FeeTrackerError):
    """Explorer answered with status "0" for something other than an empty result."""
    def __init__(self, reason: str, code: ErrorCode = ErrorCode.PROVIDER_ERROR):
        super().__init__(code, "Block explorer rejected the request.", reason)
        self.reason = reason

class RateLimitError(ProviderError):
    def __init__(self, reason: str = "Max rate limit reached", retry_after: int = 5):
        super().__init__(reason, ErrorCode.RATE_LIMITED)
        self.user_msg = "API rate limit reached. Please try again later."
        self.retry_after = retry_after

class InvalidNetworkError(FeeTrackerError):
    def __init__(self, network: str):
        super().__init__(
            ErrorCode.INVALID_NETWORK,
            "Unknown network.",
            f"Network {network!r} is not monitored"
        )

class CollectionError(FeeTrackerError):
    """No network produced data because every collector broke."""
    def __init__(self, details: str):
        super().__init__(
            ErrorCode.COLLECTION_FAILED,
            "Failed to fetch fee data from the block explorers.",
            details
        )
