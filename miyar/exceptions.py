"""
Custom exceptions for MIYAR.

The pure learning components never raise on missing data; these exceptions
cover malformed stored definitions and external-dependency failures, which
the pipeline logs and isolates instead of failing the run.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Standard error codes for MIYAR."""
    # General errors (1xxx)
    UNKNOWN_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"
    CONFIGURATION_ERROR = "E1002"

    # Data errors (2xxx)
    DATA_INVALID = "E2001"
    PATTERN_INVALID = "E2010"

    # Service errors (4xxx)
    SERVICE_UNAVAILABLE = "E4000"
    DELIVERY_FAILED = "E4010"

    # Pipeline errors (7xxx)
    STAGE_FAILED = "E7000"


class MiyarError(Exception):
    """
    Base exception for MIYAR.

    All custom exceptions should inherit from this class.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging."""
        result: Dict[str, Any] = {
            "error_code": self.error_code.value,
            "message": self.message,
        }
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        return f"[{self.error_code.value}] {self.message}"


class PatternDefinitionError(MiyarError):
    """A stored decision pattern has an unknown comparator or category."""

    def __init__(self, message: str, pattern_id: Optional[int] = None, **kwargs):
        super().__init__(message=message, error_code=ErrorCode.PATTERN_INVALID, **kwargs)
        self.pattern_id = pattern_id


class DeliveryError(MiyarError):
    """An external delivery channel rejected or failed to accept an alert."""

    def __init__(self, message: str, channel: str = "", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.DELIVERY_FAILED, **kwargs)
        self.channel = channel


class ConfigurationError(MiyarError):
    """Error raised when configuration is invalid."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        super().__init__(message=message, error_code=ErrorCode.CONFIGURATION_ERROR, **kwargs)
        self.config_key = config_key
