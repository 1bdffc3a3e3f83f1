"""
Error types for amrr-rate-control

Only configuration-time failures are raised to callers. Outcome recording
and rate selection never raise for valid state; bounds problems are
clamped (or asserted when strict_invariants is enabled).
"""

from typing import Any, Dict, Optional


class ErrorCode:
    """Stable string codes for logs and metrics."""
    INVALID_CONFIG = "INVALID_CONFIG"
    UNSUPPORTED_CAPABILITY = "UNSUPPORTED_CAPABILITY"


class ConfigError(ValueError):
    """
    Raised when a Config (or a peer's capability set) cannot be used.

    Attributes:
        message: Human readable description
        field: Offending config field or capability name, if known
        code: Stable machine readable code (see ErrorCode)
    """

    code = ErrorCode.INVALID_CONFIG

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "field": self.field,
        }


class UnsupportedCapabilityError(ConfigError):
    """
    Fatal: the controller was attached to modes it does not implement.

    AMRR only drives legacy (DSSS/HR-DSSS/OFDM/ERP-OFDM) rate sets. A
    station or peer advertising HT, VHT or HE support is rejected at
    initialization and the controller instance must not be used.
    """

    code = ErrorCode.UNSUPPORTED_CAPABILITY
