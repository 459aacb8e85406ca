"""Custom exceptions for MarketIntel.

Defines specific exception types for configuration, state validation and
upstream provider failures.
"""

from typing import Any, Dict, Optional


class MarketIntelError(Exception):
    """Base exception for MarketIntel errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize exception.

        Args:
            message: Human-readable error message
            details: Additional error details for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(MarketIntelError):
    """Raised when required configuration is missing or inconsistent.

    Covers missing pricing constraints for a product and scoring weights
    that do not sum to one.
    """


class MissingConstraintsError(ConfigurationError):
    """Raised when a product has no pricing constraints record."""

    def __init__(self, product_id: str):
        message = (
            f"No pricing constraints found for product '{product_id}'. "
            "Register constraints before optimizing its price."
        )
        super().__init__(message=message, details={"product_id": product_id})


class WeightSumError(ConfigurationError):
    """Raised when a set of blending weights does not sum to one."""

    def __init__(self, name: str, weights: Dict[str, float]):
        total = sum(weights.values())
        message = f"{name} must sum to 1.0, got {total:.6f}"
        super().__init__(
            message=message,
            details={"weights": dict(weights), "total": total},
        )


class InvalidStateError(MarketIntelError):
    """Raised when a pricing state holds non-finite or out-of-range values."""

    def __init__(self, product_id: str, field: str, value: Any):
        message = (
            f"Invalid pricing state for product '{product_id}': "
            f"{field}={value!r}"
        )
        super().__init__(
            message=message,
            details={"product_id": product_id, "field": field, "value": value},
        )


class UpstreamTimeoutError(MarketIntelError):
    """Raised when a provider call exceeds its deadline.

    Never reaches engine callers: the provider gateway catches it and falls
    back to the last-known-good value.
    """

    def __init__(self, provider: str, key: str, timeout_seconds: float):
        message = (
            f"{provider} call for '{key}' exceeded {timeout_seconds:.2f}s"
        )
        super().__init__(
            message=message,
            details={
                "provider": provider,
                "key": key,
                "timeout_seconds": timeout_seconds,
            },
        )
