"""
Custom Exceptions Module

Defines all custom exceptions used throughout the aggregation service.
All exceptions inherit from AggregatorError base class.
"""

from typing import Optional, Dict, Any


class AggregatorError(Exception):
    """
    Base exception for all aggregation service errors.

    All custom exceptions should inherit from this class.
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None
    ):
        """
        Initialize exception.

        Args:
            message: Error message
            details: Additional context information
            original_exception: Original exception if wrapping another error
        """
        self.message = message
        self.details = details or {}
        self.original_exception = original_exception

        # Construct full message
        full_message = message
        if details:
            details_str = ", ".join(f"{k}={v}" for k, v in details.items())
            full_message = f"{message} ({details_str})"

        super().__init__(full_message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(AggregatorError):
    """Configuration is invalid or missing"""
    pass


# ============================================================================
# Provider Errors
# ============================================================================

class ProviderError(AggregatorError):
    """Error occurred while talking to an external data provider"""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None
    ):
        merged = {"provider": provider}
        if status_code is not None:
            merged["status_code"] = status_code
        merged.update(details or {})
        super().__init__(message, details=merged, original_exception=original_exception)
        self.provider = provider
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Network failure, timeout, HTTP 429 or 5xx. Safe to retry."""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None
    ):
        super().__init__(
            message,
            provider=provider,
            status_code=status_code,
            details=details,
            original_exception=original_exception,
        )
        self.retry_after = retry_after


class ProviderClientError(ProviderError):
    """HTTP 4xx other than 429. Retrying will not help."""
    pass


# ============================================================================
# Cache Errors
# ============================================================================

class CacheError(AggregatorError):
    """Error in the cache layer"""
    pass


class CacheUnavailable(CacheError):
    """Durable (Redis) tier is unreachable"""
    pass
