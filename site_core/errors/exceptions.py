# =============================================================================
# site_core/errors/exceptions.py
# Custom Exception Hierarchy for SiteCore
# =============================================================================

from typing import Optional, Dict, Any


class SiteCoreError(Exception):
    """
    Base exception for all SiteCore errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "QUEUE_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "SC_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# OFFLINE QUEUE EXCEPTIONS
# =============================================================================

class PayloadValidationError(SiteCoreError):
    """Raised when a mutation is rejected before it enters the queue"""

    def __init__(
        self,
        message: str,
        resource: Optional[str] = None,
        kind: Optional[str] = None,
        field: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if resource:
            details["resource"] = resource
        if kind:
            details["kind"] = kind
        if field:
            details["field"] = field

        super().__init__(
            message=message,
            code="QUEUE_001",
            details=details,
            **kwargs,
        )


class StorageError(SiteCoreError):
    """Raised when local persistence cannot be read or written"""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        path: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if key:
            details["key"] = key
        if path:
            details["path"] = path

        super().__init__(
            message=message,
            code="STORAGE_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# SYNC EXCEPTIONS
# =============================================================================

class RemoteApplyError(SiteCoreError):
    """Raised when a queued operation could not be applied remotely"""

    def __init__(
        self,
        message: str,
        operation_id: Optional[str] = None,
        resource: Optional[str] = None,
        kind: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation_id:
            details["operation_id"] = operation_id
        if resource:
            details["resource"] = resource
        if kind:
            details["kind"] = kind

        super().__init__(
            message=message,
            code="SYNC_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(SiteCoreError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
