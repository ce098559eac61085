# =============================================================================
# site_core/errors/__init__.py
# Centralized Error Handling for SiteCore
# =============================================================================

from .exceptions import (
    SiteCoreError,
    PayloadValidationError,
    StorageError,
    RemoteApplyError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    report_sync_failures,
    safe_execute,
)

__all__ = [
    # Exceptions
    "SiteCoreError",
    "PayloadValidationError",
    "StorageError",
    "RemoteApplyError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "report_sync_failures",
    "safe_execute",
]
