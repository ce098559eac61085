# =============================================================================
# site_core/errors/handlers.py
# Error Handling Utilities for SiteCore
# =============================================================================

from __future__ import annotations
import traceback
from typing import Optional, Callable, TypeVar, Any
import streamlit as st

from site_core.logging import get_logger
from .exceptions import SiteCoreError

logger = get_logger(__name__)

T = TypeVar("T")


def handle_error(
    error: Exception,
    show_user_message: bool = True,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> None:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        show_user_message: Whether to display error to user via st.error
        log_error: Whether to log the error
        user_message: Custom message to show user (uses error message if None)
    """
    if isinstance(error, SiteCoreError):
        message = user_message or error.message
        code = error.code
        details = error.details
        recoverable = error.recoverable
    else:
        message = user_message or str(error)
        code = "UNKNOWN"
        details = {"traceback": traceback.format_exc()}
        recoverable = True

    if log_error:
        logger.error(
            f"[{code}] {message}",
            extra={"details": details},
            exc_info=error,
        )

    if show_user_message:
        if recoverable:
            st.error(f"Error: {message}")
        else:
            st.error(f"Critical Error: {message}. Please contact support.")

        if details and st.session_state.get("debug_mode", False):
            with st.expander("Error Details", expanded=False):
                st.json(details)


def report_sync_failures(report: Any, show_user_message: bool = True) -> Optional[str]:
    """
    Surface the aggregate outcome of a finished sync pass.

    Individual entry failures are only logged by the engine; the user sees
    a single "N changes could not be synced" notice per pass.

    Returns:
        The message shown, or None when nothing needed reporting
    """
    if getattr(report, "skipped", None):
        return None

    failed = report.failed_count + len(report.held)
    if failed == 0:
        if report.succeeded and show_user_message:
            st.toast(f"Synced {len(report.succeeded)} pending changes")
        return None

    message = report.summary()
    logger.warning(message)
    if show_user_message:
        st.warning(f"{message}. They will be retried when the connection is stable.")
    return message


def safe_execute(
    func: Callable[..., T],
    *args,
    default: Optional[T] = None,
    error_message: Optional[str] = None,
    reraise: bool = False,
    show_user_message: bool = True,
    **kwargs,
) -> Optional[T]:
    """
    Execute a function with automatic error handling.

    Usage:
        report = safe_execute(
            engine.sync,
            error_message="Sync could not be completed"
        )
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        handle_error(e, show_user_message=show_user_message, user_message=error_message)
        if reraise:
            raise
        return default
