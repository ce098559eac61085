# =============================================================================
# site_core/offline/connection_manager.py
# Connection Status Detection and Management
# =============================================================================
"""
ConnectionManager - tracks whether the Supabase backend is reachable.

Features:
- Injected event source: platform/network events call report(online)
- Optional probe + background polling thread
- subscribe() callbacks: current state immediately, then one call per transition
"""

from __future__ import annotations
import socket
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from site_core.logging import get_logger

logger = get_logger(__name__)

ConnectivityCallback = Callable[[bool], None]
Probe = Callable[[], bool]

PUBLIC_HOSTS: Tuple[Tuple[str, int], ...] = (
    ("8.8.8.8", 53),         # Google DNS
    ("1.1.1.1", 53),         # Cloudflare DNS
    ("208.67.222.222", 53),  # OpenDNS
)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    last_change: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None


def _can_connect(host: str, port: int, timeout: float) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


class SocketProbe:
    """
    TCP reachability probe.

    Online means at least one public host answers and, when a Supabase URL
    is configured, the Supabase host accepts a connection too.
    """

    def __init__(
        self,
        supabase_url: Optional[str] = None,
        timeout: float = 5.0,
        hosts: Sequence[Tuple[str, int]] = PUBLIC_HOSTS,
    ):
        self.timeout = timeout
        self.hosts = tuple(hosts)
        self.supabase_host: Optional[Tuple[str, int]] = None
        if supabase_url:
            parsed = urlparse(supabase_url)
            if parsed.hostname:
                default_port = 80 if parsed.scheme == "http" else 443
                self.supabase_host = (parsed.hostname, parsed.port or default_port)

    def __call__(self) -> bool:
        if not any(_can_connect(host, port, self.timeout) for host, port in self.hosts):
            return False
        if self.supabase_host is None:
            return True
        return _can_connect(*self.supabase_host, self.timeout)


class ConnectionManager:
    """
    Online/offline signal for the offline queue.

    Usage:
        manager = ConnectionManager(probe=SocketProbe(url))
        unsubscribe = manager.subscribe(lambda online: ...)
        manager.report(False)   # e.g. from a platform "offline" event
    """

    # Configuration
    CHECK_INTERVAL_ONLINE = 30.0      # Seconds between checks when online
    CHECK_INTERVAL_OFFLINE = 10.0     # Seconds between checks when offline

    def __init__(
        self,
        probe: Optional[Probe] = None,
        initial_online: Optional[bool] = None,
        check_interval_online: Optional[float] = None,
        check_interval_offline: Optional[float] = None,
    ):
        self._probe = probe
        self._state = ConnectionState()
        if initial_online is not None:
            self._state.status = ConnectionStatus.ONLINE if initial_online else ConnectionStatus.OFFLINE
        self._callbacks: List[ConnectivityCallback] = []
        self._lock = threading.RLock()
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()
        self.check_interval_online = check_interval_online or self.CHECK_INTERVAL_ONLINE
        self.check_interval_offline = check_interval_offline or self.CHECK_INTERVAL_OFFLINE

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_online(self) -> bool:
        return self._state.status == ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        return not self.is_online

    # =========================================================================
    # EVENT SOURCE
    # =========================================================================

    def report(self, online: bool) -> bool:
        """
        Record the latest connectivity observation.

        Subscribers are notified only when the status actually changes.

        Returns:
            True if this observation was a transition
        """
        now = datetime.now()
        new_status = ConnectionStatus.ONLINE if online else ConnectionStatus.OFFLINE

        with self._lock:
            old_status = self._state.status
            self._state.last_check = now
            if online:
                self._state.last_online = now
                self._state.consecutive_failures = 0
                self._state.error_message = None
            else:
                self._state.consecutive_failures += 1

            if old_status == new_status:
                return False

            self._state.status = new_status
            self._state.last_change = now
            # UNKNOWN already reads as offline to subscribers
            if (old_status == ConnectionStatus.ONLINE) == online:
                return False
            callbacks = list(self._callbacks)

        logger.info(f"Connection status changed: {old_status.value} -> {new_status.value}")
        self._notify(callbacks, online)
        return True

    def check_connection(self) -> ConnectionState:
        """Run the probe once and report its result."""
        if self._probe is None:
            return self._state

        try:
            online = bool(self._probe())
        except Exception as e:
            logger.debug(f"Connectivity probe failed: {e}")
            self._state.error_message = str(e)
            online = False

        self.report(online)
        return self._state

    def force_offline(self) -> None:
        """Force offline mode (for testing or user preference)."""
        self.report(False)
        logger.info("Forced offline mode")

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def subscribe(self, callback: ConnectivityCallback) -> Callable[[], None]:
        """
        Register a callback for connectivity transitions.

        The callback runs once immediately with the current value, then on
        every transition until the returned function is called. A transition
        reported from another thread waits until the initial value has been
        delivered, so the callback never sees a stale value last.
        """
        with self._lock:
            if callback not in self._callbacks:
                self._callbacks.append(callback)
            self._notify([callback], self.is_online)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks)

    def _notify(self, callbacks: List[ConnectivityCallback], online: bool) -> None:
        for callback in callbacks:
            try:
                callback(online)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}", exc_info=True)

    # =========================================================================
    # BACKGROUND MONITORING
    # =========================================================================

    def start_monitoring(self) -> None:
        """Start background connection polling (requires a probe)."""
        if self._probe is None:
            logger.debug("No connectivity probe configured, monitoring disabled")
            return
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectionMonitor",
        )
        self._monitor_thread.start()
        logger.debug("Connection monitoring started")

    def stop_monitoring(self) -> None:
        """Stop background connection polling."""
        self._stop_monitoring.set()
        if self._monitor_thread:
            self._monitor_thread.join(timeout=5)
            self._monitor_thread = None
        logger.debug("Connection monitoring stopped")

    def _monitoring_loop(self) -> None:
        """Background monitoring loop."""
        while not self._stop_monitoring.is_set():
            try:
                self.check_connection()
            except Exception as e:
                logger.error(f"Error in connection check: {e}")

            interval = self.check_interval_online if self.is_online else self.check_interval_offline
            if self._stop_monitoring.wait(timeout=interval):
                break

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_online": self.is_online,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "failures": self._state.consecutive_failures,
            "error": self._state.error_message,
        }
