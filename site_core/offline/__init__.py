# =============================================================================
# site_core/offline/__init__.py
# Offline-First Mutation Queue for SiteCore
# =============================================================================
"""
Offline-First Mutation Queue

Field staff keep working when the site has no signal: writes are queued
locally and replayed against Supabase once the connection comes back.

Architecture:
------------
    UI code
       │
       ▼
    OfflineSyncService ──── start()/stop()
       │
       ├── MutationQueue ──► KeyValueStore (SQLite / memory)
       ├── ConnectionManager (online/offline signal)
       └── SyncEngine ──────► RemoteStore (Supabase)

Usage:
------
from site_core.offline import get_offline_service

service = get_offline_service()
service.enqueue("plots", "update", {"id": 12, "status": "complete"})
print(service.pending_count)
"""

from site_core.offline.config import (
    OfflineSyncConfig,
    load_config,
)

from site_core.offline.operations import (
    OperationKind,
    PendingOperation,
    ResourceSchema,
    DEFAULT_SCHEMAS,
    build_operation,
)

from site_core.offline.local_storage import (
    KeyValueStore,
    MemoryKeyValueStore,
    SQLiteKeyValueStore,
)

from site_core.offline.mutation_queue import MutationQueue

from site_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionStatus,
    SocketProbe,
)

from site_core.offline.remote_store import (
    ApplyResult,
    RemoteStore,
    SupabaseRemoteStore,
)

from site_core.offline.sync_engine import (
    SyncEngine,
    SyncReport,
    SyncState,
)

from site_core.offline.service import (
    OfflineSyncService,
    build_offline_service,
    get_offline_service,
    reset_offline_service,
)

__all__ = [
    # Configuration
    "OfflineSyncConfig",
    "load_config",
    # Operations
    "OperationKind",
    "PendingOperation",
    "ResourceSchema",
    "DEFAULT_SCHEMAS",
    "build_operation",
    # Storage
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SQLiteKeyValueStore",
    "MutationQueue",
    # Connectivity
    "ConnectionManager",
    "ConnectionStatus",
    "SocketProbe",
    # Remote store
    "ApplyResult",
    "RemoteStore",
    "SupabaseRemoteStore",
    # Sync
    "SyncEngine",
    "SyncReport",
    "SyncState",
    # Service (Main API)
    "OfflineSyncService",
    "build_offline_service",
    "get_offline_service",
    "reset_offline_service",
]
