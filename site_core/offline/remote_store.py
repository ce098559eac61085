# =============================================================================
# site_core/offline/remote_store.py
# Remote Data Store Used for Replay
# =============================================================================
"""
The sync engine only needs three remote calls (create / update / delete)
keyed by table name. RemoteStore is that contract; SupabaseRemoteStore
implements it over the supabase-py query builder.

Updates and deletes receive the column that identifies the row. The engine
takes it from the queue's resource schema, so the store never guesses.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from site_core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of one remote call."""
    success: bool
    error: Optional[str] = None
    data: Optional[Any] = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, data: Any = None) -> ApplyResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> ApplyResult:
        return cls(success=False, error=error)


@runtime_checkable
class RemoteStore(Protocol):
    """Remote operations consumed by SyncEngine."""

    def create(self, resource: str, payload: Mapping[str, Any]) -> ApplyResult:
        ...

    def update(self, resource: str, key: Any, payload: Mapping[str, Any], key_field: str) -> ApplyResult:
        ...

    def delete(self, resource: str, key: Any, key_field: str) -> ApplyResult:
        ...


class SupabaseRemoteStore:
    """
    RemoteStore backed by a supabase-py client.

    Usage:
        store = SupabaseRemoteStore(get_supabase_client(url, key))
        store.update("plots", 42, {"id": 42, "status": "complete"}, "id")
    """

    def __init__(self, client):
        self.client = client

    def create(self, resource: str, payload: Mapping[str, Any]) -> ApplyResult:
        return self._run(
            f"insert into {resource}",
            lambda: self.client.table(resource).insert(dict(payload)),
        )

    def update(self, resource: str, key: Any, payload: Mapping[str, Any], key_field: str) -> ApplyResult:
        return self._run(
            f"update {resource} {key}",
            lambda: self.client.table(resource).update(dict(payload)).eq(key_field, key),
        )

    def delete(self, resource: str, key: Any, key_field: str) -> ApplyResult:
        return self._run(
            f"delete {resource} {key}",
            lambda: self.client.table(resource).delete().eq(key_field, key),
        )

    def _run(self, description: str, build_query) -> ApplyResult:
        """Execute a query and translate any failure into ApplyResult."""
        try:
            response = build_query().execute()
        except Exception as e:
            logger.debug(f"Supabase {description} failed: {e}")
            return ApplyResult.fail(str(e) or e.__class__.__name__)

        # Older postgrest clients report errors on the response instead of raising
        error = getattr(response, "error", None)
        if error:
            return ApplyResult.fail(str(error))

        return ApplyResult.ok(getattr(response, "data", None))
