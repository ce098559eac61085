# =============================================================================
# site_core/offline/operations.py
# Pending Operation Model and Payload Validation
# =============================================================================
"""
Typed representation of a queued mutation.

Every write made while offline becomes a PendingOperation: an immutable
record of which table to touch, how (insert / update / delete) and with
what values. Payloads are validated against a ResourceSchema before they
are queued, so a malformed write is rejected at the call site instead of
failing forever during replay.
"""

from __future__ import annotations
import copy
import itertools
import json
import re
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple, Union

from site_core.errors import PayloadValidationError


class OperationKind(Enum):
    """Kind of mutation to replay against the remote store."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: Union[OperationKind, str]) -> OperationKind:
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise PayloadValidationError(f"Unknown operation kind: {value!r}", kind=str(value))

    @property
    def needs_key(self) -> bool:
        return self is not OperationKind.INSERT


@dataclass(frozen=True)
class ResourceSchema:
    """Shape of the payloads accepted for one remote table."""
    name: str
    key_field: str = "id"
    required_on_insert: Tuple[str, ...] = ()
    allowed_fields: Optional[FrozenSet[str]] = None


# Site tables written from the field apps. Anything else falls back to a
# plain "id"-keyed schema.
DEFAULT_SCHEMAS: Dict[str, ResourceSchema] = {
    schema.name: schema
    for schema in (
        ResourceSchema("projects", required_on_insert=("name",)),
        ResourceSchema("plots", required_on_insert=("name", "project_id")),
        ResourceSchema("levels", required_on_insert=("name", "project_id")),
        ResourceSchema("work_packages", required_on_insert=("name", "plot_id")),
        ResourceSchema("plot_tasks", required_on_insert=("plot_id",)),
        ResourceSchema("unit_work_logs", required_on_insert=("assignment_id", "user_id", "status")),
        ResourceSchema("timesheets", required_on_insert=("user_id", "week_commencing")),
        ResourceSchema("rams_documents", required_on_insert=("title",)),
        ResourceSchema("delivery_bookings", required_on_insert=("project_id",)),
    )
}

_RESOURCE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_sequence = itertools.count(1)
_sequence_lock = threading.Lock()

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ONE_MS = timedelta(milliseconds=1)


def utc_now_ms() -> datetime:
    """Current UTC time truncated to the millisecond precision we persist."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def to_epoch_ms(moment: datetime) -> int:
    return (moment - EPOCH) // ONE_MS


def from_epoch_ms(value: Union[int, float]) -> datetime:
    return EPOCH + timedelta(milliseconds=int(value))


def new_operation_id() -> str:
    """
    Unique id for a queued operation.

    Millisecond timestamp + process-wide counter + random suffix, so two
    operations created in the same millisecond never collide.
    """
    with _sequence_lock:
        seq = next(_sequence)
    return f"offline_{int(time.time() * 1000)}_{seq}_{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class PendingOperation:
    """A mutation waiting to be replayed against the remote store."""
    id: str
    resource: str
    kind: OperationKind
    payload: Mapping[str, Any]
    created_at: datetime = field(default_factory=utc_now_ms)
    synced: bool = False

    def key(self, key_field: str = "id") -> Any:
        """Value identifying the remote row, or None for key-less inserts."""
        return self.payload.get(key_field)

    def record_ref(self, key_field: str = "id") -> Optional[Tuple[str, str]]:
        key = self.key(key_field)
        if key is None:
            return None
        return (self.resource, str(key))

    def to_dict(self) -> Dict[str, Any]:
        """Storage shape (matches what the web client kept in localStorage)."""
        return {
            "id": self.id,
            "table": self.resource,
            "operation": self.kind.value,
            "data": copy.deepcopy(dict(self.payload)),
            "timestamp": to_epoch_ms(self.created_at),
            "synced": False,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> PendingOperation:
        """Rebuild an operation from its storage shape; raises on bad input."""
        try:
            op_id = raw["id"]
            resource = raw["table"]
            kind = OperationKind.parse(raw["operation"])
            data = raw.get("data") or {}
            created_at = from_epoch_ms(raw["timestamp"])
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            raise PayloadValidationError(f"Malformed stored operation: {e}") from e

        if not isinstance(op_id, str) or not op_id:
            raise PayloadValidationError("Stored operation has no id")
        if not isinstance(resource, str) or not _RESOURCE_NAME.match(resource):
            raise PayloadValidationError(f"Stored operation has invalid table: {resource!r}")
        if not isinstance(data, dict):
            raise PayloadValidationError("Stored operation data is not an object", resource=resource)

        return cls(
            id=op_id,
            resource=resource,
            kind=kind,
            payload=data,
            created_at=created_at,
        )

    def describe(self) -> str:
        return f"{self.kind.value} on {self.resource}"


def schema_for(resource: str, schemas: Optional[Mapping[str, ResourceSchema]] = None) -> ResourceSchema:
    registry = DEFAULT_SCHEMAS if schemas is None else schemas
    return registry.get(resource) or ResourceSchema(resource)


def validate_payload(
    resource: str,
    kind: OperationKind,
    payload: Any,
    schema: ResourceSchema,
) -> Dict[str, Any]:
    """
    Check a payload against its resource schema.

    Returns a deep copy of the payload so later changes by the caller
    cannot alter the queued operation.
    """
    if not isinstance(payload, dict):
        raise PayloadValidationError(
            f"Payload must be a mapping, got {type(payload).__name__}",
            resource=resource,
            kind=kind.value,
        )

    try:
        json.dumps(payload)
    except (TypeError, ValueError) as e:
        raise PayloadValidationError(
            f"Payload is not JSON serializable: {e}",
            resource=resource,
            kind=kind.value,
        ) from e

    if kind.needs_key:
        key = payload.get(schema.key_field)
        if key is None or key == "":
            raise PayloadValidationError(
                f"{kind.value} on {resource} requires '{schema.key_field}'",
                resource=resource,
                kind=kind.value,
                field=schema.key_field,
            )
    else:
        missing = [name for name in schema.required_on_insert if payload.get(name) is None]
        if missing:
            raise PayloadValidationError(
                f"insert on {resource} is missing required fields: {', '.join(missing)}",
                resource=resource,
                kind=kind.value,
                field=missing[0],
            )

    if schema.allowed_fields is not None:
        allowed = set(schema.allowed_fields) | {schema.key_field}
        unknown = sorted(set(payload) - allowed)
        if unknown:
            raise PayloadValidationError(
                f"Unknown fields for {resource}: {', '.join(unknown)}",
                resource=resource,
                kind=kind.value,
                field=unknown[0],
            )

    return copy.deepcopy(payload)


def build_operation(
    resource: str,
    kind: Union[OperationKind, str],
    payload: Any,
    schemas: Optional[Mapping[str, ResourceSchema]] = None,
) -> PendingOperation:
    """Validate a mutation and wrap it in a fresh PendingOperation."""
    if not isinstance(resource, str) or not _RESOURCE_NAME.match(resource):
        raise PayloadValidationError(f"Invalid resource name: {resource!r}", resource=str(resource))

    op_kind = OperationKind.parse(kind)
    schema = schema_for(resource, schemas)
    data = validate_payload(resource, op_kind, payload, schema)

    return PendingOperation(
        id=new_operation_id(),
        resource=resource,
        kind=op_kind,
        payload=data,
    )
