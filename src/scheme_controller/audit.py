"""
Audit Log

Append-only record of every committed privileged operation.
One event per outcome; events are written only after the whole call
(permission check, constraint hooks, body) succeeded.

Optionally mirrored to a JSON-lines file so external observers can tail it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class AuditEventType(str, Enum):
    """Kinds of committed outcomes"""
    MINT_REPUTATION = "mint-reputation"
    MINT_TOKENS = "mint-tokens"
    SCHEME_REGISTERED = "scheme-registered"
    SCHEME_UNREGISTERED = "scheme-unregistered"
    GENERIC_ACTION = "generic-action"
    FUNDS_SENT = "funds-sent"
    EXTERNAL_TRANSFER = "external-transfer"
    EXTERNAL_TRANSFER_FROM = "external-transfer-from"
    EXTERNAL_APPROVE = "external-approve"
    GLOBAL_CONSTRAINT_ADDED = "global-constraint-added"
    GLOBAL_CONSTRAINT_REMOVED = "global-constraint-removed"
    CONTROLLER_UPGRADED = "controller-upgraded"


def _jsonable(value: Any) -> Any:
    """Coerce operation parameters into JSON-safe values"""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    for attr in ("address", "name", "symbol", "__name__"):
        candidate = getattr(value, attr, None)
        if isinstance(candidate, str) and candidate:
            return candidate
    return repr(value)


class AuditEvent(BaseModel):
    """A single committed operation"""
    id: UUID = Field(default_factory=uuid4)
    sequence: int = -1  # Assigned on append
    event_type: AuditEventType
    operation: str
    caller: str
    params: Dict[str, Any] = Field(default_factory=dict)
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("params", mode="before")
    @classmethod
    def _coerce_params(cls, value: Any) -> Dict[str, Any]:
        return _jsonable(dict(value or {}))


class AuditLog:
    """
    Append-only audit log.

    Storage (optional):
        <path>  one AuditEvent JSON document per line
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self._events: List[AuditEvent] = []
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "AuditLog":
        """Reload a log previously written to path and keep appending to it"""
        log = cls(path)
        if log.path.exists():
            with open(log.path) as f:
                for line in f:
                    line = line.strip()
                    if line:
                        log._events.append(AuditEvent.model_validate_json(line))
            logger.info(f"Loaded {len(log._events)} audit events from {log.path}")
        return log

    def append(self, event: AuditEvent) -> AuditEvent:
        return self.extend([event])[0]

    def extend(self, events: Iterable[AuditEvent]) -> List[AuditEvent]:
        """
        Append a batch as one unit.

        Sequences are assigned and the file mirror is written in a single
        write before anything becomes visible in memory; if the write fails
        the log is unchanged.
        """
        base = len(self._events)
        staged = [
            event.model_copy(update={"sequence": base + offset})
            for offset, event in enumerate(events)
        ]
        if not staged:
            return []
        if self.path is not None:
            lines = "".join(event.model_dump_json() + "\n" for event in staged)
            with open(self.path, "a") as f:
                f.write(lines)
        self._events.extend(staged)
        for event in staged:
            logger.debug(f"Audit #{event.sequence}: {event.event_type.value} by {event.caller}")
        return staged

    def events(
        self,
        event_type: Optional[AuditEventType] = None,
        caller: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[AuditEvent]:
        """Events in commit order, optionally filtered; limit keeps the most recent"""
        events = self._events
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        if caller:
            events = [e for e in events if e.caller == caller]
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return list(events)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self):
        return iter(list(self._events))

    def get_stats(self) -> Dict[str, Any]:
        """Get audit log statistics"""
        return {
            "total_events": len(self._events),
            "events_by_type": {
                etype.value: len([e for e in self._events if e.event_type == etype])
                for etype in AuditEventType
            },
            "persisted_to": str(self.path) if self.path else None,
        }
