"""
Global Constraints

Pluggable pre/post checks applied around guarded operations.

The registry is a dense, index-addressed sequence. Removal replaces an entry
with a tombstone (None) in place; surviving entries keep their index forever.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .permissions import HashLike, normalize_hash

logger = logging.getLogger(__name__)


class GlobalConstraint(ABC):
    """
    Contract for a global constraint implementation.

    Both hooks receive the acting principal, the params hash the constraint
    was registered with, and the operation tag (e.g. "mintTokens").
    Returning False rejects the whole call.
    """

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def pre(self, caller: str, params_hash: bytes, tag: str) -> bool:
        """Called before the operation body runs"""

    @abstractmethod
    def post(self, caller: str, params_hash: bytes, tag: str) -> bool:
        """Called after the operation body ran, before commit"""


def constraint_id(constraint: Any) -> str:
    """Printable identifier for a constraint reference"""
    name = getattr(constraint, "name", None)
    if isinstance(name, str) and name:
        return name
    return type(constraint).__name__


@dataclass(frozen=True)
class ConstraintEntry:
    """One registered (constraint, params hash) pair"""
    constraint: Any
    params_hash: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "constraint": constraint_id(self.constraint),
            "params_hash": "0x" + self.params_hash.hex(),
        }


class ConstraintRegistry:
    """
    Ordered sequence of constraint entries with tombstone-on-removal.

    Storage:
        [ConstraintEntry | None, ...]   None marks a removed slot
    """

    def __init__(self, entries: Optional[List[Optional[ConstraintEntry]]] = None):
        self._entries: List[Optional[ConstraintEntry]] = list(entries or [])

    def add(self, constraint: Any, params_hash: HashLike = None) -> int:
        """Append an entry; returns its permanent index"""
        if constraint is None:
            raise ValueError("Constraint reference must not be None")
        entry = ConstraintEntry(constraint=constraint, params_hash=normalize_hash(params_hash))
        self._entries.append(entry)
        index = len(self._entries) - 1
        logger.debug(f"Constraint {constraint_id(constraint)} stored at index {index}")
        return index

    def remove(self, constraint: Any) -> bool:
        """
        Tombstone the first live entry matching `constraint`.

        Returns:
            True if an entry was tombstoned, False if no live entry matched
        """
        for index, entry in enumerate(self._entries):
            if entry is not None and entry.constraint == constraint:
                self._entries[index] = None
                logger.debug(f"Constraint {constraint_id(constraint)} tombstoned at index {index}")
                return True
        return False

    def for_each_live(self, fn: Callable[[Any, bytes], Any]) -> None:
        """Invoke fn(constraint, params_hash) on every live entry in insertion order"""
        for _, entry in self.live():
            fn(entry.constraint, entry.params_hash)

    def live(self) -> Iterator[Tuple[int, ConstraintEntry]]:
        """(index, entry) for every live entry"""
        for index, entry in enumerate(self._entries):
            if entry is not None:
                yield index, entry

    def get(self, index: int) -> Optional[ConstraintEntry]:
        """Entry at index; None for a tombstone"""
        return self._entries[index]

    def index_of(self, constraint: Any) -> Optional[int]:
        for index, entry in self.live():
            if entry.constraint == constraint:
                return index
        return None

    def is_registered(self, constraint: Any) -> bool:
        return self.index_of(constraint) is not None

    def params_of(self, constraint: Any) -> Optional[bytes]:
        index = self.index_of(constraint)
        return None if index is None else self._entries[index].params_hash

    def count_live(self) -> int:
        return sum(1 for entry in self._entries if entry is not None)

    def __len__(self) -> int:
        """Slot count, tombstones included"""
        return len(self._entries)

    def copy(self) -> "ConstraintRegistry":
        return ConstraintRegistry(self._entries)

    def restore(self, other: "ConstraintRegistry") -> None:
        self._entries = list(other._entries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": [entry.to_dict() if entry is not None else None for entry in self._entries],
        }

    def get_stats(self) -> Dict[str, Any]:
        """Get constraint registry statistics"""
        live = self.count_live()
        return {
            "total_slots": len(self._entries),
            "live_constraints": live,
            "tombstones": len(self._entries) - live,
        }
