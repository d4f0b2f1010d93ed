"""
Scheme Permission Model

Ground truth for "who can do what":
- SchemePermission: the four named capability bits
- SchemeEntry: (config hash, permission bitmask) for one principal
- PermissionTable: principal -> SchemeEntry, with no authorization of its own

Only the low four bits carry meaning. Wider values are stored as-is so that
future bits can be introduced without rewriting existing entries.
"""

import hashlib
import logging
from dataclasses import dataclass
from enum import IntFlag
from typing import Any, Dict, Iterator, Iterable, Optional, Tuple, Union

logger = logging.getLogger(__name__)


class SchemePermission(IntFlag):
    """Capability bits held by a scheme"""
    NONE = 0
    REGISTERED = 1 << 0              # May call registered-scheme operations
    CAN_MANAGE_SCHEMES = 1 << 1      # May register/unregister other schemes
    CAN_MANAGE_CONSTRAINTS = 1 << 2  # May add/remove global constraints
    CAN_UPGRADE = 1 << 3             # May initiate controller upgrade


# Defined-bit mask; policy checks ignore everything above it
PERMISSION_MASK = 0b1111

# Width of the stored bitmask (bits above PERMISSION_MASK are kept, not interpreted)
PERMISSION_STORAGE_BITS = 32

HASH_SIZE = 32
ZERO_HASH = bytes(HASH_SIZE)

PermissionsLike = Union[int, SchemePermission, Iterable[str], str]
HashLike = Union[bytes, str, None]


def parse_permissions(value: PermissionsLike) -> int:
    """
    Normalize a permission value to a raw integer bitmask.

    Accepts an int / SchemePermission, a single flag name, or an
    iterable of flag names (e.g. ["REGISTERED", "CAN_UPGRADE"]).
    """
    if isinstance(value, bool):
        raise TypeError("Permissions must be an integer bitmask or flag names, not bool")

    if isinstance(value, int):
        mask = int(value)
    elif isinstance(value, str):
        mask = _flag_by_name(value)
    else:
        mask = 0
        for name in value:
            mask |= _flag_by_name(name)

    if mask < 0 or mask >= (1 << PERMISSION_STORAGE_BITS):
        raise ValueError(f"Permission bitmask out of range: {mask}")
    return mask


def _flag_by_name(name: str) -> int:
    try:
        return int(SchemePermission[name.strip().upper()])
    except KeyError:
        raise ValueError(f"Unknown permission name: {name!r}") from None


def permission_names(mask: int) -> list:
    """Names of the defined bits set in mask, lowest bit first"""
    return [flag.name for flag in SchemePermission if flag and (mask & flag)]


def normalize_hash(value: HashLike) -> bytes:
    """
    Coerce a configuration / parameter hash to 32 raw bytes.

    None and empty values map to the zero hash. Strings are read as hex,
    with or without a 0x prefix.
    """
    if value is None:
        return ZERO_HASH
    if isinstance(value, str):
        text = value[2:] if value.lower().startswith("0x") else value
        if not text:
            return ZERO_HASH
        try:
            value = bytes.fromhex(text)
        except ValueError:
            raise ValueError(f"Hash is not valid hex: {value!r}") from None
    if not isinstance(value, (bytes, bytearray)):
        raise TypeError(f"Hash must be bytes or hex string, got {type(value).__name__}")
    if len(value) == 0:
        return ZERO_HASH
    if len(value) != HASH_SIZE:
        raise ValueError(f"Hash must be {HASH_SIZE} bytes, got {len(value)}")
    return bytes(value)


def hash_of(text: str) -> bytes:
    """Convenience: sha256 of a string, usable as an opaque config/params hash"""
    return hashlib.sha256(text.encode()).digest()


@dataclass(frozen=True)
class SchemeEntry:
    """Registration record for one principal"""
    config_hash: bytes = ZERO_HASH
    permissions: int = 0

    @property
    def is_registered(self) -> bool:
        return self.permissions != 0

    @property
    def flags(self) -> SchemePermission:
        """Defined bits only, as a flag set"""
        return SchemePermission(self.permissions & PERMISSION_MASK)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config_hash": "0x" + self.config_hash.hex(),
            "permissions": self.permissions,
            "permission_names": permission_names(self.permissions),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemeEntry":
        return cls(
            config_hash=normalize_hash(data.get("config_hash")),
            permissions=parse_permissions(data.get("permissions", 0)),
        )


EMPTY_ENTRY = SchemeEntry()


class PermissionTable:
    """
    Mapping principal -> (config hash, permission bitmask).

    This is a storage primitive. `set` and `clear` perform no authorization;
    callers are expected to have run the registration policy first.
    A principal with no entry reads back as the zero/tombstone entry.
    """

    def __init__(self, entries: Optional[Dict[str, SchemeEntry]] = None):
        self._entries: Dict[str, SchemeEntry] = dict(entries or {})

    def get(self, principal: str) -> SchemeEntry:
        return self._entries.get(principal, EMPTY_ENTRY)

    def is_registered(self, principal: str) -> bool:
        return self.get(principal).permissions != 0

    def permissions_of(self, principal: str) -> int:
        return self.get(principal).permissions

    def config_of(self, principal: str) -> bytes:
        return self.get(principal).config_hash

    def has(self, principal: str, permission: SchemePermission) -> bool:
        """True iff every bit of `permission` is held by principal"""
        return (self.permissions_of(principal) & permission) == permission

    def set(self, principal: str, config_hash: HashLike, permissions: PermissionsLike) -> SchemeEntry:
        """Unconditional overwrite"""
        mask = parse_permissions(permissions)
        if mask == 0:
            # Zero is the tombstone state; storing it is a removal
            self.clear(principal)
            return EMPTY_ENTRY
        entry = SchemeEntry(config_hash=normalize_hash(config_hash), permissions=mask)
        self._entries[principal] = entry
        logger.debug(f"Permission table set {principal} -> {mask:#06b}")
        return entry

    def clear(self, principal: str) -> None:
        """Reset principal to the zero/tombstone state"""
        if self._entries.pop(principal, None) is not None:
            logger.debug(f"Permission table cleared {principal}")

    def __contains__(self, principal: str) -> bool:
        return self.is_registered(principal)

    def __iter__(self) -> Iterator[Tuple[str, SchemeEntry]]:
        return iter(sorted(self._entries.items()))

    def __len__(self) -> int:
        return len(self._entries)

    def copy(self) -> "PermissionTable":
        # Entries are frozen, a shallow copy is a full snapshot
        return PermissionTable(self._entries)

    def restore(self, other: "PermissionTable") -> None:
        self._entries = dict(other._entries)

    def to_dict(self) -> Dict[str, Any]:
        return {principal: entry.to_dict() for principal, entry in self}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PermissionTable":
        table = cls()
        for principal, entry_data in data.items():
            entry = SchemeEntry.from_dict(entry_data)
            table.set(principal, entry.config_hash, entry.permissions)
        return table

    def get_stats(self) -> Dict[str, Any]:
        """Get permission table statistics"""
        return {
            "registered_schemes": len(self._entries),
            "schemes_by_permission": {
                flag.name: len([e for e in self._entries.values() if e.permissions & flag])
                for flag in SchemePermission if flag
            },
        }
