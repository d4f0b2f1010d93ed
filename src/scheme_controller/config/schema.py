"""
Controller Configuration Schema

Defines the configuration structure for a scheme controller deployment.
All configuration can be specified via controller.yaml or programmatic defaults.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from ..core.permissions import normalize_hash, parse_permissions, permission_names


_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0", ""}


def _as_bool(value: Any, key: str) -> bool:
    """YAML booleans pass through; interpolated strings like "false" are parsed"""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"{key} must be a boolean, got {value!r}")


@dataclass
class BootstrapScheme:
    """One scheme written into the table at construction, without checks"""
    principal: str
    permissions: int
    config_hash: bytes = field(default_factory=lambda: normalize_hash(None))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BootstrapScheme":
        if "principal" not in data:
            raise ValueError(f"Bootstrap entry missing 'principal': {data}")
        return cls(
            principal=str(data["principal"]),
            permissions=parse_permissions(data.get("permissions", ["REGISTERED"])),
            config_hash=normalize_hash(data.get("config_hash")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "principal": self.principal,
            "permissions": permission_names(self.permissions) or self.permissions,
            "config_hash": "0x" + self.config_hash.hex(),
        }


@dataclass
class ApiConfig:
    """Configuration for the read-only HTTP surface"""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8300


@dataclass
class ControllerConfig:
    """
    Central configuration for a scheme controller.

    Example controller.yaml:
    ```yaml
    controller:
      address: "controller:main"
      enforce_constraints: true
      reject_after_upgrade: true

    audit:
      path: ./data/audit.jsonl

    bootstrap:
      - principal: "scheme:genesis"
        permissions: [REGISTERED, CAN_MANAGE_SCHEMES, CAN_MANAGE_CONSTRAINTS, CAN_UPGRADE]
      - principal: "scheme:treasury"
        permissions: [REGISTERED]
        config_hash: "0x00...01"
    ```
    """
    address: Optional[str] = None

    # Global constraint pre/post hooks around guarded calls
    enforce_constraints: bool = True

    # Superseded controllers refuse privileged calls
    reject_after_upgrade: bool = True

    log_level: str = "INFO"

    # JSON-lines audit log; in-memory only when None
    audit_log_path: Optional[Path] = None

    bootstrap: List[BootstrapScheme] = field(default_factory=list)

    api: ApiConfig = field(default_factory=ApiConfig)

    working_dir: Path = field(default_factory=Path.cwd)

    metadata: Dict[str, Any] = field(default_factory=dict)

    def bootstrap_sequences(self) -> Tuple[List[str], List[bytes], List[int]]:
        """The three parallel sequences the Controller constructor takes"""
        return (
            [s.principal for s in self.bootstrap],
            [s.config_hash for s in self.bootstrap],
            [s.permissions for s in self.bootstrap],
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ControllerConfig":
        """Create ControllerConfig from dictionary (e.g., parsed YAML)"""
        controller_data = data.get("controller", {}) or {}
        audit_data = data.get("audit", {}) or {}
        api_data = data.get("api", {}) or {}
        working_dir = Path(data.get("working_dir", "."))

        audit_path: Optional[Union[str, Path]] = audit_data.get("path")
        if audit_path:
            audit_path = Path(audit_path)
            if not audit_path.is_absolute():
                audit_path = working_dir / audit_path

        bootstrap = [BootstrapScheme.from_dict(entry) for entry in data.get("bootstrap", []) or []]

        return cls(
            address=controller_data.get("address"),
            enforce_constraints=_as_bool(controller_data.get("enforce_constraints", True), "controller.enforce_constraints"),
            reject_after_upgrade=_as_bool(controller_data.get("reject_after_upgrade", True), "controller.reject_after_upgrade"),
            log_level=str(controller_data.get("log_level", "INFO")).upper(),
            audit_log_path=audit_path or None,
            bootstrap=bootstrap,
            api=ApiConfig(
                enabled=_as_bool(api_data.get("enabled", False), "api.enabled"),
                host=api_data.get("host", "127.0.0.1"),
                port=int(api_data.get("port", 8300)),
            ),
            working_dir=working_dir,
            metadata=data.get("metadata", {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (for serialization)"""
        return {
            "controller": {
                "address": self.address,
                "enforce_constraints": self.enforce_constraints,
                "reject_after_upgrade": self.reject_after_upgrade,
                "log_level": self.log_level,
            },
            "audit": {
                "path": str(self.audit_log_path) if self.audit_log_path else None,
            },
            "api": {
                "enabled": self.api.enabled,
                "host": self.api.host,
                "port": self.api.port,
            },
            "bootstrap": [s.to_dict() for s in self.bootstrap],
            "working_dir": str(self.working_dir),
            "metadata": self.metadata,
        }
