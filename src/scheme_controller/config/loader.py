"""
Controller Configuration Loader

Loads controller.yaml with environment variable interpolation.

Environment Variable Interpolation:
- ${VAR_NAME} - Required variable, raises error if not set
- ${VAR_NAME:-default} - Optional variable with default value

Example:
```yaml
controller:
  address: "${CONTROLLER_ADDRESS:-controller:main}"
audit:
  path: "${AUDIT_LOG:-./data/audit.jsonl}"
```
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from .schema import ControllerConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "controller.yaml"

# ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')


def _resolve(match: "re.Match[str]") -> str:
    name, default = match.group(1), match.group(2)
    if name in os.environ:
        return os.environ[name]
    if default is None:
        raise KeyError(
            f"{CONFIG_FILENAME} references ${{{name}}} but it is not set; "
            f"export it or write ${{{name}:-default}}"
        )
    return default


def interpolate_env_vars(value: Any) -> Any:
    """
    Substitute ${VAR} / ${VAR:-default} in every string of a parsed config tree.

    Mapping keys are left alone; only values are substituted.

    Raises:
        KeyError: if a ${VAR} without default is not set
    """
    if isinstance(value, dict):
        return {key: interpolate_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [interpolate_env_vars(item) for item in value]
    if isinstance(value, str):
        return ENV_VAR_PATTERN.sub(_resolve, value)
    return value


def load_config_from_file(
    config_path: Union[str, Path],
    interpolate: bool = True
) -> ControllerConfig:
    """
    Load controller configuration from a YAML file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        KeyError: If required environment variable is not set
        ValueError: If a bootstrap entry is malformed
        yaml.YAMLError: If YAML is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ValueError(f"Configuration root must be a mapping: {config_path}")

    if interpolate:
        try:
            raw_config = interpolate_env_vars(raw_config)
        except KeyError as e:
            logger.error(f"Configuration error: {e}")
            raise

    # Relative paths resolve against the config file's directory
    if "working_dir" not in raw_config:
        raw_config["working_dir"] = str(config_path.parent.absolute())

    return ControllerConfig.from_dict(raw_config)


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    working_dir: Optional[Union[str, Path]] = None,
) -> ControllerConfig:
    """
    Load controller configuration with sensible defaults.

    Search order:
    1. Explicit config_path if provided
    2. controller.yaml / config/controller.yaml in working_dir
    3. controller.yaml / config/controller.yaml in current directory
    4. Default configuration (no bootstrap schemes)
    """
    if config_path:
        return load_config_from_file(config_path)

    search_paths = []

    if working_dir:
        working_dir = Path(working_dir)
        search_paths.append(working_dir / CONFIG_FILENAME)
        search_paths.append(working_dir / "config" / CONFIG_FILENAME)

    cwd = Path.cwd()
    search_paths.append(cwd / CONFIG_FILENAME)
    search_paths.append(cwd / "config" / CONFIG_FILENAME)

    for path in search_paths:
        if path.exists():
            logger.info(f"Found configuration at {path}")
            return load_config_from_file(path)

    logger.info(f"No {CONFIG_FILENAME} found, using default configuration")
    return ControllerConfig(
        working_dir=Path(working_dir) if working_dir else cwd
    )


def create_default_config(
    output_path: Optional[Union[str, Path]] = None,
    genesis_scheme: str = "scheme:genesis",
) -> Path:
    """
    Write a starter controller.yaml.

    The genesis scheme receives every defined capability; everything else
    has to be registered through it.
    """
    output_path = Path(output_path) if output_path else Path(CONFIG_FILENAME)

    default_config = f"""# Scheme Controller Configuration
# Environment variables can be used: ${{VAR_NAME}} or ${{VAR_NAME:-default}}

controller:
  address: "${{CONTROLLER_ADDRESS:-controller:main}}"
  # Run global constraint pre/post hooks around guarded operations
  enforce_constraints: true
  # Refuse privileged calls once the controller has been upgraded
  reject_after_upgrade: true
  log_level: INFO

audit:
  path: "./data/audit.jsonl"

api:
  enabled: false
  host: "127.0.0.1"
  port: 8300

# Initial scheme set, written without permission checks
bootstrap:
  - principal: "{genesis_scheme}"
    permissions: [REGISTERED, CAN_MANAGE_SCHEMES, CAN_MANAGE_CONSTRAINTS, CAN_UPGRADE]
"""

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'w') as f:
        f.write(default_config)

    logger.info(f"Created default configuration at {output_path}")
    return output_path
