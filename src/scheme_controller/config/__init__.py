"""
Scheme Controller Configuration Module

Provides centralized configuration management for controller deployments.
"""

from .schema import ControllerConfig, BootstrapScheme, ApiConfig
from .loader import load_config, load_config_from_file, create_default_config

__all__ = [
    "ControllerConfig",
    "BootstrapScheme",
    "ApiConfig",
    "load_config",
    "load_config_from_file",
    "create_default_config",
]
