"""
Scheme Controller

A permissioned governance controller: one authority object that mediates
minting, fund transfers, scheme registration and self-upgrade on behalf of
registered schemes.
"""

from .core import (
    Controller,
    Operation,
    SchemePermission,
    PermissionTable,
    ConstraintRegistry,
    GlobalConstraint,
    ControllerError,
)
from .audit import AuditEvent, AuditEventType, AuditLog

__version__ = "0.1.0"

__all__ = [
    "Controller",
    "Operation",
    "SchemePermission",
    "PermissionTable",
    "ConstraintRegistry",
    "GlobalConstraint",
    "ControllerError",
    "AuditEvent",
    "AuditEventType",
    "AuditLog",
]
