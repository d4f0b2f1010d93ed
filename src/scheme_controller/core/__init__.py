"""
Scheme Controller Core

Permission model, scheme registry, global constraints, the guarded call
envelope and the controller that ties them together.
"""

from .permissions import (
    SchemePermission,
    SchemeEntry,
    PermissionTable,
    PERMISSION_MASK,
    ZERO_HASH,
    hash_of,
    normalize_hash,
    parse_permissions,
    permission_names,
)
from .policy import PolicyDecision, PolicyRule, RegistrationAction, RegistrationContext, RegistrationPolicy
from .constraints import GlobalConstraint, ConstraintEntry, ConstraintRegistry
from .guard import Guard, GuardedCall
from .resources import (
    Avatar,
    MintableToken,
    ReputationLedger,
    InMemoryAvatar,
    InMemoryToken,
    InMemoryReputation,
)
from .controller import Controller, Operation
from .errors import (
    ControllerError,
    Unauthorized,
    PrivilegeEscalation,
    ConstraintRejected,
    InvalidUpgrade,
    NotFound,
    MalformedConstruction,
    UnknownOperation,
    ControllerRetired,
    DelegationFailed,
)

__all__ = [
    # Permissions
    "SchemePermission",
    "SchemeEntry",
    "PermissionTable",
    "PERMISSION_MASK",
    "ZERO_HASH",
    "hash_of",
    "normalize_hash",
    "parse_permissions",
    "permission_names",
    # Policy
    "PolicyDecision",
    "PolicyRule",
    "RegistrationAction",
    "RegistrationContext",
    "RegistrationPolicy",
    # Constraints
    "GlobalConstraint",
    "ConstraintEntry",
    "ConstraintRegistry",
    # Guard
    "Guard",
    "GuardedCall",
    # Resources
    "Avatar",
    "MintableToken",
    "ReputationLedger",
    "InMemoryAvatar",
    "InMemoryToken",
    "InMemoryReputation",
    # Controller
    "Controller",
    "Operation",
    # Errors
    "ControllerError",
    "Unauthorized",
    "PrivilegeEscalation",
    "ConstraintRejected",
    "InvalidUpgrade",
    "NotFound",
    "MalformedConstruction",
    "UnknownOperation",
    "ControllerRetired",
    "DelegationFailed",
]
