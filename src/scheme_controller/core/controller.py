"""
Controller

The single authority mediating every privileged action against the managed
resources (avatar, token, reputation) on behalf of registered schemes.

Owns:
- PermissionTable: who may do what
- ConstraintRegistry: global pre/post hooks
- Guard: the all-or-nothing envelope around each call
- upgrade target: written once, then the controller is superseded
"""

import logging
from typing import Any, Callable, Dict, Optional, Sequence
from uuid import uuid4

from ..audit import AuditEventType, AuditLog
from .constraints import ConstraintRegistry, constraint_id
from .errors import (
    ControllerRetired,
    DelegationFailed,
    InvalidUpgrade,
    MalformedConstruction,
    NotFound,
    PrivilegeEscalation,
    UnknownOperation,
)
from .guard import Guard, GuardedCall
from .permissions import (
    HashLike,
    PermissionTable,
    PermissionsLike,
    SchemePermission,
    normalize_hash,
    parse_permissions,
)
from .policy import PolicyDecision, RegistrationPolicy
from .resources import Avatar, MintableToken, ReputationLedger

logger = logging.getLogger(__name__)


class Operation:
    """Operation tags; these are what constraints see and what `dispatch` accepts"""
    MINT_REPUTATION = "mintReputation"
    MINT_TOKENS = "mintTokens"
    REGISTER_SCHEME = "registerScheme"
    UNREGISTER_SCHEME = "unregisterScheme"
    UNREGISTER_SELF = "unregisterSelf"
    ADD_GLOBAL_CONSTRAINT = "addGlobalConstraint"
    REMOVE_GLOBAL_CONSTRAINT = "removeGlobalConstraint"
    GENERIC_ACTION = "genericAction"
    SEND_FUNDS = "sendFunds"
    EXTERNAL_TRANSFER = "externalTransfer"
    EXTERNAL_TRANSFER_FROM = "externalTransferFrom"
    EXTERNAL_APPROVE = "externalApprove"
    UPGRADE_CONTROLLER = "upgradeController"


class Controller:
    """
    Permissioned governance controller.

    Args:
        avatar, token, reputation: the three managed resources
        schemes, config_hashes, permissions: parallel bootstrap sequences,
            written without any permission check
        address: the controller's own principal identifier
        audit_log: destination for committed events (in-memory if omitted)
        enforce_constraints: run global constraint hooks around guarded calls
        reject_after_upgrade: refuse privileged calls once superseded
    """

    def __init__(
        self,
        avatar: Avatar,
        token: MintableToken,
        reputation: ReputationLedger,
        schemes: Sequence[str] = (),
        config_hashes: Sequence[HashLike] = (),
        permissions: Sequence[PermissionsLike] = (),
        address: Optional[str] = None,
        audit_log: Optional[AuditLog] = None,
        enforce_constraints: bool = True,
        reject_after_upgrade: bool = True,
    ):
        if avatar is None or token is None or reputation is None:
            raise MalformedConstruction("avatar, token and reputation are all required")

        schemes, config_hashes, permissions = list(schemes), list(config_hashes), list(permissions)
        if not (len(schemes) == len(config_hashes) == len(permissions)):
            raise MalformedConstruction(
                f"Bootstrap sequences differ in length: schemes={len(schemes)}, "
                f"config_hashes={len(config_hashes)}, permissions={len(permissions)}"
            )

        self.address = address or f"controller:{uuid4().hex[:12]}"
        self.avatar = avatar
        self.token = token
        self.reputation = reputation
        self.reject_after_upgrade = reject_after_upgrade
        self._upgrade_target: Optional[str] = None

        self.permissions = PermissionTable()
        self.constraints = ConstraintRegistry()
        self.policy = RegistrationPolicy()
        self.audit_log = audit_log if audit_log is not None else AuditLog()

        for scheme, config_hash, mask in zip(schemes, config_hashes, permissions):
            if not scheme:
                raise MalformedConstruction("Bootstrap scheme identifier must not be empty")
            try:
                self.permissions.set(scheme, config_hash, mask)
            except (TypeError, ValueError) as e:
                raise MalformedConstruction(f"Bad bootstrap entry for {scheme}: {e}") from e

        self.guard = Guard(
            permissions=self.permissions,
            constraints=self.constraints,
            audit_log=self.audit_log,
            snapshot=self._capture_state,
            restore=self._restore_state,
            enforce_constraints=enforce_constraints,
        )

        self._operations: Dict[str, Callable[..., Any]] = {
            Operation.MINT_REPUTATION: self.mint_reputation,
            Operation.MINT_TOKENS: self.mint_tokens,
            Operation.REGISTER_SCHEME: self.register_scheme,
            Operation.UNREGISTER_SCHEME: self.unregister_scheme,
            Operation.UNREGISTER_SELF: self.unregister_self,
            Operation.ADD_GLOBAL_CONSTRAINT: self.add_global_constraint,
            Operation.REMOVE_GLOBAL_CONSTRAINT: self.remove_global_constraint,
            Operation.GENERIC_ACTION: self.generic_action,
            Operation.SEND_FUNDS: self.send_funds,
            Operation.EXTERNAL_TRANSFER: self.external_transfer,
            Operation.EXTERNAL_TRANSFER_FROM: self.external_transfer_from,
            Operation.EXTERNAL_APPROVE: self.external_approve,
            Operation.UPGRADE_CONTROLLER: self.upgrade,
        }

        logger.info(f"Controller {self.address} created with {len(self.permissions)} bootstrap schemes")

    @classmethod
    def from_config(cls, config, avatar: Avatar, token: MintableToken,
                    reputation: ReputationLedger, audit_log: Optional[AuditLog] = None) -> "Controller":
        """Build a controller from a ControllerConfig"""
        schemes, config_hashes, permissions = config.bootstrap_sequences()
        if audit_log is None:
            audit_log = AuditLog.load(config.audit_log_path) if config.audit_log_path else AuditLog()
        return cls(
            avatar, token, reputation,
            schemes, config_hashes, permissions,
            address=config.address,
            audit_log=audit_log,
            enforce_constraints=config.enforce_constraints,
            reject_after_upgrade=config.reject_after_upgrade,
        )

    # =========================================================================
    # ENVELOPE PLUMBING
    # =========================================================================

    @property
    def _resources(self) -> tuple:
        return (self.avatar, self.token, self.reputation)

    def _capture_state(self) -> tuple:
        resources = tuple(
            getattr(resource, "snapshot", lambda: None)() for resource in self._resources
        )
        return (self.permissions.copy(), self.constraints.copy(), self._upgrade_target, resources)

    def _restore_state(self, state: tuple) -> None:
        permissions, constraints, upgrade_target, resources = state
        self.permissions.restore(permissions)
        self.constraints.restore(constraints)
        self._upgrade_target = upgrade_target
        for resource, resource_state in zip(self._resources, resources):
            if resource_state is not None:
                resource.restore(resource_state)

    def _require_owner(self, resource: Any, tag: str, caller: str) -> None:
        """Refuse to drive a resource that has been handed to another controller"""
        is_owned_by = getattr(resource, "is_owned_by", None)
        if is_owned_by is not None and not is_owned_by(self.address):
            raise DelegationFailed(
                f"{type(resource).__name__} is owned by {getattr(resource, 'owner', 'another controller')}",
                operation=tag, caller=caller,
            )

    def _run(
        self,
        tag: str,
        caller: str,
        body: Callable[[GuardedCall], Any],
        required: SchemePermission = SchemePermission.REGISTERED,
        hooks: bool = True,
        allow_retired: bool = False,
    ) -> Any:
        with self.guard.lock:
            if self.is_retired and not allow_retired:
                logger.warning(f"Rejected {tag} by {caller}: controller superseded by {self._upgrade_target}")
                raise ControllerRetired(
                    f"controller upgraded to {self._upgrade_target}",
                    operation=tag, caller=caller,
                )
            return self.guard.run(tag, caller, body, required=required, hooks=hooks)

    def dispatch(self, tag: str, caller: str, *args, **kwargs) -> Any:
        """Invoke an operation by its tag; anything else is rejected"""
        operation = self._operations.get(tag)
        if operation is None:
            logger.warning(f"Rejected unknown operation {tag!r} from {caller}")
            raise UnknownOperation(f"no entry point named {tag!r}", operation=tag, caller=caller)
        return operation(caller, *args, **kwargs)

    @property
    def operations(self) -> list:
        return sorted(self._operations)

    # =========================================================================
    # MINTING
    # =========================================================================

    def mint_reputation(self, caller: str, amount: int, beneficiary: str) -> bool:
        """Mint (or burn, when negative) reputation for beneficiary"""
        tag = Operation.MINT_REPUTATION

        def body(call: GuardedCall) -> bool:
            self._require_owner(self.reputation, tag, caller)
            call.record(AuditEventType.MINT_REPUTATION, amount=amount, beneficiary=beneficiary)
            if not self.reputation.mint(amount, beneficiary):
                raise DelegationFailed("reputation ledger refused mint", operation=tag, caller=caller)
            return True

        return self._run(tag, caller, body)

    def mint_tokens(self, caller: str, amount: int, beneficiary: str) -> bool:
        tag = Operation.MINT_TOKENS

        def body(call: GuardedCall) -> bool:
            if amount < 0:
                raise ValueError(f"Token amount must be unsigned, got {amount}")
            self._require_owner(self.token, tag, caller)
            call.record(AuditEventType.MINT_TOKENS, amount=amount, beneficiary=beneficiary)
            if not self.token.mint(amount, beneficiary):
                raise DelegationFailed("token refused mint", operation=tag, caller=caller)
            return True

        return self._run(tag, caller, body)

    # =========================================================================
    # SCHEME MANAGEMENT
    # =========================================================================

    def register_scheme(self, caller: str, scheme: str, config_hash: HashLike,
                        permissions: PermissionsLike) -> bool:
        """
        Register a new scheme or modify an existing one.

        The caller must hold every defined bit that changes between the
        scheme's current and requested permissions, and every defined bit the
        scheme currently holds. REGISTERED is added to the stored value.
        """
        tag = Operation.REGISTER_SCHEME

        def body(call: GuardedCall) -> bool:
            if not scheme:
                raise ValueError("Scheme identifier must not be empty")
            requested = parse_permissions(permissions)
            old = self.permissions.permissions_of(scheme)

            decision, reason = self.policy.check_register(
                caller, self.permissions.permissions_of(caller), scheme, old, requested
            )
            if decision != PolicyDecision.ALLOW:
                raise PrivilegeEscalation(reason, operation=tag, caller=caller)

            new = requested | int(SchemePermission.REGISTERED)
            entry = self.permissions.set(scheme, config_hash, new)
            call.record(
                AuditEventType.SCHEME_REGISTERED,
                scheme=scheme,
                config_hash=entry.config_hash,
                permissions=new,
                previous_permissions=old,
            )
            logger.info(f"Scheme {scheme} registered by {caller} with permissions {new:#06b}")
            return True

        return self._run(tag, caller, body, required=SchemePermission.CAN_MANAGE_SCHEMES)

    def unregister_scheme(self, caller: str, scheme: str) -> bool:
        """
        Remove a scheme. Returns False if it was not registered.

        The caller must dominate every defined bit the scheme holds.
        """
        tag = Operation.UNREGISTER_SCHEME

        def body(call: GuardedCall) -> bool:
            old = self.permissions.permissions_of(scheme)
            if old == 0:
                return False

            decision, reason = self.policy.check_unregister(
                caller, self.permissions.permissions_of(caller), scheme, old
            )
            if decision != PolicyDecision.ALLOW:
                raise PrivilegeEscalation(reason, operation=tag, caller=caller)

            self.permissions.clear(scheme)
            call.record(AuditEventType.SCHEME_UNREGISTERED, scheme=scheme, previous_permissions=old)
            logger.info(f"Scheme {scheme} unregistered by {caller}")
            return True

        return self._run(tag, caller, body, required=SchemePermission.CAN_MANAGE_SCHEMES)

    def unregister_self(self, caller: str) -> bool:
        """
        Relinquish the caller's own registration.

        Always permitted: no permission bit, no constraint hooks, and still
        available after the controller has been superseded. Returns False if
        the caller was not registered to begin with.
        """
        tag = Operation.UNREGISTER_SELF

        def body(call: GuardedCall) -> bool:
            old = self.permissions.permissions_of(caller)
            if old == 0:
                return False
            decision, reason = self.policy.check_unregister(caller, old, caller, old)
            if decision != PolicyDecision.ALLOW:
                raise PrivilegeEscalation(reason, operation=tag, caller=caller)
            self.permissions.clear(caller)
            call.record(AuditEventType.SCHEME_UNREGISTERED, scheme=caller, previous_permissions=old)
            logger.info(f"Scheme {caller} unregistered itself")
            return True

        return self._run(tag, caller, body, required=SchemePermission.NONE, hooks=False, allow_retired=True)

    # =========================================================================
    # GLOBAL CONSTRAINTS (permission-gated only, no hooks)
    # =========================================================================

    def add_global_constraint(self, caller: str, constraint: Any, params_hash: HashLike = None) -> int:
        """Append a constraint; returns its permanent index"""
        tag = Operation.ADD_GLOBAL_CONSTRAINT

        def body(call: GuardedCall) -> int:
            for hook in ("pre", "post"):
                if not callable(getattr(constraint, hook, None)):
                    raise TypeError(f"Constraint {constraint!r} has no callable {hook}()")
            params = normalize_hash(params_hash)
            index = self.constraints.add(constraint, params)
            call.record(
                AuditEventType.GLOBAL_CONSTRAINT_ADDED,
                constraint=constraint_id(constraint),
                params_hash=params,
                index=index,
            )
            logger.info(f"Global constraint {constraint_id(constraint)} added at index {index} by {caller}")
            return index

        return self._run(tag, caller, body, required=SchemePermission.CAN_MANAGE_CONSTRAINTS, hooks=False)

    def remove_global_constraint(self, caller: str, constraint: Any) -> bool:
        """Tombstone the first live entry for constraint; NotFound if there is none"""
        tag = Operation.REMOVE_GLOBAL_CONSTRAINT

        def body(call: GuardedCall) -> bool:
            index = self.constraints.index_of(constraint)
            if not self.constraints.remove(constraint):
                raise NotFound(
                    f"no live global constraint {constraint_id(constraint)}",
                    operation=tag, caller=caller,
                )
            call.record(
                AuditEventType.GLOBAL_CONSTRAINT_REMOVED,
                constraint=constraint_id(constraint),
                index=index,
            )
            logger.info(f"Global constraint {constraint_id(constraint)} removed from index {index} by {caller}")
            return True

        return self._run(tag, caller, body, required=SchemePermission.CAN_MANAGE_CONSTRAINTS, hooks=False)

    # =========================================================================
    # AVATAR DELEGATION
    # =========================================================================

    def generic_action(self, caller: str, action: Any, param: Any) -> Any:
        """Have the avatar perform an arbitrary action; returns its result"""

        tag = Operation.GENERIC_ACTION

        def body(call: GuardedCall) -> Any:
            self._require_owner(self.avatar, tag, caller)
            call.record(AuditEventType.GENERIC_ACTION, action=action, param=param)
            return self.avatar.generic_action(action, param)

        return self._run(tag, caller, body)

    def send_funds(self, caller: str, amount: int, to: str) -> bool:
        tag = Operation.SEND_FUNDS

        def body(call: GuardedCall) -> bool:
            self._require_owner(self.avatar, tag, caller)
            call.record(AuditEventType.FUNDS_SENT, amount=amount, to=to)
            if not self.avatar.send_funds(amount, to):
                raise DelegationFailed("avatar refused to send funds", operation=tag, caller=caller)
            return True

        return self._run(tag, caller, body)

    def external_transfer(self, caller: str, token: Any, to: str, amount: int) -> bool:
        tag = Operation.EXTERNAL_TRANSFER

        def body(call: GuardedCall) -> bool:
            self._require_owner(self.avatar, tag, caller)
            call.enlist(token)
            call.record(AuditEventType.EXTERNAL_TRANSFER, token=token, to=to, amount=amount)
            if not self.avatar.external_transfer(token, to, amount):
                raise DelegationFailed("external transfer failed", operation=tag, caller=caller)
            return True

        return self._run(tag, caller, body)

    def external_transfer_from(self, caller: str, token: Any, from_: str, to: str, amount: int) -> bool:
        tag = Operation.EXTERNAL_TRANSFER_FROM

        def body(call: GuardedCall) -> bool:
            self._require_owner(self.avatar, tag, caller)
            call.enlist(token)
            call.record(
                AuditEventType.EXTERNAL_TRANSFER_FROM,
                token=token, from_=from_, to=to, amount=amount,
            )
            if not self.avatar.external_transfer_from(token, from_, to, amount):
                raise DelegationFailed("external transferFrom failed", operation=tag, caller=caller)
            return True

        return self._run(tag, caller, body)

    def external_approve(self, caller: str, token: Any, spender: str, amount: int) -> bool:
        tag = Operation.EXTERNAL_APPROVE

        def body(call: GuardedCall) -> bool:
            self._require_owner(self.avatar, tag, caller)
            call.enlist(token)
            call.record(AuditEventType.EXTERNAL_APPROVE, token=token, spender=spender, amount=amount)
            if not self.avatar.external_approve(token, spender, amount):
                raise DelegationFailed("external approve failed", operation=tag, caller=caller)
            return True

        return self._run(tag, caller, body)

    # =========================================================================
    # UPGRADE
    # =========================================================================

    def upgrade(self, caller: str, new_controller: Any) -> bool:
        """
        Hand every managed resource to new_controller. One-shot.

        new_controller may be an identifier or any object with an `address`.
        """
        tag = Operation.UPGRADE_CONTROLLER
        target = getattr(new_controller, "address", new_controller)

        def body(call: GuardedCall) -> bool:
            if self._upgrade_target is not None:
                raise InvalidUpgrade(
                    f"already upgraded to {self._upgrade_target}", operation=tag, caller=caller
                )
            if not target or not isinstance(target, str):
                raise InvalidUpgrade("upgrade target must be a non-empty identifier",
                                     operation=tag, caller=caller)
            if target == self.address:
                raise InvalidUpgrade("controller cannot upgrade to itself", operation=tag, caller=caller)

            self._upgrade_target = target
            moved = []
            try:
                for resource in self._resources:
                    previous = getattr(resource, "owner", None) or self.address
                    resource.transfer_ownership(target)
                    moved.append((resource, previous))
            except Exception:
                for resource, previous in reversed(moved):
                    resource.transfer_ownership(previous)
                logger.error(f"Upgrade to {target} failed after {len(moved)} transfers; ownership returned")
                raise
            call.record(AuditEventType.CONTROLLER_UPGRADED, new_controller=target)
            logger.info(f"Controller {self.address} upgraded to {target} by {caller}")
            return True

        # A second attempt must surface as InvalidUpgrade, not ControllerRetired
        return self._run(tag, caller, body, required=SchemePermission.CAN_UPGRADE, allow_retired=True)

    # =========================================================================
    # READ-ONLY QUERIES
    # =========================================================================

    @property
    def upgrade_target(self) -> Optional[str]:
        return self._upgrade_target

    @property
    def is_retired(self) -> bool:
        return self.reject_after_upgrade and self._upgrade_target is not None

    def is_scheme_registered(self, scheme: str) -> bool:
        return self.permissions.is_registered(scheme)

    def get_scheme_permissions(self, scheme: str) -> int:
        return self.permissions.permissions_of(scheme)

    def get_scheme_config(self, scheme: str) -> bytes:
        return self.permissions.config_of(scheme)

    def global_constraints_count(self) -> int:
        return self.constraints.count_live()

    def is_global_constraint_registered(self, constraint: Any) -> bool:
        return self.constraints.is_registered(constraint)

    def get_constraint_params(self, constraint: Any) -> Optional[bytes]:
        return self.constraints.params_of(constraint)

    def to_dict(self) -> Dict[str, Any]:
        """Persisted state layout: scheme table, constraint sequence, scalars"""
        with self.guard.lock:
            return {
                "address": self.address,
                "schemes": self.permissions.to_dict(),
                "constraints": self.constraints.to_dict(),
                "resources": {
                    "avatar": getattr(self.avatar, "address", type(self.avatar).__name__),
                    "token": getattr(self.token, "symbol", type(self.token).__name__),
                    "reputation": type(self.reputation).__name__,
                },
                "upgrade_target": self._upgrade_target,
                "enforce_constraints": self.guard.enforce_constraints,
                "reject_after_upgrade": self.reject_after_upgrade,
            }

    def get_stats(self) -> Dict[str, Any]:
        """Get controller statistics"""
        return {
            "address": self.address,
            "retired": self.is_retired,
            "permissions": self.permissions.get_stats(),
            "constraints": self.constraints.get_stats(),
            "audit": self.audit_log.get_stats(),
        }
