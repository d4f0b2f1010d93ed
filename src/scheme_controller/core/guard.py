"""
Guard: the privileged-call envelope

Every privileged operation runs inside Guard.run, which is all-or-nothing:
1. Check the caller holds the operation's required permission bit
2. Run every live global constraint's pre-hook
3. Run the operation body
4. Run every live global constraint's post-hook
5. Commit the audit events the body recorded

A single re-entrant lock covers the whole envelope, so permission checks,
hooks and mutation are observed as one atomic unit. Any exception after the
permission check, a failed audit write included, restores the controller
state captured on entry and every resource the body enlisted.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from ..audit import AuditEvent, AuditEventType, AuditLog
from .constraints import ConstraintRegistry, constraint_id
from .errors import ConstraintRejected, Unauthorized
from .permissions import PermissionTable, SchemePermission, permission_names

logger = logging.getLogger(__name__)


@dataclass
class GuardedCall:
    """Handle passed to an operation body"""
    tag: str
    caller: str
    events: List[AuditEvent] = field(default_factory=list)
    undo: List[Callable[[], None]] = field(default_factory=list)

    def record(self, event_type: AuditEventType, **params: Any) -> None:
        """Queue an audit event; it is only written if the call commits"""
        self.events.append(AuditEvent(
            event_type=event_type,
            operation=self.tag,
            caller=self.caller,
            params=params,
        ))

    def enlist(self, resource: Any) -> None:
        """Snapshot a resource the body is about to touch so an abort can restore it"""
        snapshot = getattr(resource, "snapshot", None)
        if not callable(snapshot):
            return
        state = snapshot()
        if state is not None:
            self.undo.append(lambda: resource.restore(state))


class Guard:
    """
    Composes permission checks, constraint hooks and audit emission.

    Args:
        permissions: table consulted for step 1
        constraints: registry whose live entries supply the hooks
        audit_log: where committed events go
        snapshot / restore: capture and reinstate the owner's mutable state
        enforce_constraints: run pre/post hooks (steps 2 and 4)
    """

    def __init__(
        self,
        permissions: PermissionTable,
        constraints: ConstraintRegistry,
        audit_log: AuditLog,
        snapshot: Callable[[], Any],
        restore: Callable[[Any], None],
        enforce_constraints: bool = True,
    ):
        self.permissions = permissions
        self.constraints = constraints
        self.audit_log = audit_log
        self._snapshot = snapshot
        self._restore = restore
        self.enforce_constraints = enforce_constraints
        self.lock = threading.RLock()

        # Nested envelopes (a delegated action calling back in) commit with the outermost one
        self._depth = 0
        self._pending: List[AuditEvent] = []
        self._undo: List[Callable[[], None]] = []

        if not enforce_constraints:
            logger.warning("Global constraint enforcement is DISABLED; pre/post hooks will not run")

    def run(
        self,
        tag: str,
        caller: str,
        body: Callable[[GuardedCall], Any],
        required: SchemePermission = SchemePermission.REGISTERED,
        hooks: bool = True,
    ) -> Any:
        with self.lock:
            self.require(tag, caller, required)

            state = self._snapshot()
            pending_mark = len(self._pending)
            undo_mark = len(self._undo)
            call = GuardedCall(tag=tag, caller=caller, undo=self._undo)
            self._depth += 1
            try:
                run_hooks = hooks and self.enforce_constraints
                if run_hooks:
                    self._invoke_hooks("pre", tag, caller)

                logger.debug(f"[{tag}] executing body for {caller}")
                result = body(call)

                if run_hooks:
                    self._invoke_hooks("post", tag, caller)

                self._pending.extend(call.events)
                if self._depth == 1:
                    self.audit_log.extend(self._pending)
            except BaseException:
                for undo in reversed(self._undo[undo_mark:]):
                    undo()
                del self._undo[undo_mark:]
                self._restore(state)
                del self._pending[pending_mark:]
                logger.debug(f"[{tag}] aborted, state restored")
                raise
            finally:
                self._depth -= 1
                if self._depth == 0:
                    self._pending.clear()
                    self._undo.clear()
            return result

    def require(self, tag: str, caller: str, required: SchemePermission) -> None:
        """Step 1: the caller must hold every bit of `required`"""
        if not required:
            return
        held = self.permissions.permissions_of(caller)
        if (held & required) != required:
            logger.warning(
                f"Unauthorized: {caller} attempted {tag} without {permission_names(int(required))}"
            )
            raise Unauthorized(
                f"requires {permission_names(int(required))}",
                operation=tag,
                caller=caller,
            )

    def _invoke_hooks(self, stage: str, tag: str, caller: str) -> None:
        for index, entry in list(self.constraints.live()):
            name = constraint_id(entry.constraint)
            hook = getattr(entry.constraint, stage)
            try:
                ok = hook(caller, entry.params_hash, tag)
            except Exception as e:
                logger.warning(f"[{tag}] constraint {name} {stage}-hook raised: {e}")
                raise ConstraintRejected(
                    f"{stage}-hook of {name} (index {index}) raised: {e}",
                    operation=tag, caller=caller, constraint=name, stage=stage,
                ) from e
            if not ok:
                logger.warning(f"[{tag}] constraint {name} rejected {caller} at {stage}-hook")
                raise ConstraintRejected(
                    f"{stage}-hook of {name} (index {index}) rejected the call",
                    operation=tag, caller=caller, constraint=name, stage=stage,
                )
