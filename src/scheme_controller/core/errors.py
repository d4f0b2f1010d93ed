"""
Controller Errors

Every failure is a synchronous rejection of the enclosing call.
Nothing is committed when one of these is raised.
"""

from typing import Optional


class ControllerError(Exception):
    """Base class for all controller rejections"""

    def __init__(self, reason: str, operation: Optional[str] = None, caller: Optional[str] = None):
        self.reason = reason
        self.operation = operation
        self.caller = caller
        super().__init__(self._format())

    def _format(self) -> str:
        parts = []
        if self.operation:
            parts.append(f"[{self.operation}]")
        if self.caller:
            parts.append(f"caller={self.caller}")
        parts.append(self.reason)
        return " ".join(parts)


class Unauthorized(ControllerError):
    """Caller lacks the permission bit the operation requires"""


class PrivilegeEscalation(ControllerError):
    """Registration or removal violates non-escalation / non-dominance"""


class ConstraintRejected(ControllerError):
    """A global constraint pre- or post-hook reported failure"""

    def __init__(self, reason: str, operation: Optional[str] = None, caller: Optional[str] = None,
                 constraint: Optional[str] = None, stage: Optional[str] = None):
        self.constraint = constraint
        self.stage = stage
        super().__init__(reason, operation=operation, caller=caller)


class InvalidUpgrade(ControllerError):
    """Upgrade attempted twice, or towards an empty target"""


class NotFound(ControllerError):
    """Removal of a constraint that has no live entry"""


class MalformedConstruction(ControllerError):
    """Bootstrap sequences do not line up"""


class UnknownOperation(ControllerError):
    """Call does not name a defined entry point"""


class ControllerRetired(ControllerError):
    """Controller has been superseded by an upgrade"""


class DelegationFailed(ControllerError):
    """A managed resource reported failure for a delegated call"""
