"""
Scheme Registration Policy

Decides whether a caller may write or remove another scheme's entry.

Implements the non-escalation model over the defined bits (PERMISSION_MASK):
- A caller may only flip bits it holds itself
- A caller may not touch an entry holding bits the caller lacks
- A principal may always remove itself

Rules are evaluated in priority order, first match wins, default deny.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Any, List, Optional

from .permissions import PERMISSION_MASK, permission_names

logger = logging.getLogger(__name__)


class PolicyDecision(str, Enum):
    """Authorization decision"""
    ALLOW = "allow"
    DENY = "deny"


class RegistrationAction(str, Enum):
    """What the caller is trying to do to the target entry"""
    REGISTER = "register"      # create or modify
    UNREGISTER = "unregister"  # reset to tombstone


@dataclass
class RegistrationContext:
    """Context for a registration decision"""
    caller: str
    caller_permissions: int
    target: str
    old_permissions: int
    new_permissions: int = 0
    action: RegistrationAction = RegistrationAction.REGISTER
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_self(self) -> bool:
        return self.caller == self.target

    @property
    def changed_bits_not_held(self) -> int:
        """Defined bits that change but the caller does not hold (rule 1)"""
        return PERMISSION_MASK & (int(self.old_permissions) ^ int(self.new_permissions)) & ~int(self.caller_permissions)

    @property
    def target_bits_not_held(self) -> int:
        """Defined bits the target holds but the caller does not (rule 2)"""
        return PERMISSION_MASK & (int(self.old_permissions) & ~int(self.caller_permissions))


@dataclass
class PolicyRule:
    """
    A single policy rule.

    Rules are evaluated in order. First matching rule wins.
    """
    rule_id: str
    description: str
    condition: Callable[[RegistrationContext], bool]
    decision: PolicyDecision
    reason: Optional[Callable[[RegistrationContext], str]] = None
    priority: int = 100  # Lower = higher priority

    def evaluate(self, context: RegistrationContext) -> Optional[tuple]:
        """
        Evaluate this rule against the context.

        Returns:
            (decision, reason) if rule matches, None otherwise
        """
        if not self.condition(context):
            return None
        reason = self.reason(context) if self.reason else self.description
        logger.debug(f"Rule {self.rule_id} matched: {reason}")
        return (self.decision, reason)


class RegistrationPolicy:
    """
    Policy Decision Point for scheme registration and removal.

    Always enforcing; there is no disabled mode.
    """

    def __init__(self):
        self.rules: List[PolicyRule] = []
        self._create_default_rules()

    def _create_default_rules(self) -> None:
        # Rule 1: A principal may always relinquish its own registration
        self.add_rule(PolicyRule(
            rule_id="allow-self-removal",
            description="Principal removes its own registration",
            condition=lambda ctx: ctx.action == RegistrationAction.UNREGISTER and ctx.is_self,
            decision=PolicyDecision.ALLOW,
            priority=1,
        ))

        # Rule 2: Never touch an entry that holds bits the caller lacks
        self.add_rule(PolicyRule(
            rule_id="deny-superior-target",
            description="Target holds capabilities the caller lacks",
            condition=lambda ctx: ctx.target_bits_not_held != 0,
            decision=PolicyDecision.DENY,
            reason=lambda ctx: (
                f"{ctx.target} holds {permission_names(ctx.target_bits_not_held)} "
                f"which {ctx.caller} lacks"
            ),
            priority=10,
        ))

        # Rule 3: Only flip bits the caller holds
        self.add_rule(PolicyRule(
            rule_id="deny-escalation",
            description="Change touches capabilities the caller lacks",
            condition=lambda ctx: (
                ctx.action == RegistrationAction.REGISTER
                and ctx.changed_bits_not_held != 0
            ),
            decision=PolicyDecision.DENY,
            reason=lambda ctx: (
                f"{ctx.caller} cannot grant or revoke {permission_names(ctx.changed_bits_not_held)}"
            ),
            priority=20,
        ))

        self.add_rule(PolicyRule(
            rule_id="allow-dominated-change",
            description="Caller dominates target and every changed bit",
            condition=lambda ctx: (
                ctx.target_bits_not_held == 0
                and (ctx.action == RegistrationAction.UNREGISTER or ctx.changed_bits_not_held == 0)
            ),
            decision=PolicyDecision.ALLOW,
            priority=50,
        ))

        self.add_rule(PolicyRule(
            rule_id="default-deny",
            description="No registration rule matched",
            condition=lambda ctx: True,
            decision=PolicyDecision.DENY,
            priority=999,
        ))

    def add_rule(self, rule: PolicyRule) -> None:
        self.rules.append(rule)
        self.rules.sort(key=lambda r: r.priority)

    def evaluate(self, context: RegistrationContext) -> tuple:
        """
        Make a registration decision.

        Returns:
            (decision, reason) tuple
        """
        for rule in self.rules:
            result = rule.evaluate(context)
            if result:
                decision, reason = result
                if decision == PolicyDecision.DENY:
                    logger.warning(
                        f"Registration DENY: {context.action.value} {context.target} "
                        f"by {context.caller} - {rule.rule_id}: {reason}"
                    )
                return (decision, f"{rule.rule_id} - {reason}")

        return (PolicyDecision.DENY, "No registration rule evaluated")

    def check_register(self, caller: str, caller_permissions: int, target: str,
                       old_permissions: int, new_permissions: int) -> tuple:
        return self.evaluate(RegistrationContext(
            caller=caller,
            caller_permissions=caller_permissions,
            target=target,
            old_permissions=old_permissions,
            new_permissions=new_permissions,
            action=RegistrationAction.REGISTER,
        ))

    def check_unregister(self, caller: str, caller_permissions: int, target: str,
                         old_permissions: int) -> tuple:
        return self.evaluate(RegistrationContext(
            caller=caller,
            caller_permissions=caller_permissions,
            target=target,
            old_permissions=old_permissions,
            action=RegistrationAction.UNREGISTER,
        ))
