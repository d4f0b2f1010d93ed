"""
Managed Resources

The controller never holds funds or supply itself. It gates calls into three
collaborators it owns:
- Avatar: resource container (funds, external tokens, generic actions)
- MintableToken: native token supply
- ReputationLedger: voting weight, mintable and burnable

In-memory versions back the tests and the CLI.
"""

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class Owned(ABC):
    """
    Anything whose ownership the controller can hand over.

    `snapshot` / `restore` are optional: a resource that implements them is
    rolled back together with the controller when a guarded call aborts.
    `is_owned_by` lets a superseded controller find out it no longer owns
    the resource.
    """

    @abstractmethod
    def transfer_ownership(self, new_owner: str) -> None:
        """Make new_owner the sole owner"""

    def is_owned_by(self, principal: str) -> bool:
        return True

    def snapshot(self) -> Any:
        return None

    def restore(self, state: Any) -> None:
        pass


class Avatar(Owned):
    """Resource container acting on behalf of the organisation"""

    @abstractmethod
    def generic_action(self, action: Any, param: Any) -> Any:
        """Perform an arbitrary delegated action"""

    @abstractmethod
    def send_funds(self, amount: int, to: str) -> bool:
        """Send native funds held by the container"""

    @abstractmethod
    def external_transfer(self, token: Any, to: str, amount: int) -> bool:
        """Transfer an external token held by the container"""

    @abstractmethod
    def external_transfer_from(self, token: Any, from_: str, to: str, amount: int) -> bool:
        """Spend an allowance granted to the container"""

    @abstractmethod
    def external_approve(self, token: Any, spender: str, amount: int) -> bool:
        """Grant spender an allowance over the container's external tokens"""


class MintableToken(Owned):
    """Native token whose supply the controller may grow"""

    @abstractmethod
    def mint(self, amount: int, beneficiary: str) -> bool:
        """Mint amount (unsigned) to beneficiary"""


class ReputationLedger(Owned):
    """Voting-weight ledger; negative amounts burn"""

    @abstractmethod
    def mint(self, amount: int, beneficiary: str) -> bool:
        """Mint (amount > 0) or burn (amount < 0) reputation"""


# =========================================================================
# IN-MEMORY IMPLEMENTATIONS
# =========================================================================

@dataclass
class OwnershipRecord:
    previous_owner: Optional[str]
    new_owner: str
    transferred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class _OwnedMixin:
    """
    Shared ownership bookkeeping.

    An unowned resource (owner None) accepts any controller; once owned, only
    the owner's calls are honoured.
    """

    def _init_owner(self, owner: Optional[str]) -> None:
        self.owner = owner
        self.ownership_history: List[OwnershipRecord] = []

    def transfer_ownership(self, new_owner: str) -> None:
        if not new_owner:
            raise ValueError("New owner must not be empty")
        self.ownership_history.append(OwnershipRecord(previous_owner=self.owner, new_owner=new_owner))
        logger.info(f"{type(self).__name__} ownership {self.owner} -> {new_owner}")
        self.owner = new_owner

    def is_owned_by(self, principal: str) -> bool:
        return self.owner is None or self.owner == principal

    def _owner_state(self) -> tuple:
        return (self.owner, len(self.ownership_history))

    def _restore_owner(self, state: tuple) -> None:
        self.owner, history_len = state
        del self.ownership_history[history_len:]


class InMemoryToken(_OwnedMixin, MintableToken):
    """
    Fungible token with balances and allowances.

    Doubles as the "external token" an Avatar can transfer and approve.
    """

    def __init__(self, symbol: str = "TKN", owner: Optional[str] = None):
        self._init_owner(owner)
        self.symbol = symbol
        self.balances: Dict[str, int] = defaultdict(int)
        self.allowances: Dict[tuple, int] = defaultdict(int)
        self.total_supply = 0

    def snapshot(self) -> tuple:
        return (self._owner_state(), dict(self.balances), dict(self.allowances), self.total_supply)

    def restore(self, state: tuple) -> None:
        owner_state, balances, allowances, self.total_supply = state
        self._restore_owner(owner_state)
        self.balances = defaultdict(int, balances)
        self.allowances = defaultdict(int, allowances)

    def balance_of(self, holder: str) -> int:
        return self.balances.get(holder, 0)

    def mint(self, amount: int, beneficiary: str) -> bool:
        if amount < 0:
            return False
        self.balances[beneficiary] += amount
        self.total_supply += amount
        return True

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        if amount < 0 or self.balances.get(sender, 0) < amount:
            return False
        self.balances[sender] -= amount
        self.balances[to] += amount
        return True

    def approve(self, holder: str, spender: str, amount: int) -> bool:
        if amount < 0:
            return False
        self.allowances[(holder, spender)] = amount
        return True

    def allowance(self, holder: str, spender: str) -> int:
        return self.allowances.get((holder, spender), 0)

    def transfer_from(self, spender: str, from_: str, to: str, amount: int) -> bool:
        if self.allowances.get((from_, spender), 0) < amount:
            return False
        if not self.transfer(from_, to, amount):
            return False
        self.allowances[(from_, spender)] -= amount
        return True


class InMemoryReputation(_OwnedMixin, ReputationLedger):
    """Reputation ledger; burning more than a holder has burns it all"""

    def __init__(self, owner: Optional[str] = None):
        self._init_owner(owner)
        self.balances: Dict[str, int] = defaultdict(int)
        self.total_supply = 0

    def snapshot(self) -> tuple:
        return (self._owner_state(), dict(self.balances), self.total_supply)

    def restore(self, state: tuple) -> None:
        owner_state, balances, self.total_supply = state
        self._restore_owner(owner_state)
        self.balances = defaultdict(int, balances)

    def balance_of(self, holder: str) -> int:
        return self.balances.get(holder, 0)

    def mint(self, amount: int, beneficiary: str) -> bool:
        if amount < 0:
            amount = -min(-amount, self.balances.get(beneficiary, 0))
        self.balances[beneficiary] += amount
        self.total_supply += amount
        return True


class InMemoryAvatar(_OwnedMixin, Avatar):
    """
    Resource container.

    `generic_action` calls `action(param)`; any callable target works.
    Side effects of the action itself are outside the avatar's snapshot.
    """

    def __init__(self, address: str = "avatar", funds: int = 0, owner: Optional[str] = None):
        self._init_owner(owner)
        self.address = address
        self.funds = funds
        self.payments: Dict[str, int] = defaultdict(int)
        self.actions: List[Dict[str, Any]] = []

    def snapshot(self) -> tuple:
        return (self._owner_state(), self.funds, dict(self.payments), len(self.actions))

    def restore(self, state: tuple) -> None:
        owner_state, self.funds, payments, actions_len = state
        self._restore_owner(owner_state)
        self.payments = defaultdict(int, payments)
        del self.actions[actions_len:]

    def generic_action(self, action: Callable[[Any], Any], param: Any) -> Any:
        if not callable(action):
            raise TypeError(f"Action target is not callable: {action!r}")
        result = action(param)
        self.actions.append({"action": getattr(action, "__name__", repr(action)), "param": param})
        return result

    def send_funds(self, amount: int, to: str) -> bool:
        if amount < 0 or amount > self.funds:
            return False
        self.funds -= amount
        self.payments[to] += amount
        return True

    def external_transfer(self, token: InMemoryToken, to: str, amount: int) -> bool:
        return token.transfer(self.address, to, amount)

    def external_transfer_from(self, token: InMemoryToken, from_: str, to: str, amount: int) -> bool:
        return token.transfer_from(self.address, from_, to, amount)

    def external_approve(self, token: InMemoryToken, spender: str, amount: int) -> bool:
        return token.approve(self.address, spender, amount)
