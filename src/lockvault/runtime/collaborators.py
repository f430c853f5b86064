# src/lockvault/runtime/collaborators.py
from __future__ import annotations

"""Boundary collaborators the staking engine depends on.

The engine only sees the three Protocols below. The concrete classes are the
in-process implementations used by the service and by tests:

  - InMemoryAssetBank: integer balances per account plus one custody account
  - OwnerPauseGate:   Ownable + Pausable style access gate
  - SystemClock / ManualClock
"""

import threading
import time
from typing import Dict, Optional, Protocol

from lockvault.runtime.errors import (
    DIRECT_TRANSFER_REJECTED,
    INVALID_AMOUNT,
    INVALID_OWNER,
    UNAUTHORIZED,
    LedgerError,
)


class ValueTransfer(Protocol):
    def transfer_in(self, frm: str, amount: int) -> bool: ...

    def transfer_out(self, to: str, amount: int) -> bool: ...


class AccessGate(Protocol):
    def is_paused(self) -> bool: ...

    def is_owner(self, caller: str) -> bool: ...


class Clock(Protocol):
    def now(self) -> int: ...


class SystemClock:
    """Wall clock in integer unix seconds, never moving backwards."""

    def __init__(self) -> None:
        self._last = 0
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            t = max(int(time.time()), self._last)
            self._last = t
            return t


class ManualClock:
    """Deterministic clock for tests and simulations."""

    def __init__(self, start: int = 0) -> None:
        self._now = int(start)

    def now(self) -> int:
        return self._now

    def set(self, t: int) -> None:
        if int(t) < self._now:
            raise ValueError("clock must be non-decreasing")
        self._now = int(t)

    def advance(self, seconds: int) -> int:
        self.set(self._now + int(seconds))
        return self._now


class InMemoryAssetBank:
    """Single fungible asset with integer balances.

    transfer_in / transfer_out move value between a holder and the custody
    account and return False (no effect) when the source is short. Plain
    transfer() between holders refuses the custody account as destination:
    value only enters custody through the ledger's own funding paths.
    """

    def __init__(self, *, custody: str, balances: Optional[Dict[str, int]] = None) -> None:
        self.custody = str(custody)
        self._balances: Dict[str, int] = {str(k): int(v) for k, v in (balances or {}).items()}
        self._lock = threading.Lock()

    def balance_of(self, account: str) -> int:
        with self._lock:
            return int(self._balances.get(account, 0))

    def balances(self) -> Dict[str, int]:
        with self._lock:
            return {k: v for k, v in self._balances.items() if v}

    def restore_balances(self, balances: Dict[str, int]) -> None:
        with self._lock:
            self._balances = {str(k): int(v) for k, v in balances.items()}

    def mint(self, account: str, amount: int) -> None:
        _require_positive(amount)
        with self._lock:
            self._balances[account] = self._balances.get(account, 0) + int(amount)

    def _move(self, frm: str, to: str, amount: int) -> bool:
        _require_positive(amount)
        with self._lock:
            have = self._balances.get(frm, 0)
            if have < amount:
                return False
            self._balances[frm] = have - amount
            self._balances[to] = self._balances.get(to, 0) + amount
            return True

    def transfer(self, frm: str, to: str, amount: int) -> bool:
        if to == self.custody:
            raise LedgerError(DIRECT_TRANSFER_REJECTED, "custody_only_via_ledger", {"from": frm, "amount": amount})
        return self._move(frm, to, amount)

    def transfer_in(self, frm: str, amount: int) -> bool:
        return self._move(frm, self.custody, amount)

    def transfer_out(self, to: str, amount: int) -> bool:
        return self._move(self.custody, to, amount)


class OwnerPauseGate:
    def __init__(self, *, owner: str, paused: bool = False) -> None:
        owner = str(owner or "").strip()
        if not owner:
            raise LedgerError(INVALID_OWNER, "empty_owner")
        self.owner = owner
        self._paused = bool(paused)

    def is_paused(self) -> bool:
        return self._paused

    def is_owner(self, caller: str) -> bool:
        return bool(caller) and caller == self.owner

    def require_owner(self, caller: str) -> None:
        if not self.is_owner(caller):
            raise LedgerError(UNAUTHORIZED, "owner_only", {"caller": caller})

    def pause(self, caller: str) -> None:
        self.require_owner(caller)
        self._paused = True

    def unpause(self, caller: str) -> None:
        self.require_owner(caller)
        self._paused = False

    def restore(self, *, owner: str, paused: bool) -> None:
        self.owner = owner
        self._paused = bool(paused)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.require_owner(caller)
        new_owner = str(new_owner or "").strip()
        if not new_owner:
            raise LedgerError(INVALID_OWNER, "empty_owner")
        self.owner = new_owner


def _require_positive(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise LedgerError(INVALID_AMOUNT, "amount_must_be_positive_int", {"amount": repr(amount)})
