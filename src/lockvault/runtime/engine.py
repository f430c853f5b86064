# src/lockvault/runtime/engine.py
from __future__ import annotations

"""Position / reward accounting engine.

Every mutating entry point:
  1. takes the engine lock (mutual exclusion across threads),
  2. refuses to run nested inside another mutating call (reentrancy guard),
  3. reads the clock exactly once,
  4. checks preconditions in a fixed order, then applies bookkeeping,
  5. calls the value-transfer collaborator last.

Any exception after step 2 rolls the ledger back to its pre-call checkpoint,
so a rejected or failed operation never leaves a partial effect.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from lockvault.ledger.rewards import compute_payout, full_reward
from lockvault.ledger.state import Checkpoint, LedgerState
from lockvault.ledger.types import LedgerStats, Phase, Plan, Position
from lockvault.runtime.collaborators import AccessGate, Clock, ValueTransfer
from lockvault.runtime.errors import (
    ALREADY_CLAIMED,
    DIRECT_TRANSFER_REJECTED,
    INSUFFICIENT_REWARD_POOL,
    INVALID_AMOUNT,
    INVALID_INDEX,
    INVALID_POSITION,
    PAUSED,
    REENTRANT_CALL,
    REFUND_MODE_ACTIVE,
    TRANSFER_FAILED,
    UNAUTHORIZED,
    UNKNOWN_ENTRY_POINT,
    ZERO_AMOUNT,
    LedgerError,
)
from lockvault.runtime.event_log import log_event
from lockvault.runtime.metrics import inc_counter, set_gauge

Json = Dict[str, Any]

log = logging.getLogger("lockvault.engine")


def _check_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise LedgerError(INVALID_AMOUNT, "amount_not_int", {"amount": repr(amount)})
    if amount == 0:
        raise LedgerError(ZERO_AMOUNT, "amount_is_zero")
    if amount < 0:
        raise LedgerError(INVALID_AMOUNT, "amount_negative", {"amount": amount})
    return amount


def _check_caller(caller: Any) -> str:
    c = caller.strip() if isinstance(caller, str) else ""
    if not c:
        raise LedgerError(UNAUTHORIZED, "missing_caller")
    return c


class StakingEngine:
    def __init__(self, *, state: LedgerState, bank: ValueTransfer, gate: AccessGate, clock: Clock) -> None:
        self.state = state
        self._bank = bank
        self._gate = gate
        self._clock = clock
        self._lock = threading.RLock()
        self._depth = 0

    @property
    def gate(self) -> AccessGate:
        return self._gate

    @property
    def bank(self) -> ValueTransfer:
        return self._bank

    # ------------------------------------------------------------------
    # guards
    # ------------------------------------------------------------------

    @contextmanager
    def _mutating(self, op: str, *accounts: str) -> Iterator[int]:
        with self._lock:
            if self._depth:
                inc_counter("reentrant_call_rejected")
                raise LedgerError(REENTRANT_CALL, "nested_mutating_call", {"op": op})
            self._depth += 1
            cp = self.state.checkpoint(*accounts)
            try:
                yield int(self._clock.now())
            except BaseException:
                self.state.rollback(cp)
                inc_counter(f"{op}_rejected")
                raise
            finally:
                self._depth -= 1

    def checkpoint(self, *accounts: str) -> Checkpoint:
        with self._lock:
            return self.state.checkpoint(*accounts)

    def restore(self, cp: Checkpoint) -> None:
        """Undo an applied operation whose effects could not be persisted."""
        with self._lock:
            self.state.rollback(cp)

    def _require_not_paused(self) -> None:
        if self._gate.is_paused():
            raise LedgerError(PAUSED, "ledger_paused")

    def _require_owner(self, caller: str) -> None:
        if not self._gate.is_owner(caller):
            raise LedgerError(UNAUTHORIZED, "owner_only", {"caller": caller})

    def _pull(self, frm: str, amount: int) -> None:
        if not self._bank.transfer_in(frm, amount):
            raise LedgerError(TRANSFER_FAILED, "transfer_in_failed", {"from": frm, "amount": amount})

    def _push(self, to: str, amount: int) -> None:
        if amount == 0:
            return
        if not self._bank.transfer_out(to, amount):
            raise LedgerError(TRANSFER_FAILED, "transfer_out_failed", {"to": to, "amount": amount})

    def _publish(self, event: str, receipt: Json) -> Json:
        log_event(log, event, **receipt)
        inc_counter(event)
        with self._lock:
            st = self.state
            set_gauge("total_staked", st.total_staked)
            set_gauge("reward_pool", st.reward_pool)
            set_gauge("reserved_rewards", st.reserved_rewards)
            set_gauge("total_positions", st.total_positions)
            set_gauge("total_users", st.total_users)
        return receipt

    # ------------------------------------------------------------------
    # stake / claim
    # ------------------------------------------------------------------

    def stake(self, caller: str, plan_id: int, amount: int) -> Json:
        """Open a position; returns a receipt whose "index" addresses it."""
        caller = _check_caller(caller)
        with self._mutating("stake", caller) as now:
            self._require_not_paused()
            st = self.state
            if st.refund_mode:
                raise LedgerError(REFUND_MODE_ACTIVE, "stakes_closed_after_refund_mode")
            plan = st.plans.plan_for(plan_id)
            amount = _check_amount(amount)

            reward = full_reward(amount, plan.reward_rate_bps)
            if reward > st.reward_pool:
                raise LedgerError(
                    INSUFFICIENT_REWARD_POOL,
                    "reward_exceeds_pool",
                    {"reward": reward, "reward_pool": st.reward_pool},
                )

            index = st.append_position(caller, Position(principal=amount, start_time=now, plan_id=plan.plan_id))
            st.total_positions += 1
            if caller not in st.stakers:
                st.stakers.add(caller)
                st.total_users += 1
            st.total_staked += amount
            st.reward_pool -= reward
            st.reserved_rewards += reward

            self._pull(caller, amount)

        return self._publish(
            "staked",
            {
                "applied": "STAKE",
                "account": caller,
                "index": index,
                "plan_id": plan.plan_id,
                "amount": amount,
                "reward_reserved": reward,
                "start_time": now,
                "unlock_time": now + plan.lock_duration,
            },
        )

    def claim(self, caller: str, index: int) -> Json:
        caller = _check_caller(caller)
        with self._mutating("claim", caller) as now:
            self._require_not_paused()
            st = self.state
            pos = st.get_position(caller, index)
            if pos is None:
                raise LedgerError(INVALID_INDEX, "no_such_position", {"account": caller, "index": index})
            if pos.claimed:
                raise LedgerError(ALREADY_CLAIMED, "position_already_claimed", {"account": caller, "index": index})
            if pos.principal == 0:
                raise LedgerError(INVALID_POSITION, "empty_position", {"account": caller, "index": index})

            plan = st.plans.plan_for(pos.plan_id)
            payout = compute_payout(
                pos,
                plan,
                now=now,
                refund_mode=st.refund_mode,
                refund_activation_time=st.refund_activation_time,
            )

            pos.claimed = True
            pos.reward_paid = payout.reward
            pos.claimed_at = now
            st.total_staked -= pos.principal
            st.reserved_rewards -= payout.full_reward
            st.reward_pool += payout.released

            self._push(caller, payout.total)

        return self._publish(
            "claimed",
            {
                "applied": "CLAIM",
                "account": caller,
                "index": index,
                "plan_id": plan.plan_id,
                "principal": payout.principal,
                "reward": payout.reward,
                "released_to_pool": payout.released,
                "payout": payout.total,
                "refund_mode": st.refund_mode,
            },
        )

    # ------------------------------------------------------------------
    # reward pool (owner only)
    # ------------------------------------------------------------------

    def deposit_rewards(self, caller: str, amount: int) -> Json:
        caller = _check_caller(caller)
        with self._mutating("deposit_rewards"):
            self._require_owner(caller)
            self._require_not_paused()
            amount = _check_amount(amount)
            self.state.reward_pool += amount
            self._pull(caller, amount)

        return self._publish(
            "rewards_deposited",
            {"applied": "DEPOSIT_REWARDS", "account": caller, "amount": amount, "reward_pool": self.state.reward_pool},
        )

    def withdraw_reward(self, caller: str, amount: int) -> Json:
        caller = _check_caller(caller)
        with self._mutating("withdraw_reward"):
            self._require_owner(caller)
            self._require_not_paused()
            amount = _check_amount(amount)
            st = self.state
            if amount > st.reward_pool:
                raise LedgerError(
                    INSUFFICIENT_REWARD_POOL,
                    "withdraw_exceeds_pool",
                    {"amount": amount, "reward_pool": st.reward_pool},
                )
            st.reward_pool -= amount
            self._push(caller, amount)

        return self._publish(
            "reward_withdrawn",
            {"applied": "WITHDRAW_REWARD", "account": caller, "amount": amount, "reward_pool": self.state.reward_pool},
        )

    # ------------------------------------------------------------------
    # administration
    # ------------------------------------------------------------------

    def activate_refund_mode(self, caller: str) -> Json:
        caller = _check_caller(caller)
        with self._mutating("activate_refund_mode") as now:
            self._require_owner(caller)
            st = self.state
            if st.refund_mode:
                raise LedgerError(
                    REFUND_MODE_ACTIVE,
                    "refund_mode_already_active",
                    {"refund_activation_time": st.refund_activation_time},
                )
            st.phase = Phase.WOUND_DOWN
            st.refund_activation_time = now

        return self._publish(
            "refund_mode_activated",
            {"applied": "ACTIVATE_REFUND_MODE", "account": caller, "refund_activation_time": now},
        )

    def _gate_admin(self, op: str, *args: Any) -> None:
        fn = getattr(self._gate, op, None)
        if not callable(fn):
            raise LedgerError(UNKNOWN_ENTRY_POINT, "gate_has_no_admin_op", {"op": op})
        fn(*args)

    def pause(self, caller: str) -> Json:
        caller = _check_caller(caller)
        with self._mutating("pause"):
            self._gate_admin("pause", caller)
        return self._publish("paused", {"applied": "PAUSE", "account": caller})

    def unpause(self, caller: str) -> Json:
        caller = _check_caller(caller)
        with self._mutating("unpause"):
            self._gate_admin("unpause", caller)
        return self._publish("unpaused", {"applied": "UNPAUSE", "account": caller})

    def transfer_ownership(self, caller: str, new_owner: str) -> Json:
        caller = _check_caller(caller)
        with self._mutating("transfer_ownership"):
            self._gate_admin("transfer_ownership", caller, new_owner)
        return self._publish(
            "ownership_transferred",
            {"applied": "TRANSFER_OWNERSHIP", "account": caller, "new_owner": new_owner},
        )

    # ------------------------------------------------------------------
    # unsolicited value / unknown entry points
    # ------------------------------------------------------------------

    def receive(self, sender: str, amount: int) -> None:
        inc_counter("direct_transfer_rejected")
        raise LedgerError(DIRECT_TRANSFER_REJECTED, "use_stake_or_deposit_rewards", {"from": sender, "amount": amount})

    def fallback(self, name: str, *args: Any, **kwargs: Any) -> None:
        inc_counter("unknown_entry_point")
        raise LedgerError(UNKNOWN_ENTRY_POINT, "no_such_entry_point", {"name": str(name)})

    # ------------------------------------------------------------------
    # read-only projections
    # ------------------------------------------------------------------

    def pending_reward(self, account: str, index: int) -> int:
        """Reward a claim would pay right now; 0 when a claim would be rejected."""
        with self._lock:
            st = self.state
            pos = st.get_position(account, index)
            if pos is None or pos.claimed or pos.principal == 0:
                return 0
            try:
                plan = st.plans.plan_for(pos.plan_id)
                payout = compute_payout(
                    pos,
                    plan,
                    now=int(self._clock.now()),
                    refund_mode=st.refund_mode,
                    refund_activation_time=st.refund_activation_time,
                )
            except LedgerError:
                return 0
            return payout.reward

    def get_stats(self) -> LedgerStats:
        with self._lock:
            return self.state.stats()

    def get_user_positions(self, account: str) -> List[Position]:
        with self._lock:
            return [copy.copy(p) for p in self.state.account_positions(account)]

    def get_position(self, account: str, index: int) -> Optional[Position]:
        with self._lock:
            pos = self.state.get_position(account, index)
            return copy.copy(pos) if pos is not None else None

    def state_json(self) -> Json:
        with self._lock:
            return self.state.to_json()

    def all_plans(self) -> List[Plan]:
        return self.state.plans.all_plans()

    def solvency_report(self, custody_balance: Optional[int] = None) -> Json:
        """Compare custody holdings with what the ledger owes."""
        with self._lock:
            st = self.state
            if custody_balance is None:
                balance_of = getattr(self._bank, "balance_of", None)
                custody = getattr(self._bank, "custody", None)
                if callable(balance_of) and custody is not None:
                    custody_balance = int(balance_of(custody))
            liabilities = st.total_staked + st.reserved_rewards + st.reward_pool
            return {
                "total_staked": st.total_staked,
                "reserved_rewards": st.reserved_rewards,
                "reward_pool": st.reward_pool,
                "liabilities": liabilities,
                "custody_balance": custody_balance,
                "ok": custody_balance is None or int(custody_balance) == liabilities,
            }
