# src/lockvault/runtime/service.py
from __future__ import annotations

"""Signed-action front door for the staking engine.

LedgerService plays the role an executor plays for a chain node: it turns
an untrusted action envelope into one engine call and persists the result.

Envelope shape:
  {"action": str, "caller": <pubkey hex>, "nonce": int, "payload": {...}, "sig": str}

Admission order (fail closed):
  1. shape              -> bad_envelope
  2. signature          -> bad_signature   (when sigverify is on)
  3. nonce == last + 1  -> bad_nonce
  4. nonce is consumed, then the action runs
  5. unknown action     -> unknown_entry_point

A nonce that passed step 3 stays consumed even when the action itself is
rejected, so a signed envelope can never be replayed.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from lockvault.crypto.sig import verify_action_envelope
from lockvault.ledger.types import LedgerStats, Plan, Position
from lockvault.runtime.collaborators import InMemoryAssetBank, OwnerPauseGate
from lockvault.runtime.engine import StakingEngine
from lockvault.runtime.errors import (
    BAD_ENVELOPE,
    BAD_NONCE,
    BAD_SIGNATURE,
    COMMIT_FAILED,
    LedgerError,
)
from lockvault.runtime.event_log import log_event
from lockvault.runtime.metrics import inc_counter
from lockvault.runtime.single_writer import SingleWriterLock
from lockvault.runtime.sqlite_db import SqliteLedgerStore
from lockvault.runtime.state_invariants import ensure_invariants

Json = Dict[str, Any]

log = logging.getLogger("lockvault.service")

_Action = Callable[[StakingEngine, str, Json], Json]

ACTIONS: Dict[str, _Action] = {
    "stake": lambda e, caller, p: e.stake(caller, p.get("plan_id"), p.get("amount")),
    "claim": lambda e, caller, p: e.claim(caller, p.get("index")),
    "deposit_rewards": lambda e, caller, p: e.deposit_rewards(caller, p.get("amount")),
    "withdraw_reward": lambda e, caller, p: e.withdraw_reward(caller, p.get("amount")),
    "activate_refund_mode": lambda e, caller, p: e.activate_refund_mode(caller),
    "pause": lambda e, caller, p: e.pause(caller),
    "unpause": lambda e, caller, p: e.unpause(caller),
    "transfer_ownership": lambda e, caller, p: e.transfer_ownership(caller, str(p.get("new_owner") or "")),
}


def _reject(err: LedgerError) -> Json:
    return {"ok": False, "error": err.code, "reason": err.reason, "details": err.details}


def _check_envelope(env: Any) -> Json:
    if not isinstance(env, dict):
        raise LedgerError(BAD_ENVELOPE, "not_object")
    action = env.get("action")
    if not isinstance(action, str) or not action.strip():
        raise LedgerError(BAD_ENVELOPE, "missing_action")
    caller = env.get("caller")
    if not isinstance(caller, str) or not caller.strip():
        raise LedgerError(BAD_ENVELOPE, "missing_caller")
    nonce = env.get("nonce")
    if isinstance(nonce, bool) or not isinstance(nonce, int) or nonce <= 0:
        raise LedgerError(BAD_ENVELOPE, "bad_nonce_field", {"nonce": repr(nonce)})
    payload = env.get("payload", {})
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise LedgerError(BAD_ENVELOPE, "payload_not_object")
    return {"action": action.strip(), "caller": caller.strip(), "nonce": nonce, "payload": payload}


class LedgerService:
    def __init__(
        self,
        *,
        engine: StakingEngine,
        bank: InMemoryAssetBank,
        gate: OwnerPauseGate,
        store: Optional[SqliteLedgerStore] = None,
        nonces: Optional[Dict[str, int]] = None,
        sigverify: bool = True,
        check_invariants: bool = False,
        writer_lock: Optional[SingleWriterLock] = None,
    ) -> None:
        self.engine = engine
        self.bank = bank
        self.gate = gate
        self._store = store
        self._nonces: Dict[str, int] = dict(nonces or {})
        self._sigverify = bool(sigverify)
        self._check_invariants = bool(check_invariants)
        self._lock = threading.Lock()
        self._writer_lock = writer_lock

    # ------------------------------------------------------------------
    # submission
    # ------------------------------------------------------------------

    def submit(self, env: Any) -> Json:
        """Authenticate, sequence and apply one action envelope.

        Returns {"ok": True, "receipt": {...}} or
        {"ok": False, "error": code, "reason": str, "details": ...}.
        """
        with self._lock:
            try:
                e = _check_envelope(env)
            except LedgerError as err:
                inc_counter("envelope_rejected")
                return _reject(err)

            caller = e["caller"]
            if self._sigverify and not verify_action_envelope(env):
                inc_counter("signature_rejected")
                return _reject(LedgerError(BAD_SIGNATURE, "signature_invalid", {"caller": caller}))

            want = self._nonces.get(caller, 0) + 1
            if e["nonce"] != want:
                inc_counter("nonce_rejected")
                return _reject(LedgerError(BAD_NONCE, "unexpected_nonce", {"have": e["nonce"], "want": want}))
            prev_nonce = self._nonces.get(caller)
            self._nonces[caller] = e["nonce"]

            cp = self.engine.checkpoint(caller)
            balances = self.bank.balances()
            gate = (self.gate.owner, self.gate.is_paused())

            try:
                fn = ACTIONS.get(e["action"])
                if fn is None:
                    self.engine.fallback(e["action"])
                receipt = fn(self.engine, caller, e["payload"])  # type: ignore[misc]
            except LedgerError as err:
                log_event(log, "action_rejected", action=e["action"], caller=caller, code=err.code, reason=err.reason)
                out = _reject(err)
            else:
                out = {"ok": True, "receipt": receipt}

            touched = [caller]
            if out["ok"] and e["action"] == "transfer_ownership":
                touched.append(self.gate.owner)

            try:
                self._commit(touched=touched, nonces={caller: e["nonce"]})
            except Exception as exc:
                # Nothing reached disk: put memory back to the last committed state.
                self.engine.restore(cp)
                self.bank.restore_balances(balances)
                self.gate.restore(owner=gate[0], paused=gate[1])
                if prev_nonce is None:
                    self._nonces.pop(caller, None)
                else:
                    self._nonces[caller] = prev_nonce
                inc_counter("commit_failed")
                log_event(log, "commit_failed", action=e["action"], caller=caller, error=type(exc).__name__, reason=str(exc))
                return _reject(LedgerError(COMMIT_FAILED, f"commit_failed:{type(exc).__name__}", {"action": e["action"]}))

            if out["ok"] and self._check_invariants:
                ensure_invariants(self.engine.state, custody_balance=self.bank.balance_of(self.bank.custody))

            return out

    def close(self) -> None:
        """Release the process writer lock; the service must not be used afterwards."""
        if self._writer_lock is not None:
            self._writer_lock.release()
            self._writer_lock = None

    def _commit(self, *, touched: List[str], nonces: Dict[str, int]) -> None:
        if self._store is None:
            return
        self._store.commit(
            self.engine.state,
            touched=touched,
            nonces=nonces,
            balances=self.bank.balances(),
            gate={"owner": self.gate.owner, "paused": self.gate.is_paused()},
        )

    # ------------------------------------------------------------------
    # views
    # ------------------------------------------------------------------

    def next_nonce(self, account: str) -> int:
        with self._lock:
            return self._nonces.get(account, 0) + 1

    def balance_of(self, account: str) -> int:
        return self.bank.balance_of(account)

    def plans(self) -> List[Plan]:
        return self.engine.all_plans()

    def stats(self) -> LedgerStats:
        return self.engine.get_stats()

    def positions(self, account: str) -> List[Position]:
        return self.engine.get_user_positions(account)

    def position(self, account: str, index: int) -> Optional[Position]:
        return self.engine.get_position(account, index)

    def pending_reward(self, account: str, index: int) -> int:
        return self.engine.pending_reward(account, index)

    def solvency(self) -> Json:
        return self.engine.solvency_report()

    def snapshot(self) -> Json:
        out = self.engine.state_json()
        out["owner"] = self.gate.owner
        out["paused"] = self.gate.is_paused()
        return out


__all__ = ["ACTIONS", "LedgerService"]
