# src/lockvault/runtime/service_boot.py

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from lockvault.env import env_truthy
from lockvault.ledger.constants import DEFAULT_CUSTODY_ADDRESS
from lockvault.ledger.plans import PlanRegistry, parse_plans_json
from lockvault.ledger.state import LedgerState
from lockvault.runtime.collaborators import Clock, InMemoryAssetBank, OwnerPauseGate, SystemClock
from lockvault.runtime.engine import StakingEngine
from lockvault.runtime.event_log import log_event
from lockvault.runtime.service import LedgerService
from lockvault.runtime.single_writer import SingleWriterLock
from lockvault.runtime.sqlite_db import SqliteDB, SqliteLedgerStore
from lockvault.runtime.state_invariants import ensure_invariants

log = logging.getLogger("lockvault.boot")

_ALLOWED_MODES = {"dev", "test", "prod"}


class BootError(RuntimeError):
    pass


@dataclass
class ServiceConfig:
    db_path: str
    owner: str
    custody: str
    plans: PlanRegistry
    genesis_balances: Dict[str, int] = field(default_factory=dict)
    mode: str = "prod"
    sigverify: bool = True
    check_invariants: bool = False


def _parse_genesis_balances(raw: str) -> Dict[str, int]:
    """LOCKVAULT_GENESIS_BALANCES: JSON object {account: amount}."""
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise BootError(f"LOCKVAULT_GENESIS_BALANCES is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise BootError("LOCKVAULT_GENESIS_BALANCES must be a JSON object")
    out: Dict[str, int] = {}
    for k, v in data.items():
        if isinstance(v, bool) or not isinstance(v, int) or v < 0:
            raise BootError(f"genesis balance for {k!r} must be a non-negative int")
        out[str(k)] = int(v)
    return out


def service_config_from_env() -> ServiceConfig:
    mode = (os.environ.get("LOCKVAULT_MODE") or "prod").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise BootError(f"LOCKVAULT_MODE must be one of {sorted(_ALLOWED_MODES)}; got: {mode!r}")
    raw_plans = (os.environ.get("LOCKVAULT_PLANS") or "").strip()

    sigverify = env_truthy("LOCKVAULT_SIGVERIFY", True)
    if mode == "prod" and not sigverify:
        # Unsigned actions are a dev/test convenience only.
        raise BootError("LOCKVAULT_SIGVERIFY=0 is not allowed in LOCKVAULT_MODE=prod")

    return ServiceConfig(
        db_path=os.environ.get("LOCKVAULT_DB_PATH", "./data/lockvault.db"),
        owner=(os.environ.get("LOCKVAULT_OWNER") or "").strip(),
        custody=(os.environ.get("LOCKVAULT_CUSTODY_ADDRESS") or DEFAULT_CUSTODY_ADDRESS).strip(),
        plans=parse_plans_json(raw_plans) if raw_plans else PlanRegistry.default(),
        genesis_balances=_parse_genesis_balances(os.environ.get("LOCKVAULT_GENESIS_BALANCES") or ""),
        mode=mode,
        sigverify=sigverify,
        check_invariants=env_truthy("LOCKVAULT_CHECK_INVARIANTS", mode != "prod"),
    )


def build_service(cfg: Optional[ServiceConfig] = None, *, clock: Optional[Clock] = None) -> LedgerService:
    """
    Build a LedgerService from an explicit config or, if omitted, from
    environment variables.

    First boot seeds the DB (plans, owner, genesis balances). Later boots load
    it and refuse to start when the stored ledger disagrees with the config
    or fails its invariants.
    """
    c = cfg or service_config_from_env()

    writer_lock = SingleWriterLock(c.db_path + ".lock")
    writer_lock.acquire()
    try:
        store = SqliteLedgerStore(db=SqliteDB(path=c.db_path))
        if store.exists():
            state, nonces, balances = store.load()
            if state.plans != c.plans:
                raise BootError("stored plan table differs from configured plans. Refuse to start.")
            stored_custody = store.get_meta("custody")
            if stored_custody is not None and stored_custody != c.custody:
                raise BootError(f"stored custody {stored_custody!r} differs from configured {c.custody!r}")
            g = store.load_gate() or {"owner": c.owner, "paused": False}
            gate = OwnerPauseGate(owner=str(g["owner"]), paused=bool(g["paused"]))
            bank = InMemoryAssetBank(custody=c.custody, balances=balances)
            ensure_invariants(state, custody_balance=bank.balance_of(c.custody))
            log_event(log, "ledger_loaded", db_path=c.db_path, total_positions=state.total_positions)
        else:
            if not c.owner:
                raise BootError("LOCKVAULT_OWNER is required to initialise a new ledger")
            if c.genesis_balances.get(c.custody):
                raise BootError("genesis balances must not credit the custody address")
            state, nonces = LedgerState(plans=c.plans), {}
            gate = OwnerPauseGate(owner=c.owner)
            bank = InMemoryAssetBank(custody=c.custody, balances=c.genesis_balances)
            store.set_meta("custody", c.custody)
            store.commit(
                state,
                balances=bank.balances(),
                gate={"owner": gate.owner, "paused": gate.is_paused()},
            )
            log_event(log, "ledger_initialised", db_path=c.db_path, owner=gate.owner, accounts=len(c.genesis_balances))
    except BaseException:
        writer_lock.release()
        raise

    engine = StakingEngine(state=state, bank=bank, gate=gate, clock=clock or SystemClock())
    return LedgerService(
        engine=engine,
        bank=bank,
        gate=gate,
        store=store,
        nonces=nonces,
        sigverify=c.sigverify,
        check_invariants=c.check_invariants,
        writer_lock=writer_lock,
    )
