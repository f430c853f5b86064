from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

# Ensure local "src/" takes precedence over any globally-installed "lockvault" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from lockvault.ledger.plans import PlanRegistry  # noqa: E402
from lockvault.ledger.state import LedgerState  # noqa: E402
from lockvault.runtime import metrics  # noqa: E402
from lockvault.runtime.collaborators import InMemoryAssetBank, ManualClock, OwnerPauseGate  # noqa: E402
from lockvault.runtime.engine import StakingEngine  # noqa: E402

OWNER = "owner"
CUSTODY = "CUSTODY"

# (lock_duration_seconds, reward_rate_bps)
#   0: 10s @ 10%   1: 100s @ 20%   2: 0s @ 5% (degenerate)   3: 1000s @ 100%
TEST_PLANS = ((10, 1_000), (100, 2_000), (0, 500), (1_000, 10_000))


def make_ledger(*, balances=None, start: int = 0, plans=TEST_PLANS) -> SimpleNamespace:
    clock = ManualClock(start)
    bank = InMemoryAssetBank(
        custody=CUSTODY,
        balances=balances if balances is not None else {OWNER: 1_000_000, "alice": 10_000, "bob": 10_000},
    )
    gate = OwnerPauseGate(owner=OWNER)
    state = LedgerState(plans=PlanRegistry.from_pairs(plans))
    engine = StakingEngine(state=state, bank=bank, gate=gate, clock=clock)
    return SimpleNamespace(engine=engine, state=state, bank=bank, gate=gate, clock=clock)


@pytest.fixture
def ledger() -> SimpleNamespace:
    return make_ledger()


@pytest.fixture
def funded(ledger: SimpleNamespace) -> SimpleNamespace:
    ledger.engine.deposit_rewards(OWNER, 10_000)
    return ledger


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()
