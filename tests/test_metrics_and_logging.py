from __future__ import annotations

import json
import logging

import pytest

from conftest import OWNER
from lockvault.runtime import metrics
from lockvault.runtime.errors import LedgerError
from lockvault.runtime.event_log import log_event


def test_format_prometheus_lists_counters_and_gauges() -> None:
    metrics.inc_counter("staked")
    metrics.inc_counter("staked", 2)
    metrics.set_gauge("total_staked", 42)
    text = metrics.format_prometheus()
    assert "# TYPE lockvault_staked counter\nlockvault_staked 3\n" in text
    assert "# TYPE lockvault_total_staked gauge\nlockvault_total_staked 42\n" in text
    assert text.startswith("lockvault_uptime_ms ")


def test_metrics_enabled_flag(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOCKVAULT_METRICS_ENABLED", raising=False)
    assert metrics.metrics_enabled() is False
    monkeypatch.setenv("LOCKVAULT_METRICS_ENABLED", "yes")
    assert metrics.metrics_enabled() is True


def test_log_event_emits_one_json_object(caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger("lockvault.test")
    with caplog.at_level(logging.INFO, logger="lockvault.test"):
        log_event(logger, "staked", account="alice", amount=5)
    rec = json.loads(caplog.records[-1].getMessage())
    assert rec["event"] == "staked"
    assert rec["account"] == "alice"
    assert rec["amount"] == 5
    assert isinstance(rec["ts_ms"], int)


def test_engine_logs_and_counts_mutations(funded, caplog: pytest.LogCaptureFixture) -> None:
    e = funded.engine
    with caplog.at_level(logging.INFO, logger="lockvault.engine"):
        e.stake("alice", 0, 1_000)
        with pytest.raises(LedgerError):
            e.withdraw_reward("alice", 1)

    events = [json.loads(r.getMessage())["event"] for r in caplog.records if r.name == "lockvault.engine"]
    assert events == ["staked"]

    snap = metrics.snapshot()
    assert snap["counters"]["staked"] == 1
    assert snap["counters"]["withdraw_reward_rejected"] == 1
    assert snap["gauges"]["reserved_rewards"] == 100


def test_rewards_deposited_event_names_owner(ledger, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="lockvault.engine"):
        ledger.engine.deposit_rewards(OWNER, 7)
    rec = json.loads(caplog.records[-1].getMessage())
    assert rec["event"] == "rewards_deposited"
    assert rec["account"] == OWNER
    assert rec["reward_pool"] == 7
