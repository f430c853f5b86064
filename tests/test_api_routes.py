from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from conftest import CUSTODY, TEST_PLANS
from lockvault.ledger.plans import PlanRegistry
from lockvault.runtime.collaborators import ManualClock
from lockvault.runtime.service_boot import ServiceConfig, build_service
from lockvault.testing.sigtools import account_for, signed_action

OWNER = account_for("owner")
ALICE = account_for("alice")


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(0)


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, clock: ManualClock):
    from lockvault.api import app as api_app

    monkeypatch.setenv("LOCKVAULT_MODE", "dev")
    cfg = ServiceConfig(
        db_path=str(tmp_path / "api.db"),
        owner=OWNER,
        custody=CUSTODY,
        plans=PlanRegistry.from_pairs(TEST_PLANS),
        genesis_balances={OWNER: 1_000_000, ALICE: 10_000},
        mode="dev",
    )
    monkeypatch.setattr(api_app, "build_service", lambda: build_service(cfg, clock=clock))

    with TestClient(api_app.create_app(boot_runtime=True)) as c:
        yield c


def _submit(c: TestClient, label: str, action: str, nonce: int, **payload):
    return c.post("/v1/actions/submit", json=signed_action(label, action, nonce, **payload))


def test_create_app_without_runtime_has_no_service() -> None:
    from lockvault.api.app import create_app

    app = create_app(boot_runtime=False)
    assert getattr(app.state, "service", None) is None
    with TestClient(app) as c:
        r = c.get("/v1/health")
        assert r.status_code == 200
        assert r.json()["ledger"]["ready"] is False

        r = c.get("/v1/stats")
        assert r.status_code == 500
        assert r.json()["error"]["code"] == "not_ready"


def test_health_and_plans(client: TestClient) -> None:
    for path in ("/health", "/v1/health"):
        j = client.get(path).json()
        assert j["ok"] is True
        assert j["ledger"]["ready"] is True
        assert j["ledger"]["refund_mode"] is False

    plans = client.get("/v1/plans").json()["plans"]
    assert [(p["plan_id"], p["lock_duration"], p["reward_rate_bps"]) for p in plans] == [
        (0, 10, 1000),
        (1, 100, 2000),
        (2, 0, 500),
        (3, 1000, 10000),
    ]


def test_stake_claim_flow_over_http(client: TestClient, clock: ManualClock) -> None:
    r = _submit(client, "owner", "deposit_rewards", 1, amount=10_000)
    assert r.status_code == 200
    assert r.json()["next_nonce"] == 2

    r = _submit(client, "alice", "stake", 1, plan_id=0, amount=1_000)
    assert r.status_code == 200
    assert r.json()["receipt"]["index"] == 0

    acct = client.get(f"/v1/accounts/{ALICE}").json()
    assert acct["balance"] == 9_000
    assert acct["next_nonce"] == 2
    assert acct["positions"] == 1

    positions = client.get(f"/v1/accounts/{ALICE}/positions").json()["positions"]
    assert positions == [
        {
            "index": 0,
            "principal": 1_000,
            "start_time": 0,
            "plan_id": 0,
            "claimed": False,
            "reward_paid": None,
            "claimed_at": None,
        }
    ]

    r = _submit(client, "alice", "claim", 2, index=0)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "lock_not_ended"

    clock.set(10)
    assert client.get(f"/v1/accounts/{ALICE}/positions/0/pending").json()["pending_reward"] == 100
    r = _submit(client, "alice", "claim", 3, index=0)
    assert r.status_code == 200
    assert r.json()["receipt"]["payout"] == 1_100

    pos = client.get(f"/v1/accounts/{ALICE}/positions/0").json()["position"]
    assert pos["claimed"] is True
    assert pos["reward_paid"] == 100

    stats = client.get("/v1/stats").json()["stats"]
    assert stats["total_staked"] == 0
    assert stats["total_users"] == 1
    assert client.get("/v1/solvency").json()["solvency"]["ok"] is True


def test_error_status_mapping(client: TestClient) -> None:
    r = _submit(client, "alice", "pause", 1)
    assert r.status_code == 403
    assert r.json() == {
        "ok": False,
        "error": {"code": "unauthorized", "message": "owner_only", "details": {"caller": ALICE}},
    }

    r = _submit(client, "alice", "claim", 2, index=5)
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "invalid_index"

    r = _submit(client, "alice", "stake", 7, plan_id=0, amount=1)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "bad_nonce"

    r = _submit(client, "alice", "stake", 3, plan_id=9, amount=1)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_plan"

    env = signed_action("alice", "stake", 4, plan_id=0, amount=1)
    env["sig"] = "00" * 64
    r = client.post("/v1/actions/submit", json=env)
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "bad_signature"


def test_malformed_envelope_is_400(client: TestClient) -> None:
    r = client.post("/v1/actions/submit", json={"action": "stake", "nonce": "one"})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "bad_envelope"

    r = client.post("/v1/actions/submit", content=b"not json", headers={"content-type": "application/json"})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "bad_envelope"


def test_unknown_position_is_404(client: TestClient) -> None:
    r = client.get(f"/v1/accounts/{ALICE}/positions/3")
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "invalid_index"
    assert client.get(f"/v1/accounts/{ALICE}/positions/3/pending").json()["pending_reward"] == 0


def test_request_size_limit_returns_413(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOCKVAULT_MAX_REQUEST_BYTES", "128")
    monkeypatch.delenv("LOCKVAULT_SIZE_LIMIT_DISABLE", raising=False)
    from lockvault.api.app import create_app

    c = TestClient(create_app(boot_runtime=False))
    r = c.post("/v1/actions/submit", json={"action": "stake", "pad": "x" * 500})
    assert r.status_code == 413
    assert r.json()["error"]["code"] == "request_too_large"


def test_metrics_endpoint_is_opt_in(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOCKVAULT_METRICS_ENABLED", raising=False)
    assert client.get("/v1/metrics").status_code == 404

    monkeypatch.setenv("LOCKVAULT_METRICS_ENABLED", "1")
    _submit(client, "owner", "deposit_rewards", 1, amount=500)
    r = client.get("/v1/metrics")
    assert r.status_code == 200
    assert "# TYPE lockvault_rewards_deposited counter" in r.text
    assert "lockvault_reward_pool 500" in r.text


def test_docs_disabled_in_prod(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOCKVAULT_MODE", "prod")
    from lockvault.api.app import create_app

    c = TestClient(create_app(boot_runtime=False))
    assert c.get("/openapi.json").status_code == 404


def test_commit_failure_maps_to_503() -> None:
    from lockvault.api.errors import ApiError, status_for_code

    assert status_for_code("commit_failed") == 503
    err = ApiError.from_rejection("commit_failed", "commit_failed:OperationalError", {"action": "stake"})
    assert err.status_code == 503
    assert err.to_json()["error"]["code"] == "commit_failed"
