#!/usr/bin/env python3

"""Production-ish smoke test for lockvault.

It verifies:
  - the service boots on a fresh SQLite db
  - FastAPI app boots and serves /health
  - a signed deposit + stake round trip is accepted and the ledger stays solvent
  - a second boot on the same db reloads the same ledger

Usage:
  python3 scripts/prod_smoke.py
"""

from __future__ import annotations

import json
import os
import sys
import tempfile
from pathlib import Path

from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from lockvault.api.app import create_app  # noqa: E402
from lockvault.testing.sigtools import account_for, signed_action  # noqa: E402


def _check(cond: bool, msg: str) -> None:
    if not cond:
        print(f"[smoke] FAIL: {msg}", file=sys.stderr)
        raise SystemExit(1)


def main() -> int:
    owner, alice = account_for("smoke-owner"), account_for("smoke-alice")

    with tempfile.TemporaryDirectory(prefix="lockvault-smoke-") as td:
        os.environ["LOCKVAULT_DB_PATH"] = os.path.join(td, "lockvault.db")
        os.environ["LOCKVAULT_OWNER"] = owner
        os.environ["LOCKVAULT_GENESIS_BALANCES"] = json.dumps({owner: 1_000_000, alice: 10_000})
        os.environ.setdefault("LOCKVAULT_MODE", "prod")

        with TestClient(create_app(boot_runtime=True)) as c:
            r = c.get("/health")
            _check(r.status_code == 200 and r.json()["ledger"]["ready"] is True, f"/health: {r.text}")

            r = c.post("/v1/actions/submit", json=signed_action("smoke-owner", "deposit_rewards", 1, amount=100_000))
            _check(r.status_code == 200, f"deposit_rewards: {r.text}")

            r = c.post("/v1/actions/submit", json=signed_action("smoke-alice", "stake", 1, plan_id=0, amount=1_000))
            _check(r.status_code == 200, f"stake: {r.text}")

            sol = c.get("/v1/solvency").json()["solvency"]
            _check(sol["ok"] is True, f"solvency: {sol}")
            stats = c.get("/v1/stats").json()["stats"]

        with TestClient(create_app(boot_runtime=True)) as c:
            again = c.get("/v1/stats").json()["stats"]
            _check(again == stats, f"reload mismatch: {again} != {stats}")
            _check(c.get(f"/v1/accounts/{alice}").json()["next_nonce"] == 2, "nonce not persisted")

    print("[smoke] ok")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
