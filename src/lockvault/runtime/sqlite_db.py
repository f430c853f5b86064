# src/lockvault/runtime/sqlite_db.py
from __future__ import annotations

import json
import os
import random
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple

from lockvault.env import env_int
from lockvault.ledger.state import LedgerState
from lockvault.ledger.types import Position

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: Any) -> str:
    # Never coerce unknown types (no default=str): non-JSON values must fail loudly.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class SqliteDB:
    """SQLite manager for the ledger service.

    Design goals:
      - single durable DB file for ledger globals, positions, accounts, balances
      - cross-process safe (SQLite locks)
      - cross-thread safe by never sharing connections

    SQLite allows only one writer at a time. Under contention BEGIN IMMEDIATE
    can transiently fail with "database is locked", so write_tx() retries with
    bounded exponential backoff.
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """Return PRAGMA synchronous for the current mode.

        prod -> FULL, anything else -> NORMAL.
        Override with LOCKVAULT_SQLITE_SYNCHRONOUS in {OFF,NORMAL,FULL,EXTRA}.
        """
        mode = (os.environ.get("LOCKVAULT_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("LOCKVAULT_SQLITE_SYNCHRONOUS") or default).strip().upper()
        if raw not in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()
        connect_timeout_s = float(env_int("LOCKVAULT_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0

        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        allow_non_wal = (os.environ.get("LOCKVAULT_SQLITE_ALLOW_NON_WAL") or "").strip().lower() in {"1", "true"}
        row = con.execute("PRAGMA journal_mode=WAL;").fetchone()
        mode = str(row[0]).strip().lower() if row is not None else ""
        if mode and mode != "wal" and not allow_non_wal:
            con.close()
            raise RuntimeError(f"sqlite journal_mode is '{mode}', expected 'wal'")

        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA foreign_keys=ON;")
        con.execute("PRAGMA temp_store=MEMORY;")

        busy_ms = max(0, env_int("LOCKVAULT_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000)))
        con.execute(f"PRAGMA busy_timeout={busy_ms};")
        return con

    def init_schema(self) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS ledger_globals (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  globals_json TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS positions (
                  account TEXT NOT NULL,
                  idx INTEGER NOT NULL,
                  position_json TEXT NOT NULL,
                  PRIMARY KEY (account, idx)
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                  account TEXT PRIMARY KEY,
                  has_staked INTEGER NOT NULL DEFAULT 0,
                  nonce INTEGER NOT NULL DEFAULT 0
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS balances (
                  account TEXT PRIMARY KEY,
                  amount INTEGER NOT NULL
                );
                """
            )

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except ValueError:
                    v = 0
                if v != self.SCHEMA_VERSION:
                    raise RuntimeError(
                        f"sqlite schema_version mismatch: have={v} want={self.SCHEMA_VERSION}. "
                        "Refuse to start to avoid corrupting data."
                    )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return ("database is locked" in msg) or ("database is busy" in msg)

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction with bounded retry on writer-lock contention.

        Policy:
          - retry BEGIN IMMEDIATE until a deadline
          - exponential backoff with jitter
          - then raise (fail closed)
        """
        deadline_ms = max(250, env_int("LOCKVAULT_SQLITE_WRITE_DEADLINE_MS", 30_000))
        deadline_ts = _now_ms() + deadline_ms

        base_sleep = max(0.001, float(env_int("LOCKVAULT_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0)
        max_sleep = max(base_sleep, float(env_int("LOCKVAULT_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0)

        def _backoff(attempt: int) -> None:
            sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
            time.sleep(sleep_s * (0.5 + random.random()))

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                        raise
                    _backoff(attempt)
                    attempt += 1

            try:
                yield con
                c_attempt = 0
                while True:
                    try:
                        con.execute("COMMIT;")
                        break
                    except sqlite3.OperationalError as e:
                        if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                            raise
                        _backoff(c_attempt)
                        c_attempt += 1
            except BaseException:
                con.execute("ROLLBACK;")
                raise


class SqliteLedgerStore:
    """Ledger persisted in SQLite, keyed by account and position index.

    - load(): rebuild LedgerState, account nonces and asset balances
    - commit(...): write globals, the touched accounts' positions, nonces and
      balances in one write transaction
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM ledger_globals WHERE id=1;").fetchone() is not None

    def get_meta(self, key: str) -> Optional[str]:
        with self._db.connection() as con:
            row = con.execute("SELECT value FROM meta WHERE key=?;", (key,)).fetchone()
            return None if row is None else str(row["value"])

    def set_meta(self, key: str, value: str) -> None:
        with self._db.write_tx() as con:
            con.execute(
                "INSERT INTO meta(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
                (key, str(value)),
            )

    def load(self) -> Tuple[LedgerState, Dict[str, int], Dict[str, int]]:
        """Return (state, nonces, balances)."""
        with self._db.connection() as con:
            row = con.execute("SELECT globals_json FROM ledger_globals WHERE id=1;").fetchone()
            if row is None:
                raise FileNotFoundError("sqlite ledger_globals is missing")
            g = json.loads(str(row["globals_json"]))
            if not isinstance(g, dict):
                raise ValueError("ledger_globals is not a JSON object")

            st = LedgerState.from_json(g)

            for r in con.execute("SELECT account, idx, position_json FROM positions ORDER BY account, idx;"):
                seq = st.positions.setdefault(str(r["account"]), [])
                if int(r["idx"]) != len(seq):
                    raise ValueError(f"position index gap for {r['account']} at {r['idx']}")
                seq.append(Position.from_json(json.loads(str(r["position_json"]))))

            nonces: Dict[str, int] = {}
            for r in con.execute("SELECT account, has_staked, nonce FROM accounts;"):
                if int(r["has_staked"]):
                    st.stakers.add(str(r["account"]))
                nonces[str(r["account"])] = int(r["nonce"])

            balances = {str(r["account"]): int(r["amount"]) for r in con.execute("SELECT account, amount FROM balances;")}

        return st, nonces, balances

    def load_gate(self) -> Optional[Json]:
        """Return {"owner", "paused"} as last committed, or None before the first commit."""
        owner = self.get_meta("gate_owner")
        paused = self.get_meta("gate_paused")
        if owner is None:
            return None
        return {"owner": json.loads(owner), "paused": bool(json.loads(paused or "false"))}

    def commit(
        self,
        st: LedgerState,
        *,
        touched: Iterable[str] = (),
        nonces: Optional[Dict[str, int]] = None,
        balances: Optional[Dict[str, int]] = None,
        gate: Optional[Json] = None,
    ) -> None:
        accounts = sorted(set(touched) | set(nonces or {}))
        now = _now_ms()
        with self._db.write_tx() as con:
            con.execute(
                """
                INSERT INTO ledger_globals(id, globals_json, updated_ts_ms)
                VALUES(1, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  globals_json=excluded.globals_json,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                (_canon_json(st.globals_json()), now),
            )
            for account in accounts:
                for idx, pos in enumerate(st.account_positions(account)):
                    con.execute(
                        """
                        INSERT INTO positions(account, idx, position_json) VALUES(?, ?, ?)
                        ON CONFLICT(account, idx) DO UPDATE SET position_json=excluded.position_json;
                        """,
                        (account, idx, _canon_json(pos.to_json())),
                    )
                con.execute(
                    """
                    INSERT INTO accounts(account, has_staked, nonce) VALUES(?, ?, ?)
                    ON CONFLICT(account) DO UPDATE SET
                      has_staked=excluded.has_staked,
                      nonce=MAX(accounts.nonce, excluded.nonce);
                    """,
                    (account, 1 if account in st.stakers else 0, int((nonces or {}).get(account, 0))),
                )
            if balances is not None:
                con.execute("DELETE FROM balances;")
                con.executemany(
                    "INSERT INTO balances(account, amount) VALUES(?, ?);",
                    [(k, int(v)) for k, v in sorted(balances.items()) if int(v)],
                )
            if gate is not None:
                for key in ("owner", "paused"):
                    con.execute(
                        "INSERT INTO meta(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
                        (f"gate_{key}", _canon_json(gate.get(key))),
                    )
