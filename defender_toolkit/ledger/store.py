"""
SQLite-backed run ledger.
Keeps one row per deployment run and one row per step so previous runs
can be listed and inspected with the `history` command.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger("defender_toolkit.ledger")

RUN_STATUSES = ("running", "succeeded", "failed", "dry_run")


class RunLedger:
    """
    Persistent history of deployment runs.
    Features:
      - Run log with products, mode and final status
      - Per-step outcomes in execution order
      - Safe for async usage via connection-per-call
    """

    def __init__(self, db_path: str):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path))

    def _init_db(self):
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    run_id TEXT PRIMARY KEY,
                    tenant_id TEXT,
                    products TEXT NOT NULL,
                    dry_run INTEGER NOT NULL DEFAULT 0,
                    started_at REAL NOT NULL,
                    completed_at REAL,
                    status TEXT DEFAULT 'running',
                    metadata TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS steps (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id TEXT NOT NULL,
                    deployer TEXT NOT NULL,
                    name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    detail TEXT,
                    recorded_at REAL NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_steps_run
                ON steps(run_id)
            """)
            conn.commit()

    def start_run(
        self,
        run_id: str,
        products: list[str],
        dry_run: bool = False,
        tenant_id: str = "",
        metadata: Optional[dict] = None,
    ):
        """Record the start of a deployment run."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO runs
                    (run_id, tenant_id, products, dry_run, started_at, status, metadata)
                VALUES (?, ?, ?, ?, ?, 'running', ?)
                """,
                (
                    run_id,
                    tenant_id,
                    json.dumps(products),
                    int(dry_run),
                    time.time(),
                    json.dumps(metadata or {}, default=str),
                ),
            )
            conn.commit()
        logger.debug(f"Run {run_id} started for {products}")

    def record_step(self, run_id: str, deployer: str, name: str, status: str, detail: str = ""):
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO steps (run_id, deployer, name, status, detail, recorded_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (run_id, deployer, name, status, detail, time.time()),
            )
            conn.commit()

    def complete_run(self, run_id: str, status: str):
        """Record the final status of a run."""
        if status not in RUN_STATUSES:
            raise ValueError(f"Unknown run status: {status}")
        with self._connect() as conn:
            conn.execute(
                "UPDATE runs SET completed_at = ?, status = ? WHERE run_id = ?",
                (time.time(), status, run_id),
            )
            conn.commit()
        logger.debug(f"Run {run_id} completed: {status}")

    def get_run(self, run_id: str) -> Optional[dict]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT run_id, tenant_id, products, dry_run, started_at,
                       completed_at, status, metadata
                FROM runs WHERE run_id = ?
                """,
                (run_id,),
            ).fetchone()
        return self._run_row(row) if row else None

    def get_run_history(self, limit: int = 10) -> list[dict]:
        """Retrieve recent runs, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT run_id, tenant_id, products, dry_run, started_at,
                       completed_at, status, metadata
                FROM runs ORDER BY started_at DESC LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [self._run_row(r) for r in rows]

    def get_steps(self, run_id: str) -> list[dict]:
        """Steps of one run in the order they were recorded."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT deployer, name, status, detail, recorded_at
                FROM steps WHERE run_id = ? ORDER BY id
                """,
                (run_id,),
            ).fetchall()
        return [
            {
                "deployer": r[0],
                "name": r[1],
                "status": r[2],
                "detail": r[3] or "",
                "recorded_at": r[4],
            }
            for r in rows
        ]

    def prune(self, older_than_days: int) -> int:
        """Delete runs (and their steps) started before the cutoff."""
        cutoff = time.time() - older_than_days * 86400
        with self._connect() as conn:
            run_ids = [
                r[0] for r in conn.execute(
                    "SELECT run_id FROM runs WHERE started_at < ?", (cutoff,)
                ).fetchall()
            ]
            for run_id in run_ids:
                conn.execute("DELETE FROM steps WHERE run_id = ?", (run_id,))
                conn.execute("DELETE FROM runs WHERE run_id = ?", (run_id,))
            conn.commit()
        if run_ids:
            logger.info(f"Pruned {len(run_ids)} runs older than {older_than_days} days.")
        return len(run_ids)

    @staticmethod
    def _run_row(r: tuple) -> dict[str, Any]:
        return {
            "run_id": r[0],
            "tenant_id": r[1] or "",
            "products": json.loads(r[2]),
            "dry_run": bool(r[3]),
            "started_at": r[4],
            "completed_at": r[5],
            "status": r[6],
            "metadata": json.loads(r[7]) if r[7] else {},
        }
