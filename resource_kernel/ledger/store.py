"""
Convergence Ledger — append-only, hash-chained record of convergence reports.

Optional add-on. Reconciliation never reads the ledger: a RunContext
appends to it only when given one (or a RunConfig.ledger_path), and works
the same without it.

Behavioral Contract:
- Append-only. No record is ever modified or deleted.
- Each record is hashed and chained to the previous record (tamper-evident).
- Queryable by run, resource, resource type and failure status.
- In-memory by default. The kernel has no obligation to persist anything
  across runs; a file path opts in.
"""

import hashlib
import json
import sqlite3
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel

from resource_kernel.models.report import ConvergenceReport, ResourceState

_FAILED_STATES = (
    ResourceState.CONVERGE_FAILED.value,
    ResourceState.LOAD_FAILED.value,
)


class LedgerEntry(BaseModel):
    """One stored report plus its integrity fields."""

    id: str
    report: ConvergenceReport
    signature: str = ""
    prior_record_hash: Optional[str] = None


def _sign(entry: LedgerEntry) -> str:
    entry_dict = entry.model_dump(mode="json")
    # Zero out signature before hashing (it's what we're computing)
    entry_dict["signature"] = ""
    entry_bytes = json.dumps(entry_dict, sort_keys=True, default=str).encode()
    return hashlib.sha256(entry_bytes).hexdigest()


class ConvergenceLedger:
    """
    Append-only convergence ledger.
    SQLite, in memory unless given a path.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the ledger table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS ledger (
                id TEXT PRIMARY KEY,
                run_id TEXT NOT NULL,
                resource_type TEXT NOT NULL,
                resource TEXT NOT NULL,
                state TEXT NOT NULL,
                updated INTEGER NOT NULL DEFAULT 0,
                signature TEXT NOT NULL,
                prior_record_hash TEXT,
                record_json TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_ledger_run_id ON ledger(run_id)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_ledger_resource ON ledger(resource)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_ledger_state ON ledger(state)
        """)
        self._conn.commit()

    def append(self, report: ConvergenceReport) -> LedgerEntry:
        """Append a report, chained to the previous entry."""
        entry = LedgerEntry(
            id=f"led_{uuid4().hex[:12]}",
            report=report,
            prior_record_hash=self._get_latest_hash(),
        )
        entry.signature = _sign(entry)

        self._conn.execute(
            """
            INSERT INTO ledger (
                id, run_id, resource_type, resource, state, updated,
                signature, prior_record_hash, record_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                report.run_id,
                report.resource_type,
                report.resource,
                report.state.value,
                int(report.updated),
                entry.signature,
                entry.prior_record_hash,
                entry.model_dump_json(),
            ),
        )
        self._conn.commit()
        return entry

    def _get_latest_hash(self) -> Optional[str]:
        row = self._conn.execute(
            "SELECT signature FROM ledger ORDER BY rowid DESC LIMIT 1"
        ).fetchone()
        return row["signature"] if row else None

    def _deserialize(self, row: sqlite3.Row) -> LedgerEntry:
        return LedgerEntry.model_validate_json(row["record_json"])

    def get_by_id(self, entry_id: str) -> Optional[LedgerEntry]:
        row = self._conn.execute(
            "SELECT record_json FROM ledger WHERE id = ?", (entry_id,)
        ).fetchone()
        return self._deserialize(row) if row else None

    def query_by_run(self, run_id: str) -> List[LedgerEntry]:
        """Every report of one run, in order."""
        rows = self._conn.execute(
            "SELECT record_json FROM ledger WHERE run_id = ? ORDER BY rowid",
            (run_id,),
        ).fetchall()
        return [self._deserialize(r) for r in rows]

    def query_by_resource(self, resource: str) -> List[LedgerEntry]:
        """Every report for one resource label, e.g. "file[/tmp/x]"."""
        rows = self._conn.execute(
            "SELECT record_json FROM ledger WHERE resource = ? ORDER BY rowid",
            (resource,),
        ).fetchall()
        return [self._deserialize(r) for r in rows]

    def query_by_type(self, resource_type: str) -> List[LedgerEntry]:
        rows = self._conn.execute(
            "SELECT record_json FROM ledger WHERE resource_type = ? ORDER BY rowid",
            (resource_type,),
        ).fetchall()
        return [self._deserialize(r) for r in rows]

    def query_failures(self) -> List[LedgerEntry]:
        """Reports whose convergence or load failed."""
        rows = self._conn.execute(
            "SELECT record_json FROM ledger WHERE state IN (?, ?) ORDER BY rowid",
            _FAILED_STATES,
        ).fetchall()
        return [self._deserialize(r) for r in rows]

    def query_updates(self) -> List[LedgerEntry]:
        """Reports in which at least one action changed something."""
        rows = self._conn.execute(
            "SELECT record_json FROM ledger WHERE updated = 1 ORDER BY rowid"
        ).fetchall()
        return [self._deserialize(r) for r in rows]

    def query_recent(self, limit: int = 50) -> List[LedgerEntry]:
        rows = self._conn.execute(
            "SELECT record_json FROM ledger ORDER BY rowid DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [self._deserialize(r) for r in reversed(rows)]

    def verify_chain_integrity(self) -> bool:
        """Verify no entries have been tampered with."""
        rows = self._conn.execute(
            "SELECT record_json, signature FROM ledger ORDER BY rowid"
        ).fetchall()

        previous: Optional[str] = None
        for row in rows:
            entry = LedgerEntry.model_validate_json(row["record_json"])
            if entry.signature != row["signature"]:
                return False
            if _sign(entry) != entry.signature:
                return False
            if entry.prior_record_hash != previous:
                return False
            previous = entry.signature
        return True

    def count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) as cnt FROM ledger").fetchone()
        return row["cnt"]

    def close(self) -> None:
        self._conn.close()
