"""
Credit Ledger - append-only debit/refund rows tied to video jobs.

Rows are never updated or deleted. Amounts are signed:
- debit: negative (credits consumed)
- refund: positive (credits returned)

Balances are aggregated elsewhere; this module only records what each job
consumed and what was given back, so the sum of a failed job's rows equals
the portion of its cost that was actually used.

Costs:
- base job: VIDEO_CREDIT_COST (50)
- each chained extension: EXTENSION_CREDIT_COST (25)
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional

from videostudio.config import config
from videostudio.db import execute_returning, query_all, query_one, Tables
from videostudio.services.job_record import JobRecord
from videostudio.utils.helpers import log_event, now_utc


class LedgerEntryType:
    """Valid ledger entry types."""
    DEBIT = "debit"
    REFUND = "refund"


class LedgerStore:
    """Postgres-backed ledger rows."""

    def append(
        self,
        owner_id: str,
        account_id: Optional[str],
        job_id: Optional[str],
        entry_type: str,
        amount: int,
        label: str,
    ) -> Dict[str, Any]:
        row = execute_returning(
            f"""
            INSERT INTO {Tables.CREDIT_LEDGER}
            (owner_id, account_id, job_id, entry_type, amount, label, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, NOW())
            RETURNING *
            """,
            (owner_id, account_id, job_id, entry_type, amount, label),
        )
        assert row is not None, "Ledger entry insert failed"
        return row

    def entries_for_job(self, job_id: str) -> List[Dict[str, Any]]:
        return query_all(
            f"""
            SELECT id, owner_id, account_id, job_id, entry_type, amount, label, created_at
            FROM {Tables.CREDIT_LEDGER}
            WHERE job_id = %s
            ORDER BY id ASC
            """,
            (job_id,),
        )

    def sum_for_job(self, job_id: str, entry_type: str) -> int:
        row = query_one(
            f"""
            SELECT COALESCE(SUM(amount), 0) AS total
            FROM {Tables.CREDIT_LEDGER}
            WHERE job_id = %s AND entry_type = %s
            """,
            (job_id, entry_type),
        )
        return int(row["total"]) if row else 0


class MemoryLedgerStore:
    """In-process ledger rows (local dev, tests)."""

    def __init__(self):
        self._rows: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def append(
        self,
        owner_id: str,
        account_id: Optional[str],
        job_id: Optional[str],
        entry_type: str,
        amount: int,
        label: str,
    ) -> Dict[str, Any]:
        with self._lock:
            row = {
                "id": len(self._rows) + 1,
                "owner_id": owner_id,
                "account_id": account_id,
                "job_id": job_id,
                "entry_type": entry_type,
                "amount": amount,
                "label": label,
                "created_at": now_utc(),
            }
            self._rows.append(row)
            return dict(row)

    def entries_for_job(self, job_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(r) for r in self._rows if r["job_id"] == job_id]

    def sum_for_job(self, job_id: str, entry_type: str) -> int:
        with self._lock:
            return sum(r["amount"] for r in self._rows if r["job_id"] == job_id and r["entry_type"] == entry_type)


class CreditLedger:
    """
    Credit accounting for video jobs.

    Refunds are only issued by the caller whose guarded terminal write
    actually changed the job row, so one failure never produces two refunds.
    """

    def __init__(self, store=None, base_cost: Optional[int] = None, extension_cost: Optional[int] = None):
        self.store = store or LedgerStore()
        self.base_cost = config.VIDEO_CREDIT_COST if base_cost is None else base_cost
        self.extension_cost = config.EXTENSION_CREDIT_COST if extension_cost is None else extension_cost

    # ─────────────────────────────────────────────────────────────
    # Pricing
    # ─────────────────────────────────────────────────────────────
    def job_cost(self, extension_total: int = 0) -> int:
        """Base cost plus one extension cost per planned chain step."""
        return self.base_cost + self.extension_cost * max(0, extension_total)

    def refund_amount(self, job: JobRecord, partial: bool) -> int:
        """
        Full credit_cost when no segment was ever delivered; one extension's
        cost when the job is saved with a shorter-than-requested output.
        """
        if partial:
            return min(self.extension_cost, job.credit_cost)
        return job.credit_cost

    # ─────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────
    def debit(self, job: JobRecord, amount: int, label: str = "Video generation") -> Dict[str, Any]:
        entry = self.store.append(
            job.owner_id, job.account_id, job.id, LedgerEntryType.DEBIT, -abs(amount), label
        )
        print(f"[Ledger] debit job={job.id} owner={job.owner_id} amount=-{abs(amount)} ({label})")
        log_event("ledger.debit", {"job_id": job.id, "amount": abs(amount), "label": label})
        return entry

    def refund(self, job: JobRecord, amount: int, label: str) -> Optional[Dict[str, Any]]:
        if amount <= 0:
            return None
        entry = self.store.append(
            job.owner_id, job.account_id, job.id, LedgerEntryType.REFUND, abs(amount), label
        )
        print(f"[Ledger] refund job={job.id} owner={job.owner_id} amount=+{abs(amount)} ({label})")
        log_event("ledger.refund", {"job_id": job.id, "amount": abs(amount), "label": label})
        return entry

    # ─────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────
    def entries_for_job(self, job_id: str) -> List[Dict[str, Any]]:
        return self.store.entries_for_job(job_id)

    def refunded_total(self, job_id: str) -> int:
        return self.store.sum_for_job(job_id, LedgerEntryType.REFUND)

    def debited_total(self, job_id: str) -> int:
        return -self.store.sum_for_job(job_id, LedgerEntryType.DEBIT)
