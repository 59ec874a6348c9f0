"""
office_store.py - Persisted office state in one local JSON file.

Holds what the engine reads and writes between requests: scheduled exams,
the local order window used by the bank matcher, uploaded statements,
parsed transactions and their match candidates.
No auth, no multi-user state, no background workers.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from logging_config import get_logger
from models import (
    BankStatement,
    BankTransaction,
    ExamDefinition,
    OrderSummary,
    TransactionMatchCandidate,
)

logger = get_logger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class OfficeState(BaseModel):
    """Everything the office engine persists."""

    model_config = ConfigDict(extra="ignore")

    exams: list[ExamDefinition] = Field(default_factory=list)
    orders: list[OrderSummary] = Field(default_factory=list)
    statements: list[BankStatement] = Field(default_factory=list)
    transactions: list[BankTransaction] = Field(default_factory=list)
    candidates: list[TransactionMatchCandidate] = Field(default_factory=list)
    updated_at: Optional[str] = None

    @field_validator("exams", "orders", "statements", "transactions", "candidates", mode="before")
    @classmethod
    def _list_or_empty(cls, value: Any) -> list[Any]:
        return list(value) if isinstance(value, (list, tuple)) else []

    # -- exams --

    def list_exams(self, kind: Optional[str] = None) -> list[ExamDefinition]:
        wanted = (kind or "").strip().upper()
        exams = [exam for exam in self.exams if not wanted or exam.kind.upper() == wanted]
        return sorted(exams, key=lambda exam: (exam.kind, exam.date, exam.id))

    def add_exams(self, kind: str, dates: list[str]) -> list[ExamDefinition]:
        next_id = max((exam.id for exam in self.exams), default=0) + 1
        added: list[ExamDefinition] = []
        for offset, date in enumerate(dates):
            exam = ExamDefinition(id=next_id + offset, kind=kind.strip(), date=date.strip())
            self.exams.append(exam)
            added.append(exam)
        return added

    def remove_exams(self, ids: list[int]) -> int:
        doomed = set(ids)
        before = len(self.exams)
        self.exams = [exam for exam in self.exams if exam.id not in doomed]
        return before - len(self.exams)

    # -- order window --

    def upsert_orders(self, orders: list[OrderSummary]) -> int:
        by_id = {order.id: order for order in self.orders}
        for order in orders:
            by_id[order.id] = order
        self.orders = list(by_id.values())
        return len(orders)

    def recent_orders(self, limit: int) -> list[OrderSummary]:
        """Newest orders first by creation time."""
        ordered = sorted(self.orders, key=lambda order: (order.created_at, order.id), reverse=True)
        return ordered[: max(0, limit)]

    # -- bank data --

    def add_statement(self, filename: str) -> BankStatement:
        statement = BankStatement(
            id=max((item.id for item in self.statements), default=0) + 1,
            filename=filename,
            uploaded_at=_utc_now_iso(),
        )
        self.statements.append(statement)
        return statement

    def next_transaction_id(self) -> int:
        return max((item.id for item in self.transactions), default=0) + 1

    def transaction_by_id(self, transaction_id: int) -> Optional[BankTransaction]:
        for transaction in self.transactions:
            if transaction.id == transaction_id:
                return transaction
        return None


class OfficeStore:
    """Disk-backed office state using one JSON file and atomic writes.

    Writers go through ``update()``, which holds the store lock from load to
    save so concurrent requests cannot overwrite each other's changes.
    """

    def __init__(self, path: Optional[str] = None) -> None:
        target = path or os.getenv("OFFICE_STATE_FILE", "data/office_state.json")
        self.path = Path(target).resolve()
        self._lock = threading.RLock()

    @staticmethod
    def default_state() -> OfficeState:
        return OfficeState()

    def load(self) -> OfficeState:
        """Load state from disk, returning an empty state if missing/unreadable."""
        with self._lock:
            if not self.path.exists():
                return self.default_state()

            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
                return OfficeState.model_validate(raw)
            except (OSError, ValueError) as exc:
                logger.warning(
                    "office_state_load_warning | path=%s | error_type=%s | error=%s | fallback='empty'",
                    self.path,
                    type(exc).__name__,
                    exc,
                )
                return self.default_state()

    def save(self, state: OfficeState | dict[str, Any]) -> None:
        """Persist state atomically via temp-file + replace."""
        normalized = OfficeState.model_validate(state)
        normalized.updated_at = _utc_now_iso()
        payload = normalized.model_dump(mode="json")

        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=str(self.path.parent),
                delete=False,
                suffix=".tmp",
                prefix="office-",
            ) as tmp_file:
                json.dump(payload, tmp_file, ensure_ascii=False, indent=2)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())
                tmp_path = Path(tmp_file.name)

            os.replace(tmp_path, self.path)

    @contextmanager
    def update(self) -> Iterator[OfficeState]:
        """Load, yield for changes, then save; nothing is saved if the block raises."""
        with self._lock:
            state = self.load()
            yield state
            self.save(state)
