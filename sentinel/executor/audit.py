"""
executor/audit.py: Append-only execution record sink
======================================================
One ExecutionRecord per executed proposal, keyed by proposal hash. A second
append for the same hash raises DuplicateRecord and leaves the original
untouched; records are never updated or deleted.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..database import db_session
from ..errors import DuplicateRecord
from ..models import ExecutionRecordRow
from ..proposals.types import from_hex, to_hex


@dataclass(frozen=True)
class ExecutionRecord:
    proposal_hash: bytes
    vault: str
    executor_identity: str
    action_type: int
    params: bytes
    content_hash: bytes
    timestamp: int
    sequence_number: int = 0  # assigned by the sink on append


class AuditSink:
    def append(self, record: ExecutionRecord) -> ExecutionRecord:
        """Persist *record* and return it with its sequence number set."""
        raise NotImplementedError

    def get(self, proposal_hash: bytes) -> Optional[ExecutionRecord]:
        raise NotImplementedError

    def contains(self, proposal_hash: bytes) -> bool:
        return self.get(proposal_hash) is not None

    def list_records(
        self, vault: Optional[str] = None, limit: int = 100, offset: int = 0
    ) -> List[ExecutionRecord]:
        """Newest first."""
        raise NotImplementedError


class InMemoryAuditSink(AuditSink):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[bytes, ExecutionRecord] = {}
        self._order: List[bytes] = []

    def append(self, record: ExecutionRecord) -> ExecutionRecord:
        with self._lock:
            if record.proposal_hash in self._records:
                raise DuplicateRecord(f"record exists for {to_hex(record.proposal_hash)}")
            stored = replace(record, sequence_number=len(self._order) + 1)
            self._records[record.proposal_hash] = stored
            self._order.append(record.proposal_hash)
            return stored

    def get(self, proposal_hash: bytes) -> Optional[ExecutionRecord]:
        with self._lock:
            return self._records.get(proposal_hash)

    def list_records(self, vault=None, limit=100, offset=0):
        with self._lock:
            records = [self._records[h] for h in reversed(self._order)]
        if vault is not None:
            records = [r for r in records if r.vault == vault]
        return records[offset:offset + limit]


def _row_to_record(row: ExecutionRecordRow) -> ExecutionRecord:
    return ExecutionRecord(
        proposal_hash=from_hex(row.proposal_hash),
        vault=row.vault,
        executor_identity=row.executor_identity,
        action_type=row.action_type,
        params=from_hex(row.params),
        content_hash=from_hex(row.content_hash),
        timestamp=row.timestamp,
        sequence_number=row.id,
    )


class SqlAuditSink(AuditSink):
    """``execution_records`` table; the row id is the sequence number."""

    def append(self, record: ExecutionRecord) -> ExecutionRecord:
        try:
            with db_session() as session:
                row = ExecutionRecordRow(
                    proposal_hash=to_hex(record.proposal_hash),
                    vault=record.vault,
                    executor_identity=record.executor_identity,
                    action_type=record.action_type,
                    params=to_hex(record.params),
                    content_hash=to_hex(record.content_hash),
                    timestamp=record.timestamp,
                )
                session.add(row)
                session.flush()
                return _row_to_record(row)
        except IntegrityError as exc:
            raise DuplicateRecord(f"record exists for {to_hex(record.proposal_hash)}") from exc

    def get(self, proposal_hash: bytes) -> Optional[ExecutionRecord]:
        with db_session() as session:
            row = session.execute(
                select(ExecutionRecordRow).where(
                    ExecutionRecordRow.proposal_hash == to_hex(proposal_hash)
                )
            ).scalar_one_or_none()
            return _row_to_record(row) if row else None

    def list_records(self, vault=None, limit=100, offset=0):
        with db_session() as session:
            q = select(ExecutionRecordRow).order_by(ExecutionRecordRow.id.desc())
            if vault is not None:
                q = q.where(ExecutionRecordRow.vault == vault)
            rows = session.execute(q.offset(offset).limit(limit)).scalars().all()
            return [_row_to_record(r) for r in rows]
