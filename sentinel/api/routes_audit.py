from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..auth.dependencies import require_any
from ..errors import ProposalEncodingError
from ..executor.audit import ExecutionRecord
from ..models import User
from ..proposals.types import from_hex, normalize_address, to_hex
from ..schemas import ExecutionRecordRead
from ..services import get_services

router = APIRouter(prefix="/audit", tags=["audit"])


def _to_read(r: ExecutionRecord) -> ExecutionRecordRead:
    return ExecutionRecordRead(
        sequence_number=r.sequence_number,
        proposal_hash=to_hex(r.proposal_hash),
        vault=r.vault,
        executor_identity=r.executor_identity,
        action_type=r.action_type,
        params=to_hex(r.params),
        content_hash=to_hex(r.content_hash),
        timestamp=r.timestamp,
    )


@router.get("", response_model=List[ExecutionRecordRead])
def list_records(
    vault: Optional[str] = Query(None, description="Filter by vault address."),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    _user: User = Depends(require_any),
) -> List[ExecutionRecordRead]:
    """Execution records, newest first."""
    try:
        vault = normalize_address(vault, "vault") if vault else None
    except ProposalEncodingError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    records = get_services().executor.audit.list_records(vault=vault, limit=limit, offset=offset)
    return [_to_read(r) for r in records]


@router.get("/{proposal_hash}", response_model=ExecutionRecordRead)
def get_record(proposal_hash: str, _user: User = Depends(require_any)) -> ExecutionRecordRead:
    try:
        digest = from_hex(proposal_hash, "proposal_hash")
    except ProposalEncodingError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    if len(digest) != 32:
        raise HTTPException(status_code=422, detail="proposal_hash must be 32 bytes")
    record = get_services().executor.audit.get(digest)
    if record is None:
        raise HTTPException(status_code=404, detail="No execution record for this proposal.")
    return _to_read(record)
