from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select

from ..database import db_session
from ..executor.engine import Verdict
from ..models import RelayAttempt
from ..proposals.types import Proposal, to_hex


def log_relay_attempt(
    proposal: Proposal,
    verdict: Verdict,
    submitted_by: Optional[str] = None,
) -> None:
    """Persist one relay submission and its verdict."""
    with db_session() as session:
        session.add(
            RelayAttempt(
                proposal_hash=to_hex(verdict.proposal_hash),
                vault=proposal.vault,
                nonce=str(proposal.nonce),
                action_type=proposal.action_type,
                status=verdict.status,
                reason_code=verdict.reason_code.value if verdict.reason_code else None,
                detail=verdict.detail,
                record_id=verdict.record_id,
                submitted_by=submitted_by,
            )
        )


def log_relay_failure(
    proposal: Proposal,
    proposal_hash: bytes,
    detail: str,
    submitted_by: Optional[str] = None,
) -> None:
    """Record a submission that ended in a storage error (proposal resubmittable)."""
    with db_session() as session:
        session.add(
            RelayAttempt(
                proposal_hash=to_hex(proposal_hash),
                vault=proposal.vault,
                nonce=str(proposal.nonce),
                action_type=proposal.action_type,
                status="error",
                reason_code=None,
                detail=detail,
                submitted_by=submitted_by,
            )
        )


def relay_attempts_for(proposal_hash: str, limit: int = 20) -> List[RelayAttempt]:
    """Attempts for one proposal hash, newest first."""
    with db_session() as session:
        return list(
            session.execute(
                select(RelayAttempt)
                .where(RelayAttempt.proposal_hash == proposal_hash.lower())
                .order_by(RelayAttempt.id.desc())
                .limit(limit)
            ).scalars().all()
        )
