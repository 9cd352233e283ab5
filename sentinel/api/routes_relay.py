import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from ..auth.dependencies import require_any, require_operator
from ..config import settings
from ..errors import ProposalEncodingError, StorageFailure
from ..executor.engine import Verdict
from ..models import User
from ..proposals.types import Proposal, from_hex, to_hex
from ..rate_limit import limiter
from ..schemas import RelayAttemptRead, RelayRequest, RelayResult
from ..services import get_services
from ..telemetry.logger import log_relay_attempt, log_relay_failure, relay_attempts_for

logger = logging.getLogger("sentinel.relay")

router = APIRouter(prefix="/relay", tags=["relay"])


def _to_result(verdict: Verdict) -> RelayResult:
    return RelayResult(
        status=verdict.status,
        proposal_hash=to_hex(verdict.proposal_hash),
        record_id=verdict.record_id,
        reason_code=verdict.reason_code.value if verdict.reason_code else None,
        detail=verdict.detail,
        trace=verdict.trace,
    )


@router.post("", response_model=RelayResult)
@limiter.limit(settings.relay_rate_limit)
def relay_proposal(
    request: Request,
    body: RelayRequest,
    user: User = Depends(require_operator),
) -> RelayResult:
    """
    Submit a signed proposal to the executor.

    Expected rejections come back with ``status="rejected"`` and a reason code.
    Malformed encodings are 422; a storage failure is 503 and the same signed
    proposal may be resubmitted.
    """
    try:
        proposal = Proposal.from_wire(body.proposal.model_dump())
        signature = from_hex(body.signature, "signature")
    except ProposalEncodingError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    executor = get_services().executor
    try:
        verdict = executor.submit(proposal, signature)
    except StorageFailure as exc:
        try:
            log_relay_failure(proposal, executor.get_proposal_hash(proposal), str(exc),
                              submitted_by=user.username)
        except Exception:
            logger.exception("Could not log relay failure for vault %s", proposal.vault)
        raise HTTPException(status_code=503, detail=str(exc))

    # Verdict is final once submit returns.
    try:
        log_relay_attempt(proposal, verdict, submitted_by=user.username)
    except Exception:
        logger.exception("Could not log relay attempt %s", to_hex(verdict.proposal_hash))
    return _to_result(verdict)


@router.get("/{proposal_hash}", response_model=RelayAttemptRead)
def relay_status(proposal_hash: str, _user: User = Depends(require_any)) -> RelayAttemptRead:
    """Latest relay attempt for a proposal hash."""
    attempts = relay_attempts_for(proposal_hash, limit=1)
    if not attempts:
        raise HTTPException(status_code=404, detail="No relay attempts for this proposal.")
    return RelayAttemptRead.model_validate(attempts[0])
