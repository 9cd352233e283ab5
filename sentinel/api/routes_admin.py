from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ..auth.dependencies import require_admin, require_any
from ..executor.engine import Executor
from ..models import User
from ..schemas import SentinelStatus, SignerUpdate
from ..services import get_services

router = APIRouter(prefix="/admin", tags=["admin"])


def _status(executor: Executor) -> SentinelStatus:
    return SentinelStatus(
        paused=executor.is_paused(),
        agent_signer=executor.agent_signer,
        executor_identity=executor.identity,
    )


@router.get("/status", response_model=SentinelStatus)
def get_status(_user: User = Depends(require_any)) -> SentinelStatus:
    """Return current executor runtime status."""
    return _status(get_services().executor)


@router.post("/pause", response_model=SentinelStatus)
def emergency_pause(_user: User = Depends(require_admin)) -> SentinelStatus:
    """Clear the agent signer – every subsequent proposal fails signature checks."""
    executor = get_services().executor
    executor.emergency_pause()
    return _status(executor)


@router.post("/unpause", response_model=SentinelStatus)
def emergency_unpause(body: SignerUpdate, _user: User = Depends(require_admin)) -> SentinelStatus:
    """Resume service under a new agent key."""
    executor = get_services().executor
    try:
        executor.emergency_unpause(body.signer)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return _status(executor)


@router.put("/agent-signer", response_model=SentinelStatus)
def update_agent_signer(body: SignerUpdate, _user: User = Depends(require_admin)) -> SentinelStatus:
    """Rotate the agent key without a pause."""
    executor = get_services().executor
    try:
        executor.update_agent_signer(body.signer)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return _status(executor)
