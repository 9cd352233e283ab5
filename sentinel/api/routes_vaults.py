from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..auth.dependencies import require_any, require_operator
from ..config import settings
from ..errors import InvalidPolicy, ProposalEncodingError, VaultAlreadyRegistered
from ..executor.vault import VaultInfo
from ..models import User
from ..policies.store import PolicySnapshot
from ..schemas import PolicyRead, PolicyUpdate, VaultCreate, VaultRead
from ..services import get_services

router = APIRouter(prefix="/vaults", tags=["vaults"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _vault_to_read(info: VaultInfo) -> VaultRead:
    return VaultRead(
        address=info.address,
        name=info.name,
        owner=info.owner,
        executors=list(info.executors),
        created_at=info.created_at,
        has_active_policy=get_services().policies.has_active_policy(info.address),
    )


def _policy_to_read(p: PolicySnapshot) -> PolicyRead:
    return PolicyRead(
        vault=p.vault,
        version=p.version,
        risk_tolerance=p.risk_tolerance,
        max_trade_percent=p.max_trade_percent,
        emergency_threshold=p.emergency_threshold,
        allowed_venues=list(p.allowed_venues),
        active=p.active,
        created_by=p.created_by,
        created_at=p.created_at,
    )


def _load_vault(vault: str) -> VaultInfo:
    try:
        info = get_services().vaults.get_vault(vault)
    except ProposalEncodingError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    if info is None:
        raise HTTPException(status_code=404, detail=f"Vault '{vault}' not found.")
    return info


def _require_owner(info: VaultInfo, user: User) -> None:
    if info.owner != user.username:
        raise HTTPException(status_code=403, detail="Only the vault owner may change its policy.")


# ---------------------------------------------------------------------------
# Vaults
# ---------------------------------------------------------------------------

@router.post("", response_model=VaultRead, status_code=201)
def register_vault(body: VaultCreate, user: User = Depends(require_operator)) -> VaultRead:
    """Register a vault owned by the caller. The service's executor is authorized on it."""
    vaults = get_services().vaults
    try:
        info = vaults.register_vault(body.address, owner=user.username, name=body.name)
        for identity in [settings.executor_identity, *body.executors]:
            info = vaults.add_authorized_executor(info.address, identity)
    except VaultAlreadyRegistered as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ProposalEncodingError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return _vault_to_read(info)


@router.get("", response_model=List[VaultRead])
def list_vaults(
    owner: Optional[str] = Query(None, description="Filter by owner username."),
    _user: User = Depends(require_any),
) -> List[VaultRead]:
    return [_vault_to_read(v) for v in get_services().vaults.list_vaults(owner=owner)]


@router.get("/{vault}", response_model=VaultRead)
def get_vault(vault: str, _user: User = Depends(require_any)) -> VaultRead:
    return _vault_to_read(_load_vault(vault))


# ---------------------------------------------------------------------------
# Policy admin: vault owner only
# ---------------------------------------------------------------------------

@router.put("/{vault}/policy", response_model=PolicyRead)
def set_policy(
    vault: str,
    body: PolicyUpdate,
    user: User = Depends(require_operator),
) -> PolicyRead:
    """Append a new policy version and make it the active one."""
    info = _load_vault(vault)
    _require_owner(info, user)
    try:
        snapshot = get_services().policies.set_policy(
            info.address,
            body.risk_tolerance,
            body.max_trade_percent,
            body.emergency_threshold,
            body.allowed_venues,
            created_by=user.username,
        )
    except InvalidPolicy as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return _policy_to_read(snapshot)


@router.get("/{vault}/policy", response_model=PolicyRead)
def get_active_policy(vault: str, _user: User = Depends(require_any)) -> PolicyRead:
    info = _load_vault(vault)
    snapshot = get_services().policies.get_active_policy(info.address)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No active policy for this vault.")
    return _policy_to_read(snapshot)


@router.get("/{vault}/policy/versions", response_model=List[PolicyRead])
def list_policy_versions(vault: str, _user: User = Depends(require_any)) -> List[PolicyRead]:
    """Every version, newest first; inactive versions are retained."""
    info = _load_vault(vault)
    return [_policy_to_read(p) for p in get_services().policies.list_versions(info.address)]


@router.post("/{vault}/policy/deactivate")
def deactivate_policy(vault: str, user: User = Depends(require_operator)) -> dict:
    """Deactivate the active policy. Every action for the vault then fails closed."""
    info = _load_vault(vault)
    _require_owner(info, user)
    changed = get_services().policies.deactivate_policy(info.address)
    return {"vault": info.address, "deactivated": changed}
