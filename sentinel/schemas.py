from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Executor trace
# ---------------------------------------------------------------------------

class TraceStep(BaseModel):
    """One verification step's record in a verdict trace."""

    step: int = Field(..., description="Step index (1–5).")
    name: str = Field(..., description="Human-readable step name.")
    key: str = Field(..., description="Machine key: deadline | signature | replay | policy | effect.")
    outcome: str = Field(..., description="'pass' | 'reject' | 'error'.")
    detail: Optional[str] = Field(default=None, description="Human-readable detail for this step.")
    duration_ms: float = Field(default=0.0, description="Wall-clock time for this step in milliseconds.")


# ---------------------------------------------------------------------------
# Relay
# ---------------------------------------------------------------------------

class ProposalIn(BaseModel):
    """Wire shape of a proposal. Byte fields are 0x-prefixed hex."""

    vault: str = Field(..., description="Vault address.")
    action_type: int = Field(..., ge=0, le=255)
    params: str = Field(default="0x", description="ABI-encoded action params.")
    content_hash: str = Field(..., description="32-byte report id.")
    nonce: int = Field(..., ge=0)
    deadline: int = Field(..., ge=0)


class RelayRequest(BaseModel):
    proposal: ProposalIn
    signature: str = Field(..., description="65-byte signature as hex.")


class RelayResult(BaseModel):
    """Executor verdict for one submission."""

    status: str = Field(..., description="'executed' | 'rejected'.")
    proposal_hash: str
    record_id: Optional[int] = None
    reason_code: Optional[str] = Field(
        default=None,
        description="DeadlineInvalid | InvalidSignature | NonceReused | PolicyViolation | UnsupportedAction",
    )
    detail: Optional[str] = None
    trace: List[TraceStep] = Field(default_factory=list)


class RelayAttemptRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime
    proposal_hash: str
    vault: str
    nonce: str
    action_type: int
    status: str
    reason_code: Optional[str] = None
    detail: Optional[str] = None
    record_id: Optional[int] = None
    submitted_by: Optional[str] = None


# ---------------------------------------------------------------------------
# Vaults & policies
# ---------------------------------------------------------------------------

class VaultCreate(BaseModel):
    address: str
    name: str = Field(default="", max_length=128)
    executors: List[str] = Field(
        default_factory=list,
        description="Extra executor identities; the service's own executor is always added.",
    )


class VaultRead(BaseModel):
    address: str
    name: str
    owner: str
    executors: List[str]
    created_at: Optional[datetime] = None
    has_active_policy: bool = False


class PolicyUpdate(BaseModel):
    risk_tolerance: int = Field(..., ge=0, le=100)
    max_trade_percent: int = Field(..., ge=0, le=100)
    emergency_threshold: int = Field(..., ge=0, le=100)
    allowed_venues: List[str] = Field(..., min_length=1)


class PolicyRead(BaseModel):
    vault: str
    version: int
    risk_tolerance: int
    max_trade_percent: int
    emergency_threshold: int
    allowed_venues: List[str]
    active: bool
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

class ExecutionRecordRead(BaseModel):
    sequence_number: int
    proposal_hash: str
    vault: str
    executor_identity: str
    action_type: int
    params: str
    content_hash: str
    timestamp: int


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

class SentinelStatus(BaseModel):
    paused: bool = Field(..., description="If true, every signature is rejected.")
    agent_signer: str
    executor_identity: str


class SignerUpdate(BaseModel):
    signer: str = Field(..., description="New agent signer address.")
