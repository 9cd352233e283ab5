from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class User(Base):
    """Operator / admin / auditor account with role-based access."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    username: Mapped[str] = mapped_column(String(256), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(128))
    password_hash: Mapped[str] = mapped_column(String(256))
    role: Mapped[str] = mapped_column(String(32), index=True)  # superadmin | admin | operator | auditor
    api_key: Mapped[Optional[str]] = mapped_column(String(128), unique=True, nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc))
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    login_count: Mapped[int] = mapped_column(Integer, default=0)


class VaultModel(Base):
    """A registered vault and the identity that owns its policy."""

    __tablename__ = "vaults"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    address: Mapped[str] = mapped_column(String(42), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(128), default="")
    owner: Mapped[str] = mapped_column(String(256), index=True)
    executors: Mapped[str] = mapped_column(Text, default="")  # comma-separated identities
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc))


class VaultPolicy(Base):
    """
    One version of a vault's policy.

    Rows are append-only: every set_policy inserts version+1 and flips the
    previous active row to inactive. At most one active row per vault.
    """

    __tablename__ = "vault_policies"
    __table_args__ = (UniqueConstraint("vault", "version", name="uq_vault_policy_version"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    vault: Mapped[str] = mapped_column(String(42), index=True)
    version: Mapped[int] = mapped_column(Integer)
    risk_tolerance: Mapped[int] = mapped_column(Integer)
    max_trade_percent: Mapped[int] = mapped_column(Integer)
    emergency_threshold: Mapped[int] = mapped_column(Integer)
    allowed_venues: Mapped[str] = mapped_column(Text)  # JSON list
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(timezone.utc), index=True
    )


class UsedNonce(Base):
    """Consumed replay-protection keys. The unique key is the atomic check-and-mark."""

    __tablename__ = "used_nonces"

    nonce_key: Mapped[str] = mapped_column(String(66), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc))


class ExecutionRecordRow(Base):
    """Immutable audit entry written once per executed proposal."""

    __tablename__ = "execution_records"

    # Row id doubles as the record's sequence number
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    proposal_hash: Mapped[str] = mapped_column(String(66), unique=True, index=True)
    vault: Mapped[str] = mapped_column(String(42), index=True)
    executor_identity: Mapped[str] = mapped_column(String(256))
    action_type: Mapped[int] = mapped_column(Integer, index=True)
    params: Mapped[str] = mapped_column(Text)        # hex
    content_hash: Mapped[str] = mapped_column(String(66))
    timestamp: Mapped[int] = mapped_column(BigInteger, index=True)


class VaultActionLog(Base):
    """Ledger of effects performed against a vault by an authorized executor."""

    __tablename__ = "vault_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)
    vault: Mapped[str] = mapped_column(String(42), index=True)
    executor: Mapped[str] = mapped_column(String(256))
    action_type: Mapped[int] = mapped_column(Integer)
    params: Mapped[str] = mapped_column(Text)        # hex
    # Unique so one proposal's effect lands at most once
    proposal_hash: Mapped[Optional[str]] = mapped_column(String(66), unique=True, nullable=True)


class RelayAttempt(Base):
    """Persisted record of every proposal submitted to the relay."""

    __tablename__ = "relay_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)

    proposal_hash: Mapped[str] = mapped_column(String(66), index=True)
    vault: Mapped[str] = mapped_column(String(42), index=True)
    nonce: Mapped[str] = mapped_column(String(80))  # uint256 as decimal string
    action_type: Mapped[int] = mapped_column(Integer)

    # Outcome
    status: Mapped[str] = mapped_column(String(16), index=True)  # executed | rejected
    reason_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    record_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    submitted_by: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)


class SentinelState(Base):
    """Persistent key-value store for runtime state (e.g. the registered agent signer).

    Survives restarts and works correctly across multiple instances.
    """

    __tablename__ = "sentinel_state"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, default="")
