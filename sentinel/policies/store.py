"""
policies/store.py: Per-vault policy storage and validation
============================================================
Each vault has an append-only history of policy versions with at most one
active version. ``validate_action`` answers "is this action allowed" for the
active version and fails closed when there is none.

Only identities registered with ``add_authorized_validator`` may call
``validate_action``; the executor registers its own identity at wiring time.
"""
from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from ..database import db_session
from ..errors import InvalidPolicy, ProposalEncodingError, StorageFailure, UnauthorizedValidator
from ..models import VaultPolicy
from ..proposals.types import normalize_address

logger = logging.getLogger("sentinel.policies")


@dataclass(frozen=True)
class PolicySnapshot:
    vault: str
    version: int
    risk_tolerance: int
    max_trade_percent: int
    emergency_threshold: int
    allowed_venues: Tuple[str, ...]
    active: bool = True
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


def _check_percent(value: int, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
        raise InvalidPolicy(f"Invalid {field}: must be an integer in 0-100, got {value!r}")
    return value


def normalize_policy_fields(
    vault: str,
    risk_tolerance: int,
    max_trade_percent: int,
    emergency_threshold: int,
    allowed_venues: Iterable[str],
) -> Tuple[str, Tuple[str, ...]]:
    """Validate every bound and return ``(vault, venues)`` in canonical form."""
    try:
        vault = normalize_address(vault, "vault")
    except ProposalEncodingError as exc:
        raise InvalidPolicy(str(exc)) from exc
    _check_percent(risk_tolerance, "risk tolerance")
    _check_percent(max_trade_percent, "trade percent")
    _check_percent(emergency_threshold, "emergency threshold")

    venues: List[str] = []
    for venue in allowed_venues or ():
        try:
            checksummed = normalize_address(venue, "venue")
        except ProposalEncodingError as exc:
            raise InvalidPolicy(str(exc)) from exc
        if checksummed not in venues:
            venues.append(checksummed)
    if not venues:
        raise InvalidPolicy("Must specify at least one allowed venue")
    return vault, tuple(venues)


class PolicyStore:
    """Storage-agnostic policy logic. Subclasses persist versions."""

    def __init__(self) -> None:
        self._validators: set[str] = set()
        self._validators_lock = threading.Lock()

    # -- capability check ----------------------------------------------------

    def add_authorized_validator(self, identity: str) -> None:
        with self._validators_lock:
            self._validators.add(identity)

    def remove_authorized_validator(self, identity: str) -> None:
        with self._validators_lock:
            self._validators.discard(identity)

    def is_authorized_validator(self, identity: str) -> bool:
        with self._validators_lock:
            return identity in self._validators

    # -- persistence hooks ---------------------------------------------------

    def _append_version(
        self,
        vault: str,
        fields: Dict[str, object],
        created_by: Optional[str],
    ) -> PolicySnapshot:
        raise NotImplementedError

    def get_active_policy(self, vault: str) -> Optional[PolicySnapshot]:
        raise NotImplementedError

    def list_versions(self, vault: str) -> List[PolicySnapshot]:
        """All versions for *vault*, newest first."""
        raise NotImplementedError

    def deactivate_policy(self, vault: str) -> bool:
        """Deactivate the active version. Returns False if none was active."""
        raise NotImplementedError

    # -- operations ----------------------------------------------------------

    def set_policy(
        self,
        vault: str,
        risk_tolerance: int,
        max_trade_percent: int,
        emergency_threshold: int,
        allowed_venues: Iterable[str],
        *,
        created_by: Optional[str] = None,
    ) -> PolicySnapshot:
        vault, venues = normalize_policy_fields(
            vault, risk_tolerance, max_trade_percent, emergency_threshold, allowed_venues,
        )
        snapshot = self._append_version(
            vault,
            {
                "risk_tolerance": risk_tolerance,
                "max_trade_percent": max_trade_percent,
                "emergency_threshold": emergency_threshold,
                "allowed_venues": venues,
            },
            created_by,
        )
        logger.info(
            "Policy set for vault %s: version %d (max_trade_percent=%d, venues=%d)",
            vault, snapshot.version, max_trade_percent, len(venues),
        )
        return snapshot

    def has_active_policy(self, vault: str) -> bool:
        return self.get_active_policy(vault) is not None

    def validate_action(
        self,
        vault: str,
        action_type: int,
        params: bytes,
        *,
        caller: str,
    ) -> Tuple[bool, str]:
        """Return ``(ok, reason)`` for the vault's active policy."""
        from .rules import check_action

        if not self.is_authorized_validator(caller):
            raise UnauthorizedValidator(f"Unauthorized validator: {caller!r}")
        return check_action(self.get_active_policy(vault), action_type, params)


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

class InMemoryPolicyStore(PolicyStore):
    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.RLock()
        self._versions: Dict[str, List[PolicySnapshot]] = {}

    def _append_version(self, vault, fields, created_by):
        with self._lock:
            history = self._versions.setdefault(vault, [])
            history[:] = [replace(p, active=False) if p.active else p for p in history]
            snapshot = PolicySnapshot(
                vault=vault,
                version=len(history) + 1,
                active=True,
                created_by=created_by,
                created_at=datetime.now(timezone.utc),
                **fields,
            )
            history.append(snapshot)
            return snapshot

    def get_active_policy(self, vault: str) -> Optional[PolicySnapshot]:
        with self._lock:
            for p in reversed(self._versions.get(vault, [])):
                if p.active:
                    return p
        return None

    def list_versions(self, vault: str) -> List[PolicySnapshot]:
        with self._lock:
            return list(reversed(self._versions.get(vault, [])))

    def deactivate_policy(self, vault: str) -> bool:
        with self._lock:
            history = self._versions.get(vault, [])
            changed = any(p.active for p in history)
            history[:] = [replace(p, active=False) if p.active else p for p in history]
            return changed


# ---------------------------------------------------------------------------
# SQL store
# ---------------------------------------------------------------------------

def _row_to_snapshot(row: VaultPolicy) -> PolicySnapshot:
    return PolicySnapshot(
        vault=row.vault,
        version=row.version,
        risk_tolerance=row.risk_tolerance,
        max_trade_percent=row.max_trade_percent,
        emergency_threshold=row.emergency_threshold,
        allowed_venues=tuple(json.loads(row.allowed_venues or "[]")),
        active=row.is_active,
        created_by=row.created_by,
        created_at=row.created_at,
    )


class SqlPolicyStore(PolicyStore):
    """Policy versions persisted in the ``vault_policies`` table."""

    def _append_version(self, vault, fields, created_by):
        try:
            with db_session() as session:
                active_rows = session.execute(
                    select(VaultPolicy)
                    .where(VaultPolicy.vault == vault)
                    .where(VaultPolicy.is_active == True)  # noqa: E712
                ).scalars().all()
                for row in active_rows:
                    row.is_active = False

                current = session.execute(
                    select(func.max(VaultPolicy.version)).where(VaultPolicy.vault == vault)
                ).scalar()
                row = VaultPolicy(
                    vault=vault,
                    version=(current or 0) + 1,
                    risk_tolerance=fields["risk_tolerance"],
                    max_trade_percent=fields["max_trade_percent"],
                    emergency_threshold=fields["emergency_threshold"],
                    allowed_venues=json.dumps(list(fields["allowed_venues"])),
                    is_active=True,
                    created_by=created_by,
                )
                session.add(row)
                session.flush()
                return _row_to_snapshot(row)
        except IntegrityError as exc:
            raise StorageFailure(f"Concurrent policy update for vault {vault}") from exc

    def get_active_policy(self, vault: str) -> Optional[PolicySnapshot]:
        with db_session() as session:
            row = session.execute(
                select(VaultPolicy)
                .where(VaultPolicy.vault == vault)
                .where(VaultPolicy.is_active == True)  # noqa: E712
                .order_by(VaultPolicy.version.desc())
                .limit(1)
            ).scalar_one_or_none()
            return _row_to_snapshot(row) if row else None

    def list_versions(self, vault: str) -> List[PolicySnapshot]:
        with db_session() as session:
            rows = session.execute(
                select(VaultPolicy)
                .where(VaultPolicy.vault == vault)
                .order_by(VaultPolicy.version.desc())
            ).scalars().all()
            return [_row_to_snapshot(r) for r in rows]

    def deactivate_policy(self, vault: str) -> bool:
        with db_session() as session:
            rows = session.execute(
                select(VaultPolicy)
                .where(VaultPolicy.vault == vault)
                .where(VaultPolicy.is_active == True)  # noqa: E712
            ).scalars().all()
            for row in rows:
                row.is_active = False
            if rows:
                logger.info("Policy deactivated for vault %s", vault)
            return bool(rows)
