from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..database import db_session
from ..errors import UnauthorizedExecutor, UnknownVault, VaultAlreadyRegistered
from ..models import VaultActionLog, VaultModel
from ..proposals.types import from_hex, normalize_address, to_hex

logger = logging.getLogger("sentinel.vault")


@dataclass(frozen=True)
class VaultInfo:
    address: str
    owner: str
    name: str = ""
    executors: Tuple[str, ...] = ()
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class VaultAction:
    id: int
    vault: str
    executor: str
    action_type: int
    params: bytes
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    proposal_hash: Optional[bytes] = None


class VaultActions:
    """Vault registry plus the effect the executor performs on success.

    The effect here is a ledger entry; moving funds is out of scope. An effect
    tagged with a proposal hash is applied at most once: repeating it returns
    the existing ledger entry.
    """

    def register_vault(self, address: str, owner: str, name: str = "") -> VaultInfo:
        raise NotImplementedError

    def get_vault(self, address: str) -> Optional[VaultInfo]:
        raise NotImplementedError

    def list_vaults(self, owner: Optional[str] = None) -> List[VaultInfo]:
        raise NotImplementedError

    def add_authorized_executor(self, vault: str, identity: str) -> VaultInfo:
        raise NotImplementedError

    def _record_action(
        self,
        vault: str,
        executor: str,
        action_type: int,
        params: bytes,
        proposal_hash: Optional[bytes] = None,
    ) -> int:
        raise NotImplementedError

    def _find_action(self, proposal_hash: bytes) -> Optional[int]:
        """Ledger entry id already recorded for *proposal_hash*, if any."""
        raise NotImplementedError

    def list_actions(self, vault: str, limit: int = 100) -> List[VaultAction]:
        raise NotImplementedError

    def is_registered(self, address: str) -> bool:
        return self.get_vault(address) is not None

    def is_authorized_executor(self, vault: str, identity: str) -> bool:
        info = self.get_vault(vault)
        return info is not None and identity in info.executors

    def execute_action(
        self,
        executor: str,
        vault: str,
        action_type: int,
        params: bytes,
        *,
        proposal_hash: Optional[bytes] = None,
    ) -> int:
        """Perform the action for *vault*; returns the ledger entry id."""
        info = self.get_vault(vault)
        if info is None:
            raise UnknownVault(f"Vault {vault} is not registered")
        if executor not in info.executors:
            raise UnauthorizedExecutor(f"{executor!r} is not an executor for vault {info.address}")
        if proposal_hash is not None:
            existing = self._find_action(proposal_hash)
            if existing is not None:
                logger.info("Vault %s effect for %s already applied (entry %d)",
                            info.address, to_hex(proposal_hash), existing)
                return existing
        action_id = self._record_action(info.address, executor, action_type, params, proposal_hash)
        logger.info("Vault %s action %d executed by %s (entry %d)",
                    info.address, action_type, executor, action_id)
        return action_id


class InMemoryVaultActions(VaultActions):
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._vaults: Dict[str, VaultInfo] = {}
        self._actions: List[VaultAction] = []
        # Test hook: raise this from the next _record_action
        self.fail_next: Optional[Exception] = None

    def register_vault(self, address, owner, name=""):
        address = normalize_address(address, "vault")
        with self._lock:
            if address in self._vaults:
                raise VaultAlreadyRegistered(f"Vault {address} is already registered")
            info = VaultInfo(address=address, owner=owner, name=name,
                             created_at=datetime.now(timezone.utc))
            self._vaults[address] = info
            return info

    def get_vault(self, address):
        address = normalize_address(address, "vault")
        with self._lock:
            return self._vaults.get(address)

    def list_vaults(self, owner=None):
        with self._lock:
            vaults = list(self._vaults.values())
        return [v for v in vaults if owner is None or v.owner == owner]

    def add_authorized_executor(self, vault, identity):
        vault = normalize_address(vault, "vault")
        with self._lock:
            info = self._vaults.get(vault)
            if info is None:
                raise UnknownVault(f"Vault {vault} is not registered")
            if identity not in info.executors:
                info = VaultInfo(info.address, info.owner, info.name,
                                 info.executors + (identity,), info.created_at)
                self._vaults[vault] = info
            return info

    def _record_action(self, vault, executor, action_type, params, proposal_hash=None):
        with self._lock:
            if self.fail_next is not None:
                exc, self.fail_next = self.fail_next, None
                raise exc
            action = VaultAction(len(self._actions) + 1, vault, executor, action_type, params,
                                 proposal_hash=proposal_hash)
            self._actions.append(action)
            return action.id

    def _find_action(self, proposal_hash):
        with self._lock:
            for a in self._actions:
                if a.proposal_hash == proposal_hash:
                    return a.id
        return None

    def list_actions(self, vault, limit=100):
        vault = normalize_address(vault, "vault")
        with self._lock:
            return [a for a in reversed(self._actions) if a.vault == vault][:limit]


def _split_executors(raw: str) -> Tuple[str, ...]:
    return tuple(e for e in (raw or "").split(",") if e)


def _row_to_info(row: VaultModel) -> VaultInfo:
    return VaultInfo(
        address=row.address,
        owner=row.owner,
        name=row.name,
        executors=_split_executors(row.executors),
        created_at=row.created_at,
    )


class SqlVaultActions(VaultActions):
    """Vaults in ``vaults``; effects appended to ``vault_actions``."""

    def register_vault(self, address, owner, name=""):
        address = normalize_address(address, "vault")
        with db_session() as session:
            existing = session.execute(
                select(VaultModel).where(VaultModel.address == address)
            ).scalar_one_or_none()
            if existing is not None:
                raise VaultAlreadyRegistered(f"Vault {address} is already registered")
            row = VaultModel(address=address, owner=owner, name=name, executors="")
            session.add(row)
            session.flush()
            return _row_to_info(row)

    def get_vault(self, address):
        address = normalize_address(address, "vault")
        with db_session() as session:
            row = session.execute(
                select(VaultModel).where(VaultModel.address == address)
            ).scalar_one_or_none()
            return _row_to_info(row) if row else None

    def list_vaults(self, owner=None):
        with db_session() as session:
            q = select(VaultModel).order_by(VaultModel.created_at.desc())
            if owner is not None:
                q = q.where(VaultModel.owner == owner)
            return [_row_to_info(r) for r in session.execute(q).scalars().all()]

    def add_authorized_executor(self, vault, identity):
        vault = normalize_address(vault, "vault")
        with db_session() as session:
            row = session.execute(
                select(VaultModel).where(VaultModel.address == vault)
            ).scalar_one_or_none()
            if row is None:
                raise UnknownVault(f"Vault {vault} is not registered")
            executors = _split_executors(row.executors)
            if identity not in executors:
                row.executors = ",".join(executors + (identity,))
            return _row_to_info(row)

    def _record_action(self, vault, executor, action_type, params, proposal_hash=None):
        try:
            with db_session() as session:
                row = VaultActionLog(
                    vault=vault, executor=executor, action_type=action_type,
                    params=to_hex(params),
                    proposal_hash=to_hex(proposal_hash) if proposal_hash is not None else None,
                )
                session.add(row)
                session.flush()
                return row.id
        except IntegrityError:
            # Another process applied the same proposal first.
            existing = self._find_action(proposal_hash) if proposal_hash is not None else None
            if existing is None:
                raise
            return existing

    def _find_action(self, proposal_hash):
        with db_session() as session:
            return session.execute(
                select(VaultActionLog.id).where(VaultActionLog.proposal_hash == to_hex(proposal_hash))
            ).scalar_one_or_none()

    def list_actions(self, vault, limit=100):
        vault = normalize_address(vault, "vault")
        with db_session() as session:
            rows = session.execute(
                select(VaultActionLog)
                .where(VaultActionLog.vault == vault)
                .order_by(VaultActionLog.id.desc())
                .limit(limit)
            ).scalars().all()
            return [
                VaultAction(r.id, r.vault, r.executor, r.action_type,
                            from_hex(r.params), r.created_at,
                            from_hex(r.proposal_hash) if r.proposal_hash else None)
                for r in rows
            ]
