"""
services.py: Process-wide executor wiring
==========================================
Builds the SQL-backed stores and the Executor from settings. Protocol code
never reaches for these globals; only the HTTP layer and startup do.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Optional

from .config import settings
from .executor.audit import SqlAuditSink
from .executor.engine import Executor
from .executor.nonces import SqlNonceRegistry
from .executor.signer_registry import SqlSignerRegistry
from .executor.vault import SqlVaultActions
from .policies.store import SqlPolicyStore

logger = logging.getLogger("sentinel.services")


@dataclass
class Services:
    policies: SqlPolicyStore
    vaults: SqlVaultActions
    executor: Executor


_lock = Lock()
_services: Optional[Services] = None


def build_services() -> Services:
    policies = SqlPolicyStore()
    policies.add_authorized_validator(settings.executor_identity)
    vaults = SqlVaultActions()
    executor = Executor(
        policies,
        SqlNonceRegistry(),
        SqlAuditSink(),
        SqlSignerRegistry(initial=settings.agent_signer_address),
        vaults,
        identity=settings.executor_identity,
        verify_min_window=settings.verify_min_window_seconds,
        max_window=settings.proposal_max_window_seconds,
    )
    if executor.is_paused():
        logger.warning("No agent signer registered; all proposals will be rejected")
    return Services(policies=policies, vaults=vaults, executor=executor)


def get_services() -> Services:
    global _services
    with _lock:
        if _services is None:
            _services = build_services()
        return _services


def reset_services() -> None:
    """Drop the cached wiring (tests rebuild after dropping tables)."""
    global _services
    with _lock:
        _services = None
