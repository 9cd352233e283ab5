"""
executor/signer_registry.py: Registered agent signer (DB-persisted)
=====================================================================
The executor accepts signatures from exactly one identity. Pausing sets the
registered identity to the null address, so every signature fails to match.

The SQL registry reads through on every call: a pause issued by one instance
takes effect on the next verification in every other instance.
"""
from __future__ import annotations

from threading import Lock

from ..database import db_session
from ..models import SentinelState
from ..proposals.types import NULL_IDENTITY, normalize_address

_SIGNER_KEY = "agent_signer"


class AgentSignerRegistry:
    def current(self) -> str:
        raise NotImplementedError

    def set_signer(self, identity: str) -> str:
        raise NotImplementedError

    def pause(self) -> None:
        self.set_signer(NULL_IDENTITY)

    def is_paused(self) -> bool:
        return self.current() == NULL_IDENTITY


class InMemorySignerRegistry(AgentSignerRegistry):
    def __init__(self, identity: str = NULL_IDENTITY) -> None:
        self._lock = Lock()
        self._identity = normalize_address(identity or NULL_IDENTITY, "agent signer")

    def current(self) -> str:
        with self._lock:
            return self._identity

    def set_signer(self, identity: str) -> str:
        identity = normalize_address(identity, "agent signer")
        with self._lock:
            self._identity = identity
        return identity


class SqlSignerRegistry(AgentSignerRegistry):
    """Stored under ``agent_signer`` in the ``sentinel_state`` table."""

    def __init__(self, initial: str = "") -> None:
        # Seed only when nothing is stored, so a pause survives restarts.
        if initial:
            initial = normalize_address(initial, "agent signer")
            with db_session() as session:
                if session.get(SentinelState, _SIGNER_KEY) is None:
                    session.add(SentinelState(key=_SIGNER_KEY, value=initial))

    def current(self) -> str:
        with db_session() as session:
            row = session.get(SentinelState, _SIGNER_KEY)
            if row is None or not row.value:
                return NULL_IDENTITY
            return row.value

    def set_signer(self, identity: str) -> str:
        identity = normalize_address(identity, "agent signer")
        with db_session() as session:
            row = session.get(SentinelState, _SIGNER_KEY)
            if row is None:
                session.add(SentinelState(key=_SIGNER_KEY, value=identity))
            else:
                row.value = identity
        return identity
