from __future__ import annotations

import threading
from typing import Set

from sqlalchemy.exc import IntegrityError

from ..database import db_session
from ..models import UsedNonce
from ..proposals.types import to_hex


class NonceRegistry:
    """Single-use replay keys. ``try_mark`` is the atomic check-and-mark."""

    def try_mark(self, key: bytes) -> bool:
        """Mark *key* used. Returns False if it was already used."""
        raise NotImplementedError

    def release(self, key: bytes) -> None:
        raise NotImplementedError

    def is_used(self, key: bytes) -> bool:
        raise NotImplementedError


class InMemoryNonceRegistry(NonceRegistry):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._used: Set[bytes] = set()

    def try_mark(self, key: bytes) -> bool:
        with self._lock:
            if key in self._used:
                return False
            self._used.add(key)
            return True

    def release(self, key: bytes) -> None:
        with self._lock:
            self._used.discard(key)

    def is_used(self, key: bytes) -> bool:
        with self._lock:
            return key in self._used


class SqlNonceRegistry(NonceRegistry):
    """Primary key on ``used_nonces.nonce_key`` serializes marks across processes."""

    def try_mark(self, key: bytes) -> bool:
        try:
            with db_session() as session:
                session.add(UsedNonce(nonce_key=to_hex(key)))
        except IntegrityError:
            return False
        return True

    def release(self, key: bytes) -> None:
        with db_session() as session:
            row = session.get(UsedNonce, to_hex(key))
            if row is not None:
                session.delete(row)

    def is_used(self, key: bytes) -> bool:
        with db_session() as session:
            return session.get(UsedNonce, to_hex(key)) is not None
