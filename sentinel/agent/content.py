from __future__ import annotations

import threading
from typing import Dict, Optional

from eth_utils import keccak


class ContentStore:
    """Content-addressed storage for off-chain reports."""

    def store(self, content: bytes) -> bytes:
        """Persist *content* and return its 32-byte id."""
        raise NotImplementedError

    def fetch(self, content_id: bytes) -> Optional[bytes]:
        raise NotImplementedError


class InMemoryContentStore(ContentStore):
    """Ids are keccak-256 of the content, so storing twice is idempotent."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._blobs: Dict[bytes, bytes] = {}

    def store(self, content: bytes) -> bytes:
        content_id = keccak(content)
        with self._lock:
            self._blobs[content_id] = bytes(content)
        return content_id

    def fetch(self, content_id: bytes) -> Optional[bytes]:
        with self._lock:
            return self._blobs.get(bytes(content_id))
