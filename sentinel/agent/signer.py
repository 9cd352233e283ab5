"""
agent/signer.py: Agent-side proposal construction and signing
===============================================================
Turns an intended vault action into a fully-formed signed Proposal.

Nonce counters live in process memory, one per vault, starting at 0; the
first proposal for a vault carries nonce 1. A restarted agent starts counting
again from 0, and proposals it re-creates with already-consumed nonces are
rejected by the executor as NonceReused. Call ``reset_nonce`` or seed the
counter deliberately when restarting against a live executor.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional

from ..errors import DeadlineOutOfRange
from ..proposals.codec import proposal_hash
from ..proposals.signing import SignatureScheme, default_scheme
from ..proposals.types import Proposal, normalize_address

logger = logging.getLogger("sentinel.agent")

DEFAULT_MIN_WINDOW = 60
DEFAULT_MAX_WINDOW = 24 * 60 * 60
DEFAULT_DEADLINE_OFFSET = 3600


class ProposalSigner:
    def __init__(
        self,
        private_key: str | bytes,
        *,
        scheme: SignatureScheme = default_scheme,
        clock: Callable[[], float] = time.time,
        min_window: int = DEFAULT_MIN_WINDOW,
        max_window: int = DEFAULT_MAX_WINDOW,
        default_deadline_offset: int = DEFAULT_DEADLINE_OFFSET,
    ) -> None:
        self._scheme = scheme
        # Raises InvalidKeyMaterial for unusable keys.
        self._address = scheme.identity_for(private_key)
        self._private_key = private_key
        self._clock = clock
        self._min_window = min_window
        self._max_window = max_window
        self._default_offset = default_deadline_offset
        self._lock = threading.Lock()
        self._nonces: Dict[str, int] = {}

    @property
    def address(self) -> str:
        return self._address

    # -- nonces --------------------------------------------------------------

    def next_nonce(self, vault: str) -> int:
        vault = normalize_address(vault, "vault")
        with self._lock:
            nonce = self._nonces.get(vault, 0) + 1
            self._nonces[vault] = nonce
            return nonce

    def current_nonce(self, vault: str) -> int:
        vault = normalize_address(vault, "vault")
        with self._lock:
            return self._nonces.get(vault, 0)

    def reset_nonce(self, vault: str, value: int = 0) -> None:
        vault = normalize_address(vault, "vault")
        with self._lock:
            self._nonces[vault] = value
        logger.info("Nonce counter for vault %s reset to %d", vault, value)

    def has_issued(self, vault: str, nonce: int) -> bool:
        """True if *nonce* has already been handed out for *vault*."""
        return 0 < nonce <= self.current_nonce(vault)

    # -- proposals -----------------------------------------------------------

    def create_proposal(
        self,
        vault: str,
        action_type: int,
        params: bytes,
        content_hash: bytes,
        deadline_offset: Optional[int] = None,
    ) -> Proposal:
        offset = self._default_offset if deadline_offset is None else deadline_offset
        if not self._min_window <= offset <= self._max_window:
            raise DeadlineOutOfRange(
                f"deadline offset {offset}s outside [{self._min_window}, {self._max_window}]"
            )
        # Validate the remaining fields before a nonce is consumed.
        draft = Proposal(vault, action_type, params, content_hash, 0, 0)
        proposal = Proposal(
            vault=draft.vault,
            action_type=draft.action_type,
            params=draft.params,
            content_hash=draft.content_hash,
            nonce=self.next_nonce(draft.vault),
            deadline=int(self._clock()) + offset,
        )
        logger.debug("Created proposal vault=%s nonce=%d deadline=%d",
                     proposal.vault, proposal.nonce, proposal.deadline)
        return proposal

    def proposal_hash(self, proposal: Proposal) -> bytes:
        return proposal_hash(proposal)

    def sign(self, proposal: Proposal) -> bytes:
        return self._scheme.sign(self._private_key, proposal_hash(proposal))

    def verify(self, proposal: Proposal, signature: bytes) -> bool:
        recovered = self._scheme.recover(proposal_hash(proposal), bytes(signature or b""))
        return recovered is not None and recovered == self._address
