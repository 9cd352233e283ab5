"""
agent/relay_client.py: HTTP client for the relay service
==========================================================
Submits signed proposals to ``POST /relay`` and queries their status.
Authentication is the ``X-API-Key`` header of an operator account.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from ..config import settings
from ..proposals.types import to_hex
from .pipeline import SignedProposal

_TIMEOUT = 10.0


class RelayRejectedError(RuntimeError):
    """Raised when the executor rejects a proposal and the caller asked to fail."""

    def __init__(self, reason_code: str, detail: Optional[str] = None) -> None:
        super().__init__(f"Relay rejected proposal: {reason_code} ({detail or 'no detail'})")
        self.reason_code = reason_code
        self.detail = detail


class RelayClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        timeout: float = _TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.relayer_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.relayer_api_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        h: Dict[str, str] = {"Content-Type": "application/json"}
        if self.api_key:
            h["X-API-Key"] = self.api_key
        return h

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self._headers(),
            transport=self._transport,
        )

    def submit(self, signed: SignedProposal, *, raise_on_reject: bool = False) -> Dict[str, Any]:
        """
        Send a signed proposal to the relay.

        Returns the verdict dict ``{status, proposal_hash, record_id, reason_code, ...}``.
        Raises RelayRejectedError for ``status == "rejected"`` when *raise_on_reject*
        is set, and httpx.HTTPStatusError for 4xx/5xx responses.
        """
        with self._client() as client:
            resp = client.post("/relay", json=signed.to_wire())
            resp.raise_for_status()
        result = resp.json()
        if raise_on_reject and result.get("status") == "rejected":
            raise RelayRejectedError(result.get("reason_code", "unknown"), result.get("detail"))
        return result

    def status(self, proposal_hash: bytes | str) -> Dict[str, Any]:
        """Latest relay attempt for a proposal hash."""
        key = proposal_hash if isinstance(proposal_hash, str) else to_hex(proposal_hash)
        with self._client() as client:
            resp = client.get(f"/relay/{key}")
            resp.raise_for_status()
        return resp.json()

    def health(self) -> Dict[str, Any]:
        with self._client() as client:
            resp = client.get("/health")
            resp.raise_for_status()
        return resp.json()
