"""
Tests for the agent side: report building, content storage, proposal signing
and the HTTP relay client (against an httpx mock transport).

Run with: pytest tests/test_agent_pipeline.py -v
"""
from __future__ import annotations

import json

import httpx
import pytest
from eth_utils import keccak

from sentinel.agent.content import InMemoryContentStore
from sentinel.agent.pipeline import AgentPipeline
from sentinel.agent.rationale import MockRationaleProvider
from sentinel.agent.relay_client import RelayClient, RelayRejectedError
from sentinel.agent.signer import ProposalSigner
from sentinel.proposals.codec import encode_amount_params, encode_swap_params
from sentinel.proposals.types import ActionType, to_hex

VENUE = "0x2222222222222222222222222222222222222222"


@pytest.fixture
def content():
    return InMemoryContentStore()


@pytest.fixture
def pipeline(agent_key, clock, content):
    signer = ProposalSigner(agent_key, clock=clock)
    return AgentPipeline(signer, MockRationaleProvider(), content, clock=clock)


def _swap(amount=100, balance=1000):
    return encode_swap_params(VENUE, amount, balance)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def test_propose_stores_report_under_content_hash(pipeline, content, new_address):
    signed = pipeline.propose(new_address(), ActionType.SWAP, _swap())

    blob = content.fetch(signed.proposal.content_hash)
    assert blob is not None
    assert keccak(blob) == signed.proposal.content_hash
    report = json.loads(blob)
    assert report == signed.report
    assert report["action"] == "SWAP"
    assert report["agent"] == pipeline.signer.address


def test_propose_signs_with_agent_key(pipeline, clock, new_address):
    vault = new_address()
    first = pipeline.propose(vault, ActionType.SWAP, _swap(), deadline_offset=600)
    second = pipeline.propose(vault, ActionType.SWAP, _swap())

    assert pipeline.signer.verify(first.proposal, first.signature)
    assert first.proposal_hash == pipeline.signer.proposal_hash(first.proposal)
    assert first.proposal.deadline == clock.now + 600
    assert (first.proposal.nonce, second.proposal.nonce) == (1, 2)


def test_wire_shape(pipeline, new_address):
    signed = pipeline.propose(new_address(), ActionType.LEND, encode_amount_params(5, 100))
    wire = signed.to_wire()
    assert set(wire) == {"proposal", "signature"}
    assert set(wire["proposal"]) == {
        "vault", "action_type", "params", "content_hash", "nonce", "deadline",
    }
    assert wire["signature"] == to_hex(signed.signature)
    assert len(signed.signature) == 65


def test_unknown_action_still_reported(pipeline, new_address):
    signed = pipeline.propose(new_address(), 42, b"")
    assert signed.report["action"] == "UNKNOWN_42"


# ---------------------------------------------------------------------------
# Rationale
# ---------------------------------------------------------------------------

def test_mock_rationale_is_deterministic(new_address):
    provider = MockRationaleProvider()
    vault = new_address()
    a = provider.explain(vault, ActionType.SWAP, _swap(250, 1000))
    assert a == provider.explain(vault, ActionType.SWAP, _swap(250, 1000))
    assert "25%" in a.summary

    assert provider.explain(vault, ActionType.SWAP, b"\x01").confidence == 0.0
    assert provider.explain(vault, ActionType.BORROW, encode_amount_params(1, 2)).summary.startswith("Borrow")


# ---------------------------------------------------------------------------
# Relay client
# ---------------------------------------------------------------------------

def _client(handler, api_key="snt_test"):
    return RelayClient("http://relay.test/", api_key, transport=httpx.MockTransport(handler))


def test_submit_posts_wire_body(pipeline, new_address):
    signed = pipeline.propose(new_address(), ActionType.SWAP, _swap())
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["key"] = request.headers.get("X-API-Key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "status": "executed", "proposal_hash": to_hex(signed.proposal_hash), "record_id": 7,
        })

    result = _client(handler).submit(signed)
    assert result["record_id"] == 7
    assert seen["path"] == "/relay"
    assert seen["key"] == "snt_test"
    assert seen["body"] == signed.to_wire()


def test_submit_rejection(pipeline, new_address):
    signed = pipeline.propose(new_address(), ActionType.SWAP, _swap())

    def handler(request):
        return httpx.Response(200, json={
            "status": "rejected", "proposal_hash": "0x", "reason_code": "NonceReused",
            "detail": "nonce 1 already used",
        })

    client = _client(handler)
    assert client.submit(signed)["reason_code"] == "NonceReused"
    with pytest.raises(RelayRejectedError) as exc:
        client.submit(signed, raise_on_reject=True)
    assert exc.value.reason_code == "NonceReused"


def test_submit_server_error_raises(pipeline, new_address):
    signed = pipeline.propose(new_address(), ActionType.SWAP, _swap())

    def handler(request):
        return httpx.Response(503, json={"detail": "effect or audit write failed"})

    with pytest.raises(httpx.HTTPStatusError):
        _client(handler).submit(signed)


def test_status_and_health():
    digest = keccak(b"x")

    def handler(request):
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "healthy", "paused": False})
        assert request.url.path == f"/relay/{to_hex(digest)}"
        return httpx.Response(200, json={"status": "executed"})

    client = _client(handler, api_key="")
    assert client.status(digest)["status"] == "executed"
    assert client.status(to_hex(digest))["status"] == "executed"
    assert client.health()["paused"] is False
