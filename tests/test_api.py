"""
Tests for the HTTP surface: auth, vault registration, owner-only policy admin,
relay submission, audit queries and the admin circuit breaker.

Run with: pytest tests/test_api.py -v
"""
from __future__ import annotations

import secrets

import pytest
from eth_utils import keccak
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from sentinel.agent.signer import ProposalSigner
from sentinel.api import routes_relay
from sentinel.config import settings
from sentinel.main import app
from sentinel.proposals.codec import encode_swap_params
from sentinel.proposals.types import ActionType, to_hex
from sentinel.services import get_services

client = TestClient(app)

CONTENT = keccak(b"api report")


# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------

_shared_token: str | None = None


def _admin_headers() -> dict:
    return {"Authorization": f"Bearer {_shared_token}"}


@pytest.fixture(autouse=True, scope="module")
def _inject_token(admin_token):
    global _shared_token
    _shared_token = admin_token


def _create_user(role: str) -> dict:
    username = f"{role}-{secrets.token_hex(4)}"
    resp = client.post("/auth/users", json={
        "username": username, "name": username.title(), "password": "secret-pw", "role": role,
    }, headers=_admin_headers())
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.fixture
def operator() -> dict:
    user = _create_user("operator")
    return {"username": user["username"], "headers": {"X-API-Key": user["api_key"]}}


@pytest.fixture
def agent() -> ProposalSigner:
    signer = ProposalSigner("0x" + secrets.token_hex(32))
    resp = client.put("/admin/agent-signer", json={"signer": signer.address},
                      headers=_admin_headers())
    assert resp.status_code == 200, resp.text
    return signer


def _register_vault(address: str, headers: dict) -> dict:
    resp = client.post("/vaults", json={"address": address, "name": "test"}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def _set_policy(vault: str, venue: str, headers: dict, max_trade_percent: int = 10):
    return client.put(f"/vaults/{vault}/policy", json={
        "risk_tolerance": 50,
        "max_trade_percent": max_trade_percent,
        "emergency_threshold": 90,
        "allowed_venues": [venue],
    }, headers=headers)


@pytest.fixture
def vault(operator, new_address) -> dict:
    address, venue = new_address(), new_address()
    _register_vault(address, operator["headers"])
    assert _set_policy(address, venue, operator["headers"]).status_code == 200
    return {"address": address, "venue": venue}


def _relay_body(signer: ProposalSigner, vault: dict, amount: int = 100) -> dict:
    p = signer.create_proposal(
        vault["address"], ActionType.SWAP,
        encode_swap_params(vault["venue"], amount, 1000), CONTENT,
    )
    return {"proposal": p.to_wire(), "signature": to_hex(signer.sign(p))}


# ---------------------------------------------------------------------------
# Meta & auth
# ---------------------------------------------------------------------------

def test_root_and_health():
    assert client.get("/").json()["service"] == "vault-sentinel"
    assert client.get("/health").json()["status"] == "healthy"


def test_me_and_missing_credentials():
    resp = client.get("/auth/me", headers=_admin_headers())
    assert resp.status_code == 200
    assert resp.json()["role"] == "superadmin"
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"X-API-Key": "snt_bogus"}).status_code == 401
    assert client.get("/auth/me", headers={"X-API-Key": "not-a-sentinel-key"}).status_code == 401


def test_rotate_key_invalidates_old_key(operator):
    old = operator["headers"]
    resp = client.post("/auth/me/rotate-key", headers=old)
    assert resp.status_code == 200
    new_key = resp.json()["api_key"]
    assert client.get("/auth/me", headers=old).status_code == 401
    assert client.get("/auth/me", headers={"X-API-Key": new_key}).status_code == 200


def test_user_management_requires_superadmin(operator):
    assert client.get("/auth/users", headers=operator["headers"]).status_code == 403
    assert client.get("/auth/users", headers=_admin_headers()).status_code == 200


# ---------------------------------------------------------------------------
# Vaults & policy admin
# ---------------------------------------------------------------------------

def test_register_vault_sets_owner_and_executor(operator, new_address):
    address = new_address()
    body = _register_vault(address.lower(), operator["headers"])
    assert body["address"] == address
    assert body["owner"] == operator["username"]
    assert settings.executor_identity in body["executors"]
    assert body["has_active_policy"] is False

    dup = client.post("/vaults", json={"address": address}, headers=operator["headers"])
    assert dup.status_code == 409


def test_register_vault_rejects_bad_address(operator):
    resp = client.post("/vaults", json={"address": "0x1234"}, headers=operator["headers"])
    assert resp.status_code == 422


def test_unknown_vault_is_404(new_address):
    assert client.get(f"/vaults/{new_address()}", headers=_admin_headers()).status_code == 404
    assert client.get("/vaults/not-an-address", headers=_admin_headers()).status_code == 422


def test_policy_versions_over_http(vault, operator):
    address = vault["address"]
    assert _set_policy(address, vault["venue"], operator["headers"], 20).json()["version"] == 2

    active = client.get(f"/vaults/{address}/policy", headers=operator["headers"]).json()
    assert active["version"] == 2
    assert active["max_trade_percent"] == 20

    versions = client.get(f"/vaults/{address}/policy/versions", headers=operator["headers"]).json()
    assert [(v["version"], v["active"]) for v in versions] == [(2, True), (1, False)]


def test_only_owner_may_set_policy(vault):
    other = _create_user("operator")
    resp = _set_policy(vault["address"], vault["venue"], {"X-API-Key": other["api_key"]})
    assert resp.status_code == 403
    resp = client.post(f"/vaults/{vault['address']}/policy/deactivate",
                       headers={"X-API-Key": other["api_key"]})
    assert resp.status_code == 403


def test_invalid_policy_is_422(vault, operator):
    assert _set_policy(vault["address"], vault["venue"], operator["headers"], 101).status_code == 422
    resp = _set_policy(vault["address"], "0xnot-a-venue", operator["headers"])
    assert resp.status_code == 422
    empty = client.put(f"/vaults/{vault['address']}/policy", json={
        "risk_tolerance": 50, "max_trade_percent": 10, "emergency_threshold": 90,
        "allowed_venues": [],
    }, headers=operator["headers"])
    assert empty.status_code == 422


def test_deactivate_policy(vault, operator):
    address = vault["address"]
    resp = client.post(f"/vaults/{address}/policy/deactivate", headers=operator["headers"])
    assert resp.json() == {"vault": address, "deactivated": True}
    assert client.get(f"/vaults/{address}/policy", headers=operator["headers"]).status_code == 404


# ---------------------------------------------------------------------------
# Relay
# ---------------------------------------------------------------------------

def test_relay_execute_then_replay(vault, operator, agent):
    body = _relay_body(agent, vault)

    first = client.post("/relay", json=body, headers=operator["headers"])
    assert first.status_code == 200, first.text
    result = first.json()
    assert result["status"] == "executed"
    assert result["record_id"] >= 1
    proposal_hash = result["proposal_hash"]

    record = client.get(f"/audit/{proposal_hash}", headers=operator["headers"])
    assert record.status_code == 200
    assert record.json()["vault"] == vault["address"]
    assert record.json()["content_hash"] == to_hex(CONTENT)

    listed = client.get("/audit", params={"vault": vault["address"]}, headers=operator["headers"])
    assert [r["proposal_hash"] for r in listed.json()] == [proposal_hash]

    second = client.post("/relay", json=body, headers=operator["headers"]).json()
    assert second["status"] == "rejected"
    assert second["reason_code"] == "NonceReused"

    status = client.get(f"/relay/{proposal_hash}", headers=operator["headers"]).json()
    assert status["status"] == "rejected"
    assert status["reason_code"] == "NonceReused"
    assert status["submitted_by"] == operator["username"]


def test_relay_policy_violation(vault, operator, agent):
    result = client.post("/relay", json=_relay_body(agent, vault, amount=110),
                         headers=operator["headers"]).json()
    assert result["status"] == "rejected"
    assert result["reason_code"] == "PolicyViolation"
    assert [s["key"] for s in result["trace"]] == ["deadline", "signature", "replay", "policy"]


def test_relay_malformed_encoding_is_422(vault, operator, agent):
    body = _relay_body(agent, vault)
    body["proposal"]["content_hash"] = "0x1234"
    assert client.post("/relay", json=body, headers=operator["headers"]).status_code == 422
    body = _relay_body(agent, vault)
    body["signature"] = "0xnothex"
    assert client.post("/relay", json=body, headers=operator["headers"]).status_code == 422


def test_relay_requires_operator(vault, agent):
    auditor = _create_user("auditor")
    body = _relay_body(agent, vault)
    assert client.post("/relay", json=body).status_code == 401
    assert client.post("/relay", json=body,
                       headers={"X-API-Key": auditor["api_key"]}).status_code == 403


def test_relay_storage_failure_is_503_and_resubmittable(vault, operator, agent, monkeypatch):
    body = _relay_body(agent, vault)
    vaults = get_services().vaults

    def boom(*args, **kwargs):
        raise RuntimeError("ledger offline")

    monkeypatch.setattr(vaults, "_record_action", boom)
    resp = client.post("/relay", json=body, headers=operator["headers"])
    assert resp.status_code == 503

    monkeypatch.undo()
    resp = client.post("/relay", json=body, headers=operator["headers"])
    assert resp.json()["status"] == "executed"


def test_relay_nonce_store_outage_is_503(vault, operator, agent, monkeypatch):
    body = _relay_body(agent, vault)

    def unavailable(key):
        raise OperationalError("INSERT INTO used_nonces", {}, Exception("database is locked"))

    monkeypatch.setattr(get_services().executor.nonces, "try_mark", unavailable)
    resp = client.post("/relay", json=body, headers=operator["headers"])
    assert resp.status_code == 503

    monkeypatch.undo()
    assert client.post("/relay", json=body, headers=operator["headers"]).json()["status"] == "executed"


def test_relay_log_write_failure_still_returns_verdict(vault, operator, agent, monkeypatch):
    def broken_log(*args, **kwargs):
        raise OperationalError("INSERT INTO relay_attempts", {}, Exception("disk full"))

    monkeypatch.setattr(routes_relay, "log_relay_attempt", broken_log)
    resp = client.post("/relay", json=_relay_body(agent, vault), headers=operator["headers"])
    assert resp.status_code == 200
    result = resp.json()
    assert result["status"] == "executed"

    record = client.get(f"/audit/{result['proposal_hash']}", headers=operator["headers"])
    assert record.status_code == 200


def test_unknown_relay_hash_is_404(operator):
    resp = client.get(f"/relay/{to_hex(keccak(b'nothing'))}", headers=operator["headers"])
    assert resp.status_code == 404
    assert client.get("/audit/0x1234", headers=operator["headers"]).status_code == 422


# ---------------------------------------------------------------------------
# Admin circuit breaker
# ---------------------------------------------------------------------------

def test_pause_and_unpause(vault, operator, agent):
    assert client.post("/admin/pause", headers=operator["headers"]).status_code == 403

    paused = client.post("/admin/pause", headers=_admin_headers()).json()
    assert paused["paused"] is True
    result = client.post("/relay", json=_relay_body(agent, vault), headers=operator["headers"]).json()
    assert result["reason_code"] == "InvalidSignature"

    new_agent = ProposalSigner("0x" + secrets.token_hex(32))
    resp = client.post("/admin/unpause", json={"signer": new_agent.address}, headers=_admin_headers())
    assert resp.json()["agent_signer"] == new_agent.address
    assert resp.json()["paused"] is False

    stale = client.post("/relay", json=_relay_body(agent, vault), headers=operator["headers"]).json()
    assert stale["reason_code"] == "InvalidSignature"
    fresh = client.post("/relay", json=_relay_body(new_agent, vault), headers=operator["headers"]).json()
    assert fresh["status"] == "executed"

    status = client.get("/admin/status", headers=operator["headers"]).json()
    assert status["executor_identity"] == settings.executor_identity


def test_unpause_rejects_null_signer():
    resp = client.post("/admin/unpause", json={"signer": "0x" + "00" * 20}, headers=_admin_headers())
    assert resp.status_code == 422
