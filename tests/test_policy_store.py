"""
Tests for per-vault policy storage, validation and YAML bootstrap.

Every store test runs against both the in-memory and the SQL store.

Run with: pytest tests/test_policy_store.py -v
"""
from __future__ import annotations

import pytest

from sentinel.errors import InvalidPolicy, UnauthorizedValidator
from sentinel.executor.vault import InMemoryVaultActions
from sentinel.policies import rules
from sentinel.policies.bootstrap import apply_policy_seeds, load_policy_seeds
from sentinel.policies.store import InMemoryPolicyStore, SqlPolicyStore
from sentinel.proposals.codec import encode_amount_params, encode_swap_params
from sentinel.proposals.types import ActionType

VALIDATOR = "test-executor"


@pytest.fixture(params=["memory", "sql"])
def store(request):
    s = InMemoryPolicyStore() if request.param == "memory" else SqlPolicyStore()
    s.add_authorized_validator(VALIDATOR)
    return s


@pytest.fixture
def venue(new_address):
    return new_address()


@pytest.fixture
def vault(store, new_address, venue):
    v = new_address()
    store.set_policy(v, 50, 10, 90, [venue])
    return v


def _swap(venue, amount, balance=1000):
    return encode_swap_params(venue, amount, balance)


def _validate(store, vault, action_type, params):
    return store.validate_action(vault, action_type, params, caller=VALIDATOR)


# ---------------------------------------------------------------------------
# Versioning
# ---------------------------------------------------------------------------

def test_set_policy_twice_keeps_one_active(store, new_address, venue):
    v = new_address()
    first = store.set_policy(v, 50, 10, 90, [venue])
    second = store.set_policy(v, 40, 5, 80, [venue])

    assert (first.version, second.version) == (1, 2)
    active = store.get_active_policy(v)
    assert active.version == 2
    assert active.max_trade_percent == 5

    versions = store.list_versions(v)
    assert [p.version for p in versions] == [2, 1]
    assert [p.active for p in versions] == [True, False]
    assert versions[1].max_trade_percent == 10


def test_venues_are_checksummed_and_deduplicated(store, new_address, venue):
    v = new_address()
    p = store.set_policy(v, 50, 10, 90, [venue.lower(), venue])
    assert p.allowed_venues == (venue,)


def test_deactivate_policy_fails_closed(store, vault, venue):
    assert store.has_active_policy(vault)
    assert store.deactivate_policy(vault) is True
    assert not store.has_active_policy(vault)
    assert store.deactivate_policy(vault) is False
    assert _validate(store, vault, ActionType.SWAP, _swap(venue, 10)) == (False, rules.NO_ACTIVE_POLICY)
    # History is retained
    assert len(store.list_versions(vault)) == 1


@pytest.mark.parametrize("args,message", [
    ((101, 10, 90), "risk tolerance"),
    ((-1, 10, 90), "risk tolerance"),
    ((50, 101, 90), "trade percent"),
    ((50, 10, 101), "emergency threshold"),
])
def test_out_of_range_fields_rejected(store, new_address, venue, args, message):
    with pytest.raises(InvalidPolicy, match=message):
        store.set_policy(new_address(), *args, [venue])


def test_empty_or_invalid_venues_rejected(store, new_address):
    with pytest.raises(InvalidPolicy, match="at least one allowed venue"):
        store.set_policy(new_address(), 50, 10, 90, [])
    with pytest.raises(InvalidPolicy):
        store.set_policy(new_address(), 50, 10, 90, ["X"])


def test_rejected_update_leaves_active_version(store, vault, venue):
    with pytest.raises(InvalidPolicy):
        store.set_policy(vault, 50, 200, 90, [venue])
    assert store.get_active_policy(vault).version == 1


# ---------------------------------------------------------------------------
# validate_action
# ---------------------------------------------------------------------------

def test_unauthorized_caller_raises(store, vault, venue):
    with pytest.raises(UnauthorizedValidator):
        store.validate_action(vault, ActionType.SWAP, _swap(venue, 10), caller="someone-else")


def test_no_policy_fails_closed(store, new_address, venue):
    assert _validate(store, new_address(), ActionType.SWAP, _swap(venue, 10)) == (
        False, rules.NO_ACTIVE_POLICY
    )


def test_swap_exactly_at_cap_passes(store, vault, venue):
    assert _validate(store, vault, ActionType.SWAP, _swap(venue, 100)) == (True, "ok")


def test_swap_above_cap_fails(store, vault, venue):
    ok, reason = _validate(store, vault, ActionType.SWAP, _swap(venue, 110))
    assert not ok
    assert reason.startswith(rules.TRADE_EXCEEDS_CAP)


def test_cap_uses_truncating_division(store, vault, venue):
    # 101 * 100 // 1000 == 10, so one unit over the cap still rounds down to it
    assert _validate(store, vault, ActionType.SWAP, _swap(venue, 101))[0]
    assert not _validate(store, vault, ActionType.SWAP, _swap(venue, 11, balance=100))[0]


def test_swap_to_unlisted_venue_fails(store, vault, new_address):
    ok, reason = _validate(store, vault, ActionType.SWAP, _swap(new_address(), 1))
    assert not ok
    assert reason.startswith(rules.VENUE_NOT_ALLOWED)


@pytest.mark.parametrize("action_type", [ActionType.LEND, ActionType.BORROW])
def test_lend_and_borrow_use_the_same_cap(store, vault, action_type):
    assert _validate(store, vault, action_type, encode_amount_params(100, 1000))[0]
    assert not _validate(store, vault, action_type, encode_amount_params(200, 1000))[0]


@pytest.mark.parametrize("action_type", [
    ActionType.ADD_LIQUIDITY, ActionType.REMOVE_LIQUIDITY, ActionType.EMERGENCY_WITHDRAW, 17,
])
def test_other_actions_unsupported(store, vault, action_type):
    assert _validate(store, vault, action_type, b"") == (False, rules.UNSUPPORTED_ACTION)


def test_malformed_params_fail_closed(store, vault):
    assert _validate(store, vault, ActionType.SWAP, b"\x01\x02") == (False, rules.MALFORMED_PARAMS)
    assert _validate(store, vault, ActionType.LEND, b"") == (False, rules.MALFORMED_PARAMS)


def test_zero_balance_fails_closed(store, vault, venue):
    assert _validate(store, vault, ActionType.SWAP, _swap(venue, 0, balance=0)) == (
        False, rules.ZERO_BALANCE
    )


# ---------------------------------------------------------------------------
# YAML bootstrap
# ---------------------------------------------------------------------------

def test_bootstrap_seeds_once(tmp_path, new_address):
    vault, venue = new_address(), new_address()
    path = tmp_path / "policies.yml"
    path.write_text(
        f"""
- vault: "{vault}"
  name: treasury
  owner: ops
  risk_tolerance: 40
  max_trade_percent: 15
  emergency_threshold: 85
  allowed_venues: ["{venue}"]
- vault: "{new_address()}"
  max_trade_percent: 500
  allowed_venues: ["{venue}"]
""",
        encoding="utf-8",
    )
    seeds = load_policy_seeds(str(path))
    assert len(seeds) == 2

    policies, vaults = InMemoryPolicyStore(), InMemoryVaultActions()
    assert apply_policy_seeds(policies, vaults, seeds, "exec-1") == 1
    assert apply_policy_seeds(policies, vaults, seeds, "exec-1") == 0

    info = vaults.get_vault(vault)
    assert info.owner == "ops"
    assert info.executors == ("exec-1",)
    assert vaults.is_authorized_executor(vault, "exec-1")
    assert policies.get_active_policy(vault).max_trade_percent == 15
    assert len(policies.list_versions(vault)) == 1


def test_missing_bootstrap_file_is_empty(tmp_path):
    assert load_policy_seeds(str(tmp_path / "absent.yml")) == []
    assert load_policy_seeds("") == []
