from __future__ import annotations

from typing import Callable, Dict, Tuple

from ..errors import ProposalEncodingError
from ..proposals.codec import decode_amount_params, decode_swap_params
from ..proposals.types import ActionType
from .store import PolicySnapshot

NO_ACTIVE_POLICY = "no active policy"
UNSUPPORTED_ACTION = "unsupported action type"
VENUE_NOT_ALLOWED = "venue not allowed by policy"
TRADE_EXCEEDS_CAP = "trade exceeds max trade percent"
MALFORMED_PARAMS = "malformed action params"
ZERO_BALANCE = "vault balance is zero"

Outcome = Tuple[bool, str]


def _within_cap(policy: PolicySnapshot, amount: int, vault_balance: int) -> Outcome:
    if vault_balance == 0:
        return False, ZERO_BALANCE
    # Both operands are non-negative, so floor division truncates toward zero.
    percent = amount * 100 // vault_balance
    if percent > policy.max_trade_percent:
        return False, (
            f"{TRADE_EXCEEDS_CAP} ({percent}% > {policy.max_trade_percent}%)"
        )
    return True, "ok"


def _check_swap(policy: PolicySnapshot, params: bytes) -> Outcome:
    try:
        venue, trade_amount, vault_balance = decode_swap_params(params)
    except ProposalEncodingError:
        return False, MALFORMED_PARAMS
    if venue not in policy.allowed_venues:
        return False, f"{VENUE_NOT_ALLOWED} ({venue})"
    return _within_cap(policy, trade_amount, vault_balance)


def _check_amount_action(policy: PolicySnapshot, params: bytes) -> Outcome:
    try:
        amount, vault_balance = decode_amount_params(params)
    except ProposalEncodingError:
        return False, MALFORMED_PARAMS
    return _within_cap(policy, amount, vault_balance)


_CHECKS: Dict[int, Callable[[PolicySnapshot, bytes], Outcome]] = {
    ActionType.SWAP: _check_swap,
    ActionType.LEND: _check_amount_action,
    ActionType.BORROW: _check_amount_action,
}


def check_action(policy: PolicySnapshot | None, action_type: int, params: bytes) -> Outcome:
    """Validate one action against *policy*. Fails closed on anything unknown."""
    if policy is None or not policy.active:
        return False, NO_ACTIVE_POLICY
    check = _CHECKS.get(action_type)
    if check is None:
        return False, UNSUPPORTED_ACTION
    return check(policy, params)
