"""
proposals/codec.py: Deterministic proposal encoding and hashing
=================================================================
The agent signs and the executor verifies over the same digest, so both sides
MUST go through ``proposal_hash`` here. The layout is the Ethereum ABI tuple

    (address vault, uint8 actionType, bytes params, bytes32 contentHash,
     uint256 nonce, uint256 deadline)

hashed with keccak-256, which keeps digests identical to the on-chain
executor's ``getProposalHash``.
"""
from __future__ import annotations

from typing import Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak

from ..errors import ProposalEncodingError
from .types import UINT256_MAX, Proposal, normalize_address

PROPOSAL_ABI_TYPES = ["address", "uint8", "bytes", "bytes32", "uint256", "uint256"]
SWAP_PARAMS_ABI_TYPES = ["address", "uint256", "uint256"]
AMOUNT_PARAMS_ABI_TYPES = ["uint256", "uint256"]
NONCE_KEY_ABI_TYPES = ["address", "address", "uint256"]


def encode_proposal(proposal: Proposal) -> bytes:
    return encode(
        PROPOSAL_ABI_TYPES,
        [
            proposal.vault,
            proposal.action_type,
            proposal.params,
            proposal.content_hash,
            proposal.nonce,
            proposal.deadline,
        ],
    )


def proposal_hash(proposal: Proposal) -> bytes:
    """keccak-256 over ``encode_proposal``; 32 bytes."""
    return keccak(encode_proposal(proposal))


def nonce_key(signer: str, vault: str, nonce: int) -> bytes:
    """Replay-protection key for one (signer, vault, nonce) triple."""
    return keccak(
        encode(
            NONCE_KEY_ABI_TYPES,
            [normalize_address(signer, "signer"), normalize_address(vault, "vault"), nonce],
        )
    )


# ---------------------------------------------------------------------------
# Action params
# ---------------------------------------------------------------------------

def _check_amount(value: int, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= UINT256_MAX:
        raise ProposalEncodingError(f"{field} must be a uint256, got {value!r}")
    return value


def encode_swap_params(venue: str, trade_amount: int, vault_balance: int) -> bytes:
    return encode(
        SWAP_PARAMS_ABI_TYPES,
        [
            normalize_address(venue, "venue"),
            _check_amount(trade_amount, "trade_amount"),
            _check_amount(vault_balance, "vault_balance"),
        ],
    )


def decode_swap_params(params: bytes) -> Tuple[str, int, int]:
    """Return ``(venue, trade_amount, vault_balance)``."""
    try:
        venue, trade_amount, vault_balance = decode(SWAP_PARAMS_ABI_TYPES, params)
    except DecodingError as exc:
        raise ProposalEncodingError(f"malformed swap params: {exc}") from exc
    return normalize_address(venue, "venue"), trade_amount, vault_balance


def encode_amount_params(amount: int, vault_balance: int) -> bytes:
    return encode(
        AMOUNT_PARAMS_ABI_TYPES,
        [_check_amount(amount, "amount"), _check_amount(vault_balance, "vault_balance")],
    )


def decode_amount_params(params: bytes) -> Tuple[int, int]:
    """Return ``(amount, vault_balance)`` for lend / borrow actions."""
    try:
        amount, vault_balance = decode(AMOUNT_PARAMS_ABI_TYPES, params)
    except DecodingError as exc:
        raise ProposalEncodingError(f"malformed amount params: {exc}") from exc
    return amount, vault_balance
