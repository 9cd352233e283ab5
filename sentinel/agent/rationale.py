from __future__ import annotations

from dataclasses import dataclass

from ..errors import ProposalEncodingError
from ..proposals.codec import decode_amount_params, decode_swap_params
from ..proposals.types import ActionType


@dataclass(frozen=True)
class Rationale:
    summary: str
    confidence: float  # 0.0 - 1.0


class RationaleProvider:
    """Explains why the agent wants to take an action."""

    def explain(self, vault: str, action_type: int, params: bytes) -> Rationale:
        raise NotImplementedError


class MockRationaleProvider(RationaleProvider):
    """Deterministic rationale derived from the action itself. No model calls."""

    def explain(self, vault: str, action_type: int, params: bytes) -> Rationale:
        try:
            if action_type == ActionType.SWAP:
                venue, amount, balance = decode_swap_params(params)
                share = amount * 100 // balance if balance else 0
                return Rationale(
                    f"Rebalance {share}% of vault {vault} through venue {venue}.",
                    0.8,
                )
            if action_type in (ActionType.LEND, ActionType.BORROW):
                amount, balance = decode_amount_params(params)
                verb = "Lend" if action_type == ActionType.LEND else "Borrow"
                return Rationale(f"{verb} {amount} against a balance of {balance}.", 0.7)
        except ProposalEncodingError:
            return Rationale("Action parameters could not be decoded.", 0.0)
        return Rationale(f"Action type {action_type} requested without analysis.", 0.1)
