from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from ..proposals.types import ActionType, Proposal, to_hex
from .content import ContentStore
from .rationale import RationaleProvider
from .signer import ProposalSigner

logger = logging.getLogger("sentinel.agent")


@dataclass(frozen=True)
class SignedProposal:
    proposal: Proposal
    signature: bytes
    proposal_hash: bytes
    report: Dict[str, Any]

    def to_wire(self) -> Dict[str, Any]:
        """Request body for ``POST /relay``."""
        return {"proposal": self.proposal.to_wire(), "signature": to_hex(self.signature)}


class AgentPipeline:
    """Explain, store the report, then create and sign the proposal."""

    def __init__(
        self,
        signer: ProposalSigner,
        rationale: RationaleProvider,
        content: ContentStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.signer = signer
        self.rationale = rationale
        self.content = content
        self._clock = clock

    def build_report(self, vault: str, action_type: int, params: bytes) -> Dict[str, Any]:
        why = self.rationale.explain(vault, action_type, params)
        try:
            action_name = ActionType(action_type).name
        except ValueError:
            action_name = f"UNKNOWN_{action_type}"
        return {
            "vault": vault,
            "action": action_name,
            "action_type": action_type,
            "params": to_hex(params),
            "rationale": why.summary,
            "confidence": why.confidence,
            "agent": self.signer.address,
            "timestamp": int(self._clock()),
        }

    def propose(
        self,
        vault: str,
        action_type: int,
        params: bytes,
        deadline_offset: Optional[int] = None,
    ) -> SignedProposal:
        report = self.build_report(vault, action_type, params)
        blob = json.dumps(report, sort_keys=True, separators=(",", ":")).encode()
        content_hash = self.content.store(blob)

        proposal = self.signer.create_proposal(
            vault, action_type, params, content_hash, deadline_offset=deadline_offset,
        )
        signature = self.signer.sign(proposal)
        digest = self.signer.proposal_hash(proposal)
        logger.info(
            "Proposal signed: vault=%s action=%s nonce=%d hash=%s",
            proposal.vault, report["action"], proposal.nonce, to_hex(digest),
        )
        return SignedProposal(proposal, signature, digest, report)
