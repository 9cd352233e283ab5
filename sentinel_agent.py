#!/usr/bin/env python3
"""
sentinel_agent.py: One-shot vault agent
=========================================
Proposes a single swap for a vault, signs it with the agent key and relays it
to the sentinel service:

  1. Explain the action (deterministic rationale)
  2. Store the JSON report, keyed by its keccak-256 hash
  3. Create the proposal (fresh nonce, bounded deadline) and sign it
  4. POST it to /relay and print the verdict

Usage:
    python sentinel_agent.py --vault 0x... --venue 0x... --amount 100 --balance 1000

    # Print the signed proposal without relaying it
    python sentinel_agent.py --vault 0x... --venue 0x... --amount 100 --balance 1000 --dry-run

Environment variables:
    SENTINEL_AGENT_PRIVATE_KEY   Agent signing key        [required]
    SENTINEL_RELAYER_URL         Relay base URL           [http://localhost:8000]
    SENTINEL_RELAYER_API_KEY     Operator API key         []
"""
from __future__ import annotations

import argparse
import json
import logging
import sys

import httpx

from sentinel.agent.content import InMemoryContentStore
from sentinel.agent.pipeline import AgentPipeline
from sentinel.agent.rationale import MockRationaleProvider
from sentinel.agent.relay_client import RelayClient, RelayRejectedError
from sentinel.agent.signer import ProposalSigner
from sentinel.config import settings
from sentinel.errors import SentinelError
from sentinel.proposals.codec import encode_swap_params
from sentinel.proposals.types import ActionType

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("sentinel-agent")


def build_pipeline(private_key: str) -> AgentPipeline:
    signer = ProposalSigner(
        private_key,
        min_window=settings.proposal_min_window_seconds,
        max_window=settings.proposal_max_window_seconds,
        default_deadline_offset=settings.default_deadline_offset_seconds,
    )
    return AgentPipeline(signer, MockRationaleProvider(), InMemoryContentStore())


def run(args: argparse.Namespace) -> int:
    private_key = args.key or settings.agent_private_key
    if not private_key:
        logger.error("No agent key: set SENTINEL_AGENT_PRIVATE_KEY or pass --key")
        return 2

    try:
        pipeline = build_pipeline(private_key)
        if args.start_nonce:
            pipeline.signer.reset_nonce(args.vault, args.start_nonce)
        params = encode_swap_params(args.venue, args.amount, args.balance)
        signed = pipeline.propose(args.vault, ActionType.SWAP, params, deadline_offset=args.deadline)
    except SentinelError as exc:
        logger.error("Could not build proposal: %s", exc)
        return 2

    logger.info("Agent %s signed nonce %d for vault %s",
                pipeline.signer.address, signed.proposal.nonce, signed.proposal.vault)
    if args.dry_run:
        print(json.dumps(signed.to_wire(), indent=2))
        return 0

    client = RelayClient(args.url, args.api_key)
    try:
        result = client.submit(signed, raise_on_reject=True)
    except RelayRejectedError as exc:
        logger.warning("%s", exc)
        return 1
    except httpx.HTTPError as exc:
        logger.error("Relay request failed: %s", exc)
        return 3

    print(json.dumps(result, indent=2))
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Propose and relay one vault swap",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--vault", required=True, help="Vault address")
    parser.add_argument("--venue", required=True, help="Swap venue address")
    parser.add_argument("--amount", type=int, required=True, help="Trade amount (base units)")
    parser.add_argument("--balance", type=int, required=True, help="Vault balance (base units)")
    parser.add_argument("--deadline", type=int, default=None, help="Deadline offset in seconds")
    parser.add_argument("--start-nonce", type=int, default=0, help="Seed the vault nonce counter")
    parser.add_argument("--key", default=None, help="Agent private key (overrides env)")
    parser.add_argument("--url", default=None, help="Relay URL (overrides SENTINEL_RELAYER_URL)")
    parser.add_argument("--api-key", default=None, help="Operator API key")
    parser.add_argument("--dry-run", action="store_true", help="Print the signed proposal only")
    return run(parser.parse_args())


if __name__ == "__main__":
    sys.exit(main())
