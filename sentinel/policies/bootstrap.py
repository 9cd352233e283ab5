from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

import yaml

from ..config import settings
from ..errors import InvalidPolicy, ProposalEncodingError
from ..proposals.types import normalize_address
from .store import PolicyStore

if TYPE_CHECKING:
    from ..executor.vault import VaultActions

logger = logging.getLogger("sentinel.policies")


@dataclass
class PolicySeed:
    vault: str
    risk_tolerance: int
    max_trade_percent: int
    emergency_threshold: int
    allowed_venues: List[str]
    owner: str = "bootstrap"
    name: str = ""
    executors: List[str] = field(default_factory=list)


def _bootstrap_path(path: Optional[str] = None) -> Optional[Path]:
    configured = path if path is not None else settings.bootstrap_policies_path
    if not configured:
        return None
    return Path(configured)


def load_policy_seeds(path: Optional[str] = None) -> List[PolicySeed]:
    """Read policy seeds from the YAML file on disk. Missing file -> []."""
    p = _bootstrap_path(path)
    if p is None or not p.exists():
        return []
    with p.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or []
    return [
        PolicySeed(
            vault=str(item["vault"]),
            risk_tolerance=int(item.get("risk_tolerance", 50)),
            max_trade_percent=int(item["max_trade_percent"]),
            emergency_threshold=int(item.get("emergency_threshold", 90)),
            allowed_venues=[str(v) for v in item.get("allowed_venues", []) or []],
            owner=str(item.get("owner", "bootstrap")),
            name=str(item.get("name", "")),
            executors=[str(e) for e in item.get("executors", []) or []],
        )
        for item in raw
    ]


def apply_policy_seeds(
    policies: PolicyStore,
    vaults: "VaultActions",
    seeds: List[PolicySeed],
    executor_identity: str,
) -> int:
    """Register each seeded vault and set its policy unless one is already active.

    Returns the number of policies written. Restarts are no-ops for vaults that
    already carry an active policy.
    """
    written = 0
    for seed in seeds:
        try:
            if not vaults.is_registered(seed.vault):
                vaults.register_vault(seed.vault, owner=seed.owner, name=seed.name)
            for identity in [executor_identity, *seed.executors]:
                vaults.add_authorized_executor(seed.vault, identity)
            if policies.has_active_policy(normalize_address(seed.vault, "vault")):
                continue
            policies.set_policy(
                seed.vault,
                seed.risk_tolerance,
                seed.max_trade_percent,
                seed.emergency_threshold,
                seed.allowed_venues,
                created_by=seed.owner,
            )
            written += 1
        except (InvalidPolicy, ProposalEncodingError) as exc:
            logger.error("Skipping bootstrap policy for %s: %s", seed.vault, exc)
    return written
