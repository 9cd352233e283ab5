"""
executor/engine.py: Proposal verification and execution
=========================================================
``Executor.submit`` takes one signed proposal through five steps, in order,
stopping at the first failure:

  1. Deadline   strictly in the future and inside the verification window
  2. Signature  recovered identity equals the registered agent signer
  3. Replay     (signer, vault, nonce) key not yet consumed; no audit record
  4. Policy     vault's active policy allows the action
  5. Effect     vault action performed, then one ExecutionRecord appended

Rejections come back as a ``Verdict`` with a ``ReasonCode``. Only
``StorageFailure`` (any storage fault; a consumed nonce is released first) and
misconfiguration errors are raised. The effect is keyed by proposal hash, so a
resubmission after a failed audit write reuses the effect already applied.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..errors import DuplicateRecord, SentinelError, StorageFailure
from ..policies.rules import UNSUPPORTED_ACTION
from ..policies.store import PolicyStore
from ..proposals.codec import nonce_key, proposal_hash
from ..proposals.signing import SignatureScheme, default_scheme
from ..proposals.types import NULL_IDENTITY, Proposal, ReasonCode, normalize_address, to_hex
from ..schemas import TraceStep
from .audit import AuditSink, ExecutionRecord
from .nonces import NonceRegistry
from .signer_registry import AgentSignerRegistry
from .vault import VaultActions

logger = logging.getLogger("sentinel.executor")

EXECUTED = "executed"
REJECTED = "rejected"


@dataclass
class Verdict:
    status: str
    proposal_hash: bytes
    reason_code: Optional[ReasonCode] = None
    detail: Optional[str] = None
    record: Optional[ExecutionRecord] = None
    trace: List[TraceStep] = field(default_factory=list)

    @property
    def executed(self) -> bool:
        return self.status == EXECUTED

    @property
    def record_id(self) -> Optional[int]:
        return self.record.sequence_number if self.record else None


def _step(step: int, name: str, key: str, outcome: str, detail: str | None, start: float) -> TraceStep:
    return TraceStep(
        step=step,
        name=name,
        key=key,
        outcome=outcome,
        detail=detail,
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )


class Executor:
    def __init__(
        self,
        policies: PolicyStore,
        nonces: NonceRegistry,
        audit: AuditSink,
        signers: AgentSignerRegistry,
        vaults: VaultActions,
        *,
        identity: str,
        scheme: SignatureScheme = default_scheme,
        clock: Callable[[], float] = time.time,
        verify_min_window: int = 1,
        max_window: int = 24 * 60 * 60,
        lock_stripes: int = 64,
    ) -> None:
        self.policies = policies
        self.nonces = nonces
        self.audit = audit
        self.signers = signers
        self.vaults = vaults
        self.identity = identity
        self.scheme = scheme
        self._clock = clock
        self._verify_min_window = verify_min_window
        self._max_window = max_window
        self._stripes = [threading.Lock() for _ in range(max(1, lock_stripes))]

    def _stripe(self, key: bytes) -> threading.Lock:
        return self._stripes[int.from_bytes(key[:8], "big") % len(self._stripes)]

    # -- checks --------------------------------------------------------------

    def _check_deadline(self, deadline: int, now: int) -> tuple[bool, str]:
        if deadline <= now:
            return False, f"deadline {deadline} is not after now ({now})"
        if deadline < now + self._verify_min_window:
            return False, f"deadline {deadline} is inside the {self._verify_min_window}s minimum window"
        if deadline > now + self._max_window:
            return False, f"deadline {deadline} is more than {self._max_window}s ahead"
        return True, f"deadline {deadline - now}s ahead"

    def _reject(
        self,
        proposal: Proposal,
        digest: bytes,
        code: ReasonCode,
        detail: str,
        trace: List[TraceStep],
    ) -> Verdict:
        logger.warning(
            "Proposal rejected: vault=%s nonce=%d action_type=%d reason=%s detail=%s",
            proposal.vault, proposal.nonce, proposal.action_type, code.value, detail,
        )
        return Verdict(REJECTED, digest, reason_code=code, detail=detail, trace=trace)

    # -- main entry ----------------------------------------------------------

    def submit(self, proposal: Proposal, signature: bytes) -> Verdict:
        """Verify and, if every check passes, execute *proposal*."""
        trace: List[TraceStep] = []
        digest = proposal_hash(proposal)
        now = int(self._clock())

        # ── Step 1: Deadline ───────────────────────────────────────────
        t = time.perf_counter()
        ok, detail = self._check_deadline(proposal.deadline, now)
        if not ok:
            trace.append(_step(1, "Deadline", "deadline", "reject", detail, t))
            return self._reject(proposal, digest, ReasonCode.DEADLINE_INVALID, detail, trace)
        trace.append(_step(1, "Deadline", "deadline", "pass", detail, t))

        # ── Step 2: Signature ──────────────────────────────────────────
        t = time.perf_counter()
        try:
            signer = self.signers.current()
        except SentinelError:
            raise
        except Exception as exc:
            raise self._storage_failure("signer lookup", proposal, exc) from exc
        if signer == NULL_IDENTITY:
            detail = "executor is paused (no registered agent signer)"
        else:
            recovered = self.scheme.recover(digest, bytes(signature or b""))
            if recovered is None:
                detail = "malformed signature"
            elif recovered != signer:
                detail = f"signature recovers to {recovered}, expected {signer}"
            else:
                detail = None
        if detail is not None:
            trace.append(_step(2, "Signature", "signature", "reject", detail, t))
            return self._reject(proposal, digest, ReasonCode.INVALID_SIGNATURE, detail, trace)
        trace.append(_step(2, "Signature", "signature", "pass", f"signed by {signer}", t))

        key = nonce_key(signer, proposal.vault, proposal.nonce)
        with self._stripe(key):
            # ── Step 3: Replay ─────────────────────────────────────────
            t = time.perf_counter()
            try:
                marked = self.nonces.try_mark(key)
            except SentinelError:
                raise
            except Exception as exc:
                raise self._storage_failure("nonce mark", proposal, exc) from exc
            if not marked:
                detail = f"nonce {proposal.nonce} already used for vault {proposal.vault}"
                trace.append(_step(3, "Replay", "replay", "reject", detail, t))
                return self._reject(proposal, digest, ReasonCode.NONCE_REUSED, detail, trace)
            try:
                recorded = self.audit.contains(digest)
            except Exception as exc:
                self._release_after_failure(key, proposal)
                if isinstance(exc, SentinelError):
                    raise
                raise self._storage_failure("audit lookup", proposal, exc) from exc
            if recorded:
                detail = f"proposal {to_hex(digest)} already executed"
                trace.append(_step(3, "Replay", "replay", "reject", detail, t))
                return self._reject(proposal, digest, ReasonCode.NONCE_REUSED, detail, trace)
            trace.append(_step(3, "Replay", "replay", "pass", f"nonce {proposal.nonce} consumed", t))

            # ── Step 4: Policy ─────────────────────────────────────────
            t = time.perf_counter()
            try:
                ok, reason = self.policies.validate_action(
                    proposal.vault, proposal.action_type, proposal.params, caller=self.identity,
                )
            except SentinelError:
                self._release_after_failure(key, proposal)
                raise
            except Exception as exc:
                self._release_after_failure(key, proposal)
                raise self._storage_failure("policy lookup", proposal, exc) from exc
            if not ok:
                code = (ReasonCode.UNSUPPORTED_ACTION if reason == UNSUPPORTED_ACTION
                        else ReasonCode.POLICY_VIOLATION)
                trace.append(_step(4, "Policy", "policy", "reject", reason, t))
                return self._reject(proposal, digest, code, reason, trace)
            trace.append(_step(4, "Policy", "policy", "pass", reason, t))

            # ── Step 5: Effect + audit ─────────────────────────────────
            t = time.perf_counter()
            try:
                record = self._execute(proposal, digest, now)
            except Exception as exc:
                self._release_after_failure(key, proposal)
                raise self._storage_failure("effect or audit write", proposal, exc) from exc
            trace.append(_step(5, "Effect", "effect", "pass",
                               f"record #{record.sequence_number}", t))

        logger.info(
            "Proposal executed: vault=%s nonce=%d action_type=%d record=%d hash=%s",
            proposal.vault, proposal.nonce, proposal.action_type,
            record.sequence_number, to_hex(digest),
        )
        return Verdict(EXECUTED, digest, record=record, trace=trace)

    def _execute(self, proposal: Proposal, digest: bytes, now: int) -> ExecutionRecord:
        self.vaults.execute_action(
            self.identity, proposal.vault, proposal.action_type, proposal.params,
            proposal_hash=digest,
        )
        record = ExecutionRecord(
            proposal_hash=digest,
            vault=proposal.vault,
            executor_identity=self.identity,
            action_type=proposal.action_type,
            params=proposal.params,
            content_hash=proposal.content_hash,
            timestamp=now,
        )
        try:
            return self.audit.append(record)
        except DuplicateRecord:
            existing = self.audit.get(digest)
            if existing is None:
                raise
            logger.info("Audit record for %s already present", to_hex(digest))
            return existing

    @staticmethod
    def _storage_failure(stage: str, proposal: Proposal, exc: Exception) -> StorageFailure:
        logger.error(
            "Storage failure during %s: vault=%s nonce=%d action_type=%d error=%s",
            stage, proposal.vault, proposal.nonce, proposal.action_type, exc,
        )
        return StorageFailure(f"{stage} failed: {exc}")

    def _release_after_failure(self, key: bytes, proposal: Proposal) -> None:
        try:
            self.nonces.release(key)
        except Exception:
            logger.exception(
                "Could not release nonce %d for vault %s after failure",
                proposal.nonce, proposal.vault,
            )

    # -- admin side channel --------------------------------------------------

    @property
    def agent_signer(self) -> str:
        return self.signers.current()

    def is_paused(self) -> bool:
        return self.signers.is_paused()

    def emergency_pause(self) -> None:
        self.signers.pause()
        logger.warning("Emergency pause: agent signer cleared")

    def emergency_unpause(self, new_signer: str) -> str:
        signer = self._require_signer(new_signer)
        self.signers.set_signer(signer)
        logger.warning("Emergency unpause: agent signer set to %s", signer)
        return signer

    def update_agent_signer(self, new_signer: str) -> str:
        signer = self._require_signer(new_signer)
        previous = self.signers.current()
        self.signers.set_signer(signer)
        logger.info("Agent signer updated: %s -> %s", previous, signer)
        return signer

    @staticmethod
    def _require_signer(identity: str) -> str:
        signer = normalize_address(identity, "agent signer")
        if signer == NULL_IDENTITY:
            raise ValueError("agent signer cannot be the null address; use emergency_pause")
        return signer

    def is_nonce_used(self, signer: str, vault: str, nonce: int) -> bool:
        return self.nonces.is_used(nonce_key(signer, vault, nonce))

    def get_proposal_hash(self, proposal: Proposal) -> bytes:
        return proposal_hash(proposal)
