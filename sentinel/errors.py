"""
errors.py: Exception taxonomy
===============================
Expected rejections (deadline, signature, replay, policy) are *returned* by the
executor as a Verdict, never raised. The classes here cover the remaining
cases: bad input at construction time, misconfiguration, and storage faults.
"""
from __future__ import annotations


class SentinelError(Exception):
    """Base class for every error raised by the sentinel package."""


class ProposalEncodingError(SentinelError, ValueError):
    """A proposal field cannot be ABI-encoded (bad address, wrong width, ...)."""


class InvalidPolicy(SentinelError, ValueError):
    """A policy update violates a field bound."""


class UnauthorizedValidator(SentinelError):
    """Caller is not allowed to query PolicyStore.validate_action."""


class UnauthorizedExecutor(SentinelError):
    """Executor identity is not authorized to act on the vault."""


class UnknownVault(SentinelError, LookupError):
    """Vault has not been registered."""


class DuplicateRecord(SentinelError):
    """An execution record already exists for this proposal hash."""


class StorageFailure(SentinelError):
    """Effect or audit write failed. The nonce is released before raising."""


class DeadlineOutOfRange(SentinelError, ValueError):
    """Requested deadline offset is outside the configured window."""


class InvalidKeyMaterial(SentinelError, ValueError):
    """Private key cannot be loaded."""


class VaultAlreadyRegistered(SentinelError, ValueError):
    """A vault with this address is already registered."""
