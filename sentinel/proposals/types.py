from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Dict

from eth_utils import is_address, to_checksum_address

from ..errors import ProposalEncodingError

UINT8_MAX = 2**8 - 1
UINT256_MAX = 2**256 - 1

NULL_IDENTITY = "0x0000000000000000000000000000000000000000"


class ActionType(IntEnum):
    SWAP = 0
    LEND = 1
    BORROW = 2
    ADD_LIQUIDITY = 3
    REMOVE_LIQUIDITY = 4
    EMERGENCY_WITHDRAW = 5


class ReasonCode(str, Enum):
    """Typed rejection reasons returned by the executor."""

    DEADLINE_INVALID = "DeadlineInvalid"
    INVALID_SIGNATURE = "InvalidSignature"
    NONCE_REUSED = "NonceReused"
    POLICY_VIOLATION = "PolicyViolation"
    UNSUPPORTED_ACTION = "UnsupportedAction"


def normalize_address(value: str, field: str = "address") -> str:
    """Return the checksummed form of *value* or raise ProposalEncodingError."""
    if not isinstance(value, str) or not is_address(value):
        raise ProposalEncodingError(f"{field} is not a valid 20-byte address: {value!r}")
    return to_checksum_address(value)


def from_hex(value: str, field: str = "value") -> bytes:
    """Decode a 0x-prefixed (or bare) hex string."""
    if not isinstance(value, str):
        raise ProposalEncodingError(f"{field} must be a hex string")
    raw = value[2:] if value[:2] in ("0x", "0X") else value
    try:
        return bytes.fromhex(raw)
    except ValueError as exc:
        raise ProposalEncodingError(f"{field} is not valid hex: {exc}") from exc


def to_hex(value: bytes) -> str:
    return "0x" + bytes(value).hex()


def _check_uint(value: Any, bound: int, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProposalEncodingError(f"{field} must be an integer")
    if value < 0 or value > bound:
        raise ProposalEncodingError(f"{field} out of range: {value}")
    return value


@dataclass(frozen=True)
class Proposal:
    """An intended vault action awaiting authorization.

    Field values are validated and normalized on construction so that a
    Proposal instance can always be encoded: vault is checksummed, params and
    content_hash are immutable bytes, integers fit their ABI widths.
    """

    vault: str
    action_type: int
    params: bytes
    content_hash: bytes
    nonce: int
    deadline: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "vault", normalize_address(self.vault, "vault"))
        object.__setattr__(
            self, "action_type", int(_check_uint(self.action_type, UINT8_MAX, "action_type"))
        )
        if self.params is None or not isinstance(self.params, (bytes, bytearray)):
            raise ProposalEncodingError("params must be bytes (use b'' for no-op actions)")
        object.__setattr__(self, "params", bytes(self.params))
        if not isinstance(self.content_hash, (bytes, bytearray)) or len(self.content_hash) != 32:
            raise ProposalEncodingError("content_hash must be exactly 32 bytes")
        object.__setattr__(self, "content_hash", bytes(self.content_hash))
        _check_uint(self.nonce, UINT256_MAX, "nonce")
        _check_uint(self.deadline, UINT256_MAX, "deadline")

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "Proposal":
        """Build from the JSON wire shape (bytes fields as hex strings)."""
        return cls(
            vault=data["vault"],
            action_type=data["action_type"],
            params=from_hex(data.get("params") or "0x", "params"),
            content_hash=from_hex(data["content_hash"], "content_hash"),
            nonce=data["nonce"],
            deadline=data["deadline"],
        )

    def to_wire(self) -> Dict[str, Any]:
        return {
            "vault": self.vault,
            "action_type": self.action_type,
            "params": to_hex(self.params),
            "content_hash": to_hex(self.content_hash),
            "nonce": self.nonce,
            "deadline": self.deadline,
        }
