"""
proposals/signing.py: Pluggable signature scheme
==================================================
The protocol only needs two operations over a 32-byte digest:

    sign(private_key, digest)  -> signature bytes
    recover(digest, signature) -> signer identity, or None if malformed

``EthereumMessageScheme`` is the default: EIP-191 "personal message" prefix
("\\x19Ethereum Signed Message:\\n32") over the digest, secp256k1 ECDSA, 65-byte
r||s||v signatures. Identities are checksummed account addresses.
"""
from __future__ import annotations

import logging
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys.exceptions import BadSignature
from eth_utils import ValidationError

from ..errors import InvalidKeyMaterial

logger = logging.getLogger("sentinel.signing")

# Exceptions eth-account / eth-keys raise for signatures that cannot be parsed
# or recovered (wrong length, bad v byte, s out of range, ...).
_MALFORMED_SIGNATURE_ERRORS = (
    BadSignature,
    ValidationError,
    ValueError,
    TypeError,
    IndexError,
    AssertionError,
)


class SignatureScheme:
    """Interface for binding a digest to a signer identity."""

    name = "abstract"

    def identity_for(self, private_key: str | bytes) -> str:
        raise NotImplementedError

    def sign(self, private_key: str | bytes, digest: bytes) -> bytes:
        raise NotImplementedError

    def recover(self, digest: bytes, signature: bytes) -> Optional[str]:
        raise NotImplementedError


class EthereumMessageScheme(SignatureScheme):
    name = "eip191-secp256k1"

    def identity_for(self, private_key: str | bytes) -> str:
        try:
            return Account.from_key(private_key).address
        except (ValueError, TypeError, ValidationError) as exc:
            raise InvalidKeyMaterial(f"cannot load private key: {exc}") from exc

    def sign(self, private_key: str | bytes, digest: bytes) -> bytes:
        try:
            signed = Account.sign_message(encode_defunct(primitive=digest), private_key=private_key)
        except (ValueError, TypeError, ValidationError) as exc:
            raise InvalidKeyMaterial(f"cannot sign with private key: {exc}") from exc
        return bytes(signed.signature)

    def recover(self, digest: bytes, signature: bytes) -> Optional[str]:
        if len(signature) != 65:
            return None
        try:
            return Account.recover_message(encode_defunct(primitive=digest), signature=signature)
        except _MALFORMED_SIGNATURE_ERRORS as exc:
            logger.debug("Signature recovery failed: %s", exc)
            return None


default_scheme = EthereumMessageScheme()
