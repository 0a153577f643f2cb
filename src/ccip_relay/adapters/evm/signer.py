"""
CCIP-Read response signer.

The origin resolver recomputes

    keccak256(abi.encodePacked(hex"1900", target, uint64 expires,
                               keccak256(request), keccak256(result)))

where ``target`` is the address that raised ``OffchainLookup``, and checks
it was signed by the gateway's known signer. The gateway only produces the
time-boxed signature; enforcing expiry is the origin contract's job.
"""

import logging
import time
from typing import Optional

from eth_account import Account
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError as KeyValidationError
from eth_utils import keccak, to_checksum_address
from web3 import Web3

from ...engine.exceptions import ConfigurationError
from .constants import DEFAULT_SIGNATURE_TTL
from .schemas import SignedAnswer

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = b"\x19\x00"


def make_signature_hash(sender: str, expires_at: int, request_data: bytes, result: bytes) -> bytes:
    """Digest binding sender, expiry, request and result."""
    return bytes(Web3.solidity_keccak(
        ["bytes2", "address", "uint64", "bytes32", "bytes32"],
        [SIGNATURE_PREFIX, to_checksum_address(sender), expires_at, keccak(request_data), keccak(result)],
    ))


def recover_answer_signer(sender: str, request_data: bytes, answer: SignedAnswer) -> str:
    """Recover the address that signed ``answer`` for ``(sender, request_data)``."""
    digest = make_signature_hash(sender, answer.expires_at, request_data, answer.result)
    sig = answer.signature
    v = sig[64] - 27 if sig[64] >= 27 else sig[64]
    signature = keys.Signature(signature_bytes=sig[:64] + bytes([v]))
    return signature.recover_public_key_from_msg_hash(digest).to_checksum_address()


class ResponseSigner:
    """
    Signs gateway answers with a dedicated key.

    Attributes:
        address: Checksum address the origin resolver trusts as signer
        ttl: Seconds a signed answer stays valid
    """

    def __init__(self, private_key: Optional[str], ttl: int = DEFAULT_SIGNATURE_TTL):
        if not private_key:
            raise ConfigurationError(
                "Signing key not provided. Pass 'private_key' or set 'SIGNER_PRIVATE_KEY'."
            )
        if ttl <= 0:
            raise ConfigurationError(f"Signature TTL must be positive, got {ttl}")
        self._account = Account.from_key(private_key)
        self.address = to_checksum_address(self._account.address)
        self.ttl = ttl

    def sign(self, sender: str, request_data: bytes, result: bytes, now: Optional[float] = None) -> SignedAnswer:
        """
        Sign ``result`` as the answer to ``request_data`` sent by ``sender``.

        Args:
            sender: Address that raised ``OffchainLookup`` (the origin resolver).
            request_data: Exact call data the gateway received.
            result: Raw chain-2 answer bytes.
            now: Current Unix time (defaults to ``time.time()``).

        Returns:
            SignedAnswer expiring ``ttl`` seconds from ``now``.
        """
        expires_at = int(now if now is not None else time.time()) + self.ttl
        digest = make_signature_hash(sender, expires_at, request_data, result)
        signed = self._account.unsafe_sign_hash(digest)
        logger.debug("Signed answer for %s expiring at %d", sender, expires_at)
        return SignedAnswer(result=result, expires_at=expires_at, signature=bytes(signed.signature))

    def verify(self, sender: str, request_data: bytes, answer: SignedAnswer) -> bool:
        """Check that ``answer`` was produced by this signer for exactly these inputs."""
        try:
            return recover_answer_signer(sender, request_data, answer) == self.address
        except (ValueError, BadSignature, KeyValidationError):
            return False
