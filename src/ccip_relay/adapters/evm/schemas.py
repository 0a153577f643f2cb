"""
EVM Adapter Schema Models

Pydantic models exchanged between the codec, the signer, the relayer and
the clients. All classes inherit from the base schema hierarchy in
``schemas.bases``.

Gateway classes:
    - ResolveCall: Decoded CCIP-Read request (name, inner call, target registry).
    - SignedAnswer: ``(result, expires_at, signature)`` returned to the origin contract.
    - OffchainLookupRequest: Fields of an ``OffchainLookup`` revert.

Relayer classes:
    - MetaTxAuthorization: User-signed transfer authorization.
    - RelayResult: Outcome of a submitted relay or registration transaction.
"""

from typing import List, Literal, Optional

from eth_abi import encode
from eth_utils import is_address, to_checksum_address
from pydantic import AfterValidator, AliasChoices, Field, field_validator
from typing_extensions import Annotated

from ...schemas.bases import BaseTransactionConfirmation, CanonicalModel


def _checksum(value: str) -> str:
    if not is_address(value):
        raise ValueError(f"Invalid EVM address: {value!r}")
    return to_checksum_address(value)


ChecksumAddress = Annotated[str, AfterValidator(_checksum)]


class ResolveCall(CanonicalModel):
    """
    Decoded CCIP-Read request.

    Attributes:
        name: Dotted name, for diagnostics and persistence
        dns_name: Wire-encoded name, passed through to the chain-2 registry
        inner_call: Encoded resolver call (e.g. ``addr(bytes32)``)
        chain_id: Chain the target registry lives on
        registry: Checksum address of the chain-2 registry
    """
    name: str
    dns_name: bytes
    inner_call: bytes
    chain_id: int = Field(..., ge=0)
    registry: str


class SignedAnswer(CanonicalModel):
    """
    Gateway answer, signed for verification by the origin contract.

    The signature covers ``(sender, expires_at, keccak(request), keccak(result))``;
    changing any of them invalidates it.
    """
    result: bytes = Field(..., description="Raw chain-2 answer bytes")
    expires_at: int = Field(..., ge=0, description="Unix seconds after which the origin contract rejects the answer")
    signature: bytes = Field(..., min_length=65, max_length=65, description="65-byte r||s||v ECDSA signature")

    def encode(self) -> bytes:
        """ABI-encode as ``(bytes result, uint64 expires, bytes sig)``."""
        return encode(["bytes", "uint64", "bytes"], [self.result, self.expires_at, self.signature])

    def to_hex(self) -> str:
        return "0x" + self.encode().hex()


class OffchainLookupRequest(CanonicalModel):
    """
    Structured ``OffchainLookup`` revert raised by an origin resolver.

    Never persisted; used only by the client fallback resolver.
    """
    sender: ChecksumAddress
    urls: List[str] = Field(default_factory=list)
    call_data: bytes
    callback_function: bytes = Field(..., min_length=4, max_length=4)
    extra_data: bytes = b""


class MetaTxAuthorization(CanonicalModel):
    """
    A sender's off-chain authorization of a token transfer.

    Attributes:
        sender: Token owner who signed the authorization
        receiver: Recipient of the transfer
        amount: Amount in the token's smallest unit
        target_contract: Payment contract the forwarder calls (relayer default if None)
        nonce: Forwarder nonce the signature was made over (fetched if None)
        signature: 65-byte EIP-191 signature, 0x-prefixed hex
    """
    sender: ChecksumAddress = Field(..., validation_alias=AliasChoices("sender", "from"))
    receiver: ChecksumAddress = Field(..., validation_alias=AliasChoices("receiver", "to"))
    amount: int = Field(..., ge=0, description="Amount in smallest token units")
    target_contract: Optional[ChecksumAddress] = Field(
        None,
        alias="targetContract",
        validation_alias=AliasChoices("targetContract", "target_contract"),
    )
    nonce: Optional[int] = Field(None, ge=0)
    signature: str

    @field_validator("signature")
    @classmethod
    def _validate_signature(cls, value: str) -> str:
        hex_str = value[2:] if value.startswith("0x") else value
        if len(hex_str) != 130:
            raise ValueError(f"Signature must be 65 bytes, got {len(hex_str) // 2}")
        try:
            bytes.fromhex(hex_str)
        except ValueError:
            raise ValueError("Signature is not valid hexadecimal")
        return "0x" + hex_str.lower()

    def signature_bytes(self) -> bytes:
        return bytes.fromhex(self.signature[2:])


class RelayResult(BaseTransactionConfirmation):
    """
    Outcome of a transaction the relayer broadcast.

    Attributes:
        tx_hash: Transaction hash (0x-prefixed)
        nonce: Relayer account nonce the transaction used
        block_number: Block containing the transaction, once mined
        gas_used: Gas consumed, once mined
    """
    confirmation_type: Literal["evm"] = Field(default="evm")
    tx_hash: str = Field(..., description="Transaction hash (0x-prefixed hex string)")
    nonce: int = Field(..., ge=0, description="Relayer account nonce used")
    block_number: Optional[int] = Field(None, ge=0)
    gas_used: Optional[int] = Field(None, ge=0)
