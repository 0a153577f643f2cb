"""
ENS Name and Call Codec

DNS wire-format name encoding, ENS namehash, and the ABI helpers needed to
unpack a CCIP-Read request and interpret the chain-2 answer.

Wire format:
    Each label is emitted as a single length byte followed by the label's
    UTF-8 bytes; the sequence ends with a zero length byte.
    ``"alice.lisk.eth"`` -> ``b"\\x05alice\\x04lisk\\x03eth\\x00"``

Dependencies:
    - eth_abi: ABI encoding/decoding of call arguments and results
    - eth_utils: keccak and function selectors
"""

from typing import Optional

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector, keccak, to_checksum_address

from ...engine.exceptions import InvalidRequestError, MalformedEncodingError
from .schemas import ResolveCall

MAX_LABEL_LENGTH = 63

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_NODE = b"\x00" * 32

# ---------------------------------------------------------------------------
# Function selectors
# ---------------------------------------------------------------------------

STUFFED_RESOLVE_SELECTOR: bytes = function_signature_to_4byte_selector(
    "stuffedResolveCall(bytes,bytes,uint64,address)"
)
RESOLVE_SELECTOR: bytes = function_signature_to_4byte_selector("resolve(bytes,bytes)")
ADDR_SELECTOR: bytes = function_signature_to_4byte_selector("addr(bytes32)")
ADDR_COIN_SELECTOR: bytes = function_signature_to_4byte_selector("addr(bytes32,uint256)")


# ---------------------------------------------------------------------------
# DNS wire format
# ---------------------------------------------------------------------------

def dns_encode(name: str) -> bytes:
    """
    Encode a dotted name into DNS wire format.

    The empty string encodes the root name (a single zero byte).

    Raises:
        InvalidRequestError: On an empty label or a label over 63 bytes.
    """
    if name == "":
        return b"\x00"

    out = bytearray()
    for label in name.split("."):
        raw = label.encode("utf-8")
        if not raw:
            raise InvalidRequestError(f"Empty label in name {name!r}")
        if len(raw) > MAX_LABEL_LENGTH:
            raise InvalidRequestError(
                f"Label {label!r} is {len(raw)} bytes; at most {MAX_LABEL_LENGTH} allowed"
            )
        out.append(len(raw))
        out += raw
    out.append(0)
    return bytes(out)


def dns_decode(data: bytes) -> str:
    """
    Decode a DNS wire-format name into its dotted form.

    Only canonical encodings are accepted, so ``dns_encode(dns_decode(data))
    == data`` for every input that decodes. This parses untrusted request
    bodies, so every failure mode surfaces as MalformedEncodingError.

    Raises:
        MalformedEncodingError: A length byte overruns the buffer, the zero
            terminator is missing or followed by more bytes, or a label is
            over 63 bytes, contains a dot or is not valid UTF-8.
    """
    labels = []
    offset = 0
    while True:
        if offset >= len(data):
            raise MalformedEncodingError("Encoded name is missing its zero terminator")
        length = data[offset]
        if length == 0:
            if offset + 1 != len(data):
                raise MalformedEncodingError(
                    f"{len(data) - offset - 1} trailing bytes after the zero terminator"
                )
            break
        if length > MAX_LABEL_LENGTH:
            raise MalformedEncodingError(
                f"Label length {length} at offset {offset} exceeds {MAX_LABEL_LENGTH} bytes"
            )
        end = offset + 1 + length
        if end > len(data):
            raise MalformedEncodingError(
                f"Label length {length} at offset {offset} overruns buffer of {len(data)} bytes"
            )
        try:
            label = data[offset + 1:end].decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedEncodingError("Label is not valid UTF-8", detail=str(e)) from e
        if "." in label:
            raise MalformedEncodingError(f"Label {label!r} contains a dot")
        labels.append(label)
        offset = end
    return ".".join(labels)


def namehash(name: str) -> bytes:
    """Compute the ENS namehash of a dotted name."""
    node = ZERO_NODE
    if name:
        for label in reversed(name.split(".")):
            node = keccak(node + keccak(text=label))
    return node


# ---------------------------------------------------------------------------
# CCIP-Read request / answer helpers
# ---------------------------------------------------------------------------

def decode_resolve_call(
    call_data: bytes,
    default_chain_id: Optional[int] = None,
    default_registry: Optional[str] = None,
) -> ResolveCall:
    """
    Unpack the call data a CCIP-Read gateway receives.

    Two shapes are understood:
    - ``stuffedResolveCall(bytes name, bytes data, uint64 targetChainId, address targetRegistryAddress)``
    - plain ``resolve(bytes name, bytes data)``, with chain id and registry
      taken from the supplied defaults

    Raises:
        InvalidRequestError: Unknown selector, undecodable arguments, a plain
            resolve call without configured defaults, or a bad name encoding.
    """
    selector, args = bytes(call_data[:4]), bytes(call_data[4:])
    try:
        if selector == STUFFED_RESOLVE_SELECTOR:
            dns_name, inner, chain_id, registry = decode(["bytes", "bytes", "uint64", "address"], args)
        elif selector == RESOLVE_SELECTOR:
            dns_name, inner = decode(["bytes", "bytes"], args)
            chain_id, registry = default_chain_id, default_registry
            if chain_id is None or registry is None:
                raise InvalidRequestError("Plain resolve call received but no target registry is configured")
        else:
            raise InvalidRequestError(f"Unsupported function selector 0x{selector.hex()}")
    except (DecodingError, ValueError, OverflowError) as e:
        raise InvalidRequestError("Call data does not decode as a resolve call", detail=str(e)) from e

    return ResolveCall(
        name=dns_decode(dns_name),
        dns_name=dns_name,
        inner_call=inner,
        chain_id=chain_id,
        registry=to_checksum_address(registry),
    )


def encode_stuffed_resolve_call(dns_name: bytes, inner_call: bytes, chain_id: int, registry: str) -> bytes:
    """Build ``stuffedResolveCall`` call data (used by clients and tests)."""
    return STUFFED_RESOLVE_SELECTOR + encode(
        ["bytes", "bytes", "uint64", "address"],
        [dns_name, inner_call, chain_id, to_checksum_address(registry)],
    )


def encode_addr_call(name: str) -> bytes:
    """Build ``addr(bytes32 node)`` call data for a dotted name."""
    return ADDR_SELECTOR + encode(["bytes32"], [namehash(name)])


def decode_address_result(inner_call: bytes, result: bytes) -> Optional[str]:
    """
    Interpret a resolve answer as an address when the inner call asked for one.

    Returns:
        Checksum address, or None when the call was not an address query,
        the answer does not decode, or the answer is the zero address.
    """
    selector = bytes(inner_call[:4])
    try:
        if selector == ADDR_SELECTOR:
            (address,) = decode(["address"], result)
        elif selector == ADDR_COIN_SELECTOR:
            (raw,) = decode(["bytes"], result)
            if len(raw) != 20:
                return None
            address = "0x" + raw.hex()
        else:
            return None
    except (DecodingError, ValueError):
        return None

    address = to_checksum_address(address)
    if address == ZERO_ADDRESS:
        return None
    return address
