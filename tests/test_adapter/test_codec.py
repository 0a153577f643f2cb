"""
Tests for the DNS wire codec and CCIP-Read call helpers.
"""

import pytest
from eth_abi import encode
from eth_utils import to_checksum_address

from ccip_relay.adapters.evm.codec import (
    ADDR_SELECTOR,
    RESOLVE_SELECTOR,
    decode_address_result,
    decode_resolve_call,
    dns_decode,
    dns_encode,
    encode_addr_call,
    encode_stuffed_resolve_call,
    namehash,
)
from ccip_relay.engine.exceptions import InvalidRequestError, MalformedEncodingError

REGISTRY = "0x5000000000000000000000000000000000000005"


class TestDnsCodec:

    def test_encode_known_name(self):
        assert dns_encode("alice.lisk.eth") == b"\x05alice\x04lisk\x03eth\x00"

    def test_round_trip(self):
        name = "alice.lisk.eth"
        assert dns_decode(dns_encode(name)) == name

    def test_round_trip_max_label(self):
        name = "a" * 63 + ".eth"
        assert dns_decode(dns_encode(name)) == name

    def test_root_name(self):
        assert dns_encode("") == b"\x00"
        assert dns_decode(b"\x00") == ""

    def test_utf8_labels(self):
        name = "café.eth"
        encoded = dns_encode(name)
        assert encoded[0] == len("café".encode("utf-8"))
        assert dns_decode(encoded) == name

    @pytest.mark.parametrize("name", ["alice..eth", ".eth", "alice.", "a" * 64 + ".eth"])
    def test_encode_rejects_bad_labels(self, name):
        with pytest.raises(InvalidRequestError):
            dns_encode(name)

    @pytest.mark.parametrize("data", [
        b"\x05ali",                  # length overruns buffer
        b"\x05alice",                # missing terminator
        b"",                         # empty
        b"\x02\xff\xfe\x00",         # invalid UTF-8
        b"\x05alice\x03eth\x00\xff\xee",  # trailing bytes
        b"\x03eth\x00\x00",          # second terminator
        b"\x40" + b"a" * 64 + b"\x00",  # label over 63 bytes
        b"\x07a.b.eth\x00",          # dot inside a label
    ])
    def test_decode_rejects_malformed(self, data):
        with pytest.raises(MalformedEncodingError):
            dns_decode(data)

    def test_malformed_is_invalid_request(self):
        assert issubclass(MalformedEncodingError, InvalidRequestError)


class TestNamehash:

    def test_empty_name(self):
        assert namehash("") == b"\x00" * 32

    def test_eth(self):
        assert namehash("eth").hex() == "93cdeb708b7545dc668eb9280176169d1c33cfd8ed6f04690a0bcc88a93fc4ae"


class TestResolveCall:

    def test_decode_stuffed_call(self):
        inner = encode_addr_call("alice.lisk.eth")
        data = encode_stuffed_resolve_call(dns_encode("alice.lisk.eth"), inner, 4202, REGISTRY)

        call = decode_resolve_call(data)

        assert call.name == "alice.lisk.eth"
        assert call.dns_name == dns_encode("alice.lisk.eth")
        assert call.inner_call == inner
        assert call.chain_id == 4202
        assert call.registry == REGISTRY

    def test_plain_resolve_uses_defaults(self):
        inner = encode_addr_call("bob.lisk.eth")
        data = RESOLVE_SELECTOR + encode(["bytes", "bytes"], [dns_encode("bob.lisk.eth"), inner])

        call = decode_resolve_call(data, default_chain_id=4202, default_registry=REGISTRY)

        assert call.name == "bob.lisk.eth"
        assert call.chain_id == 4202

    def test_plain_resolve_without_defaults(self):
        data = RESOLVE_SELECTOR + encode(["bytes", "bytes"], [dns_encode("bob.lisk.eth"), b""])
        with pytest.raises(InvalidRequestError):
            decode_resolve_call(data)

    def test_unknown_selector(self):
        with pytest.raises(InvalidRequestError):
            decode_resolve_call(b"\xde\xad\xbe\xef" + b"\x00" * 64)

    def test_truncated_arguments(self):
        data = encode_stuffed_resolve_call(dns_encode("alice.eth"), b"", 1, REGISTRY)
        with pytest.raises(InvalidRequestError):
            decode_resolve_call(data[:40])

    def test_malformed_name_inside_call(self):
        data = encode_stuffed_resolve_call(b"\x09abc", b"", 1, REGISTRY)
        with pytest.raises(MalformedEncodingError):
            decode_resolve_call(data)


class TestAddressResult:

    def test_addr_result(self):
        inner = encode_addr_call("alice.lisk.eth")
        result = encode(["address"], ["0xabcd000000000000000000000000000000001234"])
        assert decode_address_result(inner, result) == to_checksum_address("0xabcd000000000000000000000000000000001234")

    def test_zero_address_is_none(self):
        inner = ADDR_SELECTOR + b"\x00" * 32
        result = encode(["address"], ["0x" + "00" * 20])
        assert decode_address_result(inner, result) is None

    def test_non_address_query_is_none(self):
        assert decode_address_result(b"\x59\xd1\xd4\x3c" + b"\x00" * 64, encode(["string"], ["x"])) is None

    def test_garbage_result_is_none(self):
        assert decode_address_result(encode_addr_call("a.eth"), b"\x01") is None
