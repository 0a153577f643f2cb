"""
Tests for the client-side FallbackResolver.

The origin resolver contract and the gateway client are mocked; the
OffchainLookup revert is the real web3 exception.
"""

from unittest.mock import AsyncMock, Mock

import pytest
from eth_abi import decode, encode
from web3 import AsyncWeb3
from web3.exceptions import OffchainLookup

from ccip_relay.adapters.evm.codec import encode_addr_call
from ccip_relay.clients.resolver import FallbackResolver
from ccip_relay.engine.exceptions import GatewayUnreachableError, InvalidRequestError

RESOLVER = AsyncWeb3.to_checksum_address("0x6000000000000000000000000000000000000006")
RESOLVED = AsyncWeb3.to_checksum_address("0xabcd000000000000000000000000000000001234")
CALLBACK = bytes.fromhex("f4d4d2f8")
GATEWAY_URL = "https://gateway.example/v1/{sender}/{data}"
DEFAULT_URL = "https://fallback.example/v1/{sender}/{data}"
SIGNED_RESPONSE = b"\x01" * 96
EXTRA_DATA = b"\x02" * 32


def lookup_payload(sender=RESOLVER, urls=(GATEWAY_URL,)):
    return {
        "sender": sender,
        "urls": list(urls),
        "callData": b"\x9e\x8f\x00\x00" + b"\x00" * 64,
        "callbackFunction": CALLBACK,
        "extraData": EXTRA_DATA,
    }


def make_web3(resolve_error=None, resolve_result=b"", callback_answer=None):
    web3 = Mock()
    contract = Mock()
    contract.functions.resolve.return_value.call = AsyncMock(return_value=resolve_result, side_effect=resolve_error)
    web3.eth.contract = Mock(return_value=contract)
    answer = callback_answer if callback_answer is not None else encode(["address"], [RESOLVED])
    web3.eth.call = AsyncMock(return_value=encode(["bytes"], [answer]))
    return web3


def make_http(side_effect=None):
    http = Mock()
    http.fetch_signed_answer = AsyncMock(return_value=SIGNED_RESPONSE, side_effect=side_effect)
    http.aclose = AsyncMock()
    return http


class TestFallbackResolver:

    @pytest.mark.asyncio
    async def test_follows_offchain_lookup(self):
        web3 = make_web3(resolve_error=OffchainLookup(lookup_payload()))
        http = make_http()
        resolver = FallbackResolver(RESOLVER, web3=web3, http_client=http, default_gateway_url=None)

        assert await resolver.resolve("alice.lisk.eth") == RESOLVED

        http.fetch_signed_answer.assert_awaited_once_with(GATEWAY_URL, RESOLVER, lookup_payload()["callData"])
        tx = web3.eth.call.call_args.args[0]
        assert tx["to"] == RESOLVER
        assert tx["data"][:4] == CALLBACK
        assert decode(["bytes", "bytes"], tx["data"][4:]) == (SIGNED_RESPONSE, EXTRA_DATA)

    @pytest.mark.asyncio
    async def test_direct_answer_without_lookup(self):
        web3 = make_web3(resolve_result=encode(["address"], [RESOLVED]))
        http = make_http()
        resolver = FallbackResolver(RESOLVER, web3=web3, http_client=http)

        assert await resolver.resolve("alice.lisk.eth") == RESOLVED
        http.fetch_signed_answer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_falls_back_to_default_gateway(self):
        web3 = make_web3(resolve_error=OffchainLookup(lookup_payload()))
        http = make_http(side_effect=[GatewayUnreachableError("down"), SIGNED_RESPONSE])
        resolver = FallbackResolver(RESOLVER, web3=web3, http_client=http, default_gateway_url=DEFAULT_URL)

        assert await resolver.resolve("alice.lisk.eth") == RESOLVED
        assert [c.args[0] for c in http.fetch_signed_answer.call_args_list] == [GATEWAY_URL, DEFAULT_URL]

    @pytest.mark.asyncio
    async def test_all_gateways_failing_returns_none(self):
        web3 = make_web3(resolve_error=OffchainLookup(lookup_payload()))
        http = make_http(side_effect=GatewayUnreachableError("down"))
        resolver = FallbackResolver(RESOLVER, web3=web3, http_client=http, default_gateway_url=DEFAULT_URL)

        assert await resolver.resolve("alice.lisk.eth") is None
        web3.eth.call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_raise_errors(self):
        web3 = make_web3(resolve_error=OffchainLookup(lookup_payload()))
        http = make_http(side_effect=GatewayUnreachableError("down"))
        resolver = FallbackResolver(
            RESOLVER, web3=web3, http_client=http, default_gateway_url=None, raise_errors=True
        )

        with pytest.raises(GatewayUnreachableError):
            await resolver.resolve("alice.lisk.eth")

    @pytest.mark.asyncio
    async def test_foreign_sender_is_rejected(self):
        other = AsyncWeb3.to_checksum_address("0x7000000000000000000000000000000000000007")
        web3 = make_web3(resolve_error=OffchainLookup(lookup_payload(sender=other)))
        http = make_http()
        resolver = FallbackResolver(RESOLVER, web3=web3, http_client=http, raise_errors=True)

        with pytest.raises(InvalidRequestError):
            await resolver.resolve("alice.lisk.eth")
        http.fetch_signed_answer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_zero_address_answer_is_none(self):
        web3 = make_web3(
            resolve_error=OffchainLookup(lookup_payload()),
            callback_answer=encode(["address"], ["0x" + "00" * 20]),
        )
        resolver = FallbackResolver(RESOLVER, web3=web3, http_client=make_http())

        assert await resolver.resolve("alice.lisk.eth") is None

    @pytest.mark.asyncio
    async def test_unencodable_name_always_raises(self):
        resolver = FallbackResolver(RESOLVER, web3=make_web3(), http_client=make_http())
        with pytest.raises(InvalidRequestError):
            await resolver.resolve("alice..eth")

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self):
        http = make_http()
        async with FallbackResolver(RESOLVER, web3=make_web3(), http_client=http):
            pass
        http.aclose.assert_not_awaited()

    def test_queries_addr_of_name(self):
        assert encode_addr_call("alice.lisk.eth")[:4] == bytes.fromhex("3b3b57de")
