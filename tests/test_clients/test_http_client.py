"""
Tests for GatewayHttpClient against an in-process httpx.MockTransport.
"""

import json

import httpx
import pytest

from ccip_relay.clients.http_client import GatewayHttpClient
from ccip_relay.engine.exceptions import (
    GatewayUnreachableError,
    InvalidRequestError,
    InvalidTokenError,
)
from ccip_relay.schemas.https import RecordRequest

SENDER = "0x6000000000000000000000000000000000000006"
ADDRESS = "0xabcd000000000000000000000000000000001234"
CALL_DATA = bytes.fromhex("9e8f0000") + b"\x00" * 32


def make_client(handler, **kwargs) -> GatewayHttpClient:
    return GatewayHttpClient(transport=httpx.MockTransport(handler), base_url="http://gateway.test", **kwargs)


class TestFetchSignedAnswer:

    @pytest.mark.asyncio
    async def test_substitutes_template_and_posts_body(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": "0xdeadbeef"})

        async with make_client(handler) as client:
            answer = await client.fetch_signed_answer("http://gateway.test/v1/{sender}/{data}", SENDER, CALL_DATA)

        data_hex = "0x" + CALL_DATA.hex()
        assert answer == bytes.fromhex("deadbeef")
        assert seen["url"] == f"http://gateway.test/v1/{SENDER}/{data_hex}"
        assert seen["body"] == {"sender": SENDER, "data": data_hex}

    @pytest.mark.asyncio
    async def test_error_status(self):
        def handler(request):
            return httpx.Response(502, json={"error": "Registry reverted", "code": "resolution_failed"})

        async with make_client(handler) as client:
            with pytest.raises(GatewayUnreachableError) as exc_info:
                await client.fetch_signed_answer("http://gateway.test/v1/{sender}/{data}", SENDER, CALL_DATA)
        assert exc_info.value.detail == "Registry reverted"

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        def handler(request):
            return httpx.Response(200, json={"result": "0x00"})

        async with make_client(handler) as client:
            with pytest.raises(GatewayUnreachableError):
                await client.fetch_signed_answer("http://gateway.test/v1/{sender}/{data}", SENDER, CALL_DATA)

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        async with make_client(handler) as client:
            with pytest.raises(GatewayUnreachableError):
                await client.fetch_signed_answer("http://gateway.test/v1/{sender}/{data}", SENDER, CALL_DATA)


class TestRecordCalls:

    @pytest.mark.asyncio
    async def test_lookup_name(self):
        def handler(request):
            assert request.url.path == f"/api/ens-lookup/{ADDRESS}"
            return httpx.Response(200, json={"name": "alice.lisk.eth"})

        async with make_client(handler) as client:
            assert await client.lookup_name(ADDRESS) == "alice.lisk.eth"

    @pytest.mark.asyncio
    async def test_typed_error_from_code(self):
        def handler(request):
            return httpx.Response(400, json={"error": "Invalid address", "code": "invalid_request"})

        async with make_client(handler) as client:
            with pytest.raises(InvalidRequestError):
                await client.lookup_name("nope")

    @pytest.mark.asyncio
    async def test_sync_sends_bearer_token(self):
        seen = {}

        def handler(request):
            seen["authorization"] = request.headers.get("authorization")
            return httpx.Response(200, json={"success": True})

        async with make_client(handler, sync_token="abc.def") as client:
            result = await client.sync_name(RecordRequest(name="alice.lisk.eth", address=ADDRESS))

        assert result.success
        assert seen["authorization"] == "Bearer abc.def"

    @pytest.mark.asyncio
    async def test_sync_rejected_token(self):
        def handler(request):
            return httpx.Response(401, json={"error": "bad token", "code": "invalid_token"})

        async with make_client(handler, sync_token="forged") as client:
            with pytest.raises(InvalidTokenError):
                await client.sync_name(RecordRequest(name="alice.lisk.eth", address=ADDRESS))

    @pytest.mark.asyncio
    async def test_register_returns_tx_hash(self):
        def handler(request):
            body = json.loads(request.content)
            assert body["signature"] == "0x" + "11" * 65
            return httpx.Response(200, json={"success": True, "txHash": "0xabc"})

        record = RecordRequest(name="alice.lisk.eth", address=ADDRESS, signature="0x" + "11" * 65)
        async with make_client(handler) as client:
            result = await client.register_name(record)

        assert result.tx_hash == "0xabc"
