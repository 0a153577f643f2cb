"""
Client-side CCIP-Read fallback resolver.

Resolves a name through an origin-chain resolver contract. When the
resolver answers with an ``OffchainLookup`` revert, the lookup is carried
out explicitly: the advertised gateways are asked for a signed answer, and
that answer is handed back to the resolver's verifying callback.
"""

import asyncio
import logging
from typing import List, Optional

from eth_abi import decode, encode
from web3 import AsyncWeb3
from web3.exceptions import OffchainLookup

from ..adapters.evm.abis import get_offchain_resolver_abi
from ..adapters.evm.codec import decode_address_result, dns_encode, encode_addr_call
from ..adapters.evm.constants import DEFAULT_GATEWAY_URL, SEPOLIA_CHAIN_ID, get_rpc_url
from ..adapters.evm.schemas import OffchainLookupRequest
from ..engine.exceptions import ConfigurationError, GatewayUnreachableError, InvalidRequestError
from .http_client import GatewayHttpClient

logger = logging.getLogger(__name__)


class FallbackResolver:
    """
    Resolve names on the origin chain, following off-chain lookups.

    Args:
        resolver_address: Origin resolver contract.
        rpc_url: Origin chain RPC (default: ``L1_RPC_URL`` or public Sepolia).
        web3: Pre-built AsyncWeb3 instance, instead of ``rpc_url``.
        http_client: Client used for gateway requests (created if omitted).
        default_gateway_url: Gateway tried after the advertised URLs.
        request_timeout: Seconds before a chain call is abandoned.
        raise_errors: Raise failures instead of returning None.

    Example:
        async with FallbackResolver(resolver_address) as resolver:
            address = await resolver.resolve("alice.lisk.eth")
    """

    def __init__(
        self,
        resolver_address: str,
        rpc_url: Optional[str] = None,
        web3: Optional[AsyncWeb3] = None,
        http_client: Optional[GatewayHttpClient] = None,
        default_gateway_url: Optional[str] = DEFAULT_GATEWAY_URL,
        request_timeout: float = 30.0,
        raise_errors: bool = False,
    ):
        if web3 is None:
            rpc_url = rpc_url or get_rpc_url(SEPOLIA_CHAIN_ID)
            if not rpc_url:
                raise ConfigurationError("Origin chain RPC URL not configured ('L1_RPC_URL')")
            web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout}))
        self.web3 = web3
        self.resolver_address = AsyncWeb3.to_checksum_address(resolver_address)
        self.default_gateway_url = default_gateway_url
        self.raise_errors = raise_errors
        self._request_timeout = request_timeout
        self._owns_client = http_client is None
        self._http = http_client or GatewayHttpClient(timeout=request_timeout)

    async def __aenter__(self) -> "FallbackResolver":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def resolve(self, name: str) -> Optional[str]:
        """
        Resolve ``name`` to an address.

        Returns:
            Checksum address, or None when the name has no address or any
            step failed (unless ``raise_errors`` is set).

        Raises:
            InvalidRequestError: ``name`` cannot be encoded (always raised).
        """
        dns_name = dns_encode(name)
        inner_call = encode_addr_call(name)
        try:
            return await self._resolve(dns_name, inner_call)
        except Exception as e:
            if self.raise_errors:
                raise
            logger.warning("Resolution of %s failed: %s", name, e)
            return None

    async def _resolve(self, dns_name: bytes, inner_call: bytes) -> Optional[str]:
        resolver = self.web3.eth.contract(address=self.resolver_address, abi=get_offchain_resolver_abi())
        try:
            answer = await asyncio.wait_for(
                resolver.functions.resolve(dns_name, inner_call).call(ccip_read_enabled=False),
                self._request_timeout,
            )
            return decode_address_result(inner_call, answer)
        except OffchainLookup as e:
            lookup = self._parse_lookup(e)

        response = await self._fetch_from_gateways(lookup)
        callback_data = lookup.callback_function + encode(["bytes", "bytes"], [response, lookup.extra_data])
        raw = await asyncio.wait_for(
            self.web3.eth.call({"to": self.resolver_address, "data": callback_data}),
            self._request_timeout,
        )
        (answer,) = decode(["bytes"], bytes(raw))
        return decode_address_result(inner_call, answer)

    def _parse_lookup(self, error: OffchainLookup) -> OffchainLookupRequest:
        payload = error.payload
        lookup = OffchainLookupRequest(
            sender=payload["sender"],
            urls=list(payload["urls"]),
            call_data=bytes(payload["callData"]),
            callback_function=bytes(payload["callbackFunction"]),
            extra_data=bytes(payload["extraData"]),
        )
        if lookup.sender != self.resolver_address:
            raise InvalidRequestError(
                f"OffchainLookup sender {lookup.sender} does not match resolver {self.resolver_address}"
            )
        return lookup

    def _candidate_urls(self, lookup: OffchainLookupRequest) -> List[str]:
        urls = [url for url in lookup.urls if url]
        if self.default_gateway_url and self.default_gateway_url not in urls:
            urls.append(self.default_gateway_url)
        return urls

    async def _fetch_from_gateways(self, lookup: OffchainLookupRequest) -> bytes:
        """
        Try each gateway in order until one returns a signed answer.

        Raises:
            GatewayUnreachableError: Every candidate failed (the last failure).
        """
        last_error: Optional[GatewayUnreachableError] = None
        for url in self._candidate_urls(lookup):
            try:
                return await self._http.fetch_signed_answer(url, lookup.sender, lookup.call_data)
            except GatewayUnreachableError as e:
                logger.warning("Gateway %s failed: %s", url, e)
                last_error = e
        if last_error is None:
            raise GatewayUnreachableError("OffchainLookup listed no gateway URL and no default is configured")
        raise last_error
