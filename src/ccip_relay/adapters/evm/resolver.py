"""
Cross-chain query resolver.

Answers a decoded CCIP-Read request by calling ``resolve(name, data)`` on
the registry named in the request, on the chain named in the request. Only
read-only ``eth_call`` is used; nothing here signs or sends transactions.
"""

import asyncio
import logging
from typing import Dict, Optional

from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError

from ...engine.exceptions import ConfigurationError, ResolutionFailedError
from ...engine.retries import RetryPolicy
from .abis import get_registry_abi
from .constants import get_rpc_url
from .relayer import error_text
from .schemas import ResolveCall

logger = logging.getLogger(__name__)


class CrossChainQueryResolver:
    """
    Reads answers from chain-2 registries.

    Args:
        rpc_urls: Per-chain RPC overrides; chains not listed fall back to
            ``constants.get_rpc_url``.
        request_timeout: Seconds before one ``eth_call`` is abandoned.
        retry_policy: Backoff for transient RPC failures. Reverts are not retried.
    """

    def __init__(
        self,
        rpc_urls: Optional[Dict[int, str]] = None,
        request_timeout: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._rpc_urls = dict(rpc_urls or {})
        self._request_timeout = request_timeout
        self._retry_policy = retry_policy or RetryPolicy()
        self._web3_instances: Dict[int, AsyncWeb3] = {}

    def _get_web3_instance(self, chain_id: int) -> AsyncWeb3:
        web3 = self._web3_instances.get(chain_id)
        if web3 is not None:
            return web3

        rpc_url = self._rpc_urls.get(chain_id) or get_rpc_url(chain_id)
        if not rpc_url:
            raise ConfigurationError(f"No RPC endpoint configured for chain {chain_id}")
        web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
            rpc_url,
            request_kwargs={"timeout": self._request_timeout}
        ))
        self._web3_instances[chain_id] = web3
        return web3

    async def resolve(self, call: ResolveCall) -> bytes:
        """
        Fetch the raw answer for ``call`` from its target registry.

        Args:
            call: Decoded request naming the chain, the registry and the inner call.

        Returns:
            bytes: ABI-encoded answer exactly as the registry returned it.

        Raises:
            ConfigurationError: No RPC endpoint is known for ``call.chain_id``.
            ResolutionFailedError: The call reverted or the RPC kept failing.
        """
        web3 = self._get_web3_instance(call.chain_id)
        registry = web3.eth.contract(address=call.registry, abi=get_registry_abi())

        async def _call() -> bytes:
            return await asyncio.wait_for(
                registry.functions.resolve(call.dns_name, call.inner_call).call(),
                self._request_timeout,
            )

        try:
            result = await self._retry_policy.run(
                _call,
                give_up_on=(ContractLogicError,),
                description=f"resolve({call.name}) on chain {call.chain_id}",
            )
        except ContractLogicError as e:
            logger.info("Registry %s reverted for %s: %s", call.registry, call.name, e)
            raise ResolutionFailedError(f"Registry reverted while resolving {call.name}", detail=error_text(e)) from e
        except asyncio.TimeoutError as e:
            raise ResolutionFailedError(f"Timed out resolving {call.name}") from e
        except Exception as e:
            raise ResolutionFailedError(f"Failed to resolve {call.name}", detail=error_text(e)) from e

        logger.debug("Resolved %s on chain %d (%d bytes)", call.name, call.chain_id, len(result))
        return bytes(result)
