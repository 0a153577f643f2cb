"""
Serialized access to the relayer account's nonce sequence.

The relayer owns one account and therefore one nonce sequence. Every
submission runs inside ``acquire_nonce()``, which holds an ``asyncio.Lock``
so no two submissions in this process can be handed the same nonce.

Lifecycle of the cached value:
    - None until first use, then loaded from ``eth_getTransactionCount(pending)``
    - advanced by exactly one after a lease is marked broadcast
    - reset to None on ``NonceConflictError`` so the next lease reloads it
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

from ...engine.exceptions import NonceConflictError
from ...engine.retries import RetryPolicy

logger = logging.getLogger(__name__)

NonceFetcher = Callable[[], Awaitable[int]]


class NonceLease:
    """A nonce handed out for one submission attempt."""

    def __init__(self, nonce: int):
        self.nonce = nonce
        self.broadcast = False

    def mark_broadcast(self) -> None:
        """Record that a transaction using this nonce reached the network."""
        self.broadcast = True

    def __repr__(self) -> str:
        return f"NonceLease(nonce={self.nonce}, broadcast={self.broadcast})"


class RelayerNonceState:
    """
    Process-wide nonce sequence for a single relayer account.

    Args:
        fetch_chain_nonce: Coroutine factory returning the account's pending
            transaction count.
        retry_policy: Backoff applied to chain nonce fetches.
        fetch_timeout: Seconds before a single fetch is abandoned.
        follow_chain: When True, each lease also checks the chain and jumps
            forward if transactions were sent from the account elsewhere.
    """

    def __init__(
        self,
        fetch_chain_nonce: NonceFetcher,
        retry_policy: Optional[RetryPolicy] = None,
        fetch_timeout: float = 30.0,
        follow_chain: bool = True,
    ):
        self._fetch_chain_nonce = fetch_chain_nonce
        self._retry_policy = retry_policy or RetryPolicy()
        self._fetch_timeout = fetch_timeout
        self._follow_chain = follow_chain
        self._lock = asyncio.Lock()
        self._nonce: Optional[int] = None

    @property
    def current(self) -> Optional[int]:
        """The next nonce to hand out, or None while uninitialized."""
        return self._nonce

    async def _load_from_chain(self) -> int:
        return await self._retry_policy.run(
            lambda: asyncio.wait_for(self._fetch_chain_nonce(), self._fetch_timeout),
            description="relayer nonce fetch",
        )

    @asynccontextmanager
    async def acquire_nonce(self) -> AsyncIterator[NonceLease]:
        """
        Lease the next nonce for exactly one submission.

        The lease holds the lock until the block exits. Call
        ``lease.mark_broadcast()`` once the transaction was accepted by the
        node; only then does the sequence advance. Raising
        ``NonceConflictError`` inside the block resets the sequence.

        Example::

            async with nonce_state.acquire_nonce() as lease:
                tx_hash = await send(build_tx(nonce=lease.nonce))
                lease.mark_broadcast()
        """
        async with self._lock:
            if self._nonce is None:
                self._nonce = await self._load_from_chain()
                logger.info("Relayer nonce initialized from chain: %d", self._nonce)
            elif self._follow_chain:
                chain_nonce = await self._load_from_chain()
                if chain_nonce > self._nonce:
                    logger.warning("Chain nonce %d is ahead of local %d; catching up", chain_nonce, self._nonce)
                    self._nonce = chain_nonce

            lease = NonceLease(self._nonce)
            try:
                yield lease
            except NonceConflictError:
                logger.warning("Nonce conflict at %d; will resync from chain", lease.nonce)
                self._nonce = None
                raise
            finally:
                if lease.broadcast and self._nonce is not None:
                    self._nonce = lease.nonce + 1

    async def resync_from_chain(self) -> int:
        """Discard the cached value and reload it from chain state now."""
        async with self._lock:
            self._nonce = await self._load_from_chain()
            logger.info("Relayer nonce resynced from chain: %d", self._nonce)
            return self._nonce
