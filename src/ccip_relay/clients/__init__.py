"""
Client module for the CCIP-Read gateway.

Provides an httpx client for the gateway's JSON API and a resolver that
follows off-chain lookups from the origin chain.
"""

from .http_client import GatewayHttpClient
from .resolver import FallbackResolver

__all__ = ["GatewayHttpClient", "FallbackResolver"]
