from .apps import GatewayServer
from .security import generate_token, verify_token, create_private_key

__all__ = [
    "GatewayServer",
    "generate_token",
    "verify_token",
    "create_private_key",
]
