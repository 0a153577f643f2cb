"""
EVM Chain and Service Configuration

Provides the known chain table, environment-variable getters and the
``GatewaySettings`` model that the server entry point builds its
components from. ``.env`` files are loaded on import.
"""

import os
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

import dotenv
from pydantic import BaseModel, Field, ValidationError

from ...engine.exceptions import ConfigurationError
from ...engine.retries import RetryPolicy

dotenv.load_dotenv()


LISK_SEPOLIA_CHAIN_ID = 4202
SEPOLIA_CHAIN_ID = 11155111

#: Parent domain under which the registrar issues ``<label>.lisk.eth`` names.
PARENT_DOMAIN = "lisk.eth"

#: Gateway used by the client fallback resolver when a revert lists no usable URL.
DEFAULT_GATEWAY_URL = os.getenv(
    "DEFAULT_GATEWAY_URL", "https://ens-gateway.onpaylisk.workers.dev/v1/{sender}/{data}"
)

#: Lifetime of a signed gateway answer, in seconds.
DEFAULT_SIGNATURE_TTL = 300

#: Relayer native balance below which a warning is logged (0.01 native units).
LOW_RELAYER_BALANCE_WEI = 10 ** 16


class EvmChainConfig(BaseModel):
    """EVM blockchain network configuration."""
    chain_id: int
    name: str
    public_rpc_url: str = Field(..., description="Public RPC endpoint used when no override is set")
    explorer_url: str = Field(..., description="Block explorer URL")
    rpc_env_var: Optional[str] = Field(None, description="Environment variable overriding the RPC URL")


_EVM_CHAINS_DATA: Dict[int, Dict] = {
    LISK_SEPOLIA_CHAIN_ID: {
        "name": "Lisk Sepolia",
        "public_rpc_url": "https://rpc.sepolia-api.lisk.com",
        "explorer_url": "https://sepolia-blockscout.lisk.com",
        "rpc_env_var": "LISK_SEPOLIA_RPC_URL",
    },
    SEPOLIA_CHAIN_ID: {
        "name": "Ethereum Sepolia",
        "public_rpc_url": "https://ethereum-sepolia-rpc.publicnode.com",
        "explorer_url": "https://sepolia.etherscan.io",
        "rpc_env_var": "L1_RPC_URL",
    },
}


def get_chain_config(chain_id: int) -> Optional[EvmChainConfig]:
    """Return the configuration of a known chain, or None."""
    data = _EVM_CHAINS_DATA.get(chain_id)
    if data is None:
        return None
    return EvmChainConfig(chain_id=chain_id, **data)


def get_rpc_url(chain_id: int) -> Optional[str]:
    """
    Resolve the RPC URL for a chain.

    The chain's environment override wins over its public endpoint.
    Unknown chains return None.
    """
    config = get_chain_config(chain_id)
    if config is None:
        return None
    if config.rpc_env_var:
        override = os.getenv(config.rpc_env_var)
        if override:
            return override
    return config.public_rpc_url


def get_signer_private_key_from_env() -> Optional[str]:
    """
    Load the gateway response-signing key.

    Environment Variable:
        - SIGNER_PRIVATE_KEY: 0x-prefixed hex key; must differ from the relayer key
    """
    return os.getenv("SIGNER_PRIVATE_KEY")


def get_relayer_private_key_from_env() -> Optional[str]:
    """
    Load the relayer account key that pays gas for relayed transactions.

    Environment Variable:
        - RELAYER_PRIVATE_KEY: 0x-prefixed hex key
    """
    return os.getenv("RELAYER_PRIVATE_KEY")


def get_sync_token_key_from_env() -> Optional[str]:
    """Load the shared HMAC key guarding ``/api/ens-sync`` (``SYNC_TOKEN_KEY``)."""
    return os.getenv("SYNC_TOKEN_KEY")


class GatewaySettings(BaseModel):
    """
    Service settings, normally read from the environment via ``from_env()``.

    Contract addresses are optional; endpoints needing a missing one answer
    with a configuration error instead of failing at startup.
    """
    signer_private_key: Optional[str] = Field(None, repr=False)
    relayer_private_key: Optional[str] = Field(None, repr=False)
    sync_token_key: Optional[str] = Field(None, repr=False)
    l2_chain_id: int = LISK_SEPOLIA_CHAIN_ID
    l2_rpc_url: Optional[str] = None
    l2_registry_address: Optional[str] = None
    forwarder_address: Optional[str] = None
    payment_contract_address: Optional[str] = None
    token_address: Optional[str] = None
    registrar_address: Optional[str] = None
    record_db_path: str = "ens_records.db"
    signature_ttl: int = Field(DEFAULT_SIGNATURE_TTL, gt=0)
    rpc_timeout: float = Field(30.0, gt=0)
    retry_max_attempts: int = Field(3, ge=1)
    retry_base_delay: float = Field(0.5, ge=0)
    retry_multiplier: float = Field(2.0, ge=1)

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        """
        Build settings from environment variables.

        Raises:
            ConfigurationError: If a numeric variable does not parse.
        """
        try:
            l2_chain_id = int(os.getenv("L2_CHAIN_ID") or LISK_SEPOLIA_CHAIN_ID)
        except ValueError as e:
            raise ConfigurationError("L2_CHAIN_ID must be an integer", detail=str(e)) from e

        env = {
            "signer_private_key": get_signer_private_key_from_env(),
            "relayer_private_key": get_relayer_private_key_from_env(),
            "sync_token_key": get_sync_token_key_from_env(),
            "l2_chain_id": l2_chain_id,
            "l2_rpc_url": get_rpc_url(l2_chain_id),
            "l2_registry_address": os.getenv("L2_REGISTRY_ADDRESS"),
            "forwarder_address": os.getenv("FORWARDER_ADDRESS"),
            "payment_contract_address": os.getenv("PAYMENT_CONTRACT_ADDRESS"),
            "token_address": os.getenv("TOKEN_ADDRESS"),
            "registrar_address": os.getenv("REGISTRAR_ADDRESS"),
            "record_db_path": os.getenv("RECORD_DB_PATH"),
            "signature_ttl": os.getenv("SIGNATURE_TTL_SECONDS"),
            "rpc_timeout": os.getenv("RPC_TIMEOUT_SECONDS"),
            "retry_max_attempts": os.getenv("RETRY_MAX_ATTEMPTS"),
            "retry_base_delay": os.getenv("RETRY_BASE_DELAY"),
            "retry_multiplier": os.getenv("RETRY_MULTIPLIER"),
        }
        try:
            return cls(**{k: v for k, v in env.items() if v not in (None, "")})
        except (ValidationError, ValueError) as e:
            raise ConfigurationError("Invalid environment configuration", detail=str(e)) from e

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay,
            multiplier=self.retry_multiplier,
        )


def amount_to_value(*, amount: float | int | str | Decimal, decimals: int) -> int:
    """Convert a human-readable token `amount` into its smallest-unit integer `value`.

    Args:
        amount: Human-readable amount (e.g. "12.5"). Accepts float/int/str/Decimal.
        decimals: Token decimals (e.g. 2 for IDRX, 6 for USDC).

    Returns:
        int: Smallest-unit integer value.

    Raises:
        ValueError: If inputs are invalid or the amount has more precision than the token.
    """
    if not isinstance(decimals, int) or decimals < 0:
        raise ValueError("decimals must be a non-negative int")

    try:
        # str() avoids binary-float artifacts (0.1 -> 0.1000000000000000055...)
        dec_amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e

    if dec_amount < 0:
        raise ValueError("amount must be non-negative")

    scaled = dec_amount * (Decimal(10) ** decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"amount {amount!r} has more than {decimals} decimal places")

    return int(scaled)


def value_to_amount(*, value: int | str | Decimal, decimals: int) -> Decimal:
    """Convert a smallest-unit integer `value` back into a human-readable Decimal amount.

    Raises:
        ValueError: If inputs are invalid or `value` is not a whole number of units.
    """
    if not isinstance(decimals, int) or decimals < 0:
        raise ValueError("decimals must be a non-negative int")

    try:
        dec_value = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValueError(f"Invalid value: {value!r}") from e

    if dec_value < 0 or dec_value != dec_value.to_integral_value():
        raise ValueError("value must be a non-negative integer in smallest units")

    return dec_value / (Decimal(10) ** decimals)
