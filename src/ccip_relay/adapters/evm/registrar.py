"""
Chain-2 name registrar client.

Registers ``<label>.lisk.eth`` on the registrar contract on behalf of an
owner who signed a registration authorization. The registrar's
``nonces(owner)`` counter is what the authorization commits to, so a
signature can be used once.

The ``register`` transaction is paid for and submitted by the relayer
account, sharing its nonce sequence with relayed transfers.
"""

import asyncio
import logging
import re
from typing import Optional

from web3 import AsyncWeb3

from ...engine.exceptions import ConfigurationError, InvalidRequestError, SignatureInvalidError
from .abis import get_registrar_abi
from .constants import PARENT_DOMAIN
from .relayer import MetaTxRelayer
from .schemas import RelayResult
from .signatures import recover_registration_signer

logger = logging.getLogger(__name__)

LABEL_PATTERN = re.compile(r"^[a-z0-9]+$")
MIN_LABEL_LENGTH = 3


def validate_label(label: str) -> str:
    """
    Check a registrar label and return it unchanged.

    Raises:
        InvalidRequestError: Shorter than 3 characters or not ``[a-z0-9]+``.
    """
    if len(label) < MIN_LABEL_LENGTH:
        raise InvalidRequestError(f"Label must be at least {MIN_LABEL_LENGTH} characters")
    if not LABEL_PATTERN.match(label):
        raise InvalidRequestError("Label may only contain lowercase letters and digits")
    return label


def label_from_name(name: str) -> str:
    """Return the registrar label of ``<label>.lisk.eth``."""
    suffix = "." + PARENT_DOMAIN
    if not name.endswith(suffix) or name.count(".") != PARENT_DOMAIN.count(".") + 1:
        raise InvalidRequestError(f"Name must be a direct subname of {PARENT_DOMAIN}")
    return name[: -len(suffix)]


class NameRegistrar:
    """
    Registration operations against the chain-2 registrar.

    Args:
        registrar_address: Registrar contract address.
        relayer: Relayer whose account submits ``register`` transactions.
        request_timeout: Seconds before one read is abandoned.
    """

    def __init__(self, registrar_address: str, relayer: MetaTxRelayer, request_timeout: float = 30.0):
        if not registrar_address:
            raise ConfigurationError("Registrar address not configured ('REGISTRAR_ADDRESS')")
        self.registrar_address = AsyncWeb3.to_checksum_address(registrar_address)
        self.relayer = relayer
        self._request_timeout = request_timeout

    def _contract(self):
        web3 = self.relayer._get_web3_instance()
        return web3.eth.contract(address=self.registrar_address, abi=get_registrar_abi())

    async def check_available(self, label: str) -> bool:
        validate_label(label)
        return bool(await asyncio.wait_for(
            self._contract().functions.available(label).call(),
            self._request_timeout,
        ))

    async def registration_nonce(self, owner: str) -> int:
        owner = AsyncWeb3.to_checksum_address(owner)
        return int(await asyncio.wait_for(
            self._contract().functions.nonces(owner).call(),
            self._request_timeout,
        ))

    async def verify_registration(self, label: str, owner: str, signature: str) -> int:
        """
        Check that ``owner`` signed the registration of ``label``.

        Returns:
            int: The registrar nonce the signature was verified against.

        Raises:
            SignatureInvalidError: Malformed signature or a different signer.
        """
        nonce = await self.registration_nonce(owner)
        try:
            signer = recover_registration_signer(label, owner, nonce, signature)
        except Exception as e:
            raise SignatureInvalidError("Registration signature is malformed", detail=str(e)) from e
        if signer.lower() != owner.lower():
            logger.warning("Registration of %s signed by %s, not owner %s", label, signer, owner)
            raise SignatureInvalidError("Registration was not authorized by the owner")
        return nonce

    async def register(self, label: str, owner: str, signature: Optional[str] = None) -> RelayResult:
        """
        Register ``label`` for ``owner`` through the relayer account.

        Args:
            label: Registrar label (``alice`` for ``alice.lisk.eth``).
            owner: Address that will own the name.
            signature: Owner's registration authorization; verified when given.

        Raises:
            InvalidRequestError: Bad label or the label is already taken.
            SignatureInvalidError: The authorization does not verify.
        """
        validate_label(label)
        owner = AsyncWeb3.to_checksum_address(owner)
        if signature is not None:
            await self.verify_registration(label, owner, signature)
        if not await self.check_available(label):
            raise InvalidRequestError(f"{label}.{PARENT_DOMAIN} is already registered")

        tx_fn = self._contract().functions.register(label, owner)
        gas_estimate = await self.relayer.simulate(tx_fn, description="register")
        result = await self.relayer.submit_transaction(tx_fn, gas_estimate, description="register")
        logger.info("Registration of %s.%s for %s: %s", label, PARENT_DOMAIN, owner, result.status.value)
        return result
