"""
EVM Meta-Transaction Relayer

Executes user-signed transfer authorizations through the forwarder
contract, paying gas from a single relayer account.

Per request:
    1. Preflight diagnostics (relayer gas funds, sender token balance/allowance);
       logged, never blocking except when the relayer has no gas at all
    2. Forwarder nonce fetch and local signature recovery
    3. Gas estimation of ``executeMetaTransaction``; reverts are translated
       into typed errors and never retried
    4. Submission with an explicit nonce leased from ``RelayerNonceState``
    5. Confirmation wait; a timeout yields a PENDING result, not a failure

Nonce conflicts (``already known``, ``nonce too low``, ``replacement
transaction underpriced``) reset the nonce state and surface as a retryable
``NonceConflictError``; the same authorization is never re-broadcast
automatically.

Dependencies:
    - web3.py: For blockchain RPC interaction
    - eth_account: For transaction signing
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Dict, Optional, TypeVar

from eth_account import Account
from eth_utils import function_signature_to_4byte_selector
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TransactionNotFound

from ...engine.exceptions import (
    BaseError,
    ConfigurationError,
    InsufficientAllowanceError,
    InsufficientRelayerGasError,
    InsufficientSenderBalanceError,
    NonceConflictError,
    RelayExecutionError,
    SignatureInvalidError,
)
from ...engine.retries import RetryPolicy
from ...schemas.bases import TransactionStatus
from .abis import get_erc20_abi, get_forwarder_abi
from .constants import LISK_SEPOLIA_CHAIN_ID, LOW_RELAYER_BALANCE_WEI, get_relayer_private_key_from_env
from .nonces import RelayerNonceState
from .schemas import MetaTxAuthorization, RelayResult
from .signatures import recover_meta_tx_signer

logger = logging.getLogger(__name__)

T = TypeVar("T")

NONCE_CONFLICT_MARKERS = (
    "already known",
    "nonce too low",
    "replacement transaction underpriced",
)

# OpenZeppelin v5 custom errors
ERC20_INSUFFICIENT_BALANCE = function_signature_to_4byte_selector("ERC20InsufficientBalance(address,uint256,uint256)")
ERC20_INSUFFICIENT_ALLOWANCE = function_signature_to_4byte_selector(
    "ERC20InsufficientAllowance(address,uint256,uint256)"
)
ECDSA_ERRORS = frozenset(
    function_signature_to_4byte_selector(signature)
    for signature in (
        "ECDSAInvalidSignature()",
        "ECDSAInvalidSignatureLength(uint256)",
        "ECDSAInvalidSignatureS(bytes32)",
    )
)


def is_nonce_conflict(message: str) -> bool:
    """True when a node error means the relayer's nonce was stale."""
    lowered = message.lower()
    return any(marker in lowered for marker in NONCE_CONFLICT_MARKERS)


def error_text(error: Exception) -> str:
    """Readable reason of a web3 error (reverts keep it on ``.message``)."""
    message = getattr(error, "message", None)
    return message if isinstance(message, str) and message else str(error)


def revert_selector(error: Exception) -> Optional[bytes]:
    """First four bytes of a revert's return data, if the node supplied any."""
    data = getattr(error, "data", None)
    if data is None:
        # Custom errors web3 cannot decode carry the raw data as their message.
        data = error_text(error)
    if isinstance(data, (bytes, bytearray)):
        raw = bytes(data)
    elif isinstance(data, str) and data.startswith("0x"):
        try:
            raw = bytes.fromhex(data[2:10])
        except ValueError:
            return None
    else:
        return None
    return raw[:4] if len(raw) >= 4 else None


def classify_revert(message: str, selector: Optional[bytes] = None) -> BaseError:
    """
    Translate a simulation revert reason into a typed, user-facing error.

    Args:
        message: Revert reason or node error text.
        selector: Custom error selector from the revert data, checked before
            the reason text.

    Returns:
        The matching exception instance (not raised).
    """
    if selector == ERC20_INSUFFICIENT_ALLOWANCE:
        return InsufficientAllowanceError(
            "Insufficient token allowance. Approve the payment contract to spend your tokens and try again.",
            detail=message,
        )
    if selector == ERC20_INSUFFICIENT_BALANCE:
        return InsufficientSenderBalanceError("Insufficient token balance for this transfer.", detail=message)
    if selector in ECDSA_ERRORS:
        return SignatureInvalidError("The forwarder rejected the transfer signature.", detail=message)

    lowered = message.lower()
    if "insufficient funds" in lowered:
        return InsufficientRelayerGasError(
            "Relayer account cannot pay for gas. Please try again later.", detail=message
        )
    if "allowance" in lowered:
        return InsufficientAllowanceError(
            "Insufficient token allowance. Approve the payment contract to spend your tokens and try again.",
            detail=message,
        )
    if "exceeds balance" in lowered or "insufficient balance" in lowered:
        return InsufficientSenderBalanceError(
            "Insufficient token balance for this transfer.", detail=message
        )
    if "signature" in lowered or "signer" in lowered:
        return SignatureInvalidError(
            "The forwarder rejected the transfer signature.", detail=message
        )
    return RelayExecutionError("Transaction simulation reverted", detail=message)


class MetaTxRelayer:
    """
    Gas-sponsoring relayer for forwarder meta-transactions.

    Attributes:
        account: Relayer account (pays gas)
        wallet_address: Checksum relayer address
        nonce_state: Serialized nonce sequence of ``wallet_address``

    Example:
        relayer = MetaTxRelayer(
            private_key=os.environ["RELAYER_PRIVATE_KEY"],
            rpc_url="https://rpc.sepolia-api.lisk.com",
            forwarder_address=forwarder,
            payment_contract=payment_contract,
        )
        result = await relayer.relay(authorization)
    """

    def __init__(
        self,
        forwarder_address: str,
        private_key: Optional[str] = None,
        rpc_url: Optional[str] = None,
        chain_id: int = LISK_SEPOLIA_CHAIN_ID,
        payment_contract: Optional[str] = None,
        token_address: Optional[str] = None,
        request_timeout: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
        confirmation_timeout: float = 120.0,
        poll_interval: float = 2.0,
        gas_headroom: float = 1.1,
        web3: Optional[AsyncWeb3] = None,
    ):
        resolved_pk = private_key or get_relayer_private_key_from_env()
        if not resolved_pk:
            raise ConfigurationError(
                "Relayer key not provided. Pass 'private_key' or set 'RELAYER_PRIVATE_KEY'."
            )
        if web3 is None and not rpc_url:
            raise ConfigurationError("Relayer needs an RPC URL")

        self.account = Account.from_key(resolved_pk)
        self.wallet_address = AsyncWeb3.to_checksum_address(self.account.address)
        self.forwarder_address = AsyncWeb3.to_checksum_address(forwarder_address)
        self.payment_contract = AsyncWeb3.to_checksum_address(payment_contract) if payment_contract else None
        self.token_address = AsyncWeb3.to_checksum_address(token_address) if token_address else None
        self.chain_id = chain_id

        self._rpc_url = rpc_url
        self._web3 = web3
        self._request_timeout = request_timeout
        self._retry_policy = retry_policy or RetryPolicy()
        self._confirmation_timeout = confirmation_timeout
        self._poll_interval = poll_interval
        self._gas_headroom = gas_headroom

        self.nonce_state = RelayerNonceState(
            self._fetch_account_nonce,
            retry_policy=self._retry_policy,
            fetch_timeout=request_timeout,
        )

    def _get_web3_instance(self) -> AsyncWeb3:
        if self._web3 is None:
            self._web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
                self._rpc_url,
                request_kwargs={"timeout": self._request_timeout}
            ))
        return self._web3

    async def _timed(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, self._request_timeout)

    async def _fetch_account_nonce(self) -> int:
        web3 = self._get_web3_instance()
        return int(await web3.eth.get_transaction_count(self.wallet_address, "pending"))

    # =========================================================================
    # Relay
    # =========================================================================

    async def relay(self, authorization: MetaTxAuthorization) -> RelayResult:
        """
        Execute a transfer authorization on chain.

        Args:
            authorization: User-signed transfer authorization.

        Returns:
            RelayResult with SUCCESS, PENDING (broadcast, still unmined when
            the wait ended) or FAILED (mined but reverted).

        Raises:
            ConfigurationError: No target contract in the request or settings.
            SignatureInvalidError: Signature or forwarder nonce does not match.
            InsufficientSenderBalanceError, InsufficientAllowanceError,
            InsufficientRelayerGasError: Funding problems found before broadcast.
            NonceConflictError: Relayer nonce was stale; safe to retry.
            RelayExecutionError: Anything else.
        """
        target = authorization.target_contract or self.payment_contract
        if target is None:
            raise ConfigurationError("No target contract given and no payment contract configured")

        web3 = self._get_web3_instance()
        forwarder = web3.eth.contract(address=self.forwarder_address, abi=get_forwarder_abi())

        await self._preflight(web3, authorization, target)
        forwarder_nonce = await self._verify_authorization(forwarder, authorization, target)
        logger.info(
            "Relaying transfer %s -> %s amount=%d forwarder_nonce=%d",
            authorization.sender, authorization.receiver, authorization.amount, forwarder_nonce,
        )

        tx_fn = forwarder.functions.executeMetaTransaction(
            authorization.sender,
            authorization.receiver,
            authorization.amount,
            target,
            authorization.signature_bytes(),
        )
        gas_estimate = await self.simulate(tx_fn, description="executeMetaTransaction")
        return await self.submit_transaction(tx_fn, gas_estimate, description="executeMetaTransaction")

    async def _preflight(self, web3: AsyncWeb3, authorization: MetaTxAuthorization, target: str) -> None:
        """Log funding diagnostics; abort only if the relayer has no gas at all."""
        try:
            relayer_balance = await self._timed(web3.eth.get_balance(self.wallet_address))
        except Exception as e:
            logger.warning("Could not read relayer balance: %s", e)
        else:
            if relayer_balance == 0:
                logger.critical("Relayer %s has no native balance; cannot pay gas", self.wallet_address)
                raise InsufficientRelayerGasError("Relayer account has no funds for gas. Please try again later.")
            if relayer_balance < LOW_RELAYER_BALANCE_WEI:
                logger.warning("Relayer %s balance is low: %d wei", self.wallet_address, relayer_balance)

        if self.token_address is None:
            return

        token = web3.eth.contract(address=self.token_address, abi=get_erc20_abi())
        try:
            balance, allowance, decimals, symbol = await self._timed(asyncio.gather(
                token.functions.balanceOf(authorization.sender).call(),
                token.functions.allowance(authorization.sender, target).call(),
                token.functions.decimals().call(),
                token.functions.symbol().call(),
            ))
        except Exception as e:
            logger.warning("Token diagnostics unavailable for %s: %s", authorization.sender, e)
            return

        logger.info(
            "Sender %s holds %d %s (decimals=%d), allowance to %s: %d",
            authorization.sender, balance, symbol, decimals, target, allowance,
        )
        if balance < authorization.amount:
            logger.warning("Sender balance %d below transfer amount %d", balance, authorization.amount)
        if allowance < authorization.amount:
            logger.warning("Sender allowance %d below transfer amount %d", allowance, authorization.amount)

    async def _verify_authorization(self, forwarder, authorization: MetaTxAuthorization, target: str) -> int:
        """Check the authorization against the forwarder nonce; returns that nonce."""
        chain_nonce = int(await self._retry_policy.run(
            lambda: self._timed(forwarder.functions.nonces(authorization.sender).call()),
            give_up_on=(ContractLogicError,),
            description="forwarder nonce fetch",
        ))

        if authorization.nonce is not None and authorization.nonce != chain_nonce:
            raise SignatureInvalidError(
                f"Authorization nonce {authorization.nonce} does not match forwarder nonce {chain_nonce}"
            )

        try:
            signer = recover_meta_tx_signer(authorization, target, chain_nonce)
        except Exception as e:
            raise SignatureInvalidError("Signature could not be recovered", detail=str(e)) from e
        if signer != authorization.sender:
            raise SignatureInvalidError("Signature was not produced by the sender")
        return chain_nonce

    async def simulate(self, tx_fn, description: str = "transaction") -> int:
        """
        Estimate gas for ``tx_fn`` from the relayer account.

        Returns:
            int: Gas estimate.

        Raises:
            BaseError subclass from ``classify_revert`` when the call reverts.
            RelayExecutionError: If estimation keeps failing for other reasons.
        """
        try:
            return int(await self._retry_policy.run(
                lambda: self._timed(tx_fn.estimate_gas({"from": self.wallet_address})),
                give_up_on=(ContractLogicError,),
                description=f"{description} gas estimation",
            ))
        except ContractLogicError as e:
            raise classify_revert(error_text(e), revert_selector(e)) from e
        except Exception as e:
            if "revert" in error_text(e).lower():
                raise classify_revert(error_text(e), revert_selector(e)) from e
            raise RelayExecutionError("Gas estimation failed", detail=error_text(e)) from e

    # =========================================================================
    # Submission
    # =========================================================================

    async def _fee_params(self, web3: AsyncWeb3) -> Dict[str, int]:
        """EIP-1559 fees from recent history, falling back to legacy gas price."""
        try:
            fee_history = await self._timed(web3.eth.fee_history(1, "latest", [25.0]))
            base_fee = fee_history["baseFeePerGas"][-1]
            priority_fee = fee_history["reward"][0][0]
            return {
                "maxPriorityFeePerGas": priority_fee,
                "maxFeePerGas": (base_fee * 2) + priority_fee,
            }
        except Exception as e:
            logger.debug("fee_history unavailable (%s); using legacy gas price", e)
            return {"gasPrice": await self._timed(web3.eth.gas_price)}

    async def submit_transaction(self, tx_fn, gas_estimate: int, description: str = "transaction") -> RelayResult:
        """
        Sign and broadcast ``tx_fn`` with the next relayer nonce, then wait for it.

        Shared by relays and name registrations so both draw from the same
        nonce sequence.

        Raises:
            NonceConflictError: The node rejected the nonce; state was reset.
            InsufficientRelayerGasError: The node reported insufficient funds.
            RelayExecutionError: Any other broadcast failure.
        """
        web3 = self._get_web3_instance()
        fees = await self._fee_params(web3)

        async with self.nonce_state.acquire_nonce() as lease:
            tx_params: Dict[str, Any] = {
                "from": self.wallet_address,
                "chainId": self.chain_id,
                "nonce": lease.nonce,
                "gas": int(gas_estimate * self._gas_headroom),
                **fees,
            }
            tx_dict = await tx_fn.build_transaction(tx_params)
            signed_tx = self.account.sign_transaction(tx_dict)

            try:
                tx_hash = await self._timed(web3.eth.send_raw_transaction(signed_tx.raw_transaction))
            except asyncio.TimeoutError as e:
                raise NonceConflictError(
                    "Broadcast timed out; relayer nonce will be resynchronized. Please try again."
                ) from e
            except Exception as e:
                message = error_text(e)
                if is_nonce_conflict(message):
                    raise NonceConflictError("Relayer nonce was out of date. Please try again.", detail=message) from e
                if "insufficient funds" in message.lower():
                    raise InsufficientRelayerGasError("Relayer account cannot pay for gas.", detail=message) from e
                raise RelayExecutionError("Failed to broadcast transaction", detail=message) from e
            lease.mark_broadcast()

        tx_hash_hex = AsyncWeb3.to_hex(tx_hash)
        logger.info("Broadcast %s tx %s with nonce %d", description, tx_hash_hex, lease.nonce)
        return await self._wait_for_confirmation(web3, tx_hash_hex, lease.nonce)

    async def _wait_for_confirmation(self, web3: AsyncWeb3, tx_hash: str, nonce: int) -> RelayResult:
        """
        Poll for the receipt until ``confirmation_timeout`` elapses.

        Giving up only stops the wait; the transaction stays broadcast.
        """
        started = time.monotonic()
        deadline = started + self._confirmation_timeout
        receipt = None
        while True:
            try:
                receipt = await self._timed(web3.eth.get_transaction_receipt(tx_hash))
                if receipt:
                    break
            except TransactionNotFound:
                pass  # still pending
            except asyncio.TimeoutError:
                logger.debug("Receipt poll for %s timed out", tx_hash)
            if time.monotonic() >= deadline:
                break
            await asyncio.sleep(self._poll_interval)

        elapsed = time.monotonic() - started
        if not receipt:
            logger.warning("Tx %s not mined within %.0fs; reporting pending", tx_hash, self._confirmation_timeout)
            return RelayResult(
                status=TransactionStatus.PENDING,
                tx_hash=tx_hash,
                nonce=nonce,
                execution_time=elapsed,
            )

        if receipt.get("status") == 1:
            logger.info("Tx %s confirmed in block %s", tx_hash, receipt.get("blockNumber"))
            return RelayResult(
                status=TransactionStatus.SUCCESS,
                tx_hash=tx_hash,
                nonce=nonce,
                block_number=receipt.get("blockNumber"),
                gas_used=receipt.get("gasUsed"),
                execution_time=elapsed,
            )

        logger.error("Tx %s reverted on-chain", tx_hash)
        return RelayResult(
            status=TransactionStatus.FAILED,
            tx_hash=tx_hash,
            nonce=nonce,
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
            execution_time=elapsed,
            error_message="Transaction reverted on-chain",
        )
