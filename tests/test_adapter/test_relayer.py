"""
Meta-Transaction Relayer Test Suite

Tests for MetaTxRelayer covering:
- Successful relay with nonce leasing and EIP-1559 fees
- Revert translation during simulation (no broadcast)
- Nonce monotonicity across sequential relays
- Nonce conflict recovery
- Preflight gas checks and confirmation timeouts

Usage:
    pytest tests/test_adapter/test_relayer.py -v
"""

import asyncio

import pytest
from eth_utils import function_signature_to_4byte_selector
from web3.exceptions import ContractLogicError, TransactionNotFound

from test_mocks import (
    MOCK_AMOUNT,
    MOCK_BASE_FEE,
    MOCK_CHAIN_ID,
    MOCK_GAS_LIMIT,
    MOCK_OTHER_PRIVATE_KEY,
    MOCK_PRIORITY_FEE,
    MOCK_RECEIVER_ADDRESS,
    MOCK_SENDER_ADDRESS,
    MOCK_TX_HASH,
    MockForwarderContract,
    MockWeb3Provider,
    MOCK_FORWARDER_ADDRESS,
    create_relayer,
    create_signed_authorization,
)

from ccip_relay.adapters.evm.schemas import RelayResult
from ccip_relay.adapters.evm.relayer import (
    ERC20_INSUFFICIENT_ALLOWANCE,
    ERC20_INSUFFICIENT_BALANCE,
    classify_revert,
    error_text,
    is_nonce_conflict,
    revert_selector,
)
from ccip_relay.engine.exceptions import (
    ConfigurationError,
    InsufficientAllowanceError,
    InsufficientRelayerGasError,
    InsufficientSenderBalanceError,
    NonceConflictError,
    RelayExecutionError,
    SignatureInvalidError,
)
from ccip_relay.schemas.bases import TransactionStatus


class TestRevertClassification:

    def test_allowance_revert(self):
        assert isinstance(classify_revert("execution reverted: ERC20: insufficient allowance"), InsufficientAllowanceError)

    def test_balance_revert(self):
        assert isinstance(
            classify_revert("execution reverted: ERC20: transfer amount exceeds balance"),
            InsufficientSenderBalanceError,
        )

    def test_relayer_funds(self):
        assert isinstance(classify_revert("insufficient funds for gas * price + value"), InsufficientRelayerGasError)

    def test_signature_revert(self):
        assert isinstance(classify_revert("execution reverted: Invalid signature"), SignatureInvalidError)

    def test_unknown_revert_keeps_detail(self):
        error = classify_revert("execution reverted: paused")
        assert type(error) is RelayExecutionError
        assert error.detail == "execution reverted: paused"

    @pytest.mark.parametrize("signature,expected", [
        ("ERC20InsufficientAllowance(address,uint256,uint256)", InsufficientAllowanceError),
        ("ERC20InsufficientBalance(address,uint256,uint256)", InsufficientSenderBalanceError),
        ("ECDSAInvalidSignature()", SignatureInvalidError),
    ])
    def test_custom_error_selector(self, signature, expected):
        selector = function_signature_to_4byte_selector(signature)
        assert isinstance(classify_revert("execution reverted", selector), expected)

    def test_custom_error_selectors_match_known_values(self):
        assert ERC20_INSUFFICIENT_ALLOWANCE.hex() == "fb8f41b2"
        assert ERC20_INSUFFICIENT_BALANCE.hex() == "e450d38c"

    def test_selector_read_from_revert_data(self):
        data = "0xfb8f41b2" + "00" * 96
        error = ContractLogicError("execution reverted", data=data)
        assert revert_selector(error) == bytes.fromhex("fb8f41b2")
        assert isinstance(classify_revert(error_text(error), revert_selector(error)), InsufficientAllowanceError)

    def test_selector_read_from_undecoded_message(self):
        error = ContractLogicError("0xe450d38c" + "00" * 96)
        assert revert_selector(error) == bytes.fromhex("e450d38c")

    def test_reason_string_has_no_custom_selector(self):
        assert revert_selector(ContractLogicError("execution reverted: paused")) is None

    @pytest.mark.parametrize("message", [
        "already known",
        "nonce too low: next nonce 7, tx nonce 5",
        "replacement transaction underpriced",
    ])
    def test_nonce_conflict_markers(self, message):
        assert is_nonce_conflict(message)

    def test_other_errors_are_not_nonce_conflicts(self):
        assert not is_nonce_conflict("execution reverted")


class TestRelayResult:

    def test_wire_fields(self):
        result = RelayResult(status=TransactionStatus.PENDING, tx_hash=MOCK_TX_HASH, nonce=1)

        assert set(result.to_dict()) == {
            "confirmation_type", "status", "execution_time", "error_message",
            "tx_hash", "nonce", "block_number", "gas_used",
        }
        assert result.to_dict()["status"] == "pending"
        assert result.is_success()


class TestRelaySuccess:

    @pytest.mark.asyncio
    async def test_relay_submits_with_leased_nonce(self):
        web3 = MockWeb3Provider(tx_count=5)
        relayer = create_relayer(web3)

        result = await relayer.relay(create_signed_authorization())

        assert result.status == TransactionStatus.SUCCESS
        assert result.tx_hash == MOCK_TX_HASH
        assert result.nonce == 5
        assert relayer.nonce_state.current == 6

        params = web3.forwarder.execute.build_transaction.call_args.args[0]
        assert params["nonce"] == 5
        assert params["chainId"] == MOCK_CHAIN_ID
        assert params["gas"] == int(MOCK_GAS_LIMIT * 1.1)
        assert params["maxPriorityFeePerGas"] == MOCK_PRIORITY_FEE
        assert params["maxFeePerGas"] == MOCK_BASE_FEE * 2 + MOCK_PRIORITY_FEE
        web3.eth.send_raw_transaction.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_relay_passes_authorization_to_forwarder(self):
        web3 = MockWeb3Provider()
        relayer = create_relayer(web3)
        authorization = create_signed_authorization()

        await relayer.relay(authorization)

        args = web3.forwarder.functions.executeMetaTransaction.call_args.args
        assert args[0] == MOCK_SENDER_ADDRESS
        assert args[1] == MOCK_RECEIVER_ADDRESS
        assert args[2] == MOCK_AMOUNT
        assert args[4] == authorization.signature_bytes()

    @pytest.mark.asyncio
    async def test_reverted_receipt_is_failed_result(self):
        web3 = MockWeb3Provider(receipt_status=0)
        relayer = create_relayer(web3)

        result = await relayer.relay(create_signed_authorization())

        assert result.status == TransactionStatus.FAILED
        assert not result.is_success()
        assert result.tx_hash == MOCK_TX_HASH

    @pytest.mark.asyncio
    async def test_confirmation_timeout_reports_pending(self):
        web3 = MockWeb3Provider()
        web3.eth.get_transaction_receipt.side_effect = TransactionNotFound("not yet")
        relayer = create_relayer(web3, confirmation_timeout=0)

        result = await relayer.relay(create_signed_authorization())

        assert result.status == TransactionStatus.PENDING
        assert result.is_success()
        assert result.tx_hash == MOCK_TX_HASH
        assert relayer.nonce_state.current == 1


class TestRelayRejections:

    @pytest.mark.asyncio
    async def test_insufficient_allowance_is_not_broadcast(self):
        web3 = MockWeb3Provider(contracts={
            MOCK_FORWARDER_ADDRESS: MockForwarderContract(
                estimate_error=ContractLogicError("execution reverted: ERC20: insufficient allowance")
            ),
        })
        relayer = create_relayer(web3)

        with pytest.raises(InsufficientAllowanceError):
            await relayer.relay(create_signed_authorization())

        web3.eth.send_raw_transaction.assert_not_awaited()
        web3.forwarder.execute.estimate_gas.assert_awaited_once()
        assert relayer.nonce_state.current is None

    @pytest.mark.asyncio
    async def test_custom_error_allowance_is_classified(self):
        web3 = MockWeb3Provider(contracts={
            MOCK_FORWARDER_ADDRESS: MockForwarderContract(
                estimate_error=ContractLogicError("execution reverted", data="0xfb8f41b2" + "00" * 96)
            ),
        })
        relayer = create_relayer(web3)

        with pytest.raises(InsufficientAllowanceError):
            await relayer.relay(create_signed_authorization())

        web3.eth.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_signature_from_another_key_is_rejected(self):
        web3 = MockWeb3Provider()
        relayer = create_relayer(web3)
        forged = create_signed_authorization(private_key=MOCK_OTHER_PRIVATE_KEY)
        forged = forged.model_copy(update={"sender": MOCK_SENDER_ADDRESS})

        with pytest.raises(SignatureInvalidError):
            await relayer.relay(forged)

        web3.forwarder.execute.estimate_gas.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_forwarder_nonce_is_rejected(self):
        web3 = MockWeb3Provider(contracts={MOCK_FORWARDER_ADDRESS: MockForwarderContract(nonce=3)})
        relayer = create_relayer(web3)

        with pytest.raises(SignatureInvalidError):
            await relayer.relay(create_signed_authorization(nonce=2))

    @pytest.mark.asyncio
    async def test_relayer_without_gas_aborts(self):
        web3 = MockWeb3Provider(relayer_balance=0)
        relayer = create_relayer(web3)

        with pytest.raises(InsufficientRelayerGasError):
            await relayer.relay(create_signed_authorization())

        web3.eth.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_low_sender_balance_does_not_block(self):
        web3 = MockWeb3Provider()
        web3.token.functions.balanceOf.return_value.call.return_value = 1
        relayer = create_relayer(web3)

        result = await relayer.relay(create_signed_authorization())

        assert result.status == TransactionStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_missing_target_contract(self):
        web3 = MockWeb3Provider()
        relayer = create_relayer(web3, payment_contract=None)
        authorization = create_signed_authorization().model_copy(update={"target_contract": None})

        with pytest.raises(ConfigurationError):
            await relayer.relay(authorization)

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("RELAYER_PRIVATE_KEY", raising=False)
        with pytest.raises(ConfigurationError):
            create_relayer(MockWeb3Provider(), private_key=None)


class TestRelayerNonces:

    @pytest.mark.asyncio
    async def test_sequential_relays_use_consecutive_nonces(self):
        web3 = MockWeb3Provider(tx_count=7)
        relayer = create_relayer(web3)

        for _ in range(4):
            await relayer.relay(create_signed_authorization())

        assert web3.forwarder.execute.built_nonces == [7, 8, 9, 10]

    @pytest.mark.asyncio
    async def test_concurrent_relays_never_share_a_nonce(self):
        web3 = MockWeb3Provider(tx_count=0)
        relayer = create_relayer(web3)

        await asyncio.gather(*(relayer.relay(create_signed_authorization()) for _ in range(5)))

        assert sorted(web3.forwarder.execute.built_nonces) == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_nonce_too_low_resets_and_refetches(self):
        web3 = MockWeb3Provider(tx_count=3)
        web3.eth.send_raw_transaction.side_effect = [
            ValueError("nonce too low"),
            bytes.fromhex(MOCK_TX_HASH[2:]),
        ]
        relayer = create_relayer(web3)

        with pytest.raises(NonceConflictError) as exc_info:
            await relayer.relay(create_signed_authorization())
        assert exc_info.value.retryable
        assert relayer.nonce_state.current is None

        fetches_before = web3.eth.get_transaction_count.await_count
        web3.eth.get_transaction_count.return_value = 9

        result = await relayer.relay(create_signed_authorization())

        assert web3.eth.get_transaction_count.await_count > fetches_before
        assert result.nonce == 9
        assert web3.forwarder.execute.built_nonces == [3, 9]

    @pytest.mark.asyncio
    async def test_other_broadcast_errors_keep_nonce(self):
        web3 = MockWeb3Provider(tx_count=4)
        web3.eth.send_raw_transaction.side_effect = ValueError("intrinsic gas too low")
        relayer = create_relayer(web3)

        with pytest.raises(RelayExecutionError):
            await relayer.relay(create_signed_authorization())

        assert relayer.nonce_state.current == 4
