"""
EIP-191 authorizations signed by end users.

Two messages are signed with ``personal_sign`` semantics over a packed
keccak digest:

* meta-transaction transfers:
  ``keccak256(abi.encodePacked(sender, receiver, amount, targetContract, nonce))``
* name registrations:
  ``keccak256(abi.encodePacked(label, owner, nonce))``

Signing happens in-process via ``eth_account``; recovery is used by the
relayer and the registration endpoint to check who authorized a request.
"""

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import to_checksum_address
from web3 import Web3

from .schemas import MetaTxAuthorization


def build_meta_tx_hash(sender: str, receiver: str, amount: int, target_contract: str, nonce: int) -> bytes:
    """Packed keccak digest the forwarder expects a transfer authorization to sign."""
    return bytes(Web3.solidity_keccak(
        ["address", "address", "uint256", "address", "uint256"],
        [
            to_checksum_address(sender),
            to_checksum_address(receiver),
            amount,
            to_checksum_address(target_contract),
            nonce,
        ],
    ))


def sign_meta_transaction(
    *,
    private_key: str,
    receiver: str,
    amount: int,
    target_contract: str,
    nonce: int,
) -> MetaTxAuthorization:
    """
    Sign a transfer authorization for submission to ``/api/relay``.

    Args:
        private_key: Sender's key; the sender address is derived from it.
        receiver: Transfer recipient.
        amount: Amount in the token's smallest unit.
        target_contract: Payment contract the forwarder will call.
        nonce: Sender's current forwarder nonce.

    Returns:
        MetaTxAuthorization with ``signature`` populated.

    Example::

        auth = sign_meta_transaction(
            private_key="0xYOUR_PRIVATE_KEY",
            receiver="0xRecipient",
            amount=amount_to_value(amount="25000", decimals=2),
            target_contract=payment_contract,
            nonce=await forwarder.functions.nonces(sender).call(),
        )
    """
    account = Account.from_key(private_key)
    digest = build_meta_tx_hash(account.address, receiver, amount, target_contract, nonce)
    signed = Account.sign_message(encode_defunct(primitive=digest), private_key=private_key)
    return MetaTxAuthorization(
        sender=account.address,
        receiver=receiver,
        amount=amount,
        target_contract=target_contract,
        nonce=nonce,
        signature="0x" + bytes(signed.signature).hex(),
    )


def recover_meta_tx_signer(authorization: MetaTxAuthorization, target_contract: str, nonce: int) -> str:
    """Recover the address that signed ``authorization`` for the given target and nonce."""
    digest = build_meta_tx_hash(
        authorization.sender,
        authorization.receiver,
        authorization.amount,
        target_contract,
        nonce,
    )
    return Account.recover_message(encode_defunct(primitive=digest), signature=authorization.signature_bytes())


def build_registration_hash(label: str, owner: str, nonce: int) -> bytes:
    return bytes(Web3.solidity_keccak(
        ["string", "address", "uint256"],
        [label, to_checksum_address(owner), nonce],
    ))


def sign_registration(*, private_key: str, label: str, nonce: int) -> str:
    """Sign a registration authorization for ``label``; returns 0x-prefixed hex."""
    account = Account.from_key(private_key)
    digest = build_registration_hash(label, account.address, nonce)
    signed = Account.sign_message(encode_defunct(primitive=digest), private_key=private_key)
    return "0x" + bytes(signed.signature).hex()


def recover_registration_signer(label: str, owner: str, nonce: int, signature: str) -> str:
    """
    Recover the signer of a registration authorization.

    Raises:
        ValueError: If ``signature`` is not a well-formed 65-byte signature.
    """
    digest = build_registration_hash(label, owner, nonce)
    sig_hex = signature[2:] if signature.startswith("0x") else signature
    return Account.recover_message(encode_defunct(primitive=digest), signature=bytes.fromhex(sig_hex))
