"""
Contract ABI Module

Minimal ABI fragments for the contracts the gateway, the relayer and the
client resolver talk to. Only the functions actually called are listed.

Usage:
    from .abis import get_forwarder_abi

    contract = web3.eth.contract(address=forwarder_address, abi=get_forwarder_abi())
    nonce = await contract.functions.nonces(sender).call()
"""

from typing import Any, Dict, List


def _fn(name: str, inputs: List[tuple], outputs: List[str], mutability: str = "view") -> Dict[str, Any]:
    return {
        "name": name,
        "type": "function",
        "stateMutability": mutability,
        "inputs": [{"name": arg, "type": typ} for arg, typ in inputs],
        "outputs": [{"name": "", "type": typ} for typ in outputs],
    }


def get_registry_abi() -> List[Dict[str, Any]]:
    """
    ABI of the chain-2 registry queried by the gateway.

    ``resolve(bytes name, bytes data)`` returns the ABI-encoded answer to
    ``data`` (e.g. an ``addr(bytes32)`` result).
    """
    return [
        _fn("resolve", [("name", "bytes"), ("data", "bytes")], ["bytes"]),
    ]


def get_offchain_resolver_abi() -> List[Dict[str, Any]]:
    """
    ABI of the origin (chain-1) resolver.

    ``resolve`` reverts with ``OffchainLookup`` when the answer lives off
    chain; ``resolveWithProof`` is the verifying callback and ``url`` the
    gateway URL template it advertises.
    """
    return [
        _fn("resolve", [("name", "bytes"), ("data", "bytes")], ["bytes"]),
        _fn("resolveWithProof", [("response", "bytes"), ("extraData", "bytes")], ["bytes"]),
        _fn("url", [], ["string"]),
    ]


def get_forwarder_abi() -> List[Dict[str, Any]]:
    """
    ABI of the meta-transaction forwarder.

    Example:
        nonce = await forwarder.functions.nonces(sender).call()
        tx_fn = forwarder.functions.executeMetaTransaction(sender, receiver, amount, target, signature)
    """
    return [
        _fn("nonces", [("user", "address")], ["uint256"]),
        _fn(
            "executeMetaTransaction",
            [("from", "address"), ("to", "address"), ("amount", "uint256"),
             ("targetContract", "address"), ("signature", "bytes")],
            [],
            mutability="nonpayable",
        ),
    ]


def get_erc20_abi() -> List[Dict[str, Any]]:
    """ABI for the ERC-20 reads used by relay diagnostics."""
    return [
        _fn("balanceOf", [("account", "address")], ["uint256"]),
        _fn("allowance", [("owner", "address"), ("spender", "address")], ["uint256"]),
        _fn("decimals", [], ["uint8"]),
        _fn("symbol", [], ["string"]),
    ]


def get_registrar_abi() -> List[Dict[str, Any]]:
    """
    ABI of the chain-2 name registrar.

    ``nonces(owner)`` is the registration authorization counter that
    registration signatures commit to.
    """
    return [
        _fn("available", [("label", "string")], ["bool"]),
        _fn("nonces", [("owner", "address")], ["uint256"]),
        _fn("register", [("label", "string"), ("owner", "address")], [], mutability="nonpayable"),
    ]
