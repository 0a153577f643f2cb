import asyncio
import os

import httpx

from ccip_relay.adapters.evm.constants import amount_to_value
from ccip_relay.adapters.evm.signatures import sign_meta_transaction
from ccip_relay.clients import FallbackResolver, GatewayHttpClient

sender_pk = "0xxxx"  # Replace with the sender's private key
resolver_address = os.getenv("OFFCHAIN_RESOLVER_ADDRESS", "0x0000000000000000000000000000000000000000")
payment_contract = os.getenv("PAYMENT_CONTRACT_ADDRESS", "0x0000000000000000000000000000000000000000")


async def main():
    async with FallbackResolver(resolver_address) as resolver:
        receiver = await resolver.resolve("alice.lisk.eth")
    print("alice.lisk.eth ->", receiver)
    if receiver is None:
        return None

    authorization = sign_meta_transaction(
        private_key=sender_pk,
        receiver=receiver,
        amount=amount_to_value(amount="250.00", decimals=2),
        target_contract=payment_contract,
        nonce=0,  # forwarder.nonces(sender)
    )
    async with GatewayHttpClient(
        base_url="http://localhost:8000",
        timeout=httpx.Timeout(60.0, read=180.0),
    ) as client:
        return await client.relay(authorization)


if __name__ == "__main__":
    response = asyncio.run(main())
    print("Response:", response)
