"""Run the gateway with settings from the environment: ``python -m ccip_relay.servers``."""

import logging
import os

import uvicorn

from ..adapters.evm.constants import GatewaySettings
from .apps import GatewayServer


def main() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = GatewayServer.from_settings(GatewaySettings.from_env(), title="CCIP-Read Gateway")
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    main()
