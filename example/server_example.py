from ccip_relay.adapters.evm.constants import GatewaySettings
from ccip_relay.servers import GatewayServer, create_private_key, generate_token
from ccip_relay.engine.events import RecordPersistedEvent, RelaySucceededEvent, RelayFailedEvent


# Settings come from the environment / .env (SIGNER_PRIVATE_KEY, RELAYER_PRIVATE_KEY, ...)
settings = GatewaySettings.from_env()
if not settings.sync_token_key:
    settings = settings.model_copy(update={"sync_token_key": create_private_key(prefix="sync_")})

sync_token = generate_token(private_key=settings.sync_token_key, expires_in=6000)
print("Sync token:", f"Bearer {sync_token}")

app = GatewayServer.from_settings(settings, title="CCIP-Read Gateway")


# Optional: Add event hooks for custom logic
@app.hook(RecordPersistedEvent)
async def on_record_persisted(event, deps):
    """Log when a resolved name is recorded."""
    print(f"Recorded {event.call.name}: {event.persisted}")

@app.hook(RelaySucceededEvent)
async def on_relay_success(event, deps):
    print(f"Relay succeeded: {event.result.tx_hash} ({event.result.status.value})")

@app.hook(RelayFailedEvent)
async def on_relay_failed(event, deps):
    print(f"Relay failed: [{event.error_code}] {event.error}")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="localhost", port=8000, log_level="debug")
