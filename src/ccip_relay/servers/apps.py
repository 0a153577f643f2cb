"""
CCIP-Read Gateway Server - Event-driven FastAPI wrapper.

Routes:
    GET  /health
    GET|POST /v1/{sender}/{data}   CCIP-Read gateway (EIP-3668 URL template)
    POST /v1                       CCIP-Read gateway, JSON body ``{sender, data}``
    POST /api/ens-register         register a name on chain and record it
    POST /api/ens-sync             record an already registered name
    GET  /api/ens-lookup/{address} reverse lookup
    POST /api/relay                meta-transaction relay
"""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional, Sequence

from fastapi import FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..adapters.evm.constants import GatewaySettings
from ..adapters.evm.registrar import NameRegistrar
from ..adapters.evm.relayer import MetaTxRelayer
from ..adapters.evm.resolver import CrossChainQueryResolver
from ..adapters.evm.schemas import MetaTxAuthorization
from ..adapters.evm.signer import ResponseSigner
from ..engine.events import (
    BaseEvent,
    Dependencies,
    EventBus,
    GatewayFailedEvent,
    GatewayRequestEvent,
    GatewayRespondedEvent,
    RelayFailedEvent,
    RelayRequestEvent,
    RelaySucceededEvent,
)
from ..engine.exceptions import BaseError, ConfigurationError, InvalidRequestError
from ..engine.executors import EventChain
from ..schemas.https import (
    ErrorResponse,
    GatewayRequestBody,
    GatewayResponse,
    HealthResponse,
    RecordRequest,
    RelayResponse,
)
from ..stores.records import SqliteRecordStore
from .flows import lookup_record, register_record, setup_event_bus, status_for_error, sync_record

logger = logging.getLogger(__name__)


def _error_response(error: Exception) -> JSONResponse:
    if isinstance(error, BaseError):
        body = ErrorResponse(error=error.message or error.error_code, code=error.error_code, details=error.detail)
        return JSONResponse(status_code=status_for_error(error), content=body.to_dict())
    logger.exception("Unhandled error")
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="Internal server error", code="internal_error").to_dict(),
    )


class GatewayServer(FastAPI):
    """FastAPI server exposing the CCIP-Read gateway, record endpoints and the relayer."""

    def __init__(
        self,
        store: Optional[SqliteRecordStore] = None,
        query_resolver: Optional[CrossChainQueryResolver] = None,
        signer: Optional[ResponseSigner] = None,
        relayer: Optional[MetaTxRelayer] = None,
        registrar: Optional[NameRegistrar] = None,
        sync_token_key: Optional[str] = None,
        default_chain_id: Optional[int] = None,
        default_registry: Optional[str] = None,
        cors_origins: Sequence[str] = ("*",),
        **fastapi_kwargs
    ):
        """Initialize the gateway server.

        Args:
            store: Record store (default: in-memory SQLite)
            query_resolver: Chain-2 resolver used by the gateway
            signer: Response signer; gateway requests fail with 503 without one
            relayer: Meta-transaction relayer; ``/api/relay`` fails with 503 without one
            registrar: Registrar client used by register/sync with signatures
            sync_token_key: Shared key for ``/api/ens-sync`` bearer tokens
            default_chain_id: Chain for plain ``resolve`` calls
            default_registry: Registry for plain ``resolve`` calls
            cors_origins: Allowed CORS origins (default: all)
            **fastapi_kwargs: FastAPI arguments (title, version, etc.)
        """
        self.store = store or SqliteRecordStore()
        self.depends = Dependencies(
            store=self.store,
            query_resolver=query_resolver,
            signer=signer,
            relayer=relayer,
            registrar=registrar,
            sync_token_key=sync_token_key,
            default_chain_id=default_chain_id,
            default_registry=default_registry,
        )
        self.event_bus: EventBus = setup_event_bus()

        fastapi_kwargs.setdefault("lifespan", self._lifespan)
        super().__init__(**fastapi_kwargs)

        self.add_middleware(
            CORSMiddleware,
            allow_origins=list(cors_origins),
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_health_endpoint()
        self._setup_gateway_endpoints()
        self._setup_record_endpoints()
        self._setup_relay_endpoint()

    @classmethod
    def from_settings(cls, settings: GatewaySettings, **fastapi_kwargs) -> "GatewayServer":
        """
        Build a server and its components from ``GatewaySettings``.

        Components whose configuration is missing are left out; their
        endpoints answer 503 instead.

        Raises:
            ConfigurationError: The signing key equals the relayer key.
        """
        if settings.signer_private_key and settings.signer_private_key == settings.relayer_private_key:
            raise ConfigurationError("SIGNER_PRIVATE_KEY must differ from RELAYER_PRIVATE_KEY")

        retry_policy = settings.retry_policy()
        signer = None
        if settings.signer_private_key:
            signer = ResponseSigner(settings.signer_private_key, ttl=settings.signature_ttl)
            logger.info("Gateway signer address: %s", signer.address)
        else:
            logger.warning("SIGNER_PRIVATE_KEY not set; gateway requests will be rejected")

        rpc_urls = {settings.l2_chain_id: settings.l2_rpc_url} if settings.l2_rpc_url else {}
        query_resolver = CrossChainQueryResolver(
            rpc_urls=rpc_urls,
            request_timeout=settings.rpc_timeout,
            retry_policy=retry_policy,
        )

        relayer = None
        if settings.relayer_private_key and settings.forwarder_address:
            relayer = MetaTxRelayer(
                forwarder_address=settings.forwarder_address,
                private_key=settings.relayer_private_key,
                rpc_url=settings.l2_rpc_url,
                chain_id=settings.l2_chain_id,
                payment_contract=settings.payment_contract_address,
                token_address=settings.token_address,
                request_timeout=settings.rpc_timeout,
                retry_policy=retry_policy,
            )
            logger.info("Relayer address: %s", relayer.wallet_address)
        else:
            logger.warning("Relayer disabled (RELAYER_PRIVATE_KEY or FORWARDER_ADDRESS not set)")

        registrar = None
        if relayer is not None and settings.registrar_address:
            registrar = NameRegistrar(settings.registrar_address, relayer, request_timeout=settings.rpc_timeout)

        return cls(
            store=SqliteRecordStore(settings.record_db_path),
            query_resolver=query_resolver,
            signer=signer,
            relayer=relayer,
            registrar=registrar,
            sync_token_key=settings.sync_token_key,
            default_chain_id=settings.l2_chain_id,
            default_registry=settings.l2_registry_address,
            **fastapi_kwargs
        )

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        yield
        self.store.close()

    def subscribe(self, event_class: type[BaseEvent], handler: Callable) -> None:
        """Register an additional event handler.

        Args:
            event_class: Event type to handle
            handler: Async function(event, deps) -> Optional[BaseEvent]
        """
        self.event_bus.subscribe(event_class, handler)

    def hook(self, event_class: type[BaseEvent]) -> Callable:
        """Decorator for registering event hooks.

        Example:
            @app.hook(RelaySucceededEvent)
            async def on_relayed(event, deps):
                await notify(event.result.tx_hash)
        """
        def decorator(hook_func: Callable) -> Callable:
            self.event_bus.hook(event_class, hook_func)
            return hook_func
        return decorator

    # =========================================================================
    # Routes
    # =========================================================================

    def _setup_health_endpoint(self) -> None:
        @self.get("/health")
        async def health():
            return HealthResponse().to_dict()

    async def _run_gateway(self, sender: str, data: str) -> JSONResponse:
        event_chain = EventChain(self.event_bus, self.depends)
        try:
            async for event in event_chain.execute(GatewayRequestEvent(sender=sender, data=data)):
                if isinstance(event, GatewayRespondedEvent):
                    return JSONResponse(status_code=200, content=GatewayResponse(data=event.data).to_dict())
                if isinstance(event, GatewayFailedEvent):
                    logger.info("Gateway request failed (%d): %s", event.status_code, event.error)
                    body = ErrorResponse(error=event.error, code=event.error_code, details=event.details)
                    return JSONResponse(status_code=event.status_code, content=body.to_dict())
        except Exception as e:
            return _error_response(e)

        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error="Gateway request produced no response", code="internal_error").to_dict(),
        )

    def _setup_gateway_endpoints(self) -> None:
        @self.api_route("/v1/{sender}/{data}", methods=["GET", "POST"])
        async def gateway(sender: str, data: str):
            """CCIP-Read entry point; ``data`` may carry a trailing ``.json``."""
            return await self._run_gateway(sender, data)

        @self.post("/v1")
        async def gateway_body(request: Request):
            try:
                body = GatewayRequestBody.model_validate(await request.json())
            except ValueError:
                return JSONResponse(status_code=400, content=ErrorResponse(error="Invalid JSON body", code="invalid_request").to_dict())
            if not body.sender or not body.data:
                return JSONResponse(
                    status_code=400,
                    content=ErrorResponse(error="'sender' and 'data' are required", code="invalid_request").to_dict(),
                )
            return await self._run_gateway(body.sender, body.data)

    def _setup_record_endpoints(self) -> None:
        async def _parse_record(request: Request) -> RecordRequest:
            try:
                return RecordRequest.model_validate(await request.json())
            except ValueError as e:
                raise InvalidRequestError("Invalid record request", detail=str(e)) from e

        @self.post("/api/ens-register")
        async def ens_register(request: Request):
            try:
                body = await _parse_record(request)
                response = await register_record(body, self.depends)
            except Exception as e:
                return _error_response(e)
            return JSONResponse(status_code=200, content=response.to_dict())

        @self.post("/api/ens-sync")
        async def ens_sync(request: Request, authorization: Optional[str] = Header(None)):
            try:
                body = await _parse_record(request)
                response = await sync_record(body, self.depends, authorization)
            except Exception as e:
                return _error_response(e)
            return JSONResponse(status_code=200, content=response.to_dict())

        @self.get("/api/ens-lookup/{address}")
        async def ens_lookup(address: str):
            try:
                response = await lookup_record(address, self.depends)
            except Exception as e:
                return _error_response(e)
            return JSONResponse(status_code=200, content=response.to_dict())

    def _setup_relay_endpoint(self) -> None:
        @self.post("/api/relay")
        async def relay(request: Request):
            try:
                authorization = MetaTxAuthorization.model_validate(await request.json())
            except ValueError as e:
                body = RelayResponse(success=False, error=f"Invalid relay request: {e}", code="invalid_request", retryable=False)
                return JSONResponse(status_code=400, content=body.to_dict())

            event_chain = EventChain(self.event_bus, self.depends)
            try:
                async for event in event_chain.execute(RelayRequestEvent(authorization=authorization)):
                    if isinstance(event, RelaySucceededEvent):
                        result = event.result
                        body = RelayResponse(success=True, tx_hash=result.tx_hash, status=result.status.value)
                        return JSONResponse(status_code=200, content=body.to_dict())
                    if isinstance(event, RelayFailedEvent):
                        body = RelayResponse(
                            success=False,
                            tx_hash=event.tx_hash,
                            status="failed",
                            error=event.error,
                            code=event.error_code,
                            retryable=event.retryable,
                        )
                        return JSONResponse(status_code=event.status_code, content=body.to_dict())
            except Exception as e:
                return _error_response(e)

            body = RelayResponse(success=False, error="Relay produced no result", code="internal_error", retryable=False)
            return JSONResponse(status_code=500, content=body.to_dict())
