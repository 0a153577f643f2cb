"""
Built-in event handlers for the gateway and relay workflows.

Gateway: envelope validation → chain-2 resolution → signing → record
persistence → response. Every failure leaves the chain as a
``GatewayFailedEvent`` carrying the HTTP status for its error class.

Relay: authorization → ``MetaTxRelayer.relay`` → succeeded / failed.

Record writes (register, sync) and reverse lookups are plain coroutines
used directly by the routes.
"""

import logging
from typing import Optional

from eth_utils import is_address, is_hex_address, to_checksum_address

from ..adapters.evm.codec import decode_address_result, decode_resolve_call, dns_encode
from ..adapters.evm.constants import PARENT_DOMAIN
from ..adapters.evm.registrar import label_from_name, validate_label
from ..adapters.evm.schemas import ResolveCall
from ..engine.events import (
    AnswerResolvedEvent,
    AnswerSignedEvent,
    Dependencies,
    EventBus,
    GatewayFailedEvent,
    GatewayRequestEvent,
    GatewayRespondedEvent,
    RecordPersistedEvent,
    RelayFailedEvent,
    RelayRequestEvent,
    RelaySucceededEvent,
    RequestValidatedEvent,
)
from ..engine.exceptions import (
    BaseError,
    ConfigurationError,
    GatewayUnreachableError,
    InsufficientFundsError,
    InsufficientRelayerGasError,
    InvalidRequestError,
    NonceConflictError,
    RecordStoreError,
    RelayExecutionError,
    ResolutionFailedError,
    SignatureInvalidError,
    TokenError,
)
from ..schemas.https import LookupResponse, RecordRequest, RecordWriteResponse
from .security import parse_bearer_token, verify_token

logger = logging.getLogger(__name__)


# ==================== Error Mapping ====================

# Most specific classes first.
_STATUS_BY_ERROR = (
    (InvalidRequestError, 400),
    (InsufficientRelayerGasError, 503),
    (InsufficientFundsError, 400),
    (SignatureInvalidError, 401),
    (TokenError, 401),
    (ResolutionFailedError, 502),
    (GatewayUnreachableError, 502),
    (NonceConflictError, 409),
    (ConfigurationError, 503),
)


def status_for_error(error: Exception) -> int:
    """HTTP status code for an exception raised while serving a request."""
    for error_class, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_class):
            return status_code
    return 500


def _gateway_failed(error: Exception) -> GatewayFailedEvent:
    if isinstance(error, BaseError):
        return GatewayFailedEvent(
            status_code=status_for_error(error),
            error_code=error.error_code,
            error=error.message or error.error_code,
            details=error.detail,
        )
    logger.exception("Unexpected error while handling gateway request")
    return GatewayFailedEvent(status_code=500, error_code="internal_error", error="Internal server error")


def _relay_failed(error: Exception) -> RelayFailedEvent:
    if isinstance(error, BaseError):
        return RelayFailedEvent(
            status_code=status_for_error(error),
            error_code=error.error_code,
            error=error.message or error.error_code,
            details=error.detail,
            retryable=error.retryable,
        )
    logger.exception("Unexpected error while relaying")
    return RelayFailedEvent(status_code=500, error_code="internal_error", error="Internal server error")


# ==================== Gateway Handlers ====================

def _parse_hex(value: str, field: str) -> bytes:
    hex_str = value[2:] if value[:2].lower() == "0x" else value
    try:
        return bytes.fromhex(hex_str)
    except ValueError as e:
        raise InvalidRequestError(f"'{field}' is not valid hex", detail=str(e)) from e


def _is_trusted_registry(call: ResolveCall, deps: Dependencies) -> bool:
    """Only answers from the configured chain-2 registry may enter the reverse index."""
    if deps.default_chain_id is None or not deps.default_registry:
        return False
    return call.chain_id == deps.default_chain_id and call.registry.lower() == deps.default_registry.lower()


async def handle_gateway_request(
    event: GatewayRequestEvent,
    deps: Dependencies
) -> RequestValidatedEvent | GatewayFailedEvent:
    """Validate the envelope and decode the resolve call."""
    try:
        if not is_address(event.sender):
            raise InvalidRequestError(f"'sender' is not a valid address: {event.sender!r}")
        data = event.data[:-5] if event.data.endswith(".json") else event.data
        request_data = _parse_hex(data, "data")
        call = decode_resolve_call(
            request_data,
            default_chain_id=deps.default_chain_id,
            default_registry=deps.default_registry,
        )
    except Exception as e:
        return _gateway_failed(e)

    logger.info("Gateway request from %s for %s (chain %d)", event.sender, call.name, call.chain_id)
    return RequestValidatedEvent(
        sender=to_checksum_address(event.sender),
        request_data=request_data,
        call=call,
    )


async def handle_request_validated(
    event: RequestValidatedEvent,
    deps: Dependencies
) -> AnswerResolvedEvent | GatewayFailedEvent:
    """Fetch the answer from the chain-2 registry."""
    try:
        if deps.query_resolver is None:
            raise ConfigurationError("Query resolver not configured")
        result = await deps.query_resolver.resolve(event.call)
    except Exception as e:
        return _gateway_failed(e)

    address = decode_address_result(event.call.inner_call, result)
    logger.info("Resolved %s -> %s", event.call.name, address or f"<{len(result)} bytes>")
    return AnswerResolvedEvent(
        sender=event.sender,
        request_data=event.request_data,
        call=event.call,
        result=result,
        address=address,
    )


async def handle_answer_resolved(
    event: AnswerResolvedEvent,
    deps: Dependencies
) -> AnswerSignedEvent | GatewayFailedEvent:
    """Sign the answer for the origin contract."""
    try:
        if deps.signer is None:
            raise ConfigurationError("Signing key not configured ('SIGNER_PRIVATE_KEY')")
        answer = deps.signer.sign(event.sender, event.request_data, event.result)
    except Exception as e:
        return _gateway_failed(e)

    return AnswerSignedEvent(call=event.call, answer=answer, address=event.address)


async def handle_answer_signed(
    event: AnswerSignedEvent,
    deps: Dependencies
) -> RecordPersistedEvent | GatewayFailedEvent:
    """Record the resolved address for reverse lookup."""
    if event.address is None or deps.store is None:
        return RecordPersistedEvent(call=event.call, answer=event.answer, persisted=False)
    if not _is_trusted_registry(event.call, deps):
        logger.info(
            "Not recording %s: answer came from registry %s on chain %d",
            event.call.name, event.call.registry, event.call.chain_id,
        )
        return RecordPersistedEvent(call=event.call, answer=event.answer, persisted=False)
    try:
        deps.store.upsert(event.call.dns_name, event.address)
    except RecordStoreError as e:
        # The signed answer is still valid; only the reverse index misses it.
        logger.error("Could not record %s -> %s: %s", event.call.name, event.address, e)
        return RecordPersistedEvent(call=event.call, answer=event.answer, persisted=False)
    except Exception as e:
        return _gateway_failed(e)
    return RecordPersistedEvent(call=event.call, answer=event.answer, persisted=True)


async def handle_record_persisted(
    event: RecordPersistedEvent,
    deps: Dependencies
) -> GatewayRespondedEvent:
    return GatewayRespondedEvent(data=event.answer.to_hex())


# ==================== Relay Handler ====================

async def handle_relay_request(
    event: RelayRequestEvent,
    deps: Dependencies
) -> RelaySucceededEvent | RelayFailedEvent:
    """Relay the authorization and report the outcome."""
    try:
        if deps.relayer is None:
            raise ConfigurationError("Relayer not configured ('RELAYER_PRIVATE_KEY', 'FORWARDER_ADDRESS')")
        result = await deps.relayer.relay(event.authorization)
    except Exception as e:
        return _relay_failed(e)

    if result.is_success():
        return RelaySucceededEvent(result=result)
    return RelayFailedEvent(
        status_code=500,
        error_code=RelayExecutionError.error_code,
        error=result.error_message or "Transaction failed",
        tx_hash=result.tx_hash,
    )


# ==================== Record Operations ====================

def _resolve_label(body: RecordRequest) -> str:
    if body.label is None:
        return validate_label(label_from_name(body.name))
    validate_label(body.label)
    if body.name != f"{body.label}.{PARENT_DOMAIN}":
        raise InvalidRequestError(f"Name {body.name!r} does not match label {body.label!r}")
    return body.label


async def register_record(body: RecordRequest, deps: Dependencies) -> RecordWriteResponse:
    """
    Register ``body.name`` on chain for ``body.address`` and record it.

    The owner's signature over the registrar nonce is mandatory.

    Raises:
        SignatureInvalidError: Missing or non-verifying signature.
        ConfigurationError: No registrar configured.
        RelayExecutionError: The register transaction reverted.
    """
    dns_encode(body.name)
    if not body.signature:
        raise SignatureInvalidError("Registration requires the owner's signature")
    if deps.registrar is None:
        raise ConfigurationError("Registrar not configured ('REGISTRAR_ADDRESS', 'RELAYER_PRIVATE_KEY')")

    label = _resolve_label(body)
    result = await deps.registrar.register(label, body.address, body.signature)
    if not result.is_success():
        raise RelayExecutionError("Registration transaction reverted", detail=result.tx_hash)

    deps.store.upsert(body.name, body.address)
    return RecordWriteResponse(success=True, tx_hash=result.tx_hash)


async def sync_record(body: RecordRequest, deps: Dependencies, authorization: Optional[str]) -> RecordWriteResponse:
    """
    Record an already registered name.

    Authorized either by the owner's signature (checked against the
    registrar) or by a bearer token issued with the sync key.

    Raises:
        SignatureInvalidError: The signature does not verify.
        TokenError: Missing, invalid or expired token.
        ConfigurationError: Neither verification route is available.
    """
    dns_encode(body.name)
    if body.signature:
        if deps.registrar is None:
            raise ConfigurationError("Registrar not configured ('REGISTRAR_ADDRESS', 'RELAYER_PRIVATE_KEY')")
        label = _resolve_label(body)
        await deps.registrar.verify_registration(label, body.address, body.signature)
    else:
        if not deps.sync_token_key:
            raise ConfigurationError("Sync endpoint requires 'SYNC_TOKEN_KEY' or an owner signature")
        verify_token(token=parse_bearer_token(authorization), private_key=deps.sync_token_key)

    deps.store.upsert(body.name, body.address)
    return RecordWriteResponse(success=True)


async def lookup_record(address: str, deps: Dependencies) -> LookupResponse:
    """Reverse lookup; an unknown address yields ``name=None``."""
    if not is_hex_address(address):
        raise InvalidRequestError(f"Invalid address: {address!r}")
    return LookupResponse(name=deps.store.lookup_by_address(address))


# ==================== Event Bus Setup ====================

def setup_event_bus() -> EventBus:
    """Initialize event bus with built-in handlers."""
    event_bus = EventBus()

    event_bus.subscribe(GatewayRequestEvent, handle_gateway_request)
    event_bus.subscribe(RequestValidatedEvent, handle_request_validated)
    event_bus.subscribe(AnswerResolvedEvent, handle_answer_resolved)
    event_bus.subscribe(AnswerSignedEvent, handle_answer_signed)
    event_bus.subscribe(RecordPersistedEvent, handle_record_persisted)
    event_bus.subscribe(RelayRequestEvent, handle_relay_request)

    return event_bus
