"""
HTTP Request/Response Schema Models

This module defines the Pydantic models used on the gateway's HTTP surface:

1. CCIP-Read gateway: ``/v1/{sender}/{data}`` answers with a signed result
2. Record registration and sync: ``/api/ens-register``, ``/api/ens-sync``
3. Reverse lookup: ``/api/ens-lookup/{address}``
4. Meta-transaction relay: ``/api/relay``

Wire names are camelCase (``txHash``, ``targetContract``); the models accept
both the wire names and the Python field names.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .bases import CanonicalModel


# ============================================================================
# Request Headers
# ============================================================================

class ClientRequestHeader(BaseModel):
    """HTTP request headers sent by clients.

    Attributes:
        content_type: MIME type of request body (default: application/json).
        authorization: Optional bearer token, required by the sync endpoint
            when a sync key is configured.
    """
    model_config = ConfigDict(populate_by_name=True)
    content_type: str = Field(default="application/json", alias="Content-Type")
    authorization: Optional[str] = Field(default=None, alias="Authorization")


# ============================================================================
# Health / Errors
# ============================================================================

class HealthResponse(CanonicalModel):
    """Liveness probe payload."""
    status: str = Field(default="ok")


class ErrorResponse(CanonicalModel):
    """Error body returned by every endpoint on failure.

    Attributes:
        error: Human-readable reason.
        code: Stable error code (see ``engine.exceptions``).
        details: Underlying cause (RPC message, revert reason), when known.
    """
    error: str = Field(..., description="Readable error message")
    code: Optional[str] = Field(None, description="Machine-readable error code")
    details: Optional[str] = Field(None, description="Underlying cause")


# ============================================================================
# CCIP-Read Gateway
# ============================================================================

class GatewayRequestBody(CanonicalModel):
    """JSON body of ``POST /v1``.

    EIP-3668 clients POST ``{"sender": ..., "data": ...}`` when the gateway URL
    has no ``{data}`` placeholder. Both fields are required; the route answers
    400 when either is missing.
    """
    sender: Optional[str] = None
    data: Optional[str] = None


class GatewayResponse(CanonicalModel):
    """Successful gateway answer.

    Attributes:
        data: 0x-prefixed ABI encoding of ``(bytes result, uint64 expires, bytes sig)``.
    """
    data: str = Field(..., description="ABI-encoded signed answer")


# ============================================================================
# Record Registration / Sync / Lookup
# ============================================================================

class RecordRequest(CanonicalModel):
    """Body of ``/api/ens-register`` and ``/api/ens-sync``.

    Attributes:
        name: Dotted name (e.g. ``alice.lisk.eth``).
        address: Owner address the name resolves to.
        label: Registrar label; derived from the first label of ``name`` when omitted.
        signature: Owner's EIP-191 registration authorization (required to register).
    """
    name: str = Field(..., min_length=1)
    address: str = Field(..., pattern=r"^0x[a-fA-F0-9]{40}$")
    label: Optional[str] = Field(None, min_length=1)
    signature: Optional[str] = None


class RecordWriteResponse(CanonicalModel):
    """Result of a successful record write.

    Attributes:
        success: Always True (failures use ErrorResponse).
        tx_hash: Registrar transaction hash when the name was registered on chain.
    """
    success: bool = True
    tx_hash: Optional[str] = Field(None, alias="txHash")


class LookupResponse(CanonicalModel):
    """Reverse lookup result; ``name`` is None when the address has no record."""
    name: Optional[str] = None


# ============================================================================
# Relay
# ============================================================================

class RelayResponse(CanonicalModel):
    """Result of ``POST /api/relay``.

    Attributes:
        success: Whether the transaction was accepted on chain (mined or pending).
        tx_hash: Transaction hash, when one was broadcast.
        status: ``success``, ``pending`` or ``failed``.
        error: Readable failure reason.
        code: Stable error code for failures.
        retryable: True when the same request may be retried (nonce conflicts).
    """
    success: bool
    tx_hash: Optional[str] = Field(None, alias="txHash")
    status: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None
    retryable: Optional[bool] = None
