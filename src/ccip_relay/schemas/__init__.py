from .bases import CanonicalModel, TransactionStatus, BaseTransactionConfirmation
from .https import (
    ClientRequestHeader,
    HealthResponse,
    ErrorResponse,
    GatewayRequestBody,
    GatewayResponse,
    RecordRequest,
    RecordWriteResponse,
    LookupResponse,
    RelayResponse,
)
from .records import ResolutionRecord

__all__ = [
    "CanonicalModel",
    "TransactionStatus",
    "BaseTransactionConfirmation",
    "ClientRequestHeader",
    "HealthResponse",
    "ErrorResponse",
    "GatewayRequestBody",
    "GatewayResponse",
    "RecordRequest",
    "RecordWriteResponse",
    "LookupResponse",
    "RelayResponse",
    "ResolutionRecord",
]
