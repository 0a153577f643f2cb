"""
Exception and Error Definitions Module

Defines the exception hierarchy for name resolution, response signing,
record persistence and meta-transaction relaying. All exceptions inherit
from BaseError for unified exception handling, and every class carries an
``error_code`` that is surfaced verbatim in HTTP error bodies.

Exception Hierarchy:
    BaseError (root)
    ├── InvalidRequestError
    │   └── MalformedEncodingError
    ├── ResolutionFailedError
    ├── SignatureInvalidError
    ├── GatewayUnreachableError
    ├── NonceConflictError
    ├── InsufficientFundsError
    │   ├── InsufficientSenderBalanceError
    │   ├── InsufficientAllowanceError
    │   └── InsufficientRelayerGasError
    ├── RelayExecutionError
    ├── RecordStoreError
    ├── TokenError
    │   ├── TokenExpiredError
    │   └── InvalidTokenError
    ├── ConfigurationError
    └── InvalidTransition
"""

from typing import Optional


class BaseError(Exception):
    """
    Root exception class for all project-specific exceptions.

    All custom exceptions should inherit from this class to enable
    unified exception handling and centralized error processing.

    Attributes:
        error_code: Stable machine-readable identifier for the error kind
        retryable: Whether the caller may retry the same request unchanged
    """
    error_code: str = "unknown_error"
    retryable: bool = False

    def __init__(self, message: str = "", *, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message


class InvalidRequestError(BaseError):
    """
    Raised when inbound data is malformed. Never retried.

    This includes scenarios such as:
    - Sender is not a well-formed address
    - Call data is not valid hex or does not decode as a resolve call
    - Names that cannot be wire-encoded
    """
    error_code = "invalid_request"


class MalformedEncodingError(InvalidRequestError):
    """
    Raised when a DNS wire-encoded name cannot be parsed.

    Typically a length byte that overruns the buffer, a missing zero
    terminator, or label bytes that are not valid UTF-8.
    """
    error_code = "malformed_encoding"


class ResolutionFailedError(BaseError):
    """
    Raised when the chain-2 resolve read fails.

    Carries the underlying RPC or revert reason as ``detail``.
    """
    error_code = "resolution_failed"


class SignatureInvalidError(BaseError):
    """
    Raised when an authorization signature does not verify.

    This includes scenarios such as:
    - Meta-transaction signature recovered to a different signer
    - Forwarder nonce in the request does not match the on-chain counter
    - Registration signature not produced by the registering address
    """
    error_code = "invalid_signature"


class GatewayUnreachableError(BaseError):
    """
    Raised when the off-chain gateway cannot be reached or answers badly.
    """
    error_code = "gateway_unreachable"


class NonceConflictError(BaseError):
    """
    Raised when the relayer's local account nonce was stale.

    The nonce state is reset before this reaches the caller, so the same
    request can be retried once the caller decides to.
    """
    error_code = "nonce_conflict"
    retryable = True


class InsufficientFundsError(BaseError):
    """
    Base exception for balance related failures.

    Fatal for the current attempt; requires user or operator action.
    """
    error_code = "insufficient_funds"


class InsufficientSenderBalanceError(InsufficientFundsError):
    """Raised when the sender does not hold enough tokens for the transfer."""
    error_code = "insufficient_sender_balance"


class InsufficientAllowanceError(InsufficientFundsError):
    """Raised when the sender has not approved enough tokens to the payment contract."""
    error_code = "insufficient_allowance"


class InsufficientRelayerGasError(InsufficientFundsError):
    """Raised when the relayer account cannot pay for gas."""
    error_code = "insufficient_relayer_gas"


class RelayExecutionError(BaseError):
    """
    Raised for relay failures that match no other category.

    Carries the raw chain error as ``detail``.
    """
    error_code = "relay_failed"


class RecordStoreError(BaseError):
    """
    Raised when the record store cannot complete a read or write.

    A missing record is not an error; lookups return None instead.
    """
    error_code = "record_store_error"


class TokenError(BaseError):
    """
    Base exception for sync token errors.
    """
    error_code = "token_error"


class TokenExpiredError(TokenError):
    """
    Raised when a sync token has expired and is no longer valid.
    """
    error_code = "token_expired"


class InvalidTokenError(TokenError):
    """
    Raised when a sync token is invalid or malformed.

    This includes scenarios such as:
    - Corrupted token data
    - Invalid token signature
    """
    error_code = "invalid_token"


class ConfigurationError(BaseError):
    """
    Raised when required configuration is missing or invalid.

    This includes scenarios such as:
    - Missing signing or relayer private keys
    - Contract addresses not configured for an endpoint that needs them
    - Invalid retry or timeout parameters
    """
    error_code = "configuration_error"


class InvalidTransition(BaseError):
    """
    Raised when an event handler returns an event that is not a legal
    successor of the event it handled.
    """
    error_code = "invalid_transition"
