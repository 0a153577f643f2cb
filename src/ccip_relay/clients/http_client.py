"""
Gateway HTTP Client

httpx client for the gateway's HTTP surface: fetching signed CCIP-Read
answers, relaying meta-transactions, and the record endpoints.
"""

from typing import Dict, Optional, Type

import httpx

from ..adapters.evm.schemas import MetaTxAuthorization
from ..engine import exceptions
from ..engine.exceptions import BaseError, GatewayUnreachableError
from ..schemas.https import (
    ClientRequestHeader,
    LookupResponse,
    RecordRequest,
    RecordWriteResponse,
    RelayResponse,
)


def _collect_error_codes() -> Dict[str, Type[BaseError]]:
    codes: Dict[str, Type[BaseError]] = {}
    for obj in vars(exceptions).values():
        if isinstance(obj, type) and issubclass(obj, BaseError):
            codes[obj.error_code] = obj
    return codes


_ERRORS_BY_CODE = _collect_error_codes()


class GatewayHttpClient(httpx.AsyncClient):
    """
    Extended httpx.AsyncClient speaking the gateway's JSON API.

    Fully compatible with httpx.AsyncClient - supports all methods, properties,
    and can be used as an async context manager. Relative paths resolve
    against ``base_url``.

    Usage:
        ```python
        async with GatewayHttpClient(base_url="https://gateway.example") as client:
            name = await client.lookup_name("0xabc...")
            answer = await client.fetch_signed_answer(
                "https://gateway.example/v1/{sender}/{data}", sender, call_data
            )
        ```
    """

    def __init__(self, sync_token: Optional[str] = None, **kwargs):
        """
        Args:
            sync_token: Bearer token sent to ``/api/ens-sync``
            **kwargs: All standard httpx.AsyncClient arguments (base_url, timeout, headers, etc.)
        """
        super().__init__(**kwargs)
        self._sync_token = sync_token

    # =========================================================================
    # CCIP-Read
    # =========================================================================

    async def fetch_signed_answer(self, url_template: str, sender: str, call_data: bytes) -> bytes:
        """
        Ask a gateway for the signed answer to an off-chain lookup.

        ``{sender}`` and ``{data}`` in ``url_template`` are substituted with
        lowercase 0x-prefixed hex; the same values are POSTed as JSON.

        Returns:
            bytes: ABI-encoded ``(result, expires, signature)`` for the callback.

        Raises:
            GatewayUnreachableError: Transport failure, non-200 answer or a
                body without usable ``data``.
        """
        sender_hex = sender.lower()
        data_hex = "0x" + bytes(call_data).hex()
        url = url_template.replace("{sender}", sender_hex).replace("{data}", data_hex)

        try:
            response = await self.post(url, json={"sender": sender_hex, "data": data_hex})
        except httpx.HTTPError as e:
            raise GatewayUnreachableError(f"Gateway {url_template} is unreachable", detail=str(e)) from e

        if response.status_code != 200:
            raise GatewayUnreachableError(
                f"Gateway {url_template} answered HTTP {response.status_code}",
                detail=self._error_text(response),
            )
        try:
            data = response.json()["data"]
            return bytes.fromhex(data[2:] if data.startswith("0x") else data)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise GatewayUnreachableError(f"Gateway {url_template} returned a malformed answer", detail=str(e)) from e

    # =========================================================================
    # Relay / Records
    # =========================================================================

    async def relay(self, authorization: MetaTxAuthorization, path: str = "/api/relay") -> RelayResponse:
        """
        Submit a signed transfer authorization.

        Relay failures come back as ``RelayResponse(success=False, ...)``;
        only transport problems raise.

        Raises:
            GatewayUnreachableError: Transport failure or a non-JSON answer.
        """
        try:
            response = await self.post(path, json=authorization.to_dict())
            return RelayResponse.model_validate(response.json())
        except httpx.HTTPError as e:
            raise GatewayUnreachableError("Relay endpoint is unreachable", detail=str(e)) from e
        except ValueError as e:
            raise GatewayUnreachableError("Relay endpoint returned a malformed answer", detail=str(e)) from e

    async def lookup_name(self, address: str) -> Optional[str]:
        """Reverse lookup of the name recorded for ``address``."""
        response = await self._request_json("GET", f"/api/ens-lookup/{address}")
        return LookupResponse.model_validate(response.json()).name

    async def register_name(self, record: RecordRequest) -> RecordWriteResponse:
        response = await self._request_json("POST", "/api/ens-register", json=record.to_dict())
        return RecordWriteResponse.model_validate(response.json())

    async def sync_name(self, record: RecordRequest) -> RecordWriteResponse:
        headers = None
        if self._sync_token:
            headers = ClientRequestHeader(authorization=f"Bearer {self._sync_token}").model_dump(
                by_alias=True, exclude_none=True
            )
        response = await self._request_json("POST", "/api/ens-sync", json=record.to_dict(), headers=headers)
        return RecordWriteResponse.model_validate(response.json())

    # =========================================================================
    # Utility Methods
    # =========================================================================

    async def _request_json(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Send a request and raise the server's typed error on failure.

        Raises:
            GatewayUnreachableError: Transport failure.
            BaseError subclass: Matching the ``code`` in the error body.
        """
        try:
            response = await self.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise GatewayUnreachableError(f"{method} {url} failed", detail=str(e)) from e

        if response.status_code >= 400:
            raise self._error_from_response(response)
        return response

    @staticmethod
    def _error_text(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return response.text

    @classmethod
    def _error_from_response(cls, response: httpx.Response) -> BaseError:
        code = None
        details = None
        try:
            body = response.json()
            if isinstance(body, dict):
                code = body.get("code")
                details = body.get("details")
        except ValueError:
            pass  # non-JSON error body
        error_class = _ERRORS_BY_CODE.get(code, GatewayUnreachableError)
        return error_class(cls._error_text(response), detail=details)
