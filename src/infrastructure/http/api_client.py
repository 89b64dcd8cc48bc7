# src/infrastructure/http/api_client.py

import logging
from typing import Any

import httpx

from src.config import Settings
from src.domain.exceptions import TransientRemoteFailure

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {408, 425, 429}


class RemoteRejection(Exception):
    """The booking API answered with an error envelope."""

    def __init__(
        self,
        status_code: int,
        code: str | None,
        message: str,
        data: Any = None,
    ):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"{status_code} {code or 'ERROR'}: {message}")


class BookingApiClient:
    """
    Async JSON client for the booking API envelope
    {success, data, message} / {success: false, code, message}.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "BookingApiClient":
        return cls(
            base_url=settings.api_base_url,
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )

    async def post(self, path: str, payload: dict) -> Any:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.TimeoutException as exc:
            logger.warning("Timeout calling %s", path)
            raise TransientRemoteFailure(f"Timed out calling {path}") from exc
        except httpx.TransportError as exc:
            logger.warning("Network error calling %s: %s", path, exc)
            raise TransientRemoteFailure(f"Network error calling {path}: {exc}") from exc

        if response.status_code >= 500 or response.status_code in _RETRYABLE_STATUS:
            logger.warning(
                "Booking API %s returned %s", path, response.status_code
            )
            raise TransientRemoteFailure(
                f"{path} returned HTTP {response.status_code}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise TransientRemoteFailure(
                f"{path} returned a non-JSON body"
            ) from exc

        if not isinstance(body, dict):
            raise TransientRemoteFailure(f"{path} returned an unexpected body")

        if response.is_error or body.get("success") is False:
            raise RemoteRejection(
                status_code=response.status_code,
                code=body.get("code"),
                message=body.get("message") or "Request rejected",
                data=body.get("data"),
            )

        return body.get("data")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BookingApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
