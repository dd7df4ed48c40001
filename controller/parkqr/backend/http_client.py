"""HTTP client for the parking REST API (sessions, tickets, QR codes)."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import Settings
from ..models import RegistrationSession, Ticket

logger = logging.getLogger(__name__)


class BackendError(RuntimeError):
    """Base class for failed backend calls."""

    default_message = "The parking service is unavailable"

    def __init__(self, log_message: str, *, backend_message: Optional[str] = None) -> None:
        super().__init__(log_message)
        self.backend_message = backend_message

    @property
    def user_message(self) -> str:
        return self.backend_message or self.default_message


class BackendUnavailableError(BackendError):
    """Network failure or timeout."""


class BackendNotFoundError(BackendError):
    default_message = "Not found"


class BackendRequestError(BackendError):
    """Non-2xx response or unusable payload."""

    default_message = "The parking service rejected the request"

    def __init__(
        self,
        log_message: str,
        *,
        status_code: Optional[int] = None,
        backend_message: Optional[str] = None,
    ) -> None:
        super().__init__(log_message, backend_message=backend_message)
        self.status_code = status_code


class ParkingApiClient:
    """Thin wrapper around the parking REST API."""

    def __init__(self, settings: Settings, *, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self.settings = settings
        self._client = http_client or httpx.AsyncClient(
            base_url=self.settings.backend_api_url,
            timeout=self.settings.http_timeout_seconds,
        )

    async def create_registration_session(self) -> RegistrationSession:
        data = await self._request("POST", "/registration-sessions", op="create_session")
        return self._parse(RegistrationSession.from_api, data, op="create_session")

    async def get_registration_session(self, token: str) -> Optional[RegistrationSession]:
        """Fetch a session by token; None when the backend does not know it."""
        try:
            data = await self._request("GET", f"/registration-sessions/{token}", op="get_session")
        except BackendNotFoundError:
            return None
        return self._parse(RegistrationSession.from_api, data, op="get_session")

    async def complete_registration_session(self, token: str, plate_number: str, vehicle_type: str) -> Ticket:
        data = await self._request(
            "POST",
            f"/registration-sessions/{token}/complete",
            op="complete_session",
            json={"plate_number": plate_number, "vehicle_type": vehicle_type},
        )
        ticket = data.get("ticket")
        if not isinstance(ticket, dict):
            logger.error("backend.complete_session: response missing ticket %s", data)
            raise BackendRequestError("complete_session response missing ticket")
        return self._parse(Ticket.from_api, ticket, op="complete_session")

    async def get_ticket(self, ticket_id: str) -> Ticket:
        data = await self._request("GET", f"/tickets/{ticket_id}", op="get_ticket")
        return self._parse(Ticket.from_api, data, op="get_ticket")

    async def generate_qr(self, content: str) -> str:
        """Return a data-URL image encoding ``content``."""
        data = await self._request("POST", "/qr/generate", op="generate_qr", json={"content": content})
        return self._qr_image(data, op="generate_qr")

    async def get_ticket_qr(self, qr_token: str) -> str:
        data = await self._request("GET", f"/qr/{qr_token}/dataurl", op="ticket_qr")
        return self._qr_image(data, op="ticket_qr")

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing HTTP client: %s", e)

    async def _request(self, method: str, path: str, *, op: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, json=json)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.error("backend.%s: request timeout", op)
            raise BackendUnavailableError(f"{op}: timeout") from e
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code == 404:
                logger.info("backend.%s: not found (%s)", op, path)
                raise BackendNotFoundError(f"{op}: 404", backend_message=_error_message(e.response)) from e
            logger.error("backend.%s: HTTP %d - %s", op, status_code, e.response.text)
            raise BackendRequestError(
                f"{op}: HTTP {status_code}",
                status_code=status_code,
                backend_message=_error_message(e.response),
            ) from e
        except httpx.RequestError as e:
            logger.error("backend.%s: network error - %s", op, e)
            raise BackendUnavailableError(f"{op}: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            logger.error("backend.%s: invalid JSON body", op)
            raise BackendRequestError(f"{op}: invalid JSON", status_code=response.status_code) from e
        if not isinstance(data, dict):
            logger.error("backend.%s: unexpected payload %r", op, data)
            raise BackendRequestError(f"{op}: unexpected payload", status_code=response.status_code)
        return data

    @staticmethod
    def _parse(factory, data: Dict[str, Any], *, op: str):
        try:
            return factory(data)
        except (TypeError, ValueError) as e:
            logger.error("backend.%s: malformed payload - %s", op, e)
            raise BackendRequestError(f"{op}: malformed payload") from e

    @staticmethod
    def _qr_image(data: Dict[str, Any], *, op: str) -> str:
        image = data.get("qrDataUrl")
        if not image:
            logger.error("backend.%s: response missing qrDataUrl", op)
            raise BackendRequestError(f"{op}: response missing qrDataUrl")
        return str(image)


def _error_message(response: httpx.Response) -> Optional[str]:
    """Backend-provided message from an error body, if any."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(message, list):
            message = "; ".join(str(item) for item in message)
        if message:
            return str(message)
    return None


__all__ = [
    "ParkingApiClient",
    "BackendError",
    "BackendUnavailableError",
    "BackendNotFoundError",
    "BackendRequestError",
]
