"""Registrant side of the QR handoff: session validation and vehicle entry."""
from __future__ import annotations

import enum
import logging
from datetime import datetime, tzinfo
from typing import Any, Dict, Optional

from .backend.http_client import BackendError, BackendUnavailableError, ParkingApiClient
from .models import (
    Ticket,
    VehicleType,
    is_valid_plate,
    normalize_plate,
    parse_registration_token,
    vehicle_icon,
    vehicle_label,
)

logger = logging.getLogger(__name__)

NO_TOKEN_MESSAGE = "No session token provided"
NOT_FOUND_MESSAGE = "Session not found or expired"
ALREADY_USED_MESSAGE = "This session has already been used or has expired"
VERIFY_FAILED_MESSAGE = "Could not verify the session"
MISSING_FIELDS_MESSAGE = "Please complete all fields"
INVALID_VEHICLE_MESSAGE = "Please choose a valid vehicle type"
INVALID_PLATE_MESSAGE = "Invalid plate. It must have 6-10 alphanumeric characters"
SUBMIT_FAILED_MESSAGE = "Could not register the vehicle"
INVALID_SESSION_HINT = "Please scan a new QR code at the entry kiosk"


class RegistrantView(str, enum.Enum):
    CHECKING = "checking"
    INVALID = "invalid"
    FORM = "form"
    SUCCESS = "success"


def format_entry_time(value: Optional[datetime], tz: Optional[tzinfo] = None) -> str:
    if value is None:
        return "N/A"
    return value.astimezone(tz).strftime("%d/%m/%Y %H:%M")


def qr_download_filename(plate_number: str) -> str:
    return f"parkqr-{plate_number}.png"


class RegistrantSession:
    """View state for one registrant device holding one session token.

    ``valid`` is tri-state: None until checked, then True or False. The form
    and the invalid-session error are never shown together.
    """

    def __init__(self, client: ParkingApiClient, token: Optional[str]) -> None:
        self._client = client
        self.token = token.strip() if token and token.strip() else None
        self.valid: Optional[bool] = None
        self.error: Optional[str] = None
        self.plate_number = ""
        self.vehicle_type: Optional[str] = None
        self.ticket: Optional[Ticket] = None
        self.qr_image: Optional[str] = None
        self.submitting = False

    @classmethod
    def from_url(cls, client: ParkingApiClient, url: str) -> "RegistrantSession":
        return cls(client, parse_registration_token(url))

    @property
    def view(self) -> RegistrantView:
        if self.valid is None:
            return RegistrantView.CHECKING
        if self.valid is False:
            return RegistrantView.INVALID
        if self.ticket is not None:
            return RegistrantView.SUCCESS
        return RegistrantView.FORM

    async def validate(self) -> bool:
        """Check the token once against the backend."""
        if self.valid is not None:
            return self.valid
        if not self.token:
            return self._invalidate(NO_TOKEN_MESSAGE)

        try:
            session = await self._client.get_registration_session(self.token)
        except BackendUnavailableError as exc:
            logger.warning("Session check failed for %s...: %s", self.token[:8], exc)
            return self._invalidate(VERIFY_FAILED_MESSAGE)
        except BackendError as exc:
            logger.info("Session %s... rejected by backend: %s", self.token[:8], exc)
            return self._invalidate(NOT_FOUND_MESSAGE)

        if session is None:
            return self._invalidate(NOT_FOUND_MESSAGE)
        if not session.is_pending:
            logger.info("Session %s... is %s, refusing registration", self.token[:8], session.status.value)
            return self._invalidate(ALREADY_USED_MESSAGE)

        self.valid = True
        self.error = None
        return True

    async def submit(self, plate_number: Optional[str], vehicle_type: Optional[str]) -> bool:
        """Validate the form locally, complete the session and fetch the ticket QR.

        Returns True once a ticket exists. Entered values survive any failure.
        """
        if self.valid is not True:
            return False
        if self.ticket is not None:
            return True
        if self.submitting:
            return False

        self.error = None
        self.plate_number = normalize_plate(plate_number or "")
        self.vehicle_type = (vehicle_type or "").strip().upper() or None

        if not self.plate_number or not self.vehicle_type:
            self.error = MISSING_FIELDS_MESSAGE
            return False
        try:
            kind = VehicleType(self.vehicle_type)
        except ValueError:
            self.error = INVALID_VEHICLE_MESSAGE
            return False
        if not is_valid_plate(self.plate_number):
            self.error = INVALID_PLATE_MESSAGE
            return False

        self.submitting = True
        try:
            ticket = await self._client.complete_registration_session(self.token, self.plate_number, kind.value)
        except BackendError as exc:
            logger.warning("Registration failed for %s...: %s", self.token[:8], exc)
            self.error = exc.backend_message or SUBMIT_FAILED_MESSAGE
            return False
        finally:
            self.submitting = False

        logger.info("Ticket %s issued for %s", ticket.id, ticket.plate_number)
        self.qr_image = await self._fetch_ticket_qr(ticket)
        self.ticket = ticket
        return True

    async def _fetch_ticket_qr(self, ticket: Ticket) -> Optional[str]:
        if not ticket.qr_token:
            return None
        try:
            return await self._client.get_ticket_qr(ticket.qr_token)
        except BackendError as exc:
            logger.warning("Ticket QR unavailable for %s: %s", ticket.id, exc)
            return None

    def _invalidate(self, message: str) -> bool:
        self.valid = False
        self.error = message
        return False

    def to_dict(self) -> Dict[str, Any]:
        view = self.view
        payload: Dict[str, Any] = {
            "view": view.value,
            "session_token": self.token,
            "valid": self.valid,
            "error": self.error,
        }
        if view is RegistrantView.INVALID:
            payload["hint"] = INVALID_SESSION_HINT
        elif view is RegistrantView.FORM:
            payload["form"] = {"plate_number": self.plate_number, "vehicle_type": self.vehicle_type}
            payload["vehicle_types"] = [
                {"value": kind.value, "label": kind.label, "icon": kind.icon} for kind in VehicleType
            ]
        elif view is RegistrantView.SUCCESS:
            ticket = self.ticket
            payload["ticket"] = {
                "id": ticket.id,
                "plate_number": ticket.plate_number,
                "vehicle_type": ticket.vehicle_type,
                "vehicle_label": vehicle_label(ticket.vehicle_type),
                "vehicle_icon": vehicle_icon(ticket.vehicle_type),
                "entry_timestamp": ticket.entry_timestamp.isoformat() if ticket.entry_timestamp else None,
                "entry_time": format_entry_time(ticket.entry_timestamp),
                "qr_image": self.qr_image,
                "qr_filename": qr_download_filename(ticket.plate_number),
            }
        return payload


__all__ = [
    "RegistrantSession",
    "RegistrantView",
    "format_entry_time",
    "qr_download_filename",
]
