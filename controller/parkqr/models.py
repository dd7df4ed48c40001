"""Registration session and ticket data shared by the kiosk and registrant surfaces."""
from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional
from urllib.parse import parse_qs, urlencode, urlparse

REGISTRATION_PATH = "/register"
SESSION_QUERY_PARAM = "session"

_PLATE_PATTERN = re.compile(r"^[A-Z0-9]{6,10}$")


class SessionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: object) -> "SessionStatus":
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.UNKNOWN


class VehicleType(str, enum.Enum):
    CAR = "CAR"
    MOTORCYCLE = "MOTORCYCLE"
    BICYCLE = "BICYCLE"

    @property
    def icon(self) -> str:
        return _VEHICLE_ICONS[self]

    @property
    def label(self) -> str:
        return _VEHICLE_LABELS[self]


_VEHICLE_ICONS = {
    VehicleType.CAR: "🚗",
    VehicleType.MOTORCYCLE: "🏍️",
    VehicleType.BICYCLE: "🚲",
}
_VEHICLE_LABELS = {
    VehicleType.CAR: "Car",
    VehicleType.MOTORCYCLE: "Motorcycle",
    VehicleType.BICYCLE: "Bicycle",
}
DEFAULT_VEHICLE_ICON = "🚗"
DEFAULT_VEHICLE_LABEL = "Vehicle"


def vehicle_icon(value: Optional[str]) -> str:
    """Display icon for a vehicle type string; unknown types render as a car."""
    try:
        return VehicleType(value).icon
    except ValueError:
        return DEFAULT_VEHICLE_ICON


def vehicle_label(value: Optional[str]) -> str:
    try:
        return VehicleType(value).label
    except ValueError:
        return DEFAULT_VEHICLE_LABEL


def parse_timestamp(value: object) -> Optional[datetime]:
    """Parse an ISO-8601 backend timestamp into an aware datetime (UTC if naive)."""
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class RegistrationSession:
    """Snapshot of a backend registration session.

    A session starts PENDING without a ticket and moves once to COMPLETED
    with a ticket id; clients never mutate it.
    """

    id: str
    session_token: str
    status: SessionStatus
    ticket_id: Optional[str] = None
    expires_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status is SessionStatus.PENDING

    @property
    def is_complete(self) -> bool:
        return self.status is SessionStatus.COMPLETED and self.ticket_id is not None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "RegistrationSession":
        token = payload.get("session_token")
        if not token:
            raise ValueError("registration session payload missing session_token")
        ticket_id = payload.get("ticket_id")
        return cls(
            id=str(payload.get("id", "")),
            session_token=str(token),
            status=SessionStatus.parse(payload.get("status")),
            ticket_id=str(ticket_id) if ticket_id is not None else None,
            expires_at=parse_timestamp(payload.get("expires_at")),
        )


@dataclass(frozen=True)
class Ticket:
    """The ticket fields this service consumes."""

    id: str
    qr_token: str
    plate_number: str
    vehicle_type: str
    entry_timestamp: Optional[datetime] = None
    status: Optional[str] = None
    delivered: bool = False

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "Ticket":
        plate = payload.get("plate_number")
        if not plate:
            raise ValueError("ticket payload missing plate_number")
        return cls(
            id=str(payload.get("id", "")),
            qr_token=str(payload.get("qr_token", "")),
            plate_number=str(plate),
            vehicle_type=str(payload.get("vehicle_type", "")),
            entry_timestamp=parse_timestamp(payload.get("entry_timestamp")),
            status=payload.get("status"),
            delivered=bool(payload.get("delivered", False)),
        )


@dataclass(frozen=True)
class CompletedTicket:
    """Minimal projection of a ticket shown on the kiosk confirmation screen."""

    plate_number: str
    vehicle_type: str

    @classmethod
    def from_ticket(cls, ticket: Ticket) -> "CompletedTicket":
        return cls(plate_number=ticket.plate_number, vehicle_type=ticket.vehicle_type)

    @property
    def icon(self) -> str:
        return vehicle_icon(self.vehicle_type)

    @property
    def label(self) -> str:
        return vehicle_label(self.vehicle_type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plate_number": self.plate_number,
            "vehicle_type": self.vehicle_type,
            "vehicle_icon": self.icon,
            "vehicle_label": self.label,
        }


def build_registration_url(base_url: str, token: str) -> str:
    """Absolute registrant URL carried by the kiosk QR code."""
    query = urlencode({SESSION_QUERY_PARAM: token})
    return f"{base_url.rstrip('/')}{REGISTRATION_PATH}?{query}"


def parse_registration_token(url: str) -> Optional[str]:
    values = parse_qs(urlparse(url).query).get(SESSION_QUERY_PARAM)
    if not values:
        return None
    token = values[0].strip()
    return token or None


def normalize_plate(raw: str) -> str:
    return raw.strip().upper()


def is_valid_plate(plate: str) -> bool:
    """Plates are 6-10 alphanumeric characters, compared case-insensitively."""
    return bool(_PLATE_PATTERN.match(normalize_plate(plate)))


__all__ = [
    "REGISTRATION_PATH",
    "SESSION_QUERY_PARAM",
    "SessionStatus",
    "VehicleType",
    "RegistrationSession",
    "Ticket",
    "CompletedTicket",
    "build_registration_url",
    "parse_registration_token",
    "normalize_plate",
    "is_valid_plate",
    "parse_timestamp",
    "vehicle_icon",
    "vehicle_label",
]
