"""Shared test fixtures."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest

from parkqr.backend.http_client import (
    BackendNotFoundError,
    BackendRequestError,
    BackendUnavailableError,
    ParkingApiClient,
)
from parkqr.config import Settings
from parkqr.models import RegistrationSession, Ticket


@dataclass
class FakeParkingApi(ParkingApiClient):
    """In-memory parking backend that records every call."""

    tokens: list[str] = field(default_factory=list)
    sessions: dict[str, dict] = field(default_factory=dict)
    tickets: dict[str, dict] = field(default_factory=dict)
    calls: list[tuple[str, str | None]] = field(default_factory=list)
    fail: set[str] = field(default_factory=set)
    session_lifetime: float | None = None
    reject_message: str | None = None
    observer: Callable[[str], None] | None = None
    closed: bool = False

    def _record(self, op: str, arg: str | None = None) -> None:
        self.calls.append((op, arg))
        if self.observer is not None:
            self.observer(op)
        if op in self.fail:
            raise BackendUnavailableError(f"{op}: simulated outage")

    def count(self, op: str) -> int:
        return sum(1 for name, _ in self.calls if name == op)

    def add_session(self, token: str, status: str = "PENDING", ticket_id: str | None = None) -> None:
        self.sessions[token] = {
            "id": f"s-{token}",
            "session_token": token,
            "status": status,
            "ticket_id": ticket_id,
            "expires_at": None,
        }

    async def create_registration_session(self) -> RegistrationSession:
        self._record("create_session")
        token = self.tokens.pop(0) if self.tokens else f"tok{len(self.sessions) + 1}"
        self.add_session(token)
        if self.session_lifetime is not None:
            expires = datetime.now(timezone.utc) + timedelta(seconds=self.session_lifetime)
            self.sessions[token]["expires_at"] = expires.isoformat()
        return RegistrationSession.from_api(self.sessions[token])

    async def get_registration_session(self, token: str) -> RegistrationSession | None:
        self._record("get_session", token)
        payload = self.sessions.get(token)
        return RegistrationSession.from_api(payload) if payload else None

    async def complete_registration_session(
        self, token: str, plate_number: str, vehicle_type: str
    ) -> Ticket:
        self._record("complete_session", token)
        session = self.sessions.get(token)
        if session is None:
            raise BackendNotFoundError("complete_session: 404")
        if self.reject_message or session["status"] != "PENDING":
            raise BackendRequestError(
                "complete_session: HTTP 409",
                status_code=409,
                backend_message=self.reject_message or "Session already completed",
            )
        ticket_id = f"t{len(self.tickets) + 1}"
        self.tickets[ticket_id] = {
            "id": ticket_id,
            "qr_token": f"qr-{ticket_id}",
            "plate_number": plate_number,
            "vehicle_type": vehicle_type,
            "entry_timestamp": "2026-10-19T13:45:00Z",
            "status": "ACTIVE",
            "delivered": False,
        }
        session["status"] = "COMPLETED"
        session["ticket_id"] = ticket_id
        return Ticket.from_api(self.tickets[ticket_id])

    async def get_ticket(self, ticket_id: str) -> Ticket:
        self._record("get_ticket", ticket_id)
        payload = self.tickets.get(ticket_id)
        if payload is None:
            raise BackendNotFoundError("get_ticket: 404")
        return Ticket.from_api(payload)

    async def generate_qr(self, content: str) -> str:
        self._record("generate_qr", content)
        return f"data:image/png;base64,{content}"

    async def get_ticket_qr(self, qr_token: str) -> str:
        self._record("ticket_qr", qr_token)
        return f"data:image/png;base64,{qr_token}"

    async def aclose(self) -> None:
        self.closed = True


def make_settings(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "backend_api_url": "https://api.test",
        "public_base_url": "https://host",
        "timings": {
            "poll_interval": 0.01,
            "show_qr_delay": 0.0,
            "confirm_dwell": 0.05,
            "transition_delay": 0.01,
            "clock_interval": 60.0,
        },
        "performance": {"ui_event_queue_size": 256},
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def fake_api() -> FakeParkingApi:
    return FakeParkingApi()
