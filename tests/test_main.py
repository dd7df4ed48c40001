"""Tests for the FastAPI surface."""

from fastapi.testclient import TestClient

from parkqr.config import Settings
from parkqr.kiosk_controller import KioskController
from parkqr.main import create_app
from tests.conftest import FakeParkingApi


def _client(settings: Settings, fake_api: FakeParkingApi) -> TestClient:
    controller = KioskController(settings=settings, client=fake_api)
    return TestClient(create_app(settings, client=fake_api, controller=controller))


def test_healthz_reports_state(settings: Settings, fake_api: FakeParkingApi) -> None:
    response = _client(settings, fake_api).get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "state": "loading"}


def test_kiosk_state_snapshot(settings: Settings, fake_api: FakeParkingApi) -> None:
    response = _client(settings, fake_api).get("/kiosk/state")

    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "loading"
    assert body["session_token"] is None


def test_retry_outside_error_is_ignored(settings: Settings, fake_api: FakeParkingApi) -> None:
    response = _client(settings, fake_api).post("/kiosk/retry")

    assert response.json() == {"status": "ignored", "state": "loading"}


def test_register_view_for_unknown_session(settings: Settings, fake_api: FakeParkingApi) -> None:
    response = _client(settings, fake_api).get("/register", params={"session": "nope"})

    assert response.status_code == 410
    body = response.json()
    assert body["view"] == "invalid"
    assert body["error"] == "Session not found or expired"
    assert "form" not in body


def test_register_view_without_token(settings: Settings, fake_api: FakeParkingApi) -> None:
    response = _client(settings, fake_api).get("/register")

    assert response.status_code == 410
    assert response.json()["error"] == "No session token provided"
    assert fake_api.calls == []


def test_register_view_for_pending_session(settings: Settings, fake_api: FakeParkingApi) -> None:
    fake_api.add_session("abc123")

    response = _client(settings, fake_api).get("/register", params={"session": "abc123"})

    assert response.status_code == 200
    body = response.json()
    assert body["view"] == "form"
    assert [item["value"] for item in body["vehicle_types"]] == ["CAR", "MOTORCYCLE", "BICYCLE"]


def test_register_rejects_bad_plate(settings: Settings, fake_api: FakeParkingApi) -> None:
    fake_api.add_session("abc123")

    response = _client(settings, fake_api).post(
        "/register",
        params={"session": "abc123"},
        json={"plate_number": "ab-1", "vehicle_type": "CAR"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid plate. It must have 6-10 alphanumeric characters"
    assert body["form"] == {"plate_number": "AB-1", "vehicle_type": "CAR"}
    assert fake_api.count("complete_session") == 0


def test_register_completes_session(settings: Settings, fake_api: FakeParkingApi) -> None:
    fake_api.add_session("abc123")

    response = _client(settings, fake_api).post(
        "/register",
        params={"session": "abc123"},
        json={"plate_number": "xyz789a", "vehicle_type": "MOTORCYCLE"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["view"] == "success"
    assert body["ticket"]["plate_number"] == "XYZ789A"
    assert body["ticket"]["vehicle_label"] == "Motorcycle"
    assert fake_api.sessions["abc123"]["status"] == "COMPLETED"


def test_register_used_session_is_gone(settings: Settings, fake_api: FakeParkingApi) -> None:
    fake_api.add_session("abc123", status="COMPLETED", ticket_id="t1")

    response = _client(settings, fake_api).post(
        "/register",
        params={"session": "abc123"},
        json={"plate_number": "ABC123", "vehicle_type": "CAR"},
    )

    assert response.status_code == 410
    assert response.json()["error"] == "This session has already been used or has expired"
    assert fake_api.count("complete_session") == 0


def test_debug_performance(settings: Settings, fake_api: FakeParkingApi) -> None:
    response = _client(settings, fake_api).get("/debug/performance")

    assert response.status_code == 200
    body = response.json()
    assert body["kiosk_state"] == "loading"
    assert body["kiosk_polling"] is False
    assert "cpu_percent" in body


def test_ui_socket_streams_state(settings: Settings, fake_api: FakeParkingApi) -> None:
    fake_api.tokens = ["abc123"]
    controller = KioskController(settings=settings, client=fake_api)
    app = create_app(settings, client=fake_api, controller=controller)

    with TestClient(app) as client:
        with client.websocket_connect("/ws/ui") as ws:
            states = []
            for _ in range(20):
                payload = ws.receive_json()
                if payload["type"] == "state":
                    states.append(payload["state"])
                    if payload["state"] == "showing_qr":
                        assert payload["data"]["registration_url"] == "https://host/register?session=abc123"
                        break

    assert states[-1] == "showing_qr"
    assert fake_api.closed
