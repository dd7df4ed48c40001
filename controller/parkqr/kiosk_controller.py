"""Registration session cycle for the ParkQR entry kiosk."""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from asyncio import QueueEmpty
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .backend.http_client import BackendError, ParkingApiClient
from .config import Settings, get_settings
from .models import CompletedTicket, RegistrationSession, SessionStatus, Ticket, build_registration_url
from .state import DisplayState, KioskEvent

logger = logging.getLogger(__name__)


class ProvisioningStep(str, enum.Enum):
    CREATE_SESSION = "create_session"
    BUILD_URL = "build_url"
    GENERATE_QR = "generate_qr"


_STEP_MESSAGES: Dict[ProvisioningStep, str] = {
    ProvisioningStep.CREATE_SESSION: "Could not create a registration session",
    ProvisioningStep.BUILD_URL: "Could not build the registration link",
    ProvisioningStep.GENERATE_QR: "Could not generate the QR code",
}


class SessionFlowError(RuntimeError):
    """Raised when a recoverable kiosk step fails."""

    def __init__(self, user_message: str, *, log_message: Optional[str] = None) -> None:
        super().__init__(log_message or user_message)
        self.user_message = user_message


class ProvisioningError(SessionFlowError):
    """Session/QR creation failed; ``step`` names the stage that broke."""

    def __init__(self, step: ProvisioningStep, *, log_message: Optional[str] = None) -> None:
        super().__init__(_STEP_MESSAGES[step], log_message=log_message)
        self.step = step


@dataclass(frozen=True)
class ProvisionedSession:
    session: RegistrationSession
    registration_url: str
    qr_image: str


async def provision_session(client: ParkingApiClient, public_base_url: str) -> ProvisionedSession:
    """Create a session, build its registration URL and render the QR.

    Steps run strictly in order; nothing is kept from a failed attempt.
    """
    try:
        session = await client.create_registration_session()
    except BackendError as exc:
        raise ProvisioningError(ProvisioningStep.CREATE_SESSION, log_message=str(exc)) from exc

    try:
        registration_url = build_registration_url(public_base_url, session.session_token)
    except (TypeError, ValueError) as exc:
        raise ProvisioningError(ProvisioningStep.BUILD_URL, log_message=str(exc)) from exc

    try:
        qr_image = await client.generate_qr(registration_url)
    except BackendError as exc:
        raise ProvisioningError(ProvisioningStep.GENERATE_QR, log_message=str(exc)) from exc

    return ProvisionedSession(session=session, registration_url=registration_url, qr_image=qr_image)


class SessionPoll:
    """Poll subscription for one registration session.

    Used as an async context manager: entering starts a single polling task,
    leaving cancels it. Ticks run back to back (request, then sleep), so two
    requests for the same session are never in flight together. A session
    the backend reports as EXPIRED ends the subscription without a ticket.
    """

    def __init__(self, client: ParkingApiClient, token: str, interval: float) -> None:
        self._client = client
        self._token = token
        self._interval = interval
        self._task: Optional[asyncio.Task[None]] = None
        self._result: Optional[asyncio.Future[Optional[Ticket]]] = None
        self._closed = False
        self.expired = False
        self.ticks = 0

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def __aenter__(self) -> "SessionPoll":
        self._result = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run(), name=f"session-poll-{self._token[:8]}")
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def wait(self, timeout: Optional[float] = None) -> Optional[Ticket]:
        """Ticket of the completed session; None if it expired or ``timeout`` elapsed."""
        if self._result is None:
            raise RuntimeError("SessionPoll used outside its context")
        try:
            return await asyncio.wait_for(asyncio.shield(self._result), timeout)
        except asyncio.TimeoutError:
            return None

    async def close(self) -> None:
        self._closed = True
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        if self._result and not self._result.done():
            self._result.cancel()

    async def _run(self) -> None:
        while not self._closed:
            await asyncio.sleep(self._interval)
            if self._closed:
                return
            ticket = await self._tick()
            if ticket is None and not self.expired:
                continue
            if self._closed or self._result is None or self._result.done():
                logger.debug("Dropping stale completion for session %s...", self._token[:8])
                return
            self._result.set_result(ticket)
            return

    async def _tick(self) -> Optional[Ticket]:
        self.ticks += 1
        try:
            session = await self._client.get_registration_session(self._token)
            if self._closed or session is None:
                return None
            if session.status is SessionStatus.EXPIRED:
                logger.info("Session %s... expired on the backend", self._token[:8])
                self.expired = True
                return None
            if not session.is_complete:
                return None
            return await self._client.get_ticket(session.ticket_id)
        except BackendError as exc:
            logger.debug("Poll tick %d for %s... ignored: %s", self.ticks, self._token[:8], exc)
        except Exception as exc:
            logger.exception("Unexpected poll error for %s...: %s", self._token[:8], exc)
        return None


class KioskController:
    """Keeps one registration QR on screen and cycles it after each completion."""

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        client: Optional[ParkingApiClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._owns_client = client is None
        self._client = client or ParkingApiClient(self.settings)
        self._lock = asyncio.Lock()
        self._state: DisplayState = DisplayState.LOADING
        self._state_started_at: float = time.monotonic()
        self._ui_subscribers: List[asyncio.Queue[KioskEvent]] = []
        self._last_state_event: Optional[KioskEvent] = None

        self._current: Optional[ProvisionedSession] = None
        self._completed_ticket: Optional[CompletedTicket] = None
        self._error: Optional[str] = None
        self._poll: Optional[SessionPoll] = None
        self._retry_event: Optional[asyncio.Event] = None

        self._cycle_task: Optional[asyncio.Task[None]] = None
        self._clock_task: Optional[asyncio.Task[None]] = None

    @property
    def state(self) -> DisplayState:
        return self._state

    @property
    def current_session(self) -> Optional[RegistrationSession]:
        return self._current.session if self._current else None

    @property
    def polling(self) -> bool:
        return self._poll is not None and self._poll.active

    @property
    def running(self) -> bool:
        return self._cycle_task is not None and not self._cycle_task.done()

    async def start(self) -> None:
        async with self._lock:
            if self.running:
                return
            logger.info("Starting kiosk controller")
            self._cycle_task = asyncio.create_task(self._run_cycle(), name="kiosk-cycle")
            self._clock_task = asyncio.create_task(self._clock_loop(), name="kiosk-clock")

    async def stop(self) -> None:
        async with self._lock:
            logger.info("Stopping kiosk controller")
            for task in (self._cycle_task, self._clock_task):
                if task and not task.done():
                    task.cancel()
            for task in (self._cycle_task, self._clock_task):
                if task is None:
                    continue
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.warning("Error stopping kiosk task: %s", e)
            self._cycle_task = None
            self._clock_task = None
            self._poll = None

            if self._owns_client:
                await self._client.aclose()
            logger.info("Kiosk controller stopped")

    async def retry(self) -> bool:
        """Leave the error screen and provision a new session."""
        if self._state is not DisplayState.ERROR or self._retry_event is None:
            logger.info("Retry ignored in state %s", self._state.value)
            return False
        logger.info("Retry requested from error screen")
        self._retry_event.set()
        return True

    def register_ui(self) -> asyncio.Queue[KioskEvent]:
        queue: asyncio.Queue[KioskEvent] = asyncio.Queue(maxsize=self.settings.performance.ui_event_queue_size)
        if self._last_state_event is not None:
            queue.put_nowait(self._last_state_event)
        self._ui_subscribers.append(queue)
        return queue

    def unregister_ui(self, queue: asyncio.Queue[KioskEvent]) -> None:
        if queue in self._ui_subscribers:
            self._ui_subscribers.remove(queue)

    def snapshot(self) -> Dict[str, Any]:
        current = self._current
        session = current.session if current else None
        return {
            "state": self._state.value,
            "state_age_seconds": round(time.monotonic() - self._state_started_at, 3),
            "session_token": session.session_token if session else None,
            "registration_url": current.registration_url if current else None,
            "qr_image": current.qr_image if current else None,
            "expires_at": session.expires_at.isoformat() if session and session.expires_at else None,
            "completed_ticket": self._completed_ticket.to_dict() if self._completed_ticket else None,
            "error": self._error,
        }

    async def _broadcast(self, event: KioskEvent) -> None:
        for queue in list(self._ui_subscribers):
            try:
                if queue.full():
                    try:
                        queue.get_nowait()
                    except QueueEmpty:
                        pass
                queue.put_nowait(event)
            except Exception as e:
                logger.warning("Failed to broadcast event to subscriber: %s", e)

    async def _advance_state(
        self,
        state: DisplayState,
        *,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        logger.info("Kiosk state %s -> %s", self._state.value, state.value)
        self._state = state
        self._state_started_at = time.monotonic()
        self._error = error
        event = KioskEvent(type="state", data=data or {}, state=state, error=error)
        self._last_state_event = event
        await self._broadcast(event)

    # ============================================================
    # CYCLE
    # ============================================================

    async def _run_cycle(self) -> None:
        """
        Flow, repeated until stopped:
        1. LOADING: create session + QR
        2. SHOWING_QR: poll until completed (or the session expires)
        3. CONFIRMING: show plate and vehicle
        4. TRANSITIONING: short exit animation
        Provisioning failures park the kiosk in ERROR until retry().
        """
        while True:
            try:
                await self._run_session()
            except ProvisioningError as exc:
                logger.error("Session provisioning failed at %s: %s", exc.step.value, exc)
                await self._show_error(exc.user_message, step=exc.step)
                await self._wait_for_retry()
            except Exception as exc:
                logger.exception("Unexpected kiosk cycle error: %s", exc)
                await self._show_error("Something went wrong, please try again")
                await self._wait_for_retry()

    async def _run_session(self) -> None:
        provisioned = await self._load_session()
        ticket = await self._await_completion(provisioned.session)
        if ticket is None:
            logger.info("Session %s... expired unused; generating a new one", provisioned.session.session_token[:8])
            return
        await self._show_confirmation(ticket)
        await self._show_transition()

    async def _load_session(self) -> ProvisionedSession:
        self._current = None
        self._completed_ticket = None
        await self._advance_state(DisplayState.LOADING)

        provisioned = await provision_session(self._client, self.settings.public_base_url)
        self._current = provisioned
        logger.info("Registration session ready: %s...", provisioned.session.session_token[:8])

        await asyncio.sleep(self.settings.timings.show_qr_delay)
        session = provisioned.session
        await self._advance_state(
            DisplayState.SHOWING_QR,
            data={
                "session_token": session.session_token,
                "registration_url": provisioned.registration_url,
                "qr_image": provisioned.qr_image,
                "expires_at": session.expires_at.isoformat() if session.expires_at else None,
            },
        )
        return provisioned

    async def _await_completion(self, session: RegistrationSession) -> Optional[Ticket]:
        timeout = self._qr_deadline(session)
        async with SessionPoll(self._client, session.session_token, self.settings.timings.poll_interval) as poll:
            self._poll = poll
            try:
                return await poll.wait(timeout)
            finally:
                self._poll = None

    async def _show_confirmation(self, ticket: Ticket) -> None:
        completed = CompletedTicket.from_ticket(ticket)
        self._completed_ticket = completed
        await self._advance_state(
            DisplayState.CONFIRMING,
            data={**completed.to_dict(), "message": "Registration successful"},
        )
        logger.info("Vehicle %s registered (%s)", completed.plate_number, completed.vehicle_type)
        await asyncio.sleep(self.settings.timings.confirm_dwell)

    async def _show_transition(self) -> None:
        await self._advance_state(DisplayState.TRANSITIONING)
        await asyncio.sleep(self.settings.timings.transition_delay)

    async def _show_error(self, message: str, *, step: Optional[ProvisioningStep] = None) -> None:
        self._current = None
        self._retry_event = asyncio.Event()
        await self._advance_state(
            DisplayState.ERROR,
            data={"step": step.value if step else None, "retryable": True},
            error=message,
        )

    async def _wait_for_retry(self) -> None:
        event = self._retry_event
        if event is None:
            return
        try:
            await event.wait()
        finally:
            self._retry_event = None

    def _qr_deadline(self, session: RegistrationSession) -> Optional[float]:
        """Seconds the QR may stay up before a fresh session replaces it."""
        cap = self.settings.timings.max_qr_lifetime
        if session.expires_at is None:
            return cap
        now = datetime.now(timezone.utc)
        if session.is_expired(now):
            # Expired on arrival means clock skew; fall back to the cap.
            logger.warning("Session %s... arrived already expired; ignoring expires_at", session.session_token[:8])
            return cap
        remaining = (session.expires_at - now).total_seconds()
        return min(remaining, cap) if cap is not None else remaining

    async def _clock_loop(self) -> None:
        while True:
            now = datetime.now().astimezone()
            await self._broadcast(
                KioskEvent(
                    type="clock",
                    state=self._state,
                    data={"time": now.isoformat(timespec="seconds")},
                )
            )
            await asyncio.sleep(self.settings.timings.clock_interval)


__all__ = [
    "KioskController",
    "SessionPoll",
    "ProvisionedSession",
    "ProvisioningError",
    "ProvisioningStep",
    "SessionFlowError",
    "provision_session",
]
