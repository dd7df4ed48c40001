"""FastAPI entry-point for the ParkQR kiosk."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import psutil
from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from .backend.http_client import ParkingApiClient
from .config import Settings, get_settings
from .kiosk_controller import KioskController
from .logging_config import configure_logging
from .registrant import RegistrantSession, RegistrantView

logger = logging.getLogger(__name__)


class RegistrationRequest(BaseModel):
    plate_number: str = ""
    vehicle_type: Optional[str] = None


def _registrant_status(registrant: RegistrantSession) -> int:
    view = registrant.view
    if view is RegistrantView.INVALID:
        return status.HTTP_410_GONE
    if view is RegistrantView.FORM and registrant.error:
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_200_OK


def create_app(
    settings: Optional[Settings] = None,
    *,
    client: Optional[ParkingApiClient] = None,
    controller: Optional[KioskController] = None,
) -> FastAPI:
    settings = settings or get_settings()
    client = client or ParkingApiClient(settings)
    manager = controller or KioskController(settings=settings, client=client)

    app = FastAPI(title="parkqr-kiosk", version="0.1.0")
    app.state.settings = settings
    app.state.client = client
    app.state.controller = manager

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """Catch-all exception handler to prevent application crashes."""
        logger.exception(f"Unhandled exception in {request.url.path}: {exc}")
        return PlainTextResponse(
            f"Internal server error: {str(exc)}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning(f"Validation error in {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc)},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def on_startup() -> None:
        try:
            await manager.start()
            logger.info("Application started successfully")
        except Exception as e:
            logger.exception(f"Failed to start kiosk controller: {e}")
            logger.error("Application startup failed - kiosk display will not cycle")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        try:
            await manager.stop()
            await client.aclose()
            logger.info("Application shutdown complete")
        except Exception as e:
            logger.exception(f"Error during shutdown: {e}")

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        return JSONResponse({"status": "ok", "state": manager.state.value})

    @app.get("/kiosk/state")
    async def kiosk_state() -> JSONResponse:
        return JSONResponse(manager.snapshot())

    @app.post("/kiosk/retry")
    async def kiosk_retry() -> JSONResponse:
        accepted = await manager.retry()
        return JSONResponse({"status": "accepted" if accepted else "ignored", "state": manager.state.value})

    @app.get("/register")
    async def registration_view(session: Optional[str] = Query(default=None)) -> JSONResponse:
        registrant = RegistrantSession(client, session)
        await registrant.validate()
        return JSONResponse(registrant.to_dict(), status_code=_registrant_status(registrant))

    @app.post("/register")
    async def register_vehicle(
        payload: RegistrationRequest,
        session: Optional[str] = Query(default=None),
    ) -> JSONResponse:
        registrant = RegistrantSession(client, session)
        if await registrant.validate():
            await registrant.submit(payload.plate_number, payload.vehicle_type)
        return JSONResponse(registrant.to_dict(), status_code=_registrant_status(registrant))

    @app.get("/debug/performance")
    async def debug_performance() -> JSONResponse:
        """Host CPU and memory usage plus the kiosk cycle state."""
        try:
            cpu_percent = psutil.cpu_percent(interval=0.1)
            memory = psutil.virtual_memory()

            return JSONResponse({
                "cpu_percent": round(cpu_percent, 1),
                "memory_percent": round(memory.percent, 1),
                "memory_used_mb": round(memory.used / (1024 * 1024), 1),
                "memory_total_mb": round(memory.total / (1024 * 1024), 1),
                "kiosk_state": manager.state.value,
                "kiosk_polling": manager.polling,
            })
        except Exception as e:
            logger.error(f"Performance monitoring error: {e}")
            return JSONResponse(
                {"error": str(e)},
                status_code=500,
            )

    @app.websocket("/ws/ui")
    async def ui_socket(ws: WebSocket) -> None:
        await ws.accept()
        queue = manager.register_ui()

        async def wait_for_disconnect() -> None:
            while True:
                message = await ws.receive()
                if message["type"] == "websocket.disconnect":
                    return

        listener = asyncio.create_task(wait_for_disconnect(), name="ui-socket-listener")
        try:
            while True:
                getter = asyncio.create_task(queue.get())
                done, _ = await asyncio.wait({getter, listener}, return_when=asyncio.FIRST_COMPLETED)
                if getter not in done:
                    getter.cancel()
                    break  # Client went away

                try:
                    await ws.send_json(getter.result().to_payload())
                except Exception as e:
                    logger.debug(f"WebSocket send failed (client disconnected): {e}")
                    break
        except WebSocketDisconnect:
            pass
        except asyncio.CancelledError:
            pass  # Clean shutdown
        except Exception as e:
            logger.error(f"Unexpected error in UI websocket: {e}")
        finally:
            manager.unregister_ui(queue)
            listener.cancel()
            if not listener.done():
                try:
                    await listener
                except (asyncio.CancelledError, WebSocketDisconnect):
                    pass
            try:
                await ws.close()
            except Exception:
                pass

    return app


settings: Settings = get_settings()
configure_logging(settings.log_level, settings.log_directory, settings.log_retention_days)
app = create_app(settings)
