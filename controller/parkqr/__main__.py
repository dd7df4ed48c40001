"""Run the kiosk service: python -m parkqr [--host H] [--port P]."""
from __future__ import annotations

import argparse

import uvicorn

from .config import get_settings


def main() -> None:
    settings = get_settings()
    ap = argparse.ArgumentParser(description="ParkQR entry kiosk controller")
    ap.add_argument("--host", default=settings.controller_host)
    ap.add_argument("--port", type=int, default=settings.controller_port)
    ap.add_argument("--reload", action="store_true", help="auto-reload on code changes (development)")
    args = ap.parse_args()

    uvicorn.run("parkqr.main:app", host=args.host, port=args.port, reload=args.reload, log_config=None)


if __name__ == "__main__":
    main()
