"""Shared kiosk display state definitions."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional


class DisplayState(str, enum.Enum):
    """
    Kiosk display states in cycle order:

    1. LOADING        - Creating a session and its QR code
    2. SHOWING_QR     - QR on screen, polling the session (indefinite)
    3. CONFIRMING     - Success screen with plate and vehicle (3s)
    4. TRANSITIONING  - Exit animation (0.5s) → LOADING
    5. ERROR          - Session or QR creation failed; waits for retry → LOADING
    """
    LOADING = "loading"
    SHOWING_QR = "showing_qr"
    CONFIRMING = "confirming"
    TRANSITIONING = "transitioning"
    ERROR = "error"


@dataclass
class KioskEvent:
    """Event payload distributed to screen clients over the local WebSocket."""

    type: str
    data: Dict[str, Any]
    state: DisplayState
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": self.type,
            "state": self.state.value,
            "data": self.data,
        }
        if self.error:
            payload["error"] = self.error
        return payload


__all__ = ["DisplayState", "KioskEvent"]
