"""
Progress event and batch outcome models

Progress events are ephemeral: they are streamed to the waiting client and
never persisted. Their wire form is the JSON object carried by each
``data:`` line of the event stream.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

SYSTEM_VEHICLE_ID = "system"


class EventKind(Enum):
    """Progress event types"""
    PROGRESS = "progress"
    SCREENSHOT = "screenshot"
    ERROR = "error"
    COMPLETE = "complete"

    @property
    def is_terminal(self) -> bool:
        return self in (EventKind.ERROR, EventKind.COMPLETE)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ProgressEvent:
    """A typed, timestamped message about one vehicle's release job"""
    kind: EventKind
    vehicle_id: str
    message: str
    step_index: Optional[int] = None
    total_steps: Optional[int] = None
    timestamp: datetime = field(default_factory=_utcnow)
    screenshot: Optional[str] = None
    confirmation_number: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind.is_terminal

    @classmethod
    def system_error(cls, message: str) -> "ProgressEvent":
        """Batch-level failure reported under the synthetic ``system`` vehicle id"""
        return cls(EventKind.ERROR, SYSTEM_VEHICLE_ID, message)

    def to_dict(self) -> dict:
        payload = {
            "type": self.kind.value,
            "vehicleId": self.vehicle_id,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.step_index is not None:
            payload["step"] = self.step_index
        if self.total_steps is not None:
            payload["totalSteps"] = self.total_steps
        if self.screenshot is not None:
            payload["screenshot"] = self.screenshot
        if self.confirmation_number is not None:
            payload["confirmationNumber"] = self.confirmation_number
        return payload

    @classmethod
    def from_dict(cls, payload: dict) -> "ProgressEvent":
        timestamp = payload.get("timestamp")
        return cls(
            kind=EventKind(payload["type"]),
            vehicle_id=str(payload["vehicleId"]),
            message=payload.get("message", ""),
            step_index=payload.get("step"),
            total_steps=payload.get("totalSteps"),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else _utcnow(),
            screenshot=payload.get("screenshot"),
            confirmation_number=payload.get("confirmationNumber"),
        )


@dataclass(frozen=True)
class ReleaseOutcome:
    """Terminal result for one vehicle, as returned by the synchronous mode"""
    vehicle_id: str
    success: bool
    confirmation_number: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_event(cls, event: ProgressEvent) -> "ReleaseOutcome":
        if event.kind == EventKind.COMPLETE:
            return cls(event.vehicle_id, True, confirmation_number=event.confirmation_number)
        if event.kind == EventKind.ERROR:
            return cls(event.vehicle_id, False, error=event.message)
        raise ValueError(f"Event of type {event.kind.value} is not terminal")

    def to_dict(self) -> dict:
        payload = {"vehicleId": self.vehicle_id, "success": self.success}
        if self.success:
            payload["confirmationNumber"] = self.confirmation_number
        else:
            payload["error"] = self.error
        return payload
