"""
Progress events emitted by the catalog rebuild pipeline.

One event per phase transition, streamed to the caller as server-sent events.
"""

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Pipeline phase transitions."""

    START = "START"
    START_GAME = "START_GAME"
    IMPORT_PHASE = "IMPORT_PHASE"
    FIX_BAD_WRITES = "FIX_BAD_WRITES"
    FIX_BAD_WRITES_SUMMARY = "FIX_BAD_WRITES_SUMMARY"
    VALIDATE = "VALIDATE"
    READY_TO_SWAP = "READY_TO_SWAP"
    SWAP_DONE = "SWAP_DONE"
    ERROR = "ERROR"
    COMPLETE = "COMPLETE"


class RebuildEvent(BaseModel):
    """A single structured progress event."""

    type: EventType
    game: str | None = None
    step: str | None = None
    message: str | None = None
    data: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_sse(self) -> str:
        """Encode as a server-sent event frame."""
        payload = self.model_dump(mode="json", exclude_none=True)
        return f"data: {json.dumps(payload)}\n\n"
