"""Domain events for the batch transcoding pipeline.

Events flow through the EventBus, decoupling the orchestrator from the
terminal UI. See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pydantic import BaseModel
from .models import WorkItem, ProcessingMode


class Event(BaseModel):
    """Base class for all domain events.

    Events are validated Pydantic models. They are not frozen by default.
    """

    pass


class ItemEvent(Event):
    """Base class for events related to a specific work item."""

    item: WorkItem


class BatchStarted(Event):
    """Emitted once the queue is filtered and the first item is about to run."""

    total_items: int
    mode: ProcessingMode


class ItemStarted(ItemEvent):
    """Emitted when an item moves to PROCESSING."""

    index: int = 0


class ItemProgressUpdated(ItemEvent):
    """Emitted for every progress sample parsed from the encoder output."""

    progress_percent: float
    speed: str = "0x"
    fps: str = "0"


class ItemCompleted(ItemEvent):
    bytes_saved: int = 0


class ItemFailed(ItemEvent):
    error_message: str


class ItemSkipped(ItemEvent):
    """Emitted when an item needs no work (e.g. already below the split size)."""

    reason: str


class BatchPaused(Event):
    """Emitted when processing pauses. `low_disk` is set for automatic pauses."""

    low_disk: bool = False


class BatchResumed(Event):
    pass


class BatchFinished(Event):
    completed_count: int = 0
    bytes_saved: int = 0
    failed_count: int = 0
    cancelled: bool = False


class PauseToggleRequested(Event):
    """Event emitted when the user toggles pause (Key 'P')."""

    pass


class CancelRequested(Event):
    """Event emitted when the user asks to stop.

    `confirm` is True for the 'S' key (ask first) and False for Ctrl+C.
    """

    confirm: bool = True


class ActionMessage(Event):
    """Event for user action feedback (displayed in UI for 60s)."""

    message: str
