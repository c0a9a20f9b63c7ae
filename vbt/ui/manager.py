import logging
from vbt.infrastructure.event_bus import EventBus
from vbt.ui.state import UIState
from vbt.domain.events import (
    ActionMessage,
    BatchFinished,
    BatchPaused,
    BatchResumed,
    BatchStarted,
    ItemCompleted,
    ItemFailed,
    ItemProgressUpdated,
    ItemSkipped,
    ItemStarted,
)


class UIManager:
    """Subscribes to EventBus and updates UIState."""

    def __init__(self, bus: EventBus, state: UIState):
        self.bus = bus
        self.state = state
        self.logger = logging.getLogger(__name__)
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(BatchStarted, self.on_batch_started)
        self.bus.subscribe(ItemStarted, self.on_item_started)
        self.bus.subscribe(ItemProgressUpdated, self.on_item_progress)
        self.bus.subscribe(ItemCompleted, self.on_item_completed)
        self.bus.subscribe(ItemFailed, self.on_item_failed)
        self.bus.subscribe(ItemSkipped, self.on_item_skipped)
        self.bus.subscribe(BatchPaused, self.on_batch_paused)
        self.bus.subscribe(BatchResumed, self.on_batch_resumed)
        self.bus.subscribe(BatchFinished, self.on_batch_finished)
        self.bus.subscribe(ActionMessage, self.on_action_message)

    def on_batch_started(self, event: BatchStarted):
        self.state.start_batch(event.total_items, event.mode.value)

    def on_item_started(self, event: ItemStarted):
        self.state.set_active(event.item, event.index)

    def on_item_progress(self, event: ItemProgressUpdated):
        self.state.update_progress(event.speed, event.fps)

    def on_item_completed(self, event: ItemCompleted):
        self.state.add_completed_item(event.item, event.bytes_saved)

    def on_item_failed(self, event: ItemFailed):
        self.state.add_failed_item(event.item)
        self.state.set_last_action(f"FAILED: {event.item.filename}")

    def on_item_skipped(self, event: ItemSkipped):
        self.state.add_skipped_item(event.item)

    def on_batch_paused(self, event: BatchPaused):
        with self.state._lock:
            self.state.paused = True
            self.state.low_disk = event.low_disk
        if event.low_disk:
            self.state.set_last_action("PAUSED: low disk space")

    def on_batch_resumed(self, event: BatchResumed):
        with self.state._lock:
            self.state.paused = False
            self.state.low_disk = False

    def on_batch_finished(self, event: BatchFinished):
        self.logger.debug(
            f"UI: batch finished completed={event.completed_count} failed={event.failed_count} "
            f"cancelled={event.cancelled}"
        )
        self.state.finish(event.cancelled)

    def on_action_message(self, event: ActionMessage):
        self.state.set_last_action(event.message)
