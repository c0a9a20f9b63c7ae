import os
import sys
import threading
import termios
import tty
import select
from typing import Optional
from vbt.infrastructure.event_bus import EventBus
from vbt.domain.events import CancelRequested, PauseToggleRequested


class KeyboardListener:
    """Listens for keyboard input in a background thread.

    P toggles pause, S asks to stop, Ctrl+C stops immediately.
    """

    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def handle_key(self, key: str, old_settings=None) -> bool:
        """Publish the event for `key`. Returns False when the listener should exit."""
        if key == '\x03':
            self.event_bus.publish(CancelRequested(confirm=False))
            return False
        if key in ('P', 'p'):
            self.event_bus.publish(PauseToggleRequested())
        elif key in ('S', 's'):
            # Confirmation is answered on this thread; give it a normal terminal
            if old_settings is not None:
                termios.tcsetattr(sys.stdin, termios.TCSADRAIN, old_settings)
            try:
                self.event_bus.publish(CancelRequested(confirm=True))
            finally:
                if old_settings is not None:
                    tty.setcbreak(sys.stdin.fileno())
        return True

    def _run(self):
        """Main loop for the listener thread."""
        if not sys.stdin.isatty():
            return

        fd = sys.stdin.fileno()
        old_settings = termios.tcgetattr(sys.stdin)
        try:
            tty.setcbreak(fd)

            while not self._stop_event.is_set():
                if fd in select.select([fd], [], [], 0.1)[0]:
                    try:
                        raw = os.read(fd, 1)
                    except OSError:
                        continue
                    if not raw:
                        continue
                    key = raw.decode('utf-8', errors='replace')
                    if not self.handle_key(key, old_settings):
                        break
        finally:
            termios.tcsetattr(sys.stdin, termios.TCSADRAIN, old_settings)

    def start(self):
        """Starts the listener thread."""
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self):
        """Stops the listener thread."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=1.0)
