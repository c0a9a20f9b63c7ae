import logging
import threading
from contextlib import nullcontext
from typing import Callable, ContextManager, Optional, Protocol

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm


class Notifier(Protocol):
    """Sink for messages the batch needs a human to see or answer."""

    def notify_info(self, title: str, message: str) -> None: ...

    def notify_error(self, title: str, message: str) -> None: ...

    def confirm(self, title: str, question: str) -> bool: ...


class ConsoleNotifier:
    """Rich panels on the terminal; confirmations via a y/N prompt.

    `suspend_display` is entered around prompts so a live dashboard does not
    redraw over the question.
    """

    def __init__(
        self,
        console: Optional[Console] = None,
        suspend_display: Optional[Callable[[], ContextManager]] = None,
    ):
        self.console = console or Console()
        self.suspend_display = suspend_display
        self.logger = logging.getLogger(__name__)
        self._prompt_lock = threading.Lock()

    def notify_info(self, title: str, message: str) -> None:
        self.logger.info(f"{title}: {message}")
        self.console.print(Panel(message, title=title, border_style="green"))

    def notify_error(self, title: str, message: str) -> None:
        self.logger.error(f"{title}: {message}")
        self.console.print(Panel(message, title=title, border_style="red"))

    def confirm(self, title: str, question: str) -> bool:
        with self._prompt_lock:
            ctx = self.suspend_display() if self.suspend_display else nullcontext()
            with ctx:
                answer = Confirm.ask(f"[bold]{title}[/bold] {question}", console=self.console, default=False)
        self.logger.info(f"CONFIRM: {title} -> {'yes' if answer else 'no'}")
        return answer
