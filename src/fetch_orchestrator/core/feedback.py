"""
User-facing feedback: a reference-counted loading indicator and a throttled
error notifier, rendered through a pluggable Feedback implementation.
"""
import logging
import time
from typing import Callable, Optional

from rich.console import Console
from rich.status import Status

logger = logging.getLogger(__name__)


class LoadingTracker:
    """
    Reference counts concurrent requests that want the loading indicator.

    The indicator is shown on the first acquire and hidden when the last
    holder releases. The count never goes below zero.
    """

    def __init__(
        self,
        show: Callable[[str], None],
        hide: Callable[[], None],
        default_text: str = "Loading...",
    ) -> None:
        self._show = show
        self._hide = hide
        self._default_text = default_text
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    def acquire(self, text: Optional[str] = None) -> None:
        if self._count == 0:
            self._show(text or self._default_text)
        self._count += 1

    def release(self) -> None:
        self._count = max(self._count - 1, 0)
        if self._count == 0:
            self._hide()


class ErrorThrottle:
    """Shows an error unless the same message was shown within the window."""

    def __init__(
        self,
        notify: Callable[[str], None],
        window_seconds: float = 1.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._notify = notify
        self._window = window_seconds
        self._clock = clock
        self._last_message: Optional[str] = None
        self._last_time = float("-inf")

    def show(self, message: str) -> bool:
        """Returns True if the message was shown."""
        now = self._clock()
        if message == self._last_message and now - self._last_time <= self._window:
            logger.debug(f"ErrorThrottle: suppressed duplicate message: {message}")
            return False
        self._last_message = message
        self._last_time = now
        self._notify(message)
        return True


class NullFeedback:
    """Feedback that renders nothing."""

    def show_loading(self, text: str) -> None:
        pass

    def hide_loading(self) -> None:
        pass

    def show_error(self, message: str) -> None:
        pass


class ConsoleFeedback:
    """Feedback rendered on a Rich console."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self._console = console or Console(stderr=True)
        self._status: Optional[Status] = None

    def show_loading(self, text: str) -> None:
        if self._status is None:
            self._status = self._console.status(text)
            self._status.start()
        else:
            self._status.update(text)

    def hide_loading(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None

    def show_error(self, message: str) -> None:
        # An error toast replaces the loading indicator.
        self.hide_loading()
        self._console.print(f"[bold red]✗[/bold red] {message}")
