"""Build-scoped interrupt handling.

An :class:`InterruptSupervisor` wraps the risky part of a build. While it is
active, SIGINT and SIGTERM cancel the build: the cleanup callback deletes the
ephemeral build objects and :class:`BuildInterruptedError` unwinds the caller.
Leaving the ``with`` block runs the cleanup once more (it must be idempotent)
and restores the previous signal handlers, so a late signal never triggers a
stale cleanup.
"""
from __future__ import annotations

import logging
import signal
import threading
from types import FrameType
from typing import Callable, Dict, Optional

from .errors import AdapterError, BuildInterruptedError

_LOG = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class CancellationToken:
    """Flag shared between the interrupt handler and the code it protects."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason = ""

    def cancel(self, reason: str = "") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise BuildInterruptedError(self.reason or "build interrupted")


class InterruptSupervisor:
    """Guarantee best-effort cleanup of build resources on any exit path."""

    def __init__(
        self,
        cleanup: Callable[[], None],
        description: str = "build",
        token: Optional[CancellationToken] = None,
    ) -> None:
        self.cleanup = cleanup
        self.description = description
        self.token = token or CancellationToken()
        self._previous: Dict[int, object] = {}
        self._registered = False

    def register(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            _LOG.debug("Not on the main thread; %s relies on its cancellation token only", self.description)
            return
        for signum in HANDLED_SIGNALS:
            self._previous[signum] = signal.signal(signum, self._handle)
        self._registered = True

    def unregister(self) -> None:
        if not self._registered:
            return
        for signum, previous in self._previous.items():
            signal.signal(signum, previous)
        self._previous.clear()
        self._registered = False

    def _handle(self, signum: int, frame: Optional[FrameType]) -> None:
        if self.token.cancelled:
            return
        self.interrupt(signal.Signals(signum).name)

    def interrupt(self, reason: str = "interrupt") -> None:
        """Cancel the protected operation: clean up, then unwind the caller."""

        _LOG.info("%s interrupted, terminating build, this might take a few seconds", self.description.capitalize())
        self.token.cancel(f"{self.description} interrupted by {reason}")
        self.run_cleanup(raise_errors=False)
        raise BuildInterruptedError(self.token.reason)

    def run_cleanup(self, raise_errors: bool = True) -> None:
        try:
            self.cleanup()
        except AdapterError as exc:
            if raise_errors:
                raise
            _LOG.warning("Cleanup after %s failed: %s", self.description, exc)

    def __enter__(self) -> "InterruptSupervisor":
        self.register()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            # A cleanup failure only surfaces when no primary error is in flight.
            self.run_cleanup(raise_errors=exc is None)
        finally:
            self.unregister()
        return False
