"""Fixed-interval scheduler with prompt, cooperative cancellation."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

logger = logging.getLogger(__name__)

SLEEP_SLICE_SECONDS = 10


class CancellationToken:
    """Shared shutdown flag, set from a signal handler and polled by the scheduler."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def install_signal_handlers(token: CancellationToken) -> None:
    """Map SIGTERM and SIGINT to ``token.cancel()``.

    The running cycle is never interrupted; the loop exits at the next check.
    """

    def handle_signal(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down after the current cycle")
        token.cancel()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)


class Scheduler:
    """Runs ``cycle`` immediately, then once per ``interval`` seconds until cancelled.

    Iterations never overlap: the next one starts only after the previous
    cycle has returned. The wait between iterations is spent in slices of at
    most ``slice_seconds`` so cancellation is noticed within one slice.
    """

    def __init__(
        self,
        name: str,
        cycle: Callable[[], Any],
        interval: float,
        token: CancellationToken,
        slice_seconds: float = SLEEP_SLICE_SECONDS,
        on_result: Callable[[Any], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.name = name
        self.cycle = cycle
        self.interval = interval
        self.token = token
        self.slice_seconds = slice_seconds
        self.on_result = on_result
        self.on_error = on_error
        self._sleep = sleep
        self.iterations = 0

    def run(self) -> int:
        """Block until cancelled. Returns the number of iterations run."""
        logger.info(f"Starting continuous {self.name} mode (interval: {self.interval:g}s)")

        while not self.token.cancelled:
            self.iterations += 1
            logger.info("=" * 40)
            logger.info(f"{self.name.capitalize()} iteration #{self.iterations}")
            logger.info("=" * 40)

            try:
                result = self.cycle()
            except Exception as e:
                logger.exception(f"{self.name.capitalize()} iteration #{self.iterations} raised unexpectedly")
                if self.on_error is not None:
                    self.on_error(e)
            else:
                if self.on_result is not None:
                    self.on_result(result)

            if self.token.cancelled:
                break

            next_run = datetime.now(UTC) + timedelta(seconds=self.interval)
            logger.info(f"Next {self.name} scheduled for {next_run.isoformat(timespec='seconds')} (in {self.interval:g}s)")
            self._wait()

        logger.info(f"{self.name.capitalize()} loop shutting down gracefully")
        return self.iterations

    def _wait(self) -> None:
        remaining = self.interval
        while remaining > 0 and not self.token.cancelled:
            step = min(self.slice_seconds, remaining)
            self._sleep(step)
            remaining -= step
