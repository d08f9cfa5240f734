"""Helpers for running a function repeatedly on a fixed interval."""

from __future__ import annotations

import threading
import time
from datetime import timedelta
from typing import Callable


def repeat(
    interval: float | timedelta,
    stop: threading.Event,
    func: Callable[[], object],
) -> None:
    """Call ``func`` right away and then every ``interval`` until ``stop`` is set.

    ``interval`` is in seconds or a timedelta. An exception raised by ``func``
    ends the loop and propagates.
    """
    seconds = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
    if seconds <= 0:
        raise ValueError("non-positive interval for repeat")

    next_tick = time.monotonic() + seconds
    while True:
        func()
        now = time.monotonic()
        if now > next_tick:
            # Missed ticks are dropped; the pending one fires at once.
            timeout = 0.0
            next_tick = now + seconds
        else:
            timeout = next_tick - now
            next_tick += seconds
        if stop.wait(timeout):
            return