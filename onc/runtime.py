from __future__ import annotations

import time
from dataclasses import asdict
from threading import Event, Lock
from typing import Any

from .ipam import PoolHandle


class Cancelled(Exception):
    """Raised when the shutdown event fires while waiting."""


class ImagesNotReady(TimeoutError):
    pass


def sleep_or_cancel(stop: Event | None, seconds: float) -> None:
    """Sleep for `seconds`, raising Cancelled as soon as `stop` is set."""
    if stop is None:
        if seconds > 0:
            time.sleep(seconds)
        return
    if stop.wait(max(0.0, seconds)):
        raise Cancelled()


class AdapterState:
    """In-memory state of the network adapter.

    Written only from the adapter's own thread of control; the lock guards
    snapshot reads coming from API threads.
    """

    def __init__(self) -> None:
        self.lock = Lock()
        self.images_ready = Event()
        self.started = False
        self.ipam_running = False
        self.default_pool: PoolHandle | None = None

    def mark_images_ready(self) -> None:
        self.images_ready.set()

    def wait_images(self, timeout_s: float, stop: Event | None = None, step_s: float = 1.0) -> None:
        """Block until images are ready.

        Raises ImagesNotReady once `timeout_s` has passed and Cancelled if
        `stop` is set in the meantime.
        """
        deadline = time.monotonic() + timeout_s
        while not self.images_ready.is_set():
            if stop is not None and stop.is_set():
                raise Cancelled()
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ImagesNotReady(f"images not ready after {timeout_s}s")
            self.images_ready.wait(min(step_s, remaining))

    def mark_started(self) -> bool:
        """Set started; returns True if this was the first time."""
        with self.lock:
            first = not self.started
            self.started = True
            return first

    def set_default_pool(self, pool: PoolHandle) -> None:
        with self.lock:
            self.default_pool = pool

    def mark_ipam_running(self) -> None:
        with self.lock:
            self.ipam_running = True

    def snapshot(self) -> dict[str, Any]:
        with self.lock:
            return {
                "images_ready": self.images_ready.is_set(),
                "started": self.started,
                "ipam_running": self.ipam_running,
                "default_pool": asdict(self.default_pool) if self.default_pool else None,
            }
