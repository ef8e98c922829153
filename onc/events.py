from __future__ import annotations

import traceback
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Event, Lock, Thread
from typing import Any, Callable

from docker.errors import DockerException
from requests.exceptions import RequestException

from .api_models import NodeInfo
from .db import log_event
from .runtime import Cancelled, sleep_or_cancel


NETWORK_READY = "network:ready"
NETWORK_ADAPTER_START = "network_adapter:start"


@dataclass(frozen=True)
class NodeInfoUpdated:
    info: NodeInfo


@dataclass(frozen=True)
class IpamReady:
    data: Any = None


@dataclass(frozen=True)
class ContainerRemoved:
    container_id: str
    attributes: dict[str, str] = field(default_factory=dict)


class Notifier:
    """Explicit publish/subscribe for the signals the adapter emits."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._subscribers: dict[str, list[Callable[[str, Any], None]]] = defaultdict(list)

    def subscribe(self, topic: str, callback: Callable[[str, Any], None]) -> None:
        with self._lock:
            self._subscribers[topic].append(callback)

    def publish(self, topic: str, payload: Any = None) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(topic, []))
        for cb in callbacks:
            try:
                cb(topic, payload)
            except Exception as e:
                log_event("ERROR", f"subscriber for {topic} failed: {type(e).__name__}: {e}")
                log_event("DEBUG", traceback.format_exc())


class ContainerEventWatcher:
    """Follows the docker event stream and reports destroyed containers."""

    def __init__(
        self,
        client: Any,
        deliver: Callable[[ContainerRemoved], None],
        stop: Event,
        reconnect_s: float = 5.0,
    ):
        self.client = client
        self.deliver = deliver
        self.stop = stop
        self.reconnect_s = reconnect_s
        self._thr: Thread | None = None
        self._stream: Any = None

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._thr = Thread(target=self._loop, daemon=True)
        self._thr.start()

    def _loop(self) -> None:
        while not self.stop.is_set():
            try:
                self.watch_once()
            except (DockerException, RequestException) as e:
                log_event("WARN", f"docker event stream failed: {type(e).__name__}: {e}")
            except Exception as e:
                if self.stop.is_set():
                    return
                log_event("ERROR", f"docker event stream failed: {type(e).__name__}: {e}")
            try:
                sleep_or_cancel(self.stop, self.reconnect_s)
            except Cancelled:
                return

    def watch_once(self) -> None:
        """Consume one event stream until it ends or shutdown is requested."""
        stream = self.client.events(decode=True, filters={"type": "container", "event": "destroy"})
        self._stream = stream
        try:
            for ev in stream:
                if self.stop.is_set():
                    return
                actor = ev.get("Actor") or {}
                container_id = ev.get("id") or actor.get("ID")
                if not container_id:
                    continue
                self.deliver(ContainerRemoved(container_id=container_id, attributes=dict(actor.get("Attributes") or {})))
        finally:
            self._stream = None
            _close_stream(stream)

    def close(self) -> None:
        """Interrupt a blocked event stream; used on shutdown."""
        stream = self._stream
        if stream is not None:
            _close_stream(stream)


def _close_stream(stream: Any) -> None:
    close = getattr(stream, "close", None)
    if close is not None:
        close()
