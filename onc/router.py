from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Event
from typing import Any, Callable

from docker.errors import NotFound

from .db import log_event
from .docker_ops import get_container, interface_ip, split_image_ref
from .runtime import Cancelled, sleep_or_cancel
from .settings import settings
from .weave import WeaveCommands


ROUTER_NAME = "weave"
ROUTER_IFACE = "weave"


@dataclass(frozen=True)
class RouterHandle:
    id: str
    image: str
    version: str
    trusted_subnets: str
    running: bool


def _cmd_option(cmd: list[str], name: str) -> str:
    for i, arg in enumerate(cmd):
        if arg == name:
            return cmd[i + 1] if i + 1 < len(cmd) else ""
        if arg.startswith(name + "="):
            return arg.split("=", 1)[1]
    return ""


def router_handle(container: Any) -> RouterHandle:
    config = container.attrs.get("Config") or {}
    image = config.get("Image") or ""
    state = container.attrs.get("State") or {}
    return RouterHandle(
        id=container.id,
        image=image,
        version=split_image_ref(image)[1],
        trusted_subnets=_cmd_option(list(config.get("Cmd") or []), "--trusted-subnets"),
        running=bool(state.get("Running", container.status == "running")),
    )


class RouterConvergence:
    """Drives the weave router container to the expected version and config.

    States: absent, version/config mismatch (removed, becomes absent),
    launching, running. Launching retries forever; a launch that does not
    reach running within the launch timeout is followed by `weave reset`.
    """

    def __init__(
        self,
        client: Any,
        weave: WeaveCommands,
        stop: Event | None = None,
        version: str = settings.weave_version,
        launch_timeout_s: float = settings.router_launch_timeout_s,
        poll_s: float = settings.router_poll_s,
        iface_ip: Callable[[str], str | None] = interface_ip,
    ):
        self.client = client
        self.weave = weave
        self.stop = stop
        self.version = version
        self.launch_timeout_s = launch_timeout_s
        self.poll_s = poll_s
        self.iface_ip = iface_ip

    def fetch(self) -> RouterHandle | None:
        """Fresh snapshot of the router container, None if it does not exist."""
        container = get_container(self.client, ROUTER_NAME)
        if container is None:
            return None
        try:
            container.reload()
        except NotFound:
            return None
        return router_handle(container)

    def config_changed(self, handle: RouterHandle, trusted_subnets: list[str] | None) -> bool:
        if handle.version != self.version:
            return True
        return handle.trusted_subnets != ",".join(trusted_subnets or [])

    def remove(self, handle: RouterHandle) -> None:
        container = get_container(self.client, handle.id)
        if container is None:
            return
        try:
            container.remove(force=True)
        except NotFound:
            pass

    def _check_cancel(self) -> None:
        if self.stop is not None and self.stop.is_set():
            raise Cancelled()

    def _wait_running(self) -> RouterHandle | None:
        handle = self.fetch()
        deadline = time.monotonic() + self.launch_timeout_s
        while not (handle and handle.running) and time.monotonic() < deadline:
            sleep_or_cancel(self.stop, self.poll_s)
            handle = self.fetch()
        return handle

    def ensure_running(self, trusted_subnets: list[str] | None) -> RouterHandle:
        handle = self.fetch()
        if handle and self.config_changed(handle, trusted_subnets):
            log_event(
                "WARN",
                f"weave router config changed (image={handle.image} trusted_subnets={handle.trusted_subnets!r}), replacing",
            )
            self.remove(handle)
            handle = None

        while not (handle and handle.running):
            self._check_cancel()
            self.weave.launch_router(trusted_subnets)
            handle = self._wait_running()
            if not (handle and handle.running):
                log_event("WARN", f"weave router not running after {self.launch_timeout_s}s, resetting")
                self.weave.reset()
        return handle

    def connect_peers(self, peer_ips: list[str]) -> None:
        if peer_ips:
            self.weave.connect(peer_ips)
            log_event("INFO", f"router connected to peers {', '.join(peer_ips)}")
        else:
            log_event("INFO", "router does not have any known peers")

    def converge(self, trusted_subnets: list[str] | None, peer_ips: list[str]) -> RouterHandle:
        handle = self.ensure_running(trusted_subnets)
        if not self.iface_ip(ROUTER_IFACE):
            log_event("INFO", "attaching router")
            self.weave.attach_router()
        self.connect_peers(peer_ips)
        return handle
