from __future__ import annotations

import traceback
from queue import Empty, Queue
from threading import Event, Thread
from typing import Any, Callable

from docker.errors import DockerException
from requests.exceptions import RequestException

from .api_models import NodeInfo
from .attachments import OVERLAY_CIDR_LABEL, OVERLAY_NETWORK_LABEL, AttachmentManager, release_on_removal
from .db import log_event
from .docker_ops import ensure_volume_container, image_exists, interface_ip, pull_image
from .events import NETWORK_ADAPTER_START, NETWORK_READY, ContainerEventWatcher, ContainerRemoved, IpamReady, NodeInfoUpdated, Notifier
from .exec_bridge import CommandBridge
from .exposure import ExposureManager, host_cidr
from .ipam import IpamClient, IpamError, IpamUnavailable, PoolHandle
from .router import RouterConvergence
from .runtime import AdapterState, Cancelled, ImagesNotReady, sleep_or_cancel
from .settings import settings
from .weave import WeaveCommands


WAIT_VOLUMES = ["/w", "/w-noop", "/w-nomcast"]


class NetworkAdapter:
    """Node-local controller for the weave overlay network.

    Node info updates go to `inbox` and drive router convergence on one
    worker thread; only the newest queued update is applied. Allocator ready
    and container removed messages go to `allocator_inbox` and are handled on
    a second worker, so a router that never comes up does not hold up address
    release. Releases that arrive before the allocator is ready are held until
    it is.
    Container attach/migrate calls run directly on the caller's thread.
    """

    def __init__(
        self,
        client: Any,
        notifier: Notifier | None = None,
        stop: Event | None = None,
        bridge: CommandBridge | None = None,
        ipam_factory: Callable[[], IpamClient] = IpamClient,
        iface_ip: Callable[[str], str | None] = interface_ip,
        images_wait_s: float = settings.images_wait_s,
        image_poll_s: float = settings.image_poll_s,
        ipam_retry_s: float = settings.ipam_retry_s,
    ):
        self.client = client
        self.stop_event = stop or Event()
        self.notifier = notifier or Notifier()
        self.state = AdapterState()
        self.bridge = bridge or CommandBridge(client, stop=self.stop_event)
        self.weave = WeaveCommands(self.bridge)
        self.router = RouterConvergence(client, self.weave, stop=self.stop_event, iface_ip=iface_ip)
        self.exposure = ExposureManager(self.weave)
        self.attachments = AttachmentManager(self.weave)
        self.ipam: IpamClient | None = None
        self.inbox: Queue = Queue()
        self.allocator_inbox: Queue = Queue()
        self._pending_releases: list[ContainerRemoved] = []
        self._ipam_factory = ipam_factory
        self._iface_ip = iface_ip
        self.images_wait_s = images_wait_s
        self.image_poll_s = image_poll_s
        self.ipam_retry_s = ipam_retry_s
        self._threads: list[Thread] = []
        self._watcher = ContainerEventWatcher(client, self.publish, self.stop_event)
        log_event("INFO", "network adapter initialized")

    # ---- queries

    def is_adapter_image(self, image: str | None) -> bool:
        return settings.weaveexec_image in str(image or "")

    def running(self) -> bool:
        handle = self.router.fetch()
        return bool(handle and handle.running) and self.state.ipam_running

    # ---- message handling

    def publish(self, msg: Any) -> None:
        if isinstance(msg, NodeInfoUpdated):
            self.inbox.put(msg)
        else:
            self.allocator_inbox.put(msg)

    def handle(self, msg: Any) -> None:
        try:
            if isinstance(msg, NodeInfoUpdated):
                self.start(msg.info)
            elif isinstance(msg, IpamReady):
                self.on_ipam_start(msg.data)
            elif isinstance(msg, ContainerRemoved):
                self.detach_network(msg)
            else:
                log_event("WARN", f"ignoring unknown message {msg!r}")
        except Cancelled:
            log_event("INFO", f"{type(msg).__name__} handling cancelled")
        except Exception as e:
            log_event("ERROR", f"{type(msg).__name__} handling failed: {type(e).__name__}: {e}")
            log_event("DEBUG", traceback.format_exc())

    def _next_node_info(self) -> Any:
        """Newest queued node info; older updates are superseded."""
        msg = self.inbox.get()
        while msg is not None:
            try:
                msg = self.inbox.get_nowait()
            except Empty:
                break
        return msg

    def _loop(self) -> None:
        while not self.stop_event.is_set():
            msg = self._next_node_info()
            if msg is None:
                break
            self.handle(msg)

    def _allocator_loop(self) -> None:
        while not self.stop_event.is_set():
            msg = self.allocator_inbox.get()
            if msg is None:
                break
            self.handle(msg)

    def run_background(self) -> None:
        if any(t.is_alive() for t in self._threads):
            return
        self._threads = [
            Thread(target=self.bootstrap, daemon=True),
            Thread(target=self._loop, daemon=True),
            Thread(target=self._allocator_loop, daemon=True),
        ]
        for t in self._threads:
            t.start()
        self._watcher.start()

    def stop(self) -> None:
        self.stop_event.set()
        self.inbox.put(None)
        self.allocator_inbox.put(None)
        self._watcher.close()

    # ---- bootstrap

    def ensure_images(self) -> None:
        for ref in (settings.weave_image_ref, settings.weaveexec_image_ref):
            if image_exists(self.client, ref):
                continue
            log_event("INFO", f"pulling {ref}")
            pull_image(self.client, ref)
            while not image_exists(self.client, ref):
                sleep_or_cancel(self.stop_event, self.image_poll_s)
            log_event("INFO", f"image {ref} pulled")
        self.state.mark_images_ready()

    def ensure_weave_wait(self) -> None:
        self.state.wait_images(self.images_wait_s, self.stop_event)
        ensure_volume_container(
            self.client,
            settings.weavewait_name,
            settings.weaveexec_image_ref,
            WAIT_VOLUMES,
            {"weavevolumes": ""},
        )

    def bootstrap(self) -> bool:
        """Pull the weave images and create the weavewait volume container.

        Docker errors are retried until shutdown.
        """
        while not self.stop_event.is_set():
            try:
                self.ensure_images()
                self.ensure_weave_wait()
                return True
            except Cancelled:
                return False
            except (DockerException, RequestException) as e:
                log_event("ERROR", f"bootstrap failed: {type(e).__name__}: {e}")
            try:
                sleep_or_cancel(self.stop_event, self.image_poll_s)
            except Cancelled:
                return False
        return False

    # ---- convergence

    def start(self, info: NodeInfo) -> bool:
        """Converge router, peers and host exposure for `info`.

        Never raises; failures are journaled and the next node info update
        runs the whole thing again.
        """
        try:
            self.state.wait_images(self.images_wait_s, self.stop_event)
            self.router.converge(info.trusted_subnets, info.peer_ips)
            if info.trusted_subnets and not self.state.started:
                log_event("INFO", f"using trusted subnets: {','.join(info.trusted_subnets)}")
            self.post_start(info)

            if self.state.mark_started():
                self.notifier.publish(NETWORK_ADAPTER_START, info)
            return True
        except Cancelled:
            log_event("INFO", "network adapter start cancelled")
        except ImagesNotReady as e:
            log_event("WARN", f"network adapter start postponed: {e}")
        except (DockerException, RequestException) as e:
            log_event("ERROR", f"docker unreachable: {type(e).__name__}: {e}")
        except Exception as e:
            log_event("ERROR", f"{type(e).__name__}: {e}")
            log_event("DEBUG", traceback.format_exc())
        return False

    def post_start(self, info: NodeInfo) -> None:
        if info.node_number:
            self.exposure.ensure_exposed(host_cidr(info.node_number))

    # ---- allocator

    def ensure_default_pool(self) -> PoolHandle:
        log_event("INFO", "network and ipam ready, ensuring default network existence")
        if self.ipam is None:
            raise IpamUnavailable("address allocator is not ready")
        pool = self.ipam.reserve_pool(settings.default_network, settings.default_subnet, settings.default_iprange)
        self.state.set_default_pool(pool)
        return pool

    def on_ipam_start(self, data: Any = None) -> bool:
        self.ipam = self._ipam_factory()
        while True:
            try:
                self.ensure_default_pool()
                break
            except IpamUnavailable as e:
                log_event("WARN", f"address allocator unreachable, retrying: {e}")
                sleep_or_cancel(self.stop_event, self.ipam_retry_s)
            except IpamError as e:
                log_event("ERROR", f"default pool reservation rejected: {e}")
                return False
        self.notifier.publish(NETWORK_READY, None)
        self.state.mark_ipam_running()
        self.flush_pending_releases()
        return True

    def flush_pending_releases(self) -> None:
        pending, self._pending_releases = self._pending_releases, []
        for event in pending:
            try:
                release_on_removal(self.ipam, event.container_id, event.attributes)
            except IpamError as e:
                log_event(
                    "ERROR",
                    f"releasing address of {event.container_id} failed: {e}",
                    container_id=event.container_id,
                )

    # ---- containers

    def attach_container(self, container_id: str, cidr: str) -> bool:
        return self.attachments.attach(container_id, cidr)

    def migrate_container(self, container_id: str, cidr: str) -> bool:
        return self.attachments.migrate(container_id, cidr)

    def detach_network(self, event: ContainerRemoved) -> bool:
        if self.is_adapter_image(event.attributes.get("image")):
            return False
        if self.ipam is None or not self.state.ipam_running:
            if event.attributes.get(OVERLAY_CIDR_LABEL):
                log_event(
                    "INFO",
                    f"holding address release for {event.container_id} until the allocator is ready",
                    container_id=event.container_id,
                )
                self._pending_releases.append(event)
            return False
        return release_on_removal(self.ipam, event.container_id, event.attributes)

    # ---- container create options

    def modify_create_opts(self, opts: dict[str, Any]) -> dict[str, Any]:
        """Route the container's command through the weavewait wrapper `/w/w`."""
        self.ensure_weave_wait()

        image_config = self.client.images.get(opts["Image"]).attrs.get("Config") or {}
        cmd: list[str] = []
        entrypoint = opts.get("Entrypoint")
        if entrypoint:
            cmd += entrypoint if isinstance(entrypoint, list) else [entrypoint]
        elif image_config.get("Entrypoint"):
            cmd += list(image_config["Entrypoint"])
        opts_cmd = opts.get("Cmd")
        if opts_cmd:
            cmd += opts_cmd if isinstance(opts_cmd, list) else [opts_cmd]
        elif image_config.get("Cmd"):
            cmd += list(image_config["Cmd"])
        opts["Entrypoint"] = ["/w/w"]
        opts["Cmd"] = cmd

        self.modify_host_config(opts)
        return opts

    def modify_network_opts(self, opts: dict[str, Any]) -> dict[str, Any]:
        if self.ipam is None:
            raise IpamUnavailable("address allocator is not ready")
        labels = opts.setdefault("Labels", {})
        pool = self.state.default_pool.name if self.state.default_pool else settings.default_network
        labels[OVERLAY_CIDR_LABEL] = self.ipam.reserve_address(pool)
        labels[OVERLAY_NETWORK_LABEL] = pool
        return opts

    def modify_host_config(self, opts: dict[str, Any]) -> dict[str, Any]:
        host_config = opts.get("HostConfig") or {}
        host_config.setdefault("VolumesFrom", [])
        host_config["VolumesFrom"].append(f"{settings.weavewait_name}:ro")
        dns = self._iface_ip("docker0")
        if dns and str(host_config.get("NetworkMode") or "") != "host":
            host_config["Dns"] = [dns]
            if opts.get("Domainname"):
                host_config["DnsSearch"] = [opts["Domainname"]]
        opts["HostConfig"] = host_config
        return opts
