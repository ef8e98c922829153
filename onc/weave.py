from __future__ import annotations

from typing import Iterator

from .exec_bridge import CommandBridge
from .ps import AttachmentRecord, parse_ps_line
from .settings import settings


EXPOSE = "weave:expose"


class WeaveCommands:
    """The weave subcommands used by the controller, run through the bridge."""

    def __init__(self, bridge: CommandBridge):
        self.bridge = bridge

    def _exec(self, *args: str) -> bool:
        return self.bridge.execute(["--local", *args])

    def ps(self, *what: str) -> Iterator[AttachmentRecord]:
        """List network information for the given docker IDs, `weave:expose`, or everything.

        Yields nothing if the command failed.
        """
        records: list[AttachmentRecord] = []

        def collect(line: str) -> None:
            rec = parse_ps_line(line)
            if rec is not None:
                records.append(rec)

        self.bridge.execute(["--local", "ps", *what], on_line=collect)
        return iter(records)

    def expose(self, cidr: str) -> bool:
        """Configure `cidr` on the host weave bridge, plus its iptables rules."""
        return self._exec("expose", f"ip:{cidr}")

    def hide(self, cidr: str) -> bool:
        return self._exec("hide", cidr)

    def attach(self, container_id: str, cidr: str) -> bool:
        return self._exec("attach", cidr, "--rewrite-hosts", container_id)

    def detach(self, container_id: str, cidr: str) -> bool:
        return self._exec("detach", cidr, container_id)

    def launch_router(self, trusted_subnets: list[str] | None, password: str | None = settings.router_password) -> bool:
        # IP allocation is owned by the external allocator, not the router.
        args = ["launch-router", "--ipalloc-range", "", "--dns-domain", settings.dns_domain]
        if password:
            args += ["--password", password]
        if trusted_subnets:
            args += ["--trusted-subnets", ",".join(trusted_subnets)]
        return self._exec(*args)

    def attach_router(self) -> bool:
        return self._exec("attach-router")

    def connect(self, peer_ips: list[str]) -> bool:
        return self._exec("connect", "--replace", *peer_ips)

    def reset(self) -> bool:
        return self._exec("reset")
