from __future__ import annotations

from .db import log_event
from .weave import EXPOSE, WeaveCommands


def host_cidr(node_number: int) -> str:
    return f"10.81.0.{int(node_number)}/16"


class ExposureManager:
    """Keeps exactly one overlay address on the host weave bridge."""

    def __init__(self, weave: WeaveCommands):
        self.weave = weave

    def exposed_cidrs(self) -> list[str]:
        cidrs: list[str] = []
        for rec in self.weave.ps(EXPOSE):
            cidrs.extend(rec.cidrs)
        return cidrs

    def ensure_exposed(self, cidr: str) -> None:
        """Expose the host at `cidr` and hide every other exposed address.

        The new address is added alongside any existing ones before those are
        hidden. A failed expose is logged but does not stop the cleanup;
        containers do not depend on host exposure.
        """
        if self.weave.expose(cidr):
            log_event("INFO", f"Exposed host node at cidr={cidr}")
        else:
            log_event("ERROR", f"Failed to expose host node at cidr={cidr}")

        for exposed in self.exposed_cidrs():
            if exposed != cidr:
                log_event("WARN", f"Migrating host node from cidr={exposed}")
                self.weave.hide(exposed)
