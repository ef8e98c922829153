from __future__ import annotations

from .db import log_event
from .ipam import IpamClient, IpamUnavailable
from .settings import settings
from .weave import WeaveCommands


OVERLAY_CIDR_LABEL = "io.kontena.container.overlay_cidr"
OVERLAY_NETWORK_LABEL = "io.kontena.container.overlay_network"


class AttachmentManager:
    """Attaches, detaches and migrates overlay addresses of single containers.

    Holds no per-container state, so calls for different containers never wait
    on each other. Callers serialize calls for the same container.
    """

    def __init__(self, weave: WeaveCommands):
        self.weave = weave

    def attach(self, container_id: str, cidr: str) -> bool:
        log_event("INFO", f"Attach container={container_id} at cidr={cidr}", container_id=container_id)
        return self.weave.attach(container_id, cidr)

    def detach(self, container_id: str, cidr: str) -> bool:
        return self.weave.detach(container_id, cidr)

    def attached_cidrs(self, container_id: str) -> list[str]:
        cidrs: list[str] = []
        for rec in self.weave.ps(container_id):
            log_event("DEBUG", f"Migrate check: name={rec.name} with cidrs={list(rec.cidrs)}", container_id=container_id)
            cidrs.extend(rec.cidrs)
        return cidrs

    def migrate(self, container_id: str, cidr: str) -> bool:
        """Attach at `cidr`, first detaching any other address.

        weave refuses to attach an address that already exists on the
        interface with a different netmask.
        """
        log_event("INFO", f"Migrate container={container_id} to cidr={cidr}", container_id=container_id)

        for attached in self.attached_cidrs(container_id):
            if attached != cidr:
                log_event("WARN", f"Migrate container={container_id} from cidr={attached}", container_id=container_id)
                self.detach(container_id, attached)

        return self.attach(container_id, cidr)


def release_on_removal(ipam: IpamClient | None, container_id: str, attributes: dict[str, str]) -> bool:
    """Return a removed container's overlay address to its pool.

    Returns False when the container never had an overlay address.
    """
    overlay_cidr = attributes.get(OVERLAY_CIDR_LABEL)
    overlay_network = attributes.get(OVERLAY_NETWORK_LABEL)
    if not overlay_cidr:
        return False
    if ipam is None:
        raise IpamUnavailable("address allocator is not ready")
    log_event("DEBUG", f"releasing weave network address for container {container_id}", container_id=container_id)
    ipam.release_address(overlay_network or settings.default_network, overlay_cidr)
    return True
