from __future__ import annotations

import socket
from typing import Any

import docker
import psutil
from docker.errors import DockerException, ImageNotFound, NotFound

from .db import log_event
from .settings import settings


def client() -> docker.DockerClient:
    return docker.from_env()


def docker_available(c: Any) -> bool:
    try:
        c.ping()
        return True
    except DockerException:
        return False


def split_image_ref(ref: str) -> tuple[str, str]:
    """Split 'repo[:tag]' into (repo, tag); a registry port is not a tag."""
    repo, sep, tag = ref.rpartition(":")
    if not sep or "/" in tag:
        return ref, "latest"
    return repo, tag


def image_exists(c: Any, ref: str) -> bool:
    try:
        c.images.get(ref)
        return True
    except (ImageNotFound, NotFound):
        return False


def pull_image(c: Any, ref: str) -> None:
    repo, tag = split_image_ref(ref)
    c.images.pull(repo, tag=tag)


def get_container(c: Any, name: str) -> Any | None:
    try:
        return c.containers.get(name)
    except NotFound:
        return None


def ensure_volume_container(c: Any, name: str, image: str, volumes: list[str], labels: dict[str, str]) -> bool:
    """Create a never-started container holding anonymous volumes.

    Returns True if it had to be created.
    """
    if get_container(c, name) is not None:
        return False
    c.api.create_container(
        image,
        name=name,
        entrypoint=["/bin/false"],
        labels=labels,
        volumes=volumes,
    )
    log_event("INFO", f"Created volume container {name} from {image}")
    return True


def interface_ip(name: str) -> str | None:
    """First IPv4 address configured on a host interface, or None."""
    for addr in psutil.net_if_addrs().get(name, []):
        if addr.family == socket.AF_INET:
            return addr.address
    return None


def docker_socket_bind() -> str:
    return f"{settings.docker_socket}:/var/run/docker.sock"
