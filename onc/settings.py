from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Weave router / exec images
    weave_version: str = os.getenv("WEAVE_VERSION", "1.7.2")
    weave_image: str = os.getenv("WEAVE_IMAGE", "weaveworks/weave")
    weaveexec_image: str = os.getenv("WEAVEEXEC_IMAGE", "weaveworks/weaveexec")
    weave_debug: str = os.getenv("WEAVE_DEBUG", "")
    # Shared secret used by routers to authenticate peers.
    router_password: str | None = os.getenv("KONTENA_TOKEN")
    dns_domain: str = os.getenv("ONC_DNS_DOMAIN", "kontena.local")
    docker_socket: str = os.getenv("ONC_DOCKER_SOCKET", "/var/run/docker.sock")

    # Address allocator
    ipam_url: str = os.getenv("ONC_IPAM_URL", "http://127.0.0.1:2275")
    ipam_timeout_s: float = _env_float("ONC_IPAM_TIMEOUT_S", 10.0)
    default_network: str = "kontena"
    default_subnet: str = "10.81.0.0/16"
    default_iprange: str = "10.81.128.0/17"

    # Retry / polling knobs
    exec_retries: int = _env_int("ONC_EXEC_RETRIES", 10)
    exec_backoff_s: float = _env_float("ONC_EXEC_BACKOFF_S", 0.5)
    router_launch_timeout_s: float = _env_float("ONC_ROUTER_LAUNCH_TIMEOUT_S", 10.0)
    router_poll_s: float = _env_float("ONC_ROUTER_POLL_S", 0.5)
    image_poll_s: float = _env_float("ONC_IMAGE_POLL_S", 1.0)
    ipam_retry_s: float = _env_float("ONC_IPAM_RETRY_S", 2.0)
    images_wait_s: float = _env_float("ONC_IMAGES_WAIT_S", 600.0)

    # Event journal / API
    db_path: str = os.getenv("ONC_DB_PATH", "onc.db")
    debug: bool = _env_bool("ONC_DEBUG", False)
    api_user: str = os.getenv("ONC_API_USER", "admin")
    api_password: str = os.getenv("ONC_API_PASSWORD", "admin")

    @property
    def weave_image_ref(self) -> str:
        return f"{self.weave_image}:{self.weave_version}"

    @property
    def weaveexec_image_ref(self) -> str:
        return f"{self.weaveexec_image}:{self.weave_version}"

    @property
    def weavewait_name(self) -> str:
        return f"weavewait-{self.weave_version}"


settings = Settings()
