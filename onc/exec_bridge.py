from __future__ import annotations

from threading import Event
from typing import Any, Callable, Sequence

from docker.errors import DockerException, NotFound
from requests.exceptions import RequestException

from .db import log_event
from .docker_ops import docker_socket_bind
from .runtime import sleep_or_cancel
from .settings import settings


SKIP_LOGS_LABEL = "io.kontena.container.skip_logs"


class CommandBridge:
    """Runs weave subcommands inside a one-shot privileged weaveexec container.

    The helper shares the host network and PID namespaces and gets the docker
    socket plus the host root filesystem bind-mounted. It is always removed
    (forced, with its anonymous volumes) once the command is done, whatever
    the outcome.
    """

    def __init__(
        self,
        client: Any,
        stop: Event | None = None,
        image: str = settings.weaveexec_image_ref,
        retries: int = settings.exec_retries,
        backoff_s: float = settings.exec_backoff_s,
    ):
        self.client = client
        self.stop = stop
        self.image = image
        self.retries = max(1, int(retries))
        self.backoff_s = backoff_s

    def _create(self, argv: list[str]) -> Any:
        return self.client.containers.create(
            self.image,
            command=argv,
            labels={SKIP_LOGS_LABEL: "1"},
            environment=[
                "HOST_ROOT=/host",
                f"VERSION={settings.weave_version}",
                f"WEAVE_DEBUG={settings.weave_debug}",
            ],
            privileged=True,
            network_mode="host",
            pid_mode="host",
            volumes=[docker_socket_bind(), "/:/host"],
        )

    def _remove(self, container: Any) -> None:
        try:
            container.remove(force=True, v=True)
        except NotFound:
            pass
        except (DockerException, RequestException) as e:
            log_event("ERROR", f"weaveexec cleanup failed for {container.id}: {e}")

    def _run(self, container: Any, argv: list[str]) -> dict[str, Any] | None:
        """Start the helper and wait for it, retrying transient failures."""
        attempt = 0
        while True:
            try:
                container.start()
                return container.wait()
            except NotFound as e:
                log_event("ERROR", f"weaveexec {argv}: {e}")
                return None
            except (DockerException, RequestException) as e:
                attempt += 1
                log_event("ERROR", f"weaveexec {argv} attempt {attempt}/{self.retries}: {type(e).__name__}: {e}")
                if attempt >= self.retries:
                    return None
                sleep_or_cancel(self.stop, self.backoff_s)

    def execute(self, argv: Sequence[str], on_line: Callable[[str], None] | None = None) -> bool:
        argv = list(argv)
        container = None
        try:
            try:
                container = self._create(argv)
            except (DockerException, RequestException) as e:
                log_event("ERROR", f"weaveexec {argv}: create failed: {type(e).__name__}: {e}")
                return False

            response = self._run(container, argv)
            if response is None:
                return False

            status_code = response.get("StatusCode")
            try:
                output = container.logs(stdout=True, stderr=True)
            except (DockerException, RequestException) as e:
                log_event("ERROR", f"weaveexec {argv}: reading output failed: {e}")
                return False
            if isinstance(output, bytes):
                output = output.decode("utf-8", errors="replace")

            if status_code != 0:
                log_event("ERROR", f"weaveexec exit {status_code}: {argv}\n{output}")
                return False
            if on_line is not None:
                log_event("DEBUG", f"weaveexec stream: {argv}")
                for line in output.splitlines():
                    on_line(line)
                return True
            log_event("DEBUG", f"weaveexec ok: {argv}\n{output}")
            return True
        finally:
            if container is not None:
                self._remove(container)
