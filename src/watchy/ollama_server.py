"""Optional dedicated ``ollama serve`` process owned by the CLI."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time

import httpx

from watchy.tasks.process import signal_group

logger = logging.getLogger(__name__)

_READY_POLL_INTERVAL_SECONDS = 0.2
_STOP_GRACE_SECONDS = 5.0


class OllamaServerError(RuntimeError):
    """The managed server could not be started or did not become ready."""


class ManagedOllamaServer:
    """Runs ``ollama serve`` on a private port in its own process group."""

    def __init__(self, port: int, *, executable: str = "ollama") -> None:
        self.port = port
        self.executable = executable
        self._process: subprocess.Popen[bytes] | None = None

    @property
    def host(self) -> str:
        return f"http://localhost:{self.port}"

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def start(self) -> None:
        if self.running:
            return
        env = {**os.environ, "OLLAMA_HOST": f":{self.port}"}
        try:
            self._process = subprocess.Popen(  # noqa: S603
                [self.executable, "serve"],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                env=env,
                start_new_session=True,
            )
        except OSError as error:
            raise OllamaServerError(f"failed to start ollama serve: {error}") from error
        logger.info("Started ollama serve on port %d (pid %d)", self.port, self._process.pid)

    def wait_ready(self, timeout: float = 10.0) -> None:
        """Poll ``/api/tags`` until it answers 200 or ``timeout`` passes."""

        deadline = time.monotonic() + timeout
        with httpx.Client(timeout=1.0) as client:
            while time.monotonic() < deadline:
                try:
                    response = client.get(f"{self.host}/api/tags")
                except httpx.HTTPError:
                    pass
                else:
                    if response.status_code == httpx.codes.OK:
                        return
                time.sleep(_READY_POLL_INTERVAL_SECONDS)
        raise OllamaServerError(f"ollama server not ready after {timeout:g} seconds")

    def stop(self) -> None:
        process = self._process
        if process is None:
            return
        if process.poll() is None:
            try:
                signal_group(process.pid, signal.SIGTERM)
            except OSError:
                process.terminate()
            try:
                process.wait(timeout=_STOP_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                logger.warning("ollama serve did not exit after SIGTERM; killing it")
                try:
                    signal_group(process.pid, signal.SIGKILL)
                except OSError:
                    process.kill()
                process.wait()
        self._process = None
