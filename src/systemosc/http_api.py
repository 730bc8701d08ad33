"""HTTP pull endpoint serving the latest snapshot."""

import threading
import time

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from systemosc.errors import ConfigurationError
from systemosc.logger import get_logger
from systemosc.sinks import SnapshotStore

log = get_logger(__name__)

NO_DATA_BODY = {"error": "No data available yet"}


def create_app(store: SnapshotStore) -> FastAPI:
    """Build the FastAPI app answering from ``store``."""
    app = FastAPI(title="systemosc", docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/")
    def latest() -> JSONResponse:
        entries = store.current()
        if entries is None:
            return JSONResponse(status_code=503, content=NO_DATA_BODY)
        return JSONResponse(status_code=200, content=entries)

    return app


class HttpResponder:
    """Runs a uvicorn server for the pull endpoint on a daemon thread."""

    def __init__(self, app: FastAPI, host: str = "0.0.0.0", port: int = 3000) -> None:
        self.host = host
        self.port = port
        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_config=None,  # keep our logging setup
            access_log=False,
            lifespan="off",
        )
        self._server = uvicorn.Server(config)
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def bound_port(self) -> int:
        """Port actually bound (differs from ``port`` when started with port 0)."""
        for server in self._server.servers:
            for sock in server.sockets:
                return sock.getsockname()[1]
        return self.port

    def start(self, startup_timeout: float = 5.0) -> None:
        """
        Start serving and wait until the socket is bound.

        Raises:
            ConfigurationError: The server could not start (e.g. port in use).
        """
        if self.is_running:
            return

        self._server.should_exit = False
        self._thread = threading.Thread(
            target=self._server.run,
            daemon=True,
            name="HttpResponder",
        )
        self._thread.start()

        deadline = time.monotonic() + startup_timeout
        while not self._server.started:
            if not self._thread.is_alive() or time.monotonic() > deadline:
                self.stop()
                raise ConfigurationError(
                    f"HTTP endpoint failed to start on {self.host}:{self.port}"
                )
            time.sleep(0.05)
        log.info("http_responder_started", host=self.host, port=self.port)

    def stop(self, timeout: float = 5.0) -> None:
        """Ask uvicorn to exit and wait for the thread."""
        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
            log.info("http_responder_stopped", port=self.port)
