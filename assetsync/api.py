"""HTTP front serving intercepted reads and the sync control endpoints."""

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Dict, Optional

from .config import ServerConfig
from .engine import SyncEngine
from .models import InterceptedResponse
from .store import StoreError

logger = logging.getLogger(__name__)

# Control endpoints live under this prefix; every other GET is intercepted.
CONTROL_PREFIX = "/_sync/"


class ApiError(Exception):
    """Raised when the HTTP front fails to start."""
    pass


class CacheHandler(BaseHTTPRequestHandler):
    """HTTP request handler routing reads through the request interceptor."""

    # Class-level reference set by factory
    engine: Optional[SyncEngine] = None

    def log_message(self, format: str, *args: Any) -> None:
        """Override to use Python logging instead of stderr."""
        logger.debug("HTTP %s - %s", self.address_string(), format % args)

    def _send_json(self, code: int, data: Dict[str, Any]) -> None:
        """Send a JSON response with the given status code."""
        body = json.dumps(data, indent=2).encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)

    def _send_error_json(self, code: int, message: str) -> None:
        """Send a JSON error response."""
        self._send_json(code, {"error": message})

    def _send_intercepted(self, response: InterceptedResponse) -> None:
        """Send a response produced by the interceptor."""
        self.send_response(response.status_code)
        for name, value in response.headers.items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(response.body)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(response.body)

    def do_GET(self) -> None:
        """Handle GET requests."""
        if self.engine is None:
            self._send_error_json(503, "Engine not available")
            return

        try:
            if self.path == CONTROL_PREFIX + "health":
                self._send_json(200, {"status": "ok"})
            elif self.path == CONTROL_PREFIX + "status":
                self._handle_status()
            elif self.path.startswith(CONTROL_PREFIX):
                self._send_error_json(404, "Not found")
            else:
                self._send_intercepted(self.engine.handle_request(self.path))
        except Exception as e:
            logger.exception("Error handling request: %s", e)
            self._send_error_json(500, "Internal server error")

    def do_POST(self) -> None:
        """Handle POST requests."""
        if self.engine is None:
            self._send_error_json(503, "Engine not available")
            return

        try:
            if self.path == CONTROL_PREFIX + "check":
                scheduled = self.engine.check_now()
                self._send_json(202, {"scheduled": scheduled})
            else:
                self._send_error_json(405, "Method not allowed")
        except Exception as e:
            logger.exception("Error handling POST request: %s", e)
            self._send_error_json(500, "Internal server error")

    def do_PUT(self) -> None:
        self._send_error_json(405, "Method not allowed")

    def do_DELETE(self) -> None:
        self._send_error_json(405, "Method not allowed")

    def _handle_status(self) -> None:
        """Handle GET /_sync/status endpoint."""
        try:
            self._send_json(200, self.engine.status())
        except StoreError as e:
            logger.error("Store error in /_sync/status: %s", e)
            self._send_error_json(500, "Store error")


def _create_handler_class(engine: SyncEngine) -> type:
    """Create a handler class with the engine bound."""

    class BoundCacheHandler(CacheHandler):
        pass

    BoundCacheHandler.engine = engine
    return BoundCacheHandler


class ApiServer:
    """HTTP server running in a background thread."""

    def __init__(self, config: ServerConfig, engine: SyncEngine) -> None:
        """Initialize the server.

        Args:
            config: Server configuration.
            engine: Sync engine answering requests.
        """
        self.config = config
        self.engine = engine
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._shutdown_event = threading.Event()

    def start(self) -> None:
        """Start the server in a background thread.

        Raises:
            ApiError: If the server fails to start.
        """
        if self._thread is not None and self._thread.is_alive():
            logger.warning("HTTP server is already running")
            return

        try:
            handler_class = _create_handler_class(self.engine)
            self._server = HTTPServer(("", self.config.port), handler_class)
            self._server.timeout = 1.0  # Allow periodic shutdown checks

            self._shutdown_event.clear()
            self._thread = threading.Thread(
                target=self._serve_forever,
                name="http-server",
                daemon=True,
            )
            self._thread.start()

            logger.info("HTTP server started on port %d", self.config.port)

        except OSError as e:
            if e.errno == 98 or e.errno == 48:  # EADDRINUSE (Linux=98, macOS=48)
                raise ApiError(
                    f"Port {self.config.port} is already in use. "
                    f"Another process may be using this port, or assetsync is already running."
                )
            elif e.errno == 13:  # EACCES - Permission denied
                raise ApiError(
                    f"Permission denied for port {self.config.port}. "
                    f"Ports below 1024 require root privileges."
                )
            else:
                raise ApiError(f"Failed to start HTTP server on port {self.config.port}: {e}")

    def _serve_forever(self) -> None:
        """Server loop that checks for shutdown."""
        while not self._shutdown_event.is_set():
            if self._server:
                self._server.handle_request()

    def stop(self) -> None:
        """Stop the server gracefully."""
        if self._thread is None:
            return

        logger.info("Stopping HTTP server...")
        self._shutdown_event.set()

        # handle_request() returns within server.timeout, so join before closing the socket
        if self._thread.is_alive():
            self._thread.join(timeout=5.0)

        if self._server:
            self._server.server_close()

        self._server = None
        self._thread = None
        logger.info("HTTP server stopped")

    @property
    def is_running(self) -> bool:
        """Check if the server is running."""
        return self._thread is not None and self._thread.is_alive()
