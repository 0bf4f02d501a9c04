"""HTTP server exposing the protocol description and the metrics."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional
from urllib.parse import urlsplit

from .metrics import MetricsWriter
from .protocol import PROTOFILE

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuxiliaryResponse:
    status: HTTPStatus
    body: bytes = b""
    content_type: Optional[str] = None


class _HTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, handler, owner: "AuxiliaryServer") -> None:
        self.owner = owner
        super().__init__(address, handler)


class _Handler(BaseHTTPRequestHandler):
    server: _HTTPServer

    def _serve(self) -> None:
        response = self.server.owner.respond(urlsplit(self.path).path)
        self.send_response(response.status)
        if response.content_type is not None:
            self.send_header("Content-Type", response.content_type)
        self.send_header("Content-Length", str(len(response.body)))
        self.end_headers()
        self.wfile.write(response.body)

    do_GET = _serve
    do_POST = _serve
    do_PUT = _serve
    do_DELETE = _serve
    do_PATCH = _serve

    def log_message(self, format, *args) -> None:
        log.debug("%s - %s", self.address_string(), format % args)


class AuxiliaryServer:
    """Serves /proto and /metrics from a background thread."""

    def __init__(
        self, port: int, metrics: Optional[MetricsWriter] = None, host: str = "0.0.0.0"
    ) -> None:
        self.host = host
        self.requested_port = port
        self.metrics = metrics if metrics is not None else MetricsWriter()
        self._httpd: Optional[_HTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> Optional[int]:
        """The bound port while running."""
        return None if self._httpd is None else self._httpd.server_address[1]

    def respond(self, path: str) -> AuxiliaryResponse:
        """Build the response for a request path."""
        if path == "/proto":
            return AuxiliaryResponse(HTTPStatus.OK, PROTOFILE, "application/protobuf")
        if path == "/metrics":
            return AuxiliaryResponse(
                HTTPStatus.OK, self.metrics.write().encode("utf-8"), "text/plain; charset=UTF-8"
            )
        return AuxiliaryResponse(HTTPStatus.NOT_FOUND)

    def start(self) -> None:
        """Bind and serve in a daemon thread."""
        if self._httpd is not None:
            return
        self._httpd = _HTTPServer((self.host, self.requested_port), _Handler, self)
        self._thread = threading.Thread(
            target=self._httpd.serve_forever, name="mesg-auxiliary", daemon=True
        )
        self._thread.start()
        log.info("protofile: http://%s:%s/proto", self.host, self.port)
        log.info("metrics endpoint: http://%s:%s/metrics", self.host, self.port)

    def stop(self) -> None:
        """Stop serving and release the socket."""
        httpd, self._httpd = self._httpd, None
        thread, self._thread = self._thread, None
        if httpd is None:
            return
        httpd.shutdown()
        httpd.server_close()
        if thread is not None:
            thread.join()