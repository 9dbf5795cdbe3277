"""HTTP ingress that hands every webhook body to the router."""
from __future__ import annotations

import json
import logging
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlparse

from .webhook_router import EMPTY_BODY_MESSAGE, RouteResult, WebhookRouter

HEALTH_PATH = "/healthz"


class WebhookRequestHandler(BaseHTTPRequestHandler):
    """Accepts Jira webhooks and Slack-formatted relay payloads on one route."""

    router: WebhookRouter
    webhook_path: str = "/api/jira/webhook"
    logger = logging.getLogger("webhook_ingress")

    def do_POST(self) -> None:  # noqa: N802 - required by BaseHTTPRequestHandler
        route = urlparse(self.path).path
        body = self._read_body()
        if route != self.webhook_path:
            self._send_text(404, "Not Found")
            return
        self._handle_webhook(body)

    def do_GET(self) -> None:  # noqa: N802 - required by BaseHTTPRequestHandler
        if urlparse(self.path).path == HEALTH_PATH:
            self._send_text(200, "ok")
            return
        self._send_text(404, "Not Found")

    def _handle_webhook(self, body: bytes) -> None:
        if not body.strip():
            self.logger.warning("no request body received")
            self._send_text(400, EMPTY_BODY_MESSAGE)
            return
        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            self.logger.warning("invalid JSON body: %s", exc)
            self._send_text(400, "Invalid JSON payload")
            return

        result: RouteResult = self.router.route(payload)
        self._send_text(result.status_code, result.message)

    def _read_body(self) -> bytes:
        raw_length = self.headers.get("Content-Length", "0") or "0"
        try:
            content_length = int(raw_length)
        except ValueError:
            self.logger.warning("invalid Content-Length header: %s", raw_length)
            return b""
        if content_length <= 0:
            return b""
        return self.rfile.read(content_length)

    def _send_text(self, code: int, text: str) -> None:
        raw = text.encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def log_message(self, fmt: str, *args) -> None:  # noqa: A003
        self.logger.debug("%s - %s", self.address_string(), fmt % args)


def build_server(
    *,
    host: str,
    port: int,
    router: WebhookRouter,
    webhook_path: str,
) -> ThreadingHTTPServer:
    class _Handler(WebhookRequestHandler):
        pass

    _Handler.router = router
    _Handler.webhook_path = webhook_path
    return ThreadingHTTPServer((host, port), _Handler)


def run_webhook_ingress(
    *,
    host: str,
    port: int,
    router: WebhookRouter,
    webhook_path: str,
) -> None:
    server = build_server(host=host, port=port, router=router, webhook_path=webhook_path)
    try:
        server.serve_forever()
    finally:
        server.server_close()
