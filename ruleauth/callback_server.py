"""Ephemeral localhost HTTP server that receives login redirects.

Used when no host application delivers the callback URI for us (the
CLI, scripts). Requests on the callback path are forwarded to a
``CallbackHandler`` running on the owning asyncio loop, and the browser
gets a success or failure page.

Uses only stdlib (http.server, threading, urllib.parse).
"""

# pylint: disable=logging-too-many-args

# pylint: disable=C0103,W0212

from __future__ import annotations

import asyncio
import concurrent.futures
import html
import logging
import threading

from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse


if TYPE_CHECKING:
    from .callback import CallbackHandler
    from .types import AuthResult


logger = logging.getLogger("ruleauth.auth")

_PAGE_STYLE = """
  body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #f0f2f5; color: #1a1a2e; }
  .card { text-align: center; padding: 2rem 3rem; background: white;
          border-radius: 12px; box-shadow: 0 2px 12px rgba(0,0,0,.08); }
  h1 { font-size: 1.5rem; margin-bottom: 0.5rem; }
  h1.error { color: #cc0000; }
  p { color: #666; }
"""

_PAGE = """<!DOCTYPE html>
<html>
<head><title>{title}</title><style>{style}</style></head>
<body><div class="card">
  <h1 class="{css}">{heading}</h1>
  <p>{body}</p>
</div></body></html>"""


def _render(title: str, heading: str, body: str, css: str = "") -> str:
    return _PAGE.format(
        title=title,
        style=_PAGE_STYLE,
        css=css,
        heading=heading,
        body=html.escape(body, quote=True),
    )


class CallbackServer:
    """Localhost HTTP server forwarding redirects to a CallbackHandler.

    The server keeps running after a rejected callback so that the
    legitimate redirect can still arrive.

    Parameters
    ----------
    handler : CallbackHandler
        Validates the callback and completes the login.
    loop : asyncio.AbstractEventLoop
        Loop the handler runs on.
    host : str
        Bind address (default ``"127.0.0.1"``).
    port : int
        Port number (``0`` for auto-assign).
    handle_timeout : float
        Seconds to wait for the handler before answering with an error.
    """

    def __init__(
        self,
        handler: CallbackHandler,
        loop: asyncio.AbstractEventLoop,
        host: str = "127.0.0.1",
        port: int = 0,
        handle_timeout: float = 30.0,
    ) -> None:
        """Initialize the callback server."""
        self.handler = handler
        self._loop = loop
        self._host = host
        self._port = port
        self._handle_timeout = handle_timeout
        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._actual_port: int = 0

    @property
    def callback_path(self) -> str:
        """Path the server accepts callbacks on."""
        return self.handler.callback_path

    @property
    def redirect_uri(self) -> str:
        """Full callback URI (e.g. ``http://127.0.0.1:54321/auth/callback``)."""
        return f"http://{self._host}:{self._actual_port}{self.callback_path}"

    def _dispatch(self, uri: str) -> AuthResult | None:
        """Run the handler on the loop and wait for its result."""
        future = asyncio.run_coroutine_threadsafe(self.handler.handle_callback(uri), self._loop)
        try:
            return future.result(timeout=self._handle_timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.warning("Callback handling timed out after %.0fs", self._handle_timeout)
            return None

    def start(self) -> str:
        """Start the server on a daemon thread.

        Returns
        -------
        str
            The redirect URI to hand to the login page.
        """
        server_ref = self

        class _RequestHandler(BaseHTTPRequestHandler):
            """HTTP request handler for login redirects."""

            def do_GET(self) -> None:
                """Handle GET requests."""
                parsed = urlparse(self.path)

                if parsed.path == server_ref.callback_path:
                    uri = f"http://{server_ref._host}:{server_ref._actual_port}{self.path}"
                    result = server_ref._dispatch(uri)
                    if result is not None and result.success:
                        self._send_html(
                            _render(
                                "Authentication Complete",
                                "&#x2705; Authentication Complete",
                                "You can close this window.",
                            )
                        )
                    else:
                        reason = (
                            result.error.message
                            if result is not None and result.error is not None
                            else "The login could not be completed."
                        )
                        self._send_html(
                            _render(
                                "Authentication Error",
                                "&#x274C; Authentication Failed",
                                reason,
                                css="error",
                            ),
                            status=400,
                        )
                elif parsed.path == "/":
                    self._send_html(
                        _render(
                            "Waiting for Authentication",
                            "Waiting for authentication&hellip;",
                            "Please complete the login in the browser window.",
                        )
                    )
                else:
                    self.send_error(404)

            def _send_html(self, html_content: str, status: int = 200) -> None:
                """Send an HTML response with security headers."""
                encoded = html_content.encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(encoded)))
                self.send_header("Cache-Control", "no-store")
                self.send_header(
                    "Content-Security-Policy",
                    "default-src 'none'; style-src 'unsafe-inline'",
                )
                self.send_header("X-Content-Type-Options", "nosniff")
                self.send_header("Referrer-Policy", "no-referrer")
                self.end_headers()
                self.wfile.write(encoded)

            def log_message(self, *args: Any) -> None:
                """Keep request lines (which carry tokens) out of the logs."""
                if args:
                    logger.debug("Callback server: %s request", self.command)

        self._server = HTTPServer((self._host, self._port), _RequestHandler)
        self._actual_port = self._server.server_address[1]

        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

        logger.debug("Callback server started on %s", self.redirect_uri)
        return self.redirect_uri

    def stop(self) -> None:
        """Shut the server down."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None

    async def aclose(self) -> None:
        """Stop from the owning loop without blocking it.

        A request may still be waiting on the loop for its handler
        result, so the blocking shutdown runs in a worker thread.
        """
        await asyncio.to_thread(self.stop)
