"""
One-shot loopback listener receiving the provider's authorization redirect.

The listener binds a fixed loopback port, serves exactly one redirect request
on ``/`` and then reports the outcome to whoever awaits ``wait_for_redirect``.
It is a tiny FastAPI application served by uvicorn on a socket bound here, so
that a busy port is detected before anything else happens.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse

from securemail.core.exceptions import PortUnavailableError

logger = logging.getLogger(__name__)

_PAGE_TEMPLATE = """<html>
  <head>
    <title>Secure Mail Client - {title}</title>
    <style>
      body {{ font-family: -apple-system, "Segoe UI", Roboto, Arial, sans-serif;
             background-color: #020617; color: white; text-align: center;
             display: flex; align-items: center; justify-content: center;
             height: 100vh; margin: 0; }}
      .container {{ background-color: #0F172A; border-radius: 0.5rem;
                    padding: 2rem; max-width: 500px; width: 90%; }}
      h1 {{ color: {color}; }}
    </style>
  </head>
  <body>
    <div class="container">
      <h1>{title}</h1>
      <p>{message}</p>
    </div>
  </body>
</html>"""

SUCCESS_PAGE = _PAGE_TEMPLATE.format(
    title="Authentication Successful",
    color="#10b981",
    message=(
        "You have successfully authenticated with Secure Mail Client. "
        "You can now close this window and return to the application."
    ),
)
FAILURE_PAGE = _PAGE_TEMPLATE.format(
    title="Authentication Failed",
    color="#ff4d4d",
    message=(
        "No authorization code was received. Please try again or contact "
        "support if the issue persists."
    ),
)
ERROR_PAGE = _PAGE_TEMPLATE.format(
    title="Authentication Error",
    color="#ff4d4d",
    message=(
        "An unexpected error occurred during authentication. Please try again later."
    ),
)


@dataclass(frozen=True)
class RedirectResult:
    """What the single redirect carried."""

    code: Optional[str] = None
    error: Optional[str] = None
    canceled: bool = False


class CallbackListener:
    """Serve one authorization redirect on a loopback port."""

    def __init__(self, host: str, port: int, *, expected_state: str | None = None) -> None:
        self.host = host
        self.port = port
        self._expected_state = expected_state
        self._result: asyncio.Future[RedirectResult] | None = None
        self._socket: socket.socket | None = None
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None

    def _bind(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as exc:
            sock.close()
            raise PortUnavailableError(
                f"Port {self.port} on {self.host} is already in use."
            ) from exc
        sock.listen(8)
        sock.setblocking(False)
        return sock

    def _build_app(self) -> FastAPI:
        app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

        @app.get("/", response_class=HTMLResponse)
        async def receive_redirect(request: Request) -> HTMLResponse:
            return self._handle_redirect(request)

        return app

    def _handle_redirect(self, request: Request) -> HTMLResponse:
        result = self._result
        if result is None or result.done():
            # Not started yet, or the first redirect already counted.
            return HTMLResponse(FAILURE_PAGE, status_code=410)

        try:
            params = request.query_params
            error = params.get("error")
            code = params.get("code")
            state = params.get("state")

            if error:
                logger.warning("Provider redirected with error: %s", error)
                result.set_result(RedirectResult(error=error))
                return HTMLResponse(FAILURE_PAGE, status_code=400)

            if not code:
                result.set_result(RedirectResult(error="missing_code"))
                return HTMLResponse(FAILURE_PAGE, status_code=400)

            if self._expected_state is not None and state != self._expected_state:
                logger.warning("Authorization redirect carried an unexpected state value.")
                result.set_result(RedirectResult(error="state_mismatch"))
                return HTMLResponse(FAILURE_PAGE, status_code=400)

            result.set_result(RedirectResult(code=code))
            return HTMLResponse(SUCCESS_PAGE, status_code=200)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Unexpected error while handling the authorization redirect.")
            if not result.done():
                result.set_result(RedirectResult(error="internal_error"))
            return HTMLResponse(ERROR_PAGE, status_code=500)

    async def start(self) -> None:
        """Bind the port and start serving; raises ``PortUnavailableError``."""
        self._socket = self._bind()
        self._result = asyncio.get_running_loop().create_future()

        config = uvicorn.Config(
            self._build_app(),
            log_level="warning",
            access_log=False,
            lifespan="off",
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(
            self._server.serve(sockets=[self._socket])
        )

        while not self._server.started:
            if self._serve_task.done():
                await self.stop()
                raise PortUnavailableError(
                    f"Callback listener on port {self.port} failed to start."
                )
            await asyncio.sleep(0.01)

        logger.info("Authorization callback listener started on port %s", self.port)

    async def wait_for_redirect(self) -> RedirectResult:
        """Wait for the first redirect, or for ``cancel()``."""
        if self._result is None:
            raise RuntimeError("Callback listener has not been started.")
        return await asyncio.shield(self._result)

    def cancel(self) -> None:
        """Resolve the pending wait as cancelled."""
        if self._result is not None and not self._result.done():
            self._result.set_result(RedirectResult(canceled=True))

    async def stop(self) -> None:
        """Stop serving and release the port. Safe to call more than once."""
        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None:
            try:
                await self._serve_task
            except (Exception, SystemExit):  # pylint: disable=broad-except
                logger.exception("Callback listener terminated abnormally.")
            self._serve_task = None
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        self._server = None
        logger.info("Authorization callback listener on port %s stopped", self.port)


__all__ = [
    "CallbackListener",
    "ERROR_PAGE",
    "FAILURE_PAGE",
    "RedirectResult",
    "SUCCESS_PAGE",
]
