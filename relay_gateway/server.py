"""
In-process relay server control.

Runs the relay application on uvicorn inside the current event loop, so the
relay can be started and stopped programmatically (tests, embedding) as well
as from the command line.
"""

from __future__ import annotations

import asyncio
import socket

import uvicorn
from fastapi import FastAPI

from shared.config.logging import get_logger
from shared.config.settings import Settings, get_settings
from relay_gateway.components.core.constants import WSConstants
from relay_gateway.components.core.errors import BindError, RelayError
from relay_gateway.connection_manager import RelayManager
from relay_gateway.main import create_app

logger = get_logger(__name__)

__all__ = ["RelayServer"]


class RelayServer:
    """
    Start / stop handle for one relay instance.

    Usage:
        server = RelayServer(settings)
        port = await server.start(0)
        ...
        await server.stop()
    """

    def __init__(self, config: Settings | None = None) -> None:
        self._settings = config or get_settings()
        self._app: FastAPI | None = None
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task | None = None
        self._port: int | None = None

    @property
    def port(self) -> int | None:
        """Port actually bound, None while stopped."""
        return self._port

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def app(self) -> FastAPI | None:
        return self._app

    @property
    def manager(self) -> RelayManager | None:
        return self._app.state.manager if self._app is not None else None

    async def start(self, port: int | None = None) -> int:
        """
        Bind the listening socket and start serving.

        Args:
            port: Port to listen on. 0 picks a free port. Defaults to the
                configured port.

        Returns:
            The port actually bound. If already running, the existing port.

        Raises:
            BindError: The socket could not be bound.
        """
        if self.running and self._port is not None:
            return self._port

        host = self._settings.host
        port = self._settings.port if port is None else port
        sock = self._bind(host, port)
        bound_port = sock.getsockname()[1]

        app = create_app(self._settings)
        config = uvicorn.Config(
            app,
            lifespan="on",
            log_config=None,
            ws_max_size=self._settings.ws_max_message_size,
            ws_ping_interval=self._settings.ws_ping_interval,
            ws_ping_timeout=self._settings.ws_ping_timeout,
        )
        server = uvicorn.Server(config)
        task = asyncio.create_task(server.serve(sockets=[sock]), name="relay_server")

        try:
            await asyncio.wait_for(
                self._wait_started(server, task),
                timeout=WSConstants.SERVER_START_TIMEOUT,
            )
        except BaseException:
            server.should_exit = True
            task.cancel()
            sock.close()
            raise

        self._app = app
        self._server = server
        self._task = task
        self._port = bound_port
        logger.info("Relay listening", host=host, port=bound_port, path=self._settings.ws_path)
        return bound_port

    @staticmethod
    def _bind(host: str, port: int) -> socket.socket:
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError as e:
            sock.close()
            logger.error("Failed to bind listening socket", host=host, port=port, error=str(e))
            raise BindError(host, port, e) from e
        sock.set_inheritable(True)
        return sock

    @staticmethod
    async def _wait_started(server: uvicorn.Server, task: asyncio.Task) -> None:
        while not server.started:
            if task.done():
                # Surfaces the exception if serve() raised
                task.result()
                raise RelayError("Relay server exited during startup")
            await asyncio.sleep(0.01)

    async def stop(self) -> None:
        """
        Notify and close every peer, then stop serving and release the port.

        No-op when not running; safe to call repeatedly.
        """
        server, task = self._server, self._task
        if server is None or task is None:
            return
        self._server = None
        self._task = None

        if self._app is not None:
            await self._app.state.manager.shutdown()

        server.should_exit = True
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Relay stopped", port=self._port)
        self._port = None

    async def wait_closed(self) -> None:
        """Wait until the server stops on its own (e.g. on a signal)."""
        task = self._task
        if task is not None:
            await task
