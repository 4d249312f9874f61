"""
MAILDECK - Listener Manager

Binds the three audience-tier web listeners. The socket is created and bound
here, not inside uvicorn, so that a bind failure surfaces synchronously as a
classified error (permission denied, address in use, anything else) and the
half-made socket is closed before the error leaves this module. Only a fully
bound socket is handed to uvicorn.
"""
from __future__ import annotations

import asyncio
import contextlib
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

import uvicorn

from core.errors import FatalServiceStartError, classify_bind_error
from observability.logging import get_logger

logger = get_logger("maildeck.www")

Port = Union[int, str]


class AudienceTier(str, Enum):
    """Trust boundary served by a listener."""
    TRUSTED = "trusted"
    SANDBOXED = "sandboxed"
    PUBLIC = "public"


AppFactory = Callable[[AudienceTier], Any]


class _ListenerServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the bootstrap process."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


@dataclass
class Listener:
    """A bound, serving listener. Exactly one per tier."""

    tier: AudienceTier
    name: str
    host: str
    port: Port
    app: Any
    sock: socket.socket
    server: uvicorn.Server
    task: "asyncio.Task[None]"

    @property
    def address(self) -> str:
        """Resolved local address: 'pipe <path>' or 'port <n>'."""
        return describe_address(self.sock)


def describe_address(sock: socket.socket) -> str:
    addr = sock.getsockname()
    if isinstance(addr, (str, bytes)):
        return f"pipe {addr.decode() if isinstance(addr, bytes) else addr}"
    return f"port {addr[1]}"


class ListenerManager:
    """Creates and owns the web listeners."""

    def __init__(
        self,
        host: str,
        app_factory: AppFactory,
        backlog: int = 511,
        log_level: str = "warning",
    ):
        self.host = host
        self._app_factory = app_factory
        self._backlog = backlog
        self._log_level = log_level
        self._listeners: Dict[AudienceTier, Listener] = {}

    @property
    def listeners(self) -> List[Listener]:
        return list(self._listeners.values())

    def get(self, tier: AudienceTier) -> Optional[Listener]:
        return self._listeners.get(tier)

    def open_socket(self, port: Port) -> socket.socket:
        """
        Create, bind and listen on a socket for `port`.

        A string port is a Unix-domain socket path. On failure the socket is
        closed and a classified bind error is raised.
        """
        if isinstance(port, str):
            family = socket.AF_UNIX
            address: Any = port
        else:
            family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
            address = (self.host, port)

        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            if family != socket.AF_UNIX:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(address)
            sock.listen(self._backlog)
            sock.setblocking(False)
        except OSError as e:
            sock.close()
            raise classify_bind_error(e, port, self.host) from e
        return sock

    async def bind(self, tier: AudienceTier, name: str, port: Port) -> Listener:
        """Bind the listener for `tier` and return once it is serving."""
        if tier in self._listeners:
            raise ValueError(f"A listener for the {tier.value} tier is already bound")

        app = self._app_factory(tier)
        sock = self.open_socket(port)

        config = uvicorn.Config(
            app,
            log_config=None,
            log_level=self._log_level,
            access_log=False,
            lifespan="on",
        )
        server = _ListenerServer(config)
        task = asyncio.create_task(server.serve(sockets=[sock]), name=f"www:{name}")

        await self._wait_started(name, server, task, sock)

        listener = Listener(
            tier=tier, name=name, host=self.host, port=port, app=app,
            sock=sock, server=server, task=task,
        )
        self._listeners[tier] = listener
        logger.info("WWW server [%s] listening on %s", name, listener.address, component="Express")
        return listener

    async def _wait_started(
        self,
        name: str,
        server: uvicorn.Server,
        task: "asyncio.Task[None]",
        sock: socket.socket,
    ) -> None:
        while not server.started:
            if task.done():
                sock.close()
                error = task.exception() if not task.cancelled() else None
                raise FatalServiceStartError(
                    f"WWW server [{name}] stopped before it started serving",
                    service_name=f"www:{name}",
                    cause=error,
                )
            await asyncio.sleep(0.01)

    async def close_all(self) -> None:
        """Stop every listener, most recently bound first."""
        for listener in reversed(self.listeners):
            listener.server.should_exit = True
        tasks = [listener.task for listener in self.listeners]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for listener in self.listeners:
            listener.sock.close()
        self._listeners.clear()
