"""
MAILDECK - Network Services

Spawned services that own a socket or a child process:

- TestServer: SMTP sink used to test campaigns without delivering mail
- VerpServer: SMTP endpoint receiving VERP-encoded bounces
- PostfixBounceServer: line listener fed with postfix log lines (postfix log
  forwarding: `tail -F /var/log/mail.log | nc 127.0.0.1 5699`)
- BuiltinMta: outbound transport started as a child process

A disabled service completes its spawn handshake immediately.
"""
from __future__ import annotations

import asyncio
import re
import shlex
import socket
import time
from abc import abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Deque, List, Optional

from core.errors import FatalServiceStartError
from observability.logging import get_logger
from services.base import SpawnedService

logger = get_logger("maildeck.services.network")


@dataclass
class SmtpEnvelope:
    """A message accepted by one of the SMTP endpoints."""

    sender: str
    recipients: List[str]
    data: str
    received_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class BounceReport:
    """A bounce notification, from either VERP or postfix."""

    source: str
    campaign: Optional[str] = None
    list: Optional[str] = None
    subscription: Optional[str] = None
    queue_id: Optional[str] = None
    raw: str = ""


BounceCallback = Callable[[BounceReport], Awaitable[None]]


async def _log_bounce(report: BounceReport) -> None:
    logger.info("Bounce received", source=report.source, campaign=report.campaign,
                list=report.list, subscription=report.subscription, queue_id=report.queue_id)


class TcpListenerService(SpawnedService):
    """Spawned service serving a TCP port with asyncio streams."""

    def __init__(self, name: str, host: str, port: int, enabled: bool = True):
        super().__init__(name, enabled)
        self.host = host
        self.port = port
        self._server: Optional[asyncio.AbstractServer] = None

    @property
    def bound_port(self) -> Optional[int]:
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def setup(self) -> None:
        self._server = await asyncio.start_server(self._serve_client, self.host, self.port)
        logger.info("%s listening on %s:%s", self.name, self.host, self.bound_port, component="Service")

    async def teardown(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def _serve_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            await self.handle_client(reader, writer)
        except (ConnectionError, asyncio.IncompleteReadError):
            logger.debug("Client disconnected", service=self.name)
        finally:
            writer.close()

    @abstractmethod
    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        ...


class SmtpSinkService(TcpListenerService):
    """Minimal SMTP receiver: accepts every message and hands it to on_message()."""

    banner = "MAILDECK ESMTP"

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        async def reply(line: str) -> None:
            writer.write(f"{line}\r\n".encode())
            await writer.drain()

        await reply(f"220 {socket.gethostname()} {self.banner}")
        sender = ""
        recipients: List[str] = []

        while True:
            raw = await reader.readline()
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            verb = line[:4].upper()

            if verb in ("HELO", "EHLO"):
                await reply("250 Hello")
            elif line.upper().startswith("MAIL FROM:"):
                sender = _address(line[10:])
                recipients = []
                await reply("250 OK")
            elif line.upper().startswith("RCPT TO:"):
                recipients.append(_address(line[8:]))
                await reply("250 OK")
            elif verb == "DATA":
                if not recipients:
                    await reply("503 Need RCPT command")
                    continue
                await reply("354 End data with <CR><LF>.<CR><LF>")
                body = await self._read_data(reader)
                await self.on_message(SmtpEnvelope(sender=sender, recipients=recipients, data=body))
                sender, recipients = "", []
                await reply("250 OK: queued")
            elif verb == "RSET":
                sender, recipients = "", []
                await reply("250 OK")
            elif verb == "NOOP":
                await reply("250 OK")
            elif verb == "QUIT":
                await reply("221 Bye")
                return
            else:
                await reply("502 Command not implemented")

    @staticmethod
    async def _read_data(reader: asyncio.StreamReader) -> str:
        lines: List[str] = []
        while True:
            raw = await reader.readline()
            if not raw:
                raise asyncio.IncompleteReadError(b"", None)
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if line == ".":
                return "\n".join(lines)
            # dot-unstuffing
            lines.append(line[1:] if line.startswith("..") else line)

    @abstractmethod
    async def on_message(self, envelope: SmtpEnvelope) -> None:
        ...


def _address(value: str) -> str:
    value = value.strip()
    if value.startswith("<"):
        value = value[1:value.index(">")] if ">" in value else value[1:]
    return value.split()[0] if value else value


class TestServer(SmtpSinkService):
    """Mock SMTP endpoint; keeps the most recent messages in memory."""

    __test__ = False  # not a pytest test class
    banner = "MAILDECK test server"

    def __init__(self, host: str, port: int, enabled: bool = True, mailbox_size: int = 100):
        super().__init__("test-server", host, port, enabled)
        self.mailbox: Deque[SmtpEnvelope] = deque(maxlen=mailbox_size)

    async def on_message(self, envelope: SmtpEnvelope) -> None:
        self.mailbox.append(envelope)
        logger.debug("Test message captured", recipients=envelope.recipients)


VERP_ADDRESS = re.compile(r"^bounce\.([^.@]+)\.([^.@]+)\.([^.@]+)@", re.IGNORECASE)


class VerpServer(SmtpSinkService):
    """Receives bounces addressed to bounce.<campaign>.<list>.<subscription>@domain."""

    banner = "MAILDECK VERP bouncer"

    def __init__(self, host: str, port: int, enabled: bool = True,
                 on_bounce: Optional[BounceCallback] = None):
        super().__init__("verp-server", host, port, enabled)
        self._on_bounce = on_bounce or _log_bounce

    async def on_message(self, envelope: SmtpEnvelope) -> None:
        for recipient in envelope.recipients:
            match = VERP_ADDRESS.match(recipient)
            if not match:
                logger.debug("Ignoring non-VERP recipient", recipient=recipient)
                continue
            campaign, list_id, subscription = match.groups()
            await self._on_bounce(BounceReport(
                source="verp",
                campaign=campaign,
                list=list_id,
                subscription=subscription,
                raw=envelope.data,
            ))


POSTFIX_BOUNCE = re.compile(r"\b(?P<queue_id>[0-9A-F]{6,}):.*\bstatus=bounced\b")


class LineListenerService(TcpListenerService):
    """TCP listener feeding each received line to on_line()."""

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        while True:
            raw = await reader.readline()
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                await self.on_line(line)

    @abstractmethod
    async def on_line(self, line: str) -> None:
        ...


class PostfixBounceServer(LineListenerService):
    """Reads postfix log lines and reports bounced queue ids."""

    def __init__(self, host: str, port: int, enabled: bool = True,
                 on_bounce: Optional[BounceCallback] = None):
        super().__init__("postfix-bounce-server", host, port, enabled)
        self._on_bounce = on_bounce or _log_bounce

    async def on_line(self, line: str) -> None:
        match = POSTFIX_BOUNCE.search(line)
        if match:
            await self._on_bounce(BounceReport(
                source="postfix", queue_id=match.group("queue_id"), raw=line,
            ))


class BuiltinMta(SpawnedService):
    """
    Outbound transport run as a child process.

    Ready once its SMTP port accepts connections; the child exiting before
    that, or the wait exceeding ready_timeout, fails the handshake.
    """

    def __init__(
        self,
        command: str,
        host: str,
        port: int,
        enabled: bool = True,
        ready_timeout: float = 30.0,
        poll_interval: float = 0.2,
        stop_timeout: float = 10.0,
    ):
        super().__init__("builtin-mta", enabled)
        self.command = command
        self.host = host
        self.port = port
        self.ready_timeout = ready_timeout
        self.poll_interval = poll_interval
        self.stop_timeout = stop_timeout
        self._process: Optional[asyncio.subprocess.Process] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    async def setup(self) -> None:
        if not self.command:
            raise FatalServiceStartError(
                "BUILTIN_MTA_COMMAND must be set when the built-in MTA is enabled",
                service_name=self.name,
            )

        self._process = await asyncio.create_subprocess_exec(*shlex.split(self.command))
        logger.info("Built-in MTA process spawned", pid=self._process.pid, component="Service")

        deadline = time.monotonic() + self.ready_timeout
        while True:
            if self._process.returncode is not None:
                raise FatalServiceStartError(
                    f"Built-in MTA exited with code {self._process.returncode} before accepting connections",
                    service_name=self.name,
                )
            if await self._port_open():
                return
            if time.monotonic() >= deadline:
                raise FatalServiceStartError(
                    f"Built-in MTA did not accept connections on {self.host}:{self.port} "
                    f"within {self.ready_timeout}s",
                    service_name=self.name,
                )
            await asyncio.sleep(self.poll_interval)

    async def _port_open(self) -> bool:
        try:
            _, writer = await asyncio.open_connection(self.host, self.port)
        except OSError:
            return False
        writer.close()
        return True

    async def teardown(self) -> None:
        """SIGTERM the child; SIGKILL it if it is still alive after stop_timeout."""
        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning("Built-in MTA ignored SIGTERM, killing it", pid=process.pid,
                           timeout=self.stop_timeout, component="Service")
            process.kill()
            await process.wait()
