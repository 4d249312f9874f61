"""
Tests for core/listeners.py - ListenerManager.

Binds real loopback sockets; the permission-denied case is simulated.
"""
import errno
import socket
from unittest.mock import MagicMock, patch

import httpx
import pytest

from api.app_builder import create_app
from core.errors import BindAddressInUseError, BindPermissionError, UnclassifiedBindError
from core.listeners import AudienceTier, ListenerManager, describe_address
from core.readiness import ReadinessFlag


@pytest.fixture
def readiness():
    return ReadinessFlag()


@pytest.fixture
def manager(test_config, readiness):
    return ListenerManager("127.0.0.1", lambda tier: create_app(tier, readiness, test_config))


@pytest.fixture
def occupied_port():
    """A port with another socket already listening on it."""
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind(("127.0.0.1", 0))
    blocker.listen(1)
    yield blocker.getsockname()[1]
    blocker.close()


class TestBind:

    @pytest.mark.asyncio
    async def test_bind_serves_and_logs_address(self, manager, caplog, port_factory):
        port = port_factory()
        try:
            listener = await manager.bind(AudienceTier.TRUSTED, "trusted", port)

            assert listener.address == f"port {port}"
            assert manager.get(AudienceTier.TRUSTED) is listener
            assert f"WWW server [trusted] listening on port {port}" in caplog.text

            async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}") as client:
                response = await client.get("/health")
            assert response.status_code == 200
            assert response.json()["tier"] == "trusted"
        finally:
            await manager.close_all()

        assert manager.listeners == []

    @pytest.mark.asyncio
    async def test_port_in_use(self, manager, occupied_port):
        with pytest.raises(BindAddressInUseError) as exc_info:
            await manager.bind(AudienceTier.SANDBOXED, "sandbox", occupied_port)

        assert exc_info.value.message == f"Port {occupied_port} is already in use"
        assert manager.get(AudienceTier.SANDBOXED) is None

    @pytest.mark.asyncio
    async def test_unix_socket_path(self, manager, tmp_path):
        path = str(tmp_path / "public.sock")
        try:
            listener = await manager.bind(AudienceTier.PUBLIC, "public", path)
            assert listener.address == f"pipe {path}"
        finally:
            await manager.close_all()

    @pytest.mark.asyncio
    async def test_second_bind_for_tier_rejected(self, manager, port_factory):
        try:
            await manager.bind(AudienceTier.TRUSTED, "trusted", port_factory())
            with pytest.raises(ValueError):
                await manager.bind(AudienceTier.TRUSTED, "trusted", port_factory())
        finally:
            await manager.close_all()


class TestOpenSocket:
    """Errors from bind() are classified and the socket is closed."""

    def _failing_socket(self, code):
        sock = MagicMock()
        sock.bind.side_effect = OSError(code, "simulated")
        return sock

    def test_permission_denied(self, manager):
        sock = self._failing_socket(errno.EACCES)

        with patch("core.listeners.socket.socket", return_value=sock):
            with pytest.raises(BindPermissionError) as exc_info:
                manager.open_socket(80)

        assert exc_info.value.message == "Port 80 requires elevated privileges"
        sock.close.assert_called_once()

    def test_unclassified(self, manager):
        sock = self._failing_socket(errno.EADDRNOTAVAIL)

        with patch("core.listeners.socket.socket", return_value=sock):
            with pytest.raises(UnclassifiedBindError):
                manager.open_socket(3000)

        sock.close.assert_called_once()


def test_describe_address_tcp():
    sock = MagicMock()
    sock.getsockname.return_value = ("127.0.0.1", 3000)

    assert describe_address(sock) == "port 3000"


def test_describe_address_pipe():
    sock = MagicMock()
    sock.getsockname.return_value = "/run/maildeck.sock"

    assert describe_address(sock) == "pipe /run/maildeck.sock"
