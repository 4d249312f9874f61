"""
Tests for core/errors.py - startup error taxonomy and bind classification.
"""
import errno

import pytest

from core.errors import (
    BindAddressInUseError,
    BindError,
    BindPermissionError,
    ErrorContext,
    ErrorSeverity,
    FatalServiceStartError,
    FatalStorageError,
    MaildeckError,
    PrivilegeDropError,
    StartupError,
    UnclassifiedBindError,
    bind_label,
    classify_bind_error,
)


class TestBindLabel:

    def test_tcp_port(self):
        assert bind_label(80) == "Port 80"

    def test_pipe(self):
        assert bind_label("/run/maildeck/trusted.sock") == "Pipe /run/maildeck/trusted.sock"


class TestClassifyBindError:
    """OSError errno decides the class and message."""

    @pytest.mark.parametrize("code", [errno.EACCES, errno.EPERM])
    def test_permission_denied(self, code):
        error = classify_bind_error(OSError(code, "Permission denied"), 80, "0.0.0.0")

        assert isinstance(error, BindPermissionError)
        assert error.message == "Port 80 requires elevated privileges"
        assert error.bind_label == "Port 80"
        assert error.host == "0.0.0.0"

    def test_address_in_use(self):
        error = classify_bind_error(OSError(errno.EADDRINUSE, "Address already in use"), 8081)

        assert isinstance(error, BindAddressInUseError)
        assert error.message == "Port 8081 is already in use"

    def test_pipe_in_use(self):
        error = classify_bind_error(OSError(errno.EADDRINUSE, "in use"), "/tmp/x.sock")

        assert error.message == "Pipe /tmp/x.sock is already in use"

    def test_other_errno_is_not_a_startup_error(self):
        error = classify_bind_error(OSError(errno.EADDRNOTAVAIL, "Cannot assign requested address"), 3000)

        assert isinstance(error, UnclassifiedBindError)
        assert not isinstance(error, StartupError)
        assert isinstance(error.cause, OSError)


class TestHierarchy:

    @pytest.mark.parametrize("cls", [
        FatalStorageError, FatalServiceStartError, PrivilegeDropError, BindPermissionError,
    ])
    def test_startup_errors_exit_with_one(self, cls):
        kwargs = {"port": 80} if issubclass(cls, BindError) else {}
        error = cls("failed", **kwargs)

        assert isinstance(error, StartupError)
        assert error.exit_code == 1
        assert error.severity == ErrorSeverity.FATAL

    def test_component_names(self):
        assert FatalStorageError.component == "DB"
        assert BindError.component == "Express"
        assert PrivilegeDropError.component == "PrivilegeHelpers"

    def test_str_includes_stage_and_cause(self):
        error = FatalStorageError("connection refused", stage="check_storage", cause=OSError("x"))

        text = str(error)
        assert "[FATAL_STORAGE_ERROR] connection refused" in text
        assert "stage: check_storage" in text
        assert "caused by" in text

    def test_to_dict(self):
        context = ErrorContext(operation="bind", component="Express", stage="bind:trusted")
        error = MaildeckError("oops", context=context, stage="bind:trusted")

        data = error.to_dict()

        assert data["message"] == "oops"
        assert data["stage"] == "bind:trusted"
        assert data["context"]["component"] == "Express"
        assert data["severity"] == "error"

    def test_service_name_kept(self):
        error = FatalServiceStartError("no handshake", service_name="senders")

        assert error.service_name == "senders"
