"""
Tests for core/readiness.py - ReadinessFlag.
"""
from core.readiness import ReadinessFlag


def test_starts_not_ready():
    flag = ReadinessFlag()

    assert flag.is_ready is False
    assert flag.ready_at is None
    assert not flag


def test_single_transition():
    flag = ReadinessFlag()

    assert flag.mark_ready() is True
    first = flag.ready_at

    assert flag.mark_ready() is False
    assert flag.is_ready is True
    assert flag.ready_at == first


def test_repeated_call_logs_warning(caplog):
    flag = ReadinessFlag()
    flag.mark_ready()

    flag.mark_ready()

    assert "Readiness already signalled" in caplog.text


def test_no_reset_api():
    flag = ReadinessFlag()

    assert not hasattr(flag, "reset")
    assert not hasattr(flag, "__dict__")
