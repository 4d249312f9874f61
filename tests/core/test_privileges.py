"""
Tests for core/privileges.py - PrivilegeController.

OS identity calls are patched; nothing here needs to run as root.
"""
from unittest.mock import patch

import pytest

from core.errors import PrivilegeDropError
from core.privileges import PrivilegeController, PrivilegeState, demote_worker


class TestDropPrivileges:

    def test_not_root_transitions_to_dropped(self, caplog):
        controller = PrivilegeController(user="maildeck", group="maildeck")

        with patch("core.privileges.os.geteuid", return_value=1000):
            controller.drop_privileges()

        assert controller.state is PrivilegeState.DROPPED
        assert "no privileges to drop" in caplog.text

    def test_second_drop_raises(self):
        controller = PrivilegeController()

        with patch("core.privileges.os.geteuid", return_value=1000):
            controller.drop_privileges()
            with pytest.raises(PrivilegeDropError):
                controller.drop_privileges()

    def test_root_switches_group_then_user(self, caplog):
        controller = PrivilegeController(user="maildeck", group="mail")
        calls = []

        with patch("core.privileges.os.geteuid", return_value=0), \
                patch.object(PrivilegeController, "target_ids", return_value=(1001, 1002)), \
                patch("core.privileges.os.setgroups", side_effect=lambda g: calls.append(("setgroups", g))), \
                patch("core.privileges.os.setgid", side_effect=lambda g: calls.append(("setgid", g))), \
                patch("core.privileges.os.setuid", side_effect=lambda u: calls.append(("setuid", u))), \
                patch("core.privileges.os.getgid", return_value=1002), \
                patch("core.privileges.os.getuid", return_value=1001):
            controller.drop_privileges()

        assert calls == [("setgroups", []), ("setgid", 1002), ("setuid", 1001)]
        assert controller.is_dropped
        assert 'Changed group to "mail"' in caplog.text
        assert 'Changed user to "maildeck"' in caplog.text

    def test_root_switch_failure_is_fatal(self):
        controller = PrivilegeController(user="maildeck", group="mail")

        with patch("core.privileges.os.geteuid", return_value=0), \
                patch.object(PrivilegeController, "target_ids", return_value=(1001, 1002)), \
                patch("core.privileges.os.setgroups"), \
                patch("core.privileges.os.setgid", side_effect=PermissionError(1, "Operation not permitted")):
            with pytest.raises(PrivilegeDropError):
                controller.drop_privileges()

        assert controller.state is PrivilegeState.ELEVATED

    def test_unknown_user_is_fatal(self):
        controller = PrivilegeController(user="no-such-user-maildeck")

        with patch("core.privileges.os.geteuid", return_value=0), \
                patch("core.privileges.pwd.getpwnam", side_effect=KeyError("no-such-user-maildeck")):
            with pytest.raises(PrivilegeDropError):
                controller.drop_privileges()

    def test_root_without_target_keeps_identity(self, caplog):
        controller = PrivilegeController()

        with patch("core.privileges.os.geteuid", return_value=0), \
                patch("core.privileges.os.setuid") as setuid:
            controller.drop_privileges()

        setuid.assert_not_called()
        assert controller.is_dropped
        assert "identity unchanged" in caplog.text


    def test_root_with_group_only_warns_user_unchanged(self, caplog):
        controller = PrivilegeController(group="mail")

        with patch("core.privileges.os.geteuid", return_value=0), \
                patch.object(PrivilegeController, "target_ids", return_value=(0, 1002)), \
                patch("core.privileges.os.setgroups"), \
                patch("core.privileges.os.setgid") as setgid, \
                patch("core.privileges.os.setuid") as setuid:
            controller.drop_privileges()

        setgid.assert_called_once_with(1002)
        setuid.assert_not_called()
        assert "without MAILDECK_USER; user unchanged" in caplog.text


class TestWorkerIdentity:

    def test_none_when_not_root(self):
        with patch("core.privileges.os.geteuid", return_value=1000):
            assert PrivilegeController("maildeck", "mail").worker_identity() is None

    def test_none_without_service_account(self):
        with patch("core.privileges.os.geteuid", return_value=0):
            assert PrivilegeController().worker_identity() is None

    def test_target_ids_when_root(self):
        with patch("core.privileges.os.geteuid", return_value=0), \
                patch.object(PrivilegeController, "target_ids", return_value=(1001, 1002)):
            assert PrivilegeController("maildeck", "mail").worker_identity() == (1001, 1002)
            assert PrivilegeController(group="mail").worker_identity() == (None, 1002)

    def test_demote_worker_order(self):
        calls = []

        with patch("core.privileges.os.geteuid", return_value=0), \
                patch("core.privileges.os.setgroups", side_effect=lambda g: calls.append(("setgroups", g))), \
                patch("core.privileges.os.setgid", side_effect=lambda g: calls.append(("setgid", g))), \
                patch("core.privileges.os.setuid", side_effect=lambda u: calls.append(("setuid", u))):
            demote_worker(1001, 1002)
            demote_worker(None, 1002)

        assert calls == [
            ("setgroups", []), ("setgid", 1002), ("setuid", 1001),
            ("setgroups", []), ("setgid", 1002),
        ]

    def test_demote_worker_noop_when_unprivileged(self):
        with patch("core.privileges.os.geteuid", return_value=1000), \
                patch("core.privileges.os.setuid") as setuid:
            demote_worker(1001, 1002)

        setuid.assert_not_called()


class TestEnsureDirectory:

    @pytest.mark.asyncio
    async def test_creates_nested_directory(self, tmp_path):
        controller = PrivilegeController()
        target = tmp_path / "files" / "uploaded"

        result = await controller.ensure_directory(target)

        assert result == target
        assert target.is_dir()

    @pytest.mark.asyncio
    async def test_existing_directory_is_fine(self, tmp_path):
        controller = PrivilegeController()

        await controller.ensure_directory(tmp_path)

        assert tmp_path.is_dir()

    @pytest.mark.asyncio
    async def test_failure_raises_privilege_error(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        controller = PrivilegeController()

        with pytest.raises(PrivilegeDropError):
            await controller.ensure_directory(blocker / "child")

    @pytest.mark.asyncio
    async def test_chown_when_root(self, tmp_path):
        controller = PrivilegeController(user="maildeck")

        with patch("core.privileges.os.geteuid", return_value=0), \
                patch.object(PrivilegeController, "target_ids", return_value=(1001, 1002)), \
                patch("core.privileges.os.chown") as chown:
            await controller.ensure_directory(tmp_path / "files")

        chown.assert_called_once_with(tmp_path / "files", 1001, 1002)


def test_require_elevated_after_drop():
    controller = PrivilegeController()
    controller.require_elevated("bind")

    with patch("core.privileges.os.geteuid", return_value=1000):
        controller.drop_privileges()

    with pytest.raises(PrivilegeDropError):
        controller.require_elevated("bind")


def test_describe():
    assert PrivilegeController().describe() is None
    assert PrivilegeController("maildeck", "mail").describe() == "maildeck:mail"
