"""
MAILDECK - Privilege Drop Controller

Directories under the files tree are created while the process still runs as
root (they are handed over to the service account), after which root is given
up for good. The bootstrap composes these as the last privileged stages: all
three listeners are bound before, and every later service runs unprivileged.
"""
from __future__ import annotations

import asyncio
import grp
import os
import pwd
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple, Union

from core.errors import PrivilegeDropError
from observability.logging import get_logger

logger = get_logger("maildeck.privileges")


class PrivilegeState(Enum):
    """Process privilege level. DROPPED is terminal."""
    ELEVATED = "elevated"
    DROPPED = "dropped"


class PrivilegeController:
    """Owns the process-wide privilege transition; one instance per process."""

    def __init__(self, user: str = "", group: str = ""):
        self.user = user
        self.group = group
        self._state = PrivilegeState.ELEVATED

    @property
    def state(self) -> PrivilegeState:
        return self._state

    @property
    def is_dropped(self) -> bool:
        return self._state is PrivilegeState.DROPPED

    def require_elevated(self, operation: str) -> None:
        """Refuse operations that need root once privileges are gone."""
        if self.is_dropped:
            raise PrivilegeDropError(
                f"{operation} requires elevated privileges, which have already been dropped"
            )

    def target_ids(self) -> Tuple[int, int]:
        """uid/gid of the configured service account (current ids when unset)."""
        uid, gid = os.getuid(), os.getgid()
        if self.user:
            entry = pwd.getpwnam(self.user)
            uid, gid = entry.pw_uid, entry.pw_gid
        if self.group:
            gid = grp.getgrnam(self.group).gr_gid
        return uid, gid

    def worker_identity(self) -> Optional[Tuple[Optional[int], int]]:
        """
        (uid, gid) that child workers forked while still root must switch to.

        uid is None when only a group is configured. Returns None when
        not running as root or no service account is configured.
        """
        if os.geteuid() != 0 or not (self.user or self.group):
            return None
        uid, gid = self.target_ids()
        return (uid if self.user else None), gid

    async def ensure_directory(self, path: Union[str, Path]) -> Path:
        """Create `path` (and parents) and hand it to the service account."""
        directory = Path(path)
        try:
            await asyncio.to_thread(self._ensure_directory_sync, directory)
        except (OSError, KeyError) as e:
            raise PrivilegeDropError(
                f"Could not prepare directory {directory}: {e}", cause=e,
            ) from e
        return directory

    def _ensure_directory_sync(self, directory: Path) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        if os.geteuid() == 0 and (self.user or self.group):
            uid, gid = self.target_ids()
            os.chown(directory, uid, gid)
            logger.debug("Directory ownership set", path=str(directory), uid=uid, gid=gid,
                         component="PrivilegeHelpers")

    def drop_privileges(self) -> None:
        """
        Permanently switch to the configured user and group.

        Synchronous on purpose: nothing else may run on the loop between the
        last privileged stage and the identity switch.
        """
        if self.is_dropped:
            raise PrivilegeDropError("Privileges were already dropped and cannot be re-acquired")

        if os.geteuid() != 0:
            logger.info("Not running as root, no privileges to drop", uid=os.getuid(),
                        component="PrivilegeHelpers")
            self._state = PrivilegeState.DROPPED
            return

        if not self.user and not self.group:
            logger.warning("Running as root without MAILDECK_USER/MAILDECK_GROUP; identity unchanged",
                           component="PrivilegeHelpers")
            self._state = PrivilegeState.DROPPED
            return

        try:
            uid, gid = self.target_ids()
            os.setgroups([])
            os.setgid(gid)
            logger.info('Changed group to "%s" (%s)', self.group or gid, os.getgid(),
                        component="PrivilegeHelpers")
            if self.user:
                os.setuid(uid)
                logger.info('Changed user to "%s" (%s)', self.user, os.getuid(),
                            component="PrivilegeHelpers")
            else:
                logger.warning("Running as root without MAILDECK_USER; user unchanged",
                               uid=os.getuid(), component="PrivilegeHelpers")
        except (OSError, KeyError) as e:
            raise PrivilegeDropError(f"Failed to drop root privileges: {e}", cause=e) from e

        self._state = PrivilegeState.DROPPED

    def describe(self) -> Optional[str]:
        """'user:group' target, or None when no service account is configured."""
        if not self.user and not self.group:
            return None
        return f"{self.user}:{self.group}"


def demote_worker(uid: Optional[int], gid: int) -> None:
    """
    Process pool initializer: give up root in a freshly started worker.

    Workers may be started by a server process forked before the drop, so
    each one switches identity on its own.
    """
    if os.geteuid() != 0:
        return
    os.setgroups([])
    os.setgid(gid)
    if uid is not None:
        os.setuid(uid)
