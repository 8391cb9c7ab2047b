"""Preflight checks run before a build."""

from __future__ import annotations

import os
import shutil

from volume_imager.storage.commands import search_path


def required_tools(filesystem: str) -> list[str]:
    return [
        "dd",
        f"mkfs.{filesystem}",
        "tune2fs",
        "sync",
        "mount",
        "umount",
        "mknod",
        "ln",
        "rsync",
    ]


def is_root() -> bool:
    return os.geteuid() == 0


def missing_tools(filesystem: str) -> list[str]:
    """Return the required commands that CommandRunner would not find.

    The lookup uses the runner's own search path, which adds the sbin
    directories to PATH.
    """
    path = search_path()
    return [
        tool
        for tool in required_tools(filesystem)
        if shutil.which(tool, path=path) is None
    ]
