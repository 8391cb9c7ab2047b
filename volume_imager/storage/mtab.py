"""Read-only view of the current mount table."""

from __future__ import annotations

import os
import re
from pathlib import Path

from volume_imager.config.settings import get_setting


_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")


def _unescape(field: str) -> str:
    # mtab encodes space, tab, newline and backslash as \040, \011, \012, \134
    return _OCTAL_ESCAPE.sub(lambda match: chr(int(match.group(1), 8)), field)


def parse_mtab(text: str) -> dict[str, str]:
    """Parse mtab text into a mountpoint -> device mapping.

    When a mountpoint appears more than once the last (topmost) mount wins.
    """
    entries: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        fields = line.split()
        if len(fields) < 2:
            continue
        entries[_unescape(fields[1])] = _unescape(fields[0])
    return entries


class MountTable:
    """Query which mountpoints are currently mounted.

    Every query re-reads the table; mount state changes as a side effect of
    the build stages and is never cached.
    """

    def __init__(self, path: str | os.PathLike | None = None):
        self.path = Path(path or get_setting("mtab_path", "/etc/mtab"))

    def entries(self) -> dict[str, str]:
        try:
            text = self.path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return {}
        return parse_mtab(text)

    def is_mounted(self, mountpoint: str | os.PathLike) -> bool:
        return os.path.normpath(os.fspath(mountpoint)) in self.entries()
