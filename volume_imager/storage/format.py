"""Filesystem creation on the image backing file.

Formats the backing file with a journaling filesystem (ext3 unless configured
otherwise) and disables interval-based forced checks with tune2fs. Both steps
must succeed; a failed tune after a good format still fails the stage.
"""

from __future__ import annotations

import os

from volume_imager.config.settings import get_setting
from volume_imager.logging import LoggerFactory
from volume_imager.storage.commands import CommandRunner


log = LoggerFactory.for_bundle()


class FilesystemFormatter:
    def __init__(self, runner: CommandRunner, filesystem: str | None = None):
        self.runner = runner
        self.filesystem = filesystem or get_setting("filesystem", "ext3")

    @property
    def mkfs_command(self) -> str:
        return f"mkfs.{self.filesystem}"

    def format(self, image_path: str | os.PathLike) -> None:
        image_path = os.fspath(image_path)
        log.debug(f"Formatting {image_path} as {self.filesystem}")
        # -F: the backing file is not a block device, create without asking
        self.runner.run([self.mkfs_command, "-F", image_path])
        self.runner.run(["tune2fs", "-i", "0", image_path])
