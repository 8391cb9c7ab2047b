"""Boot-critical directories and device nodes inside the image.

The image needs /proc, /sys, /mnt and a minimal /dev before its own device
manager runs. Device node helpers vary across distros, so nodes are created
with mknod directly.
"""

from __future__ import annotations

import os
from pathlib import Path

from volume_imager.logging import LoggerFactory
from volume_imager.storage.commands import CommandRunner
from volume_imager.storage.exceptions import PopulateError


log = LoggerFactory.for_bundle()

SPECIAL_DIRS = ("mnt", "proc", "sys", "dev")

# name -> (major, minor)
CHAR_DEVICES = {
    "null": (1, 3),
    "zero": (1, 5),
    "tty": (5, 0),
    "console": (5, 1),
}

DEV_SYMLINKS = {"X0R": "null"}


class SpecialDirBuilder:
    def __init__(self, runner: CommandRunner, root: str | os.PathLike):
        self.runner = runner
        self.root = Path(root)

    def build(self) -> None:
        """Create the special directories, device nodes and symlinks.

        Raises:
            PopulateError: If a directory cannot be created
            ExecutionFailure: If mknod or ln fails
        """
        for name in SPECIAL_DIRS:
            path = self.root / name
            try:
                path.mkdir(exist_ok=True)
            except OSError as error:
                raise PopulateError(str(path), error.strerror or str(error)) from error

        dev_dir = self.root / "dev"
        for name, (major, minor) in CHAR_DEVICES.items():
            log.debug(f"Creating character device {name} ({major}, {minor})")
            self.runner.run(
                ["mknod", str(dev_dir / name), "c", str(major), str(minor)]
            )
        for name, target in DEV_SYMLINKS.items():
            self.runner.run(["ln", "-s", target, str(dev_dir / name)])
