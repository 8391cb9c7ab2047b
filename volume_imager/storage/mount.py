"""Loop mounting of the image at the scratch mountpoint.

Functions:
    - LoopMounter.ensure_mountpoint(): Create the scratch directory if needed
    - LoopMounter.mount(): Refuse if already mounted, then loop mount
    - LoopMounter.unmount(): Force-detach the loop mount if present
    - LoopMounter.mounted(): Mount for the duration of a with-block

The scratch mountpoint is a host-wide resource. The mounted check before
mounting fails fast on leftover state but does not serialize two builders
running at the same time; callers must run one build per scratch mountpoint.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from volume_imager.logging import LoggerFactory
from volume_imager.storage.commands import CommandRunner
from volume_imager.storage.exceptions import AlreadyMountedFault, ExecutionFailure
from volume_imager.storage.mtab import MountTable


log = LoggerFactory.for_bundle()


class LoopMounter:
    def __init__(
        self,
        runner: CommandRunner,
        mount_table: MountTable,
        mountpoint: str | os.PathLike,
    ):
        self.runner = runner
        self.mount_table = mount_table
        self.mountpoint = os.path.normpath(os.fspath(mountpoint))

    def is_mounted(self) -> bool:
        return self.mount_table.is_mounted(self.mountpoint)

    def ensure_mountpoint(self) -> None:
        Path(self.mountpoint).mkdir(parents=True, exist_ok=True)

    def check_not_mounted(self) -> None:
        """Raise AlreadyMountedFault if the scratch mountpoint is in use."""
        if self.is_mounted():
            raise AlreadyMountedFault(self.mountpoint)

    def mount(self, image_path: str | os.PathLike) -> None:
        """Loop mount image_path at the scratch mountpoint.

        Raises:
            AlreadyMountedFault: If the mountpoint is already mounted; the
                mount command is not run
            ExecutionFailure: If mount fails
        """
        self.ensure_mountpoint()
        self.check_not_mounted()
        self._mount(image_path)

    def _mount(self, image_path: str | os.PathLike) -> None:
        log.debug(f"Loop mounting {os.fspath(image_path)} at {self.mountpoint}")
        self.runner.run(
            ["mount", "-o", "loop", os.fspath(image_path), self.mountpoint]
        )

    def unmount(self) -> None:
        """Unmount the scratch mountpoint and detach its loop device.

        A no-op when nothing is mounted there, so it is safe during cleanup
        even if mounting never happened.
        """
        if not self.is_mounted():
            log.debug(f"{self.mountpoint} is not mounted, nothing to unmount")
            return
        log.debug(f"Unmounting {self.mountpoint}")
        self.runner.run(["umount", "-d", self.mountpoint])

    @contextmanager
    def mounted(self, image_path: str | os.PathLike) -> Generator[Path, None, None]:
        """Mount image_path and unmount it on every exit path.

        The already-mounted check runs before cleanup is registered, so a
        mount left behind by someone else is never unmounted here. When the
        body fails and the unmount fails too, the unmount failure is logged
        and the body's exception is the one that propagates.

        Example:
            with mounter.mounted("/tmp/image") as root:
                (root / "etc").mkdir()
        """
        self.ensure_mountpoint()
        self.check_not_mounted()
        try:
            self._mount(image_path)
            yield Path(self.mountpoint)
        except BaseException:
            try:
                self.unmount()
            except ExecutionFailure as error:
                log.error(f"Failed to unmount {self.mountpoint} during cleanup: {error}")
            raise
        self.unmount()
