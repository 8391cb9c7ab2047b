"""Image construction pipeline.

ImageBuilder turns a live directory tree (the volume) into a loopback
filesystem image:

    allocate -> format -> sync -> mount -> special dirs -> copy -> fstab -> unmount

Stages run strictly in that order. Once the loop mount has been attempted the
unmount always runs, exactly once, before any failure reaches the caller. A
failure before mounting propagates without touching the scratch mountpoint;
in particular an AlreadyMountedFault leaves the existing mount alone.

Example:
    >>> builder = ImageBuilder("/", "/tmp/image", 700, ["/proc", "/sys"],
    ...                        fstab=FstabSpec.default())
    >>> builder.make()
"""

from __future__ import annotations

import os
from typing import Callable, Iterable

from volume_imager.config.settings import get_setting
from volume_imager.domain.models import (
    BuildState,
    CopyResult,
    FstabSpec,
    effective_excludes,
)
from volume_imager.logging import operation_context
from volume_imager.storage.commands import CommandRunner
from volume_imager.storage.exceptions import NotMountedError
from volume_imager.storage.format import FilesystemFormatter
from volume_imager.storage.fstab import FstabRewriter
from volume_imager.storage.image_file import ImageAllocator
from volume_imager.storage.mount import LoopMounter
from volume_imager.storage.mtab import MountTable
from volume_imager.storage.rsync import TreeReplicator
from volume_imager.storage.special_dirs import SpecialDirBuilder


class ImageBuilder:
    """Build one image from one volume.

    Args:
        volume: Absolute path of the directory tree to package
        image_path: Destination image file
        size_mb: Image size in MB, at least 1
        excludes: Absolute paths never copied into the image
        fstab: Fstab to write into the image, NONE by default
        debug: Show command lines and command output
        scratch_mountpoint: Temporary mount target, defaults to the
            configured scratch mountpoint
        runner: Command runner, created from debug when omitted
        mount_table: Mount table, read from the configured mtab when omitted
        is_rsync_usable: Override for the rsync capability check
    """

    def __init__(
        self,
        volume: str | os.PathLike,
        image_path: str | os.PathLike,
        size_mb: int,
        excludes: Iterable[str] = (),
        fstab: FstabSpec | None = None,
        debug: bool = False,
        scratch_mountpoint: str | os.PathLike | None = None,
        runner: CommandRunner | None = None,
        mount_table: MountTable | None = None,
        is_rsync_usable: Callable[[], bool] | None = None,
    ):
        volume = os.fspath(volume)
        if not os.path.isabs(volume):
            raise ValueError(f"Volume must be an absolute path: {volume}")
        if size_mb < 1:
            raise ValueError(f"Image size must be at least 1 MB, got {size_mb}")
        excludes = list(excludes)
        relative = [path for path in excludes if not os.path.isabs(path)]
        if relative:
            raise ValueError(
                f"Exclusions must be absolute paths: {', '.join(relative)}"
            )

        self.volume = os.path.normpath(volume)
        self.image_path = os.fspath(image_path)
        self.size_mb = size_mb
        self.fstab = fstab or FstabSpec.none()
        self.debug = debug
        self.scratch_mountpoint = os.path.normpath(
            os.fspath(scratch_mountpoint or get_setting("scratch_mountpoint"))
        )
        self.excludes = effective_excludes(
            excludes, self.scratch_mountpoint, self.volume
        )

        self.runner = runner or CommandRunner(debug=debug)
        self.mount_table = mount_table or MountTable()
        self.allocator = ImageAllocator(self.runner)
        self.formatter = FilesystemFormatter(self.runner)
        self.mounter = LoopMounter(
            self.runner, self.mount_table, self.scratch_mountpoint
        )
        self.replicator = TreeReplicator(
            self.runner, self.excludes, is_rsync_usable=is_rsync_usable
        )

        self.state = BuildState.IDLE
        self.failed = False
        self.copy_result: CopyResult | None = None

    def make(self) -> None:
        """Run the whole pipeline.

        Raises:
            AlreadyMountedFault: If the scratch mountpoint is already mounted
            ExecutionFailure: If any stage's command fails
            ImagingError: For other stage failures
        """
        with operation_context(
            "bundle", volume=self.volume, image=self.image_path
        ) as log:
            log.info(f"Copying {self.volume} into the image file {self.image_path}...")
            log.info("Excluding: ")
            for path in sorted(self.excludes):
                log.info(f"\t {path}")

            try:
                self.allocator.allocate(self.image_path, self.size_mb)
                self.state = BuildState.ALLOCATED
                self.formatter.format(self.image_path)
                self.state = BuildState.FORMATTED
                # flush so the new filesystem is visible to the loop mount
                self.runner.run(["sync"])

                with self.mounter.mounted(self.image_path) as root:
                    self.state = BuildState.MOUNTED
                    SpecialDirBuilder(self.runner, root).build()
                    self.copy_result = self.replicator.replicate(self.volume, root)
                    self.state = BuildState.POPULATED
                    if not self.mounter.is_mounted():
                        raise NotMountedError(self.mounter.mountpoint)
                    FstabRewriter(root, self.fstab).rewrite()
                    self.state = BuildState.FSTAB_WRITTEN
            except Exception:
                self.failed = True
                raise
            finally:
                # a failed cleanup unmount leaves the image mounted
                if self.state in _MOUNTED_STATES and not self.mounter.is_mounted():
                    self.state = BuildState.UNMOUNTED


_MOUNTED_STATES = (
    BuildState.MOUNTED,
    BuildState.POPULATED,
    BuildState.FSTAB_WRITTEN,
)
