"""Sparse backing file allocation."""

from __future__ import annotations

import os

from volume_imager.logging import LoggerFactory
from volume_imager.storage.commands import CommandRunner


log = LoggerFactory.for_bundle()


class ImageAllocator:
    """Create the sparse file that backs the image filesystem."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def allocate(self, image_path: str | os.PathLike, size_mb: int) -> None:
        """Create image_path with a logical size of size_mb MiB.

        Only the trailing 1 MiB block is written; everything before the
        seek offset is left as a hole.

        Raises:
            ValueError: If size_mb is below 1
            ExecutionFailure: If dd fails
        """
        if size_mb < 1:
            raise ValueError(f"Image size must be at least 1 MB, got {size_mb}")
        image_path = os.fspath(image_path)
        log.debug(f"Allocating {size_mb} MB sparse image file {image_path}")
        self.runner.run(
            [
                "dd",
                "if=/dev/zero",
                f"of={image_path}",
                "bs=1M",
                "count=1",
                f"seek={size_mb - 1}",
            ]
        )
