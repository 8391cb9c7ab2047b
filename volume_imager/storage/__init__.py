"""Image construction stages.

Main Classes:
    - ImageBuilder: Runs the whole pipeline with guaranteed unmount
    - ImageAllocator: Sparse backing file allocation
    - FilesystemFormatter: mkfs and tune2fs on the backing file
    - LoopMounter: Loop mount and unmount at the scratch mountpoint
    - TreeReplicator: rsync replication with the xattr retry policy
    - SpecialDirBuilder: /proc, /sys, /mnt and /dev nodes
    - FstabRewriter: /etc/fstab inside the image

Supporting:
    - CommandRunner: Run commands, raise ExecutionFailure on failure
    - MountTable: Current mountpoint -> device bindings
"""

from .commands import CommandRunner
from .exceptions import (
    AlreadyMountedFault,
    DegradedCopyWarning,
    ExecutionFailure,
    ImagingError,
    MountError,
    NotMountedError,
    PopulateError,
)
from .format import FilesystemFormatter
from .fstab import DEFAULT_FSTAB, LEGACY_FSTAB, FstabRewriter, resolve_fstab
from .image import ImageBuilder
from .image_file import ImageAllocator
from .mount import LoopMounter
from .mtab import MountTable, parse_mtab
from .rsync import TreeReplicator, build_rsync_command, next_copy_step, rsync_usable
from .special_dirs import SpecialDirBuilder


__all__ = [
    "AlreadyMountedFault",
    "CommandRunner",
    "DEFAULT_FSTAB",
    "DegradedCopyWarning",
    "ExecutionFailure",
    "FilesystemFormatter",
    "FstabRewriter",
    "ImageAllocator",
    "ImageBuilder",
    "ImagingError",
    "LEGACY_FSTAB",
    "LoopMounter",
    "MountError",
    "MountTable",
    "NotMountedError",
    "PopulateError",
    "SpecialDirBuilder",
    "TreeReplicator",
    "build_rsync_command",
    "next_copy_step",
    "parse_mtab",
    "resolve_fstab",
    "rsync_usable",
]
