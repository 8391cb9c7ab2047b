"""Domain model for image construction.

Type-safe values passed between the build stages: the fstab selection, the
tree copy options and results, the build state machine and the effective
exclusion set.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from volume_imager.storage.exceptions import DegradedCopyWarning


# ==============================================================================
# Fstab Domain
# ==============================================================================


class FstabKind(Enum):
    """Which fstab gets written into the image."""

    LEGACY = "legacy"  # sda1/sda2/sda3 partition naming
    DEFAULT = "default"  # sda1 root, sdb ephemeral disk
    VERBATIM = "verbatim"  # caller-supplied content
    NONE = "none"  # leave the image's fstab untouched


@dataclass(frozen=True)
class FstabSpec:
    """Fstab selection, resolved once when the builder is constructed."""

    kind: FstabKind
    content: str | None = None  # only set for VERBATIM

    @classmethod
    def legacy(cls) -> FstabSpec:
        return cls(FstabKind.LEGACY)

    @classmethod
    def default(cls) -> FstabSpec:
        return cls(FstabKind.DEFAULT)

    @classmethod
    def verbatim(cls, content: str) -> FstabSpec:
        return cls(FstabKind.VERBATIM, content)

    @classmethod
    def none(cls) -> FstabSpec:
        return cls(FstabKind.NONE)

    @classmethod
    def from_option(cls, value: str | None) -> FstabSpec:
        """Parse a command line style fstab option.

        Args:
            value: "legacy", "default", None, or a path to a file whose
                contents are written verbatim

        Raises:
            OSError: If the fstab file cannot be read
        """
        if value is None:
            return cls.none()
        if value == FstabKind.LEGACY.value:
            return cls.legacy()
        if value == FstabKind.DEFAULT.value:
            return cls.default()
        return cls.verbatim(Path(value).read_text(encoding="utf-8"))

    def __post_init__(self) -> None:
        if (self.kind == FstabKind.VERBATIM) != (self.content is not None):
            raise ValueError("Fstab content is required for verbatim fstab only")


# ==============================================================================
# Tree Copy Domain
# ==============================================================================


@dataclass(frozen=True)
class CopyOptions:
    """Options for one rsync attempt."""

    xattrs: bool = True

    def without_xattrs(self) -> CopyOptions:
        return replace(self, xattrs=False)


@dataclass(frozen=True)
class CopyResult:
    """Final outcome of a tree copy, after any retry."""

    exit_code: int
    succeeded: bool
    warning: DegradedCopyWarning | None = None
    attempts: int = 1


# ==============================================================================
# Build State Domain
# ==============================================================================


class BuildState(Enum):
    """Stage reached by an image build.

    Stages are entered strictly in declaration order; UNMOUNTED is entered
    from any stage at or after MOUNTED, including on failure.
    """

    IDLE = "idle"
    ALLOCATED = "allocated"
    FORMATTED = "formatted"
    MOUNTED = "mounted"
    POPULATED = "populated"
    FSTAB_WRITTEN = "fstab_written"
    UNMOUNTED = "unmounted"


# ==============================================================================
# Exclusions
# ==============================================================================


def is_under(path: str, parent: str) -> bool:
    """Return True if path equals parent or lies below it."""
    path = os.path.normpath(path)
    parent = os.path.normpath(parent)
    if parent == "/":
        return path.startswith("/")
    return path == parent or path.startswith(parent + "/")


def effective_excludes(
    excludes: Iterable[str], scratch_mountpoint: str, volume: str
) -> frozenset[str]:
    """Derive the exclusion set used for replication.

    The scratch mountpoint is added when it lies under the volume, so the
    image is never copied into itself.
    """
    result = {os.path.normpath(path) for path in excludes}
    if is_under(scratch_mountpoint, volume):
        result.add(os.path.normpath(scratch_mountpoint))
    return frozenset(result)
