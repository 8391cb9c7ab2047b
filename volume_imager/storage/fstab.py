"""Fstab templates and rewriting of /etc/fstab inside the image."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from volume_imager.__version__ import __version__
from volume_imager.domain.models import FstabKind, FstabSpec
from volume_imager.logging import LoggerFactory
from volume_imager.storage.exceptions import PopulateError


log = LoggerFactory.for_bundle()

LEGACY_FSTAB = f"""# Legacy /etc/fstab
# Supplied by: volume-imager-{__version__}
/dev/sda1 /     ext3    defaults 1 1
/dev/sda2 /mnt  ext3    defaults 0 0
/dev/sda3 swap  swap    defaults 0 0
none      /proc proc    defaults 0 0
none      /sys  sysfs   defaults 0 0
none      /dev/pts devpts gid=5,mode=620 0 0
none      /dev/shm tmpfs defaults 0 0
"""

DEFAULT_FSTAB = f"""# Default /etc/fstab
# Supplied by: volume-imager-{__version__}
/dev/sda1 /     ext3    defaults 1 1
/dev/sdb  /mnt  ext3    defaults 0 0
none      /dev/pts devpts gid=5,mode=620 0 0
none      /proc proc    defaults 0 0
none      /sys  sysfs   defaults 0 0
"""


def resolve_fstab(spec: FstabSpec) -> str | None:
    """Return the fstab content for spec, or None to leave fstab alone."""
    if spec.kind == FstabKind.LEGACY:
        return LEGACY_FSTAB
    if spec.kind == FstabKind.DEFAULT:
        return DEFAULT_FSTAB
    if spec.kind == FstabKind.VERBATIM:
        return spec.content
    return None


class FstabRewriter:
    """Write the selected fstab into a mounted image root."""

    def __init__(self, root: str | os.PathLike, spec: FstabSpec):
        self.root = Path(root)
        self.spec = spec

    @property
    def fstab_path(self) -> Path:
        return self.root / "etc" / "fstab"

    def rewrite(self) -> str | None:
        """Write /etc/fstab, keeping any previous file as fstab.old.

        Returns:
            The written content, or None when no fstab is selected

        Raises:
            PopulateError: If /etc/fstab or its backup cannot be written
        """
        content = resolve_fstab(self.spec)
        if content is None:
            log.debug("No fstab selected, leaving /etc/fstab untouched")
            return None

        fstab = self.fstab_path
        try:
            fstab.parent.mkdir(parents=True, exist_ok=True)
            if fstab.exists() or fstab.is_symlink():
                backup = fstab.with_name("fstab.old")
                log.debug(f"Backing up {fstab} to {backup}")
                if backup.is_symlink():
                    backup.unlink()
                shutil.copy2(fstab, backup, follow_symlinks=False)
            if fstab.is_symlink():
                # a link may point outside the image; replace it with a file
                fstab.unlink()
            fstab.write_text(content, encoding="utf-8")
        except OSError as error:
            raise PopulateError(str(fstab), error.strerror or str(error)) from error

        log.info("/etc/fstab:")
        for line in content.splitlines():
            log.info(f"\t {line}")
        return content
