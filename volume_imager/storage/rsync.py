"""Recursive replication of the volume into the mounted image.

The copy is done by rsync in archive mode, keeping times, permissions,
sparse files and symlinks as links. Extended attributes are preserved on a
best-effort basis, decided by a small retry policy over rsync's exit code:

    exit 0                          -> success
    exit 23, xattrs on, rsync usable -> success with a warning
    exit 1, xattrs on               -> retry once with xattrs off
    anything else                   -> ExecutionFailure

The retry always runs with xattrs off, so the exit 1 rule can fire at most
once per copy.
"""

from __future__ import annotations

import os
import re
import shutil
from typing import Callable, Iterable, Union

from volume_imager.domain.models import CopyOptions, CopyResult, is_under
from volume_imager.logging import LoggerFactory
from volume_imager.storage.commands import CommandRunner
from volume_imager.storage.exceptions import DegradedCopyWarning, ExecutionFailure


log = LoggerFactory.for_bundle()

RSYNC_PARTIAL_TRANSFER = 23
RSYNC_SYNTAX_OR_USAGE = 1

_WILDCARDS = re.compile(r"[*?\[]")
_SPECIAL = re.compile(r"[*?\[\\]")

LUTIMES_NOTE = "\n".join(
    [
        "NOTE: rsync seemed successful but exited with error code 23. This probably means",
        "that your version of rsync was built against a kernel with HAVE_LUTIMES defined,",
        "although the current kernel was not built with this option enabled. The bundling",
        "process will thus ignore the error and continue bundling. If bundling completes",
        "successfully, your image should be perfectly usable. We, however, recommend that",
        "you install a version of rsync that handles this situation more elegantly.",
    ]
)

XATTR_RETRY_NOTE = "\n".join(
    [
        "NOTE: rsync with preservation of extended file attributes failed. Retrying rsync",
        "without attempting to preserve extended file attributes...",
    ]
)

PolicyStep = Union[CopyResult, CopyOptions]


def rsync_usable(runner: CommandRunner | None = None) -> bool:
    """Check that rsync is installed and runs on this kernel.

    A debug runner is swapped for a quiet one so the version banner does
    not end up on the terminal.
    """
    if shutil.which("rsync") is None:
        return False
    if runner is None or runner.debug:
        runner = CommandRunner()
    try:
        result = runner.run(["rsync", "--version"], check=False)
    except ExecutionFailure:
        return False
    return result.returncode == 0


def escape_pattern(path: str) -> str:
    """Make rsync match path literally.

    rsync only treats a backslash as an escape when the pattern contains a
    wildcard, so paths without one are returned unchanged.
    """
    if not _WILDCARDS.search(path):
        return path
    return _SPECIAL.sub(r"\\\g<0>", path)


def exclude_patterns(excludes: Iterable[str], source: str) -> list[str]:
    """Turn absolute exclusion paths into rsync patterns for source.

    rsync anchors a leading "/" at the root of the transfer, so paths are
    rewritten relative to source and escaped to match exactly. Exclusions
    outside source cannot match anything and are dropped.
    """
    patterns = []
    for path in sorted(excludes):
        if not is_under(path, source):
            log.debug(f"Ignoring exclusion {path}: not under {source}")
            continue
        relative = os.path.relpath(os.path.normpath(path), os.path.normpath(source))
        if relative == ".":
            # excluding the whole volume leaves nothing to copy
            patterns.append("/*")
            continue
        patterns.append("/" + escape_pattern(relative.replace(os.sep, "/")))
    return patterns


def build_rsync_command(
    source: str, destination: str, excludes: Iterable[str], options: CopyOptions
) -> list[str]:
    command = ["rsync", "-a", "-t", "-r", "-S", "-l", "--quiet"]
    if options.xattrs:
        command.append("-X")
    for pattern in exclude_patterns(excludes, source):
        command.append(f"--exclude={pattern}")
    # trailing slash: copy the contents of source, not source itself
    command.append(source.rstrip("/") + "/")
    command.append(destination)
    return command


def next_copy_step(
    options: CopyOptions,
    exit_code: int,
    is_rsync_usable: Callable[[], bool],
    attempts: int = 1,
) -> PolicyStep:
    """Decide what follows an rsync run.

    Returns:
        A CopyResult when the copy is finished (successfully or not), or the
        CopyOptions for a single retry
    """
    if exit_code == 0:
        return CopyResult(exit_code, succeeded=True, attempts=attempts)
    if exit_code == RSYNC_PARTIAL_TRANSFER and options.xattrs and is_rsync_usable():
        return CopyResult(
            exit_code,
            succeeded=True,
            warning=DegradedCopyWarning(exit_code, LUTIMES_NOTE),
            attempts=attempts,
        )
    if exit_code == RSYNC_SYNTAX_OR_USAGE and options.xattrs:
        return options.without_xattrs()
    return CopyResult(exit_code, succeeded=False, attempts=attempts)


class TreeReplicator:
    """Copy a directory tree into the image with rsync."""

    def __init__(
        self,
        runner: CommandRunner,
        excludes: Iterable[str] = (),
        is_rsync_usable: Callable[[], bool] | None = None,
    ):
        self.runner = runner
        self.excludes = frozenset(excludes)
        self.is_rsync_usable = is_rsync_usable or (lambda: rsync_usable(runner))

    def replicate(
        self,
        source: str | os.PathLike,
        destination: str | os.PathLike,
        options: CopyOptions | None = None,
    ) -> CopyResult:
        """Copy source into destination.

        Args:
            source: Directory whose contents are copied
            destination: Existing directory inside the mounted image
            options: First attempt options, xattrs preserved by default

        Returns:
            The successful CopyResult, possibly carrying a warning

        Raises:
            ExecutionFailure: If rsync fails and no rule recovers it
        """
        source = os.fspath(source)
        destination = os.fspath(destination)
        options = options or CopyOptions()
        warning = None
        attempts = 0

        while True:
            attempts += 1
            command = build_rsync_command(source, destination, self.excludes, options)
            result = self.runner.run(command, check=False)
            step = next_copy_step(
                options, result.returncode, self.is_rsync_usable, attempts
            )
            if isinstance(step, CopyResult):
                break
            log.warning(XATTR_RETRY_NOTE)
            warning = DegradedCopyWarning(result.returncode, XATTR_RETRY_NOTE)
            options = step

        if not step.succeeded:
            raise ExecutionFailure(
                command, step.exit_code, (result.stderr or "").strip()
            )
        if step.warning is not None:
            log.warning(str(step.warning))
            return step
        if warning is not None:
            return CopyResult(step.exit_code, True, warning, attempts)
        return step
