"""Custom exceptions for image construction.

This module defines a hierarchy of exceptions for the build stages so callers
can tell a failing external command apart from leftover mount state.

Exception Hierarchy:
    ImagingError (base)
        ├── ExecutionFailure
        ├── MountError
        │   ├── AlreadyMountedFault
        │   └── NotMountedError
        └── PopulateError

    DegradedCopyWarning (UserWarning, reported but never raised)

Usage:
    from volume_imager.storage.exceptions import AlreadyMountedFault

    if mount_table.is_mounted(mountpoint):
        raise AlreadyMountedFault(mountpoint)
"""

import shlex


class ImagingError(Exception):
    """Base exception for all image construction errors."""



class ExecutionFailure(ImagingError):
    """An external command exited with a non-zero status."""

    def __init__(self, command: list[str], returncode: int, stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        msg = f'Execution failed: "{shlex.join(self.command)}" (exit code {returncode})'
        if stderr:
            msg += f": {stderr}"
        super().__init__(msg)


class MountError(ImagingError):
    """Base exception for mount-related errors."""



class AlreadyMountedFault(MountError):
    """The scratch mountpoint was mounted before this build mounted it."""

    def __init__(self, mountpoint: str):
        self.mountpoint = mountpoint
        super().__init__(
            f"Image already mounted: {mountpoint} is in use, "
            f"unmount it before building a new image"
        )


class NotMountedError(MountError):
    """The image was expected to be mounted but is not."""

    def __init__(self, mountpoint: str):
        self.mountpoint = mountpoint
        super().__init__(f"Image is not mounted at {mountpoint}")


class PopulateError(ImagingError):
    """A boot-critical file or directory could not be created in the image."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to create {path}: {reason}")


class DegradedCopyWarning(UserWarning):
    """The tree copy succeeded without full fidelity."""

    def __init__(self, exit_code: int, message: str):
        self.exit_code = exit_code
        super().__init__(message)
