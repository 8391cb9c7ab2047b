"""Command execution for the build stages."""

from __future__ import annotations

import os
import shlex
import subprocess
from typing import Sequence

from volume_imager.logging import LoggerFactory
from volume_imager.storage.exceptions import ExecutionFailure


log = LoggerFactory.for_system()

# mkfs, tune2fs and mknod usually live here, often outside a user's PATH
SBIN_DIRS = ("/sbin", "/usr/sbin")

COMMAND_NOT_FOUND = 127


def search_path() -> str:
    """Return the PATH used to look up build commands."""
    entries = [entry for entry in os.environ.get("PATH", "").split(os.pathsep) if entry]
    for directory in SBIN_DIRS:
        if directory not in entries:
            entries.append(directory)
    return os.pathsep.join(entries)


class CommandRunner:
    """Run external commands, turning failures into ExecutionFailure.

    In debug mode each command line is echoed and the command's output goes
    straight to the terminal. Otherwise output is captured and only logged
    at DEBUG level. Programs are looked up on search_path(), the same path
    the preflight tool check uses.
    """

    def __init__(self, debug: bool = False):
        self.debug = debug

    def run(
        self, command: Sequence[str], check: bool = True
    ) -> subprocess.CompletedProcess:
        """Run command and wait for it to finish.

        Args:
            command: Argument list, never passed through a shell
            check: Raise ExecutionFailure on a non-zero exit status

        Returns:
            The completed process; stdout/stderr are None in debug mode

        Raises:
            ExecutionFailure: If the command cannot be started, or if check
                is set and the command fails
        """
        command = list(command)
        env = {**os.environ, "PATH": search_path()}
        try:
            if self.debug:
                log.info(f"Executing: {shlex.join(command)}")
                result = subprocess.run(command, check=False, env=env)
            else:
                log.debug(f"Running command: {shlex.join(command)}")
                result = subprocess.run(
                    command, check=False, capture_output=True, text=True, env=env
                )
        except OSError as error:
            log.debug(f"Could not start {command[0]}: {error}")
            raise ExecutionFailure(command, COMMAND_NOT_FOUND, str(error)) from error

        if not self.debug:
            if result.stdout:
                log.debug(f"stdout: {result.stdout.strip()}")
            if result.stderr:
                log.debug(f"stderr: {result.stderr.strip()}")

        if result.returncode != 0:
            log.debug(f"Command exited with return code {result.returncode}")
            if check:
                stderr = (result.stderr or "").strip()
                raise ExecutionFailure(command, result.returncode, stderr)
        return result
