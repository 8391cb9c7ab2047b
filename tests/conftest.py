"""
Pytest configuration and shared fixtures for volume-imager tests.

This module provides a fake command runner and mount table so the build
stages can be exercised without root, loop devices or rsync.
"""

import os
import subprocess
from typing import Dict, List
from unittest.mock import Mock

import pytest
from loguru import logger

from volume_imager.config import settings
from volume_imager.storage.commands import CommandRunner
from volume_imager.storage.exceptions import ExecutionFailure
from volume_imager.storage.mtab import MountTable


# ==============================================================================
# Fakes
# ==============================================================================


class FakeMountTable(MountTable):
    """In-memory mount table."""

    def __init__(self, entries: Dict[str, str] = None):
        self.path = None
        self.mounts: Dict[str, str] = dict(entries or {})
        self.reads = 0

    def entries(self) -> Dict[str, str]:
        self.reads += 1
        return dict(self.mounts)


class FakeRunner(CommandRunner):
    """Records commands instead of running them.

    Exit codes are scripted per program name; each call pops the next code
    from the program's list and falls back to 0. mount and umount commands
    update the coupled FakeMountTable.
    """

    def __init__(self, mount_table: FakeMountTable, exit_codes=None):
        super().__init__(debug=False)
        self.mount_table = mount_table
        self.exit_codes: Dict[str, List[int]] = {
            program: list(codes) for program, codes in (exit_codes or {}).items()
        }
        self.commands: List[List[str]] = []

    def programs(self) -> List[str]:
        return [command[0] for command in self.commands]

    def calls(self, program: str) -> List[List[str]]:
        return [command for command in self.commands if command[0] == program]

    def run(self, command, check=True):
        command = list(command)
        self.commands.append(command)
        codes = self.exit_codes.get(command[0])
        returncode = codes.pop(0) if codes else 0
        if returncode == 0:
            if command[0] == "mount":
                self.mount_table.mounts[os.path.normpath(command[-1])] = "/dev/loop0"
            elif command[0] == "umount":
                self.mount_table.mounts.pop(os.path.normpath(command[-1]), None)
        if returncode != 0 and check:
            raise ExecutionFailure(command, returncode, "fake failure")
        return subprocess.CompletedProcess(command, returncode, stdout="", stderr="")


# ==============================================================================
# Runner and Mount Table Fixtures
# ==============================================================================


@pytest.fixture
def fake_mount_table() -> FakeMountTable:
    """Fixture providing an empty in-memory mount table."""
    return FakeMountTable()


@pytest.fixture
def fake_runner(fake_mount_table) -> FakeRunner:
    """Fixture providing a recording runner where every command succeeds."""
    return FakeRunner(fake_mount_table)


@pytest.fixture
def mock_subprocess_run(mocker):
    """
    Fixture providing a mock for subprocess.run.

    Returns:
        Mock object for subprocess.run
    """
    return mocker.patch("subprocess.run")


@pytest.fixture
def mock_subprocess_success(mock_subprocess_run) -> Mock:
    """Fixture providing a subprocess.run mock that always succeeds."""
    mock_subprocess_run.return_value = Mock(returncode=0, stdout="", stderr="")
    return mock_subprocess_run


# ==============================================================================
# File System Fixtures
# ==============================================================================


@pytest.fixture
def scratch_mountpoint(tmp_path) -> str:
    """
    Fixture providing a scratch mountpoint path that does not exist yet.

    Args:
        tmp_path: pytest's built-in temporary directory fixture.

    Returns:
        Path string of the scratch mountpoint.
    """
    return str(tmp_path / "mnt" / "img-mnt")


@pytest.fixture
def volume_dir(tmp_path):
    """Fixture providing a small source volume."""
    volume = tmp_path / "volume"
    (volume / "etc").mkdir(parents=True)
    (volume / "etc" / "hostname").write_text("builder\n")
    return volume


# ==============================================================================
# Logging
# ==============================================================================


@pytest.fixture(autouse=True)
def quiet_logger():
    """Route loguru output into a list for the duration of each test."""
    messages: List[str] = []
    logger.remove()
    logger.add(lambda message: messages.append(str(message)), level="DEBUG")
    yield messages
    logger.remove()


@pytest.fixture
def make_runner(fake_mount_table):
    """
    Fixture providing a factory for FakeRunners with scripted exit codes.

    Example:
        runner = make_runner({"rsync": [1, 0]})
    """

    def _make(exit_codes=None) -> FakeRunner:
        return FakeRunner(fake_mount_table, exit_codes=exit_codes)

    return _make


@pytest.fixture(autouse=True)
def default_settings(monkeypatch):
    """Ignore any settings file on the machine running the tests."""
    values = {
        key: list(value) if isinstance(value, list) else value
        for key, value in settings.DEFAULT_SETTINGS.items()
    }
    monkeypatch.setattr(settings.settings_store, "values", values)
    return values
