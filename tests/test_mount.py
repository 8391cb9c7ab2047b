"""Tests for storage/mount.py - loop mounting at the scratch mountpoint.

This test suite covers:
- Mountpoint directory creation
- The already-mounted guard
- Loop mount command construction
- Idempotent unmount
- Guaranteed unmount from the mounted() context manager
"""

import os

import pytest

from volume_imager.storage.exceptions import AlreadyMountedFault, ExecutionFailure
from volume_imager.storage.mount import LoopMounter


@pytest.fixture
def mounter(fake_runner, fake_mount_table, scratch_mountpoint):
    return LoopMounter(fake_runner, fake_mount_table, scratch_mountpoint)


class TestEnsureMountpoint:
    """Tests for ensure_mountpoint()."""

    def test_creates_missing_directory(self, mounter, scratch_mountpoint):
        assert not os.path.isdir(scratch_mountpoint)

        mounter.ensure_mountpoint()

        assert os.path.isdir(scratch_mountpoint)

    def test_is_idempotent(self, mounter, scratch_mountpoint):
        mounter.ensure_mountpoint()
        mounter.ensure_mountpoint()

        assert os.path.isdir(scratch_mountpoint)

    def test_mountpoint_is_normalized(self, fake_runner, fake_mount_table, tmp_path):
        mounter = LoopMounter(fake_runner, fake_mount_table, f"{tmp_path}/mnt/")
        assert mounter.mountpoint == f"{tmp_path}/mnt"


class TestMount:
    """Tests for mount()."""

    def test_loop_mounts_image(self, mounter, fake_runner, scratch_mountpoint):
        mounter.mount("/tmp/image")

        assert fake_runner.commands == [
            ["mount", "-o", "loop", "/tmp/image", scratch_mountpoint]
        ]
        assert mounter.is_mounted()

    def test_creates_mountpoint_before_mounting(self, mounter, scratch_mountpoint):
        mounter.mount("/tmp/image")

        assert os.path.isdir(scratch_mountpoint)

    def test_already_mounted_raises_without_mounting(
        self, mounter, fake_runner, fake_mount_table, scratch_mountpoint
    ):
        fake_mount_table.mounts[scratch_mountpoint] = "/dev/loop7"

        with pytest.raises(AlreadyMountedFault) as excinfo:
            mounter.mount("/tmp/image")

        assert excinfo.value.mountpoint == scratch_mountpoint
        assert fake_runner.calls("mount") == []

    def test_mount_failure_propagates(self, make_runner, fake_mount_table, scratch_mountpoint):
        runner = make_runner({"mount": [32]})
        mounter = LoopMounter(runner, fake_mount_table, scratch_mountpoint)

        with pytest.raises(ExecutionFailure) as excinfo:
            mounter.mount("/tmp/image")

        assert excinfo.value.returncode == 32
        assert not mounter.is_mounted()


class TestUnmount:
    """Tests for unmount()."""

    def test_unmounts_and_detaches_loop_device(
        self, mounter, fake_runner, scratch_mountpoint
    ):
        mounter.mount("/tmp/image")

        mounter.unmount()

        assert fake_runner.commands[-1] == ["umount", "-d", scratch_mountpoint]
        assert not mounter.is_mounted()

    def test_noop_when_not_mounted(self, mounter, fake_runner):
        mounter.unmount()

        assert fake_runner.commands == []

    def test_second_unmount_is_noop(self, mounter, fake_runner):
        mounter.mount("/tmp/image")
        mounter.unmount()
        mounter.unmount()

        assert len(fake_runner.calls("umount")) == 1

    def test_queries_mount_table_each_time(self, mounter, fake_mount_table):
        mounter.unmount()
        mounter.unmount()

        assert fake_mount_table.reads == 2


class TestMountedContext:
    """Tests for the mounted() context manager."""

    def test_yields_mount_root_and_unmounts(
        self, mounter, fake_runner, scratch_mountpoint
    ):
        with mounter.mounted("/tmp/image") as root:
            assert str(root) == scratch_mountpoint
            assert mounter.is_mounted()

        assert not mounter.is_mounted()
        assert fake_runner.programs() == ["mount", "umount"]

    def test_unmounts_when_body_raises(self, mounter, fake_runner):
        with pytest.raises(RuntimeError, match="copy failed"):
            with mounter.mounted("/tmp/image"):
                raise RuntimeError("copy failed")

        assert not mounter.is_mounted()
        assert len(fake_runner.calls("umount")) == 1

    def test_already_mounted_skips_cleanup(
        self, mounter, fake_runner, fake_mount_table, scratch_mountpoint
    ):
        fake_mount_table.mounts[scratch_mountpoint] = "/dev/loop7"

        with pytest.raises(AlreadyMountedFault):
            with mounter.mounted("/tmp/image"):
                pytest.fail("body must not run")

        assert fake_runner.commands == []
        assert fake_mount_table.mounts[scratch_mountpoint] == "/dev/loop7"

    def test_failed_mount_still_attempts_cleanup(
        self, make_runner, fake_mount_table, scratch_mountpoint
    ):
        runner = make_runner({"mount": [32]})
        mounter = LoopMounter(runner, fake_mount_table, scratch_mountpoint)

        with pytest.raises(ExecutionFailure):
            with mounter.mounted("/tmp/image"):
                pytest.fail("body must not run")

        # nothing got mounted, so cleanup only checked the mount table
        assert runner.programs() == ["mount"]
        assert fake_mount_table.reads == 2

    def test_body_failure_survives_failed_unmount(
        self, make_runner, fake_mount_table, scratch_mountpoint, quiet_logger
    ):
        runner = make_runner({"umount": [32]})
        mounter = LoopMounter(runner, fake_mount_table, scratch_mountpoint)

        with pytest.raises(RuntimeError, match="copy failed"):
            with mounter.mounted("/tmp/image"):
                raise RuntimeError("copy failed")

        assert len(runner.calls("umount")) == 1
        assert mounter.is_mounted()
        assert any("Failed to unmount" in line for line in quiet_logger)

    def test_failed_unmount_after_clean_body_raises(
        self, make_runner, fake_mount_table, scratch_mountpoint
    ):
        runner = make_runner({"umount": [32]})
        mounter = LoopMounter(runner, fake_mount_table, scratch_mountpoint)

        with pytest.raises(ExecutionFailure) as excinfo:
            with mounter.mounted("/tmp/image"):
                pass

        assert excinfo.value.command[0] == "umount"
        assert mounter.is_mounted()
