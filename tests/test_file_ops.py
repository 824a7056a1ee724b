"""Tests for storage/file_ops.py - copying files into and out of partitions."""

import pytest

from image_provisioner.domain.models import (
    FileCopyFromParams,
    FileCopyToParams,
    Partition,
)
from image_provisioner.storage import file_ops
from image_provisioner.storage.exceptions import ImageNotFoundError, PartitionError
from image_provisioner.storage.partitions import PartitionEntry


MIB = 1024 * 1024


@pytest.fixture
def disk(tmp_path, sparse_file):
    """8 MiB image: boot (vfat) at 1 MiB, rootA (ext4) at 2 MiB, factory at 6 MiB."""
    return sparse_file(
        tmp_path / "image.wic",
        8 * MIB,
        [(0, b"mbr"), (MIB, b"boot-fs"), (2 * MIB, b"root-fs"), (6 * MIB, b"factory")],
    )


@pytest.fixture
def table(mocker):
    entries = [
        PartitionEntry(number=1, start_bytes=MIB, size_bytes=MIB, type="c"),
        PartitionEntry(number=2, start_bytes=2 * MIB, size_bytes=2 * MIB, type="83"),
        PartitionEntry(number=5, start_bytes=6 * MIB, size_bytes=MIB, type="83"),
    ]
    mocker.patch.object(file_ops, "read_partition_table", return_value=entries)
    return entries


@pytest.fixture
def tools(mocker):
    """Record tool invocations instead of running mtools/e2tools."""
    mocker.patch.object(file_ops, "find_tool", side_effect=lambda name: f"/usr/bin/{name}")
    return mocker.patch.object(file_ops, "run_checked_command", return_value="")


@pytest.fixture
def host_file(tmp_path):
    path = tmp_path / "config.txt"
    path.write_text("dtparam=i2c_arm=on\n")
    return path


def _commands(run):
    return [c.args[0] for c in run.call_args_list]


class TestCopyToImage:
    """Tests for copy_to_image()."""

    def test_vfat_uses_mcopy(self, disk, table, tools, host_file):
        params = [FileCopyToParams(host_file, Partition.BOOT, "config.txt")]

        file_ops.copy_to_image(params, disk)

        part = str(disk.with_name("image.wic.boot.part"))
        assert _commands(tools) == [
            ["/usr/bin/mcopy", "-o", "-i", part, str(host_file), "::/config.txt"]
        ]

    def test_vfat_creates_missing_directories(self, disk, table, tools, host_file):
        def fake_run(command):
            if command[0].endswith("mdir"):
                raise RuntimeError("Command failed: not found")
            return ""

        tools.side_effect = fake_run
        params = [FileCopyToParams(host_file, Partition.BOOT, "/overlays/extra/cfg.txt")]

        file_ops.copy_to_image(params, disk)

        mmd = [cmd[-1] for cmd in _commands(tools) if cmd[0].endswith("mmd")]
        assert mmd == ["::/overlays", "::/overlays/extra"]

    def test_ext4_uses_e2tools(self, disk, table, tools, host_file):
        params = [FileCopyToParams(host_file, Partition.ROOT_A, "etc/app/config.txt")]

        file_ops.copy_to_image(params, disk)

        part = disk.with_name("image.wic.rootA.part")
        assert _commands(tools) == [
            ["/usr/bin/e2mkdir", f"{part}:/etc/app"],
            ["/usr/bin/e2cp", str(host_file), f"{part}:/etc/app/config.txt"],
        ]

    def test_ext4_root_target_skips_mkdir(self, disk, table, tools, host_file):
        params = [FileCopyToParams(host_file, Partition.FACTORY, "serial")]

        file_ops.copy_to_image(params, disk)

        assert [cmd[0] for cmd in _commands(tools)] == ["/usr/bin/e2cp"]

    def test_partition_edits_are_written_back(self, disk, table, tools, host_file):
        def fake_e2cp(command):
            part_file = command[-1].split(":", 1)[0]
            with open(part_file, "r+b") as f:
                f.seek(4096)
                f.write(b"copied-file")
            return ""

        tools.side_effect = fake_e2cp
        params = [FileCopyToParams(host_file, Partition.FACTORY, "serial")]

        file_ops.copy_to_image(params, disk)

        with open(disk, "rb") as f:
            f.seek(6 * MIB + 4096)
            assert f.read(11) == b"copied-file"
            f.seek(2 * MIB)
            assert f.read(7) == b"root-fs"
        assert not disk.with_name("image.wic.factory.part").exists()

    def test_files_grouped_per_partition(self, disk, table, tools, host_file, mocker):
        extract = mocker.spy(file_ops, "extract_partition")
        params = [
            FileCopyToParams(host_file, Partition.BOOT, "a.txt"),
            FileCopyToParams(host_file, Partition.ROOT_A, "b.txt"),
            FileCopyToParams(host_file, Partition.BOOT, "c.txt"),
        ]

        file_ops.copy_to_image(params, disk)

        assert extract.call_count == 2

    def test_missing_host_file(self, disk, table, tools, tmp_path):
        missing = tmp_path / "missing.txt"
        params = [FileCopyToParams(missing, Partition.BOOT, "missing.txt")]

        with pytest.raises(ImageNotFoundError) as exc_info:
            file_ops.copy_to_image(params, disk)

        assert exc_info.value.path == missing
        tools.assert_not_called()

    def test_missing_partition(self, disk, table, tools, host_file):
        params = [FileCopyToParams(host_file, Partition.DATA, "x")]

        with pytest.raises(PartitionError, match="partition number 8"):
            file_ops.copy_to_image(params, disk)

    def test_missing_tool(self, disk, table, host_file, mocker):
        mocker.patch.object(file_ops, "find_tool", return_value=None)
        params = [FileCopyToParams(host_file, Partition.BOOT, "x")]

        with pytest.raises(PartitionError, match="not found"):
            file_ops.copy_to_image(params, disk)

    def test_tool_failure_skips_write_back(self, disk, table, tools, host_file):
        before = disk.read_bytes()

        def failing(command):
            with open(command[3], "r+b") as f:
                f.write(b"garbage")
            raise RuntimeError("Command failed: disk full")

        tools.side_effect = failing
        params = [FileCopyToParams(host_file, Partition.BOOT, "x")]

        with pytest.raises(PartitionError, match="disk full") as exc_info:
            file_ops.copy_to_image(params, disk)

        assert exc_info.value.partition == "boot"
        assert disk.read_bytes() == before
        assert not disk.with_name("image.wic.boot.part").exists()


class TestCopyFromImage:
    """Tests for copy_from_image()."""

    def test_vfat_copy_out(self, disk, table, tools, tmp_path):
        out = tmp_path / "out" / "nested" / "cmdline.txt"
        params = [FileCopyFromParams(Partition.BOOT, "cmdline.txt", out)]

        file_ops.copy_from_image(params, disk)

        part = str(disk.with_name("image.wic.boot.part"))
        assert _commands(tools) == [
            ["/usr/bin/mcopy", "-o", "-i", part, "::/cmdline.txt", str(out)]
        ]
        assert out.parent.is_dir()

    def test_ext4_copy_out(self, disk, table, tools, tmp_path):
        out = tmp_path / "hostname"
        params = [FileCopyFromParams(Partition.ROOT_A, "/etc/hostname", out)]

        file_ops.copy_from_image(params, disk)

        part = disk.with_name("image.wic.rootA.part")
        assert _commands(tools) == [["/usr/bin/e2cp", f"{part}:/etc/hostname", str(out)]]

    def test_image_is_not_modified(self, disk, table, tools, tmp_path, mocker):
        write_back = mocker.patch.object(file_ops, "write_back_partition")
        before = disk.read_bytes()
        params = [FileCopyFromParams(Partition.FACTORY, "serial", tmp_path / "serial")]

        file_ops.copy_from_image(params, disk)

        write_back.assert_not_called()
        assert disk.read_bytes() == before
        assert not disk.with_name("image.wic.factory.part").exists()
