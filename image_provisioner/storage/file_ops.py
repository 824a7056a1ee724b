"""Copy files into and out of image partitions.

These are mutations for ``run_image_command``: they receive the staged plain
image. Each affected partition is extracted into a scratch file next to the
staged image, edited with mtools (vfat) or e2tools (ext4), and written back.
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Iterable

from image_provisioner.domain.models import (
    FileCopyFromParams,
    FileCopyToParams,
    Partition,
)
from image_provisioner.logging import LoggerFactory

from .command_runners import find_tool, run_checked_command
from .exceptions import ImageNotFoundError, PartitionError
from .partitions import (
    PartitionEntry,
    extract_partition,
    find_partition,
    read_partition_table,
    write_back_partition,
)


log = LoggerFactory.for_partition()


def _require_tool(image: Path, partition: Partition, name: str) -> str:
    tool = find_tool(name)
    if not tool:
        raise PartitionError(image, partition.value, f"{name} not found")
    return tool


def _image_path(path: Path) -> str:
    """Normalize a path inside a partition to an absolute POSIX path."""
    return str(PurePosixPath("/", str(path)))


def _parent_dirs(path: str) -> list[str]:
    """Parent directories of an absolute path, outermost first (excluding "/")."""
    parents = list(PurePosixPath(path).parents)[:-1]
    return [str(parent) for parent in reversed(parents)]


def _scratch_path(image: Path, partition: Partition) -> Path:
    return image.with_name(f"{image.name}.{partition.value}.part")


def _group_by_partition(params: Iterable) -> dict[Partition, list]:
    grouped: dict[Partition, list] = {}
    for param in params:
        grouped.setdefault(param.partition, []).append(param)
    return grouped


# ------------------------------------------------------------------------------
# vfat (mtools)
# ------------------------------------------------------------------------------


def _vfat_mkdirs(part_file: Path, image: Path, partition: Partition, target: str) -> None:
    mmd = _require_tool(image, partition, "mmd")
    mdir = _require_tool(image, partition, "mdir")
    for directory in _parent_dirs(target):
        try:
            run_checked_command([mdir, "-i", str(part_file), f"::{directory}"])
        except RuntimeError:
            run_checked_command([mmd, "-i", str(part_file), f"::{directory}"])


def _vfat_copy_in(part_file: Path, image: Path, param: FileCopyToParams) -> None:
    target = _image_path(param.out_file)
    _vfat_mkdirs(part_file, image, param.partition, target)
    mcopy = _require_tool(image, param.partition, "mcopy")
    run_checked_command([mcopy, "-o", "-i", str(part_file), str(param.in_file), f"::{target}"])


def _vfat_copy_out(part_file: Path, image: Path, param: FileCopyFromParams) -> None:
    mcopy = _require_tool(image, param.partition, "mcopy")
    source = _image_path(param.in_file)
    run_checked_command([mcopy, "-o", "-i", str(part_file), f"::{source}", str(param.out_file)])


# ------------------------------------------------------------------------------
# ext4 (e2tools)
# ------------------------------------------------------------------------------


def _ext4_copy_in(part_file: Path, image: Path, param: FileCopyToParams) -> None:
    target = _image_path(param.out_file)
    parent = str(PurePosixPath(target).parent)
    if parent != "/":
        e2mkdir = _require_tool(image, param.partition, "e2mkdir")
        run_checked_command([e2mkdir, f"{part_file}:{parent}"])
    e2cp = _require_tool(image, param.partition, "e2cp")
    run_checked_command([e2cp, str(param.in_file), f"{part_file}:{target}"])


def _ext4_copy_out(part_file: Path, image: Path, param: FileCopyFromParams) -> None:
    e2cp = _require_tool(image, param.partition, "e2cp")
    source = _image_path(param.in_file)
    run_checked_command([e2cp, f"{part_file}:{source}", str(param.out_file)])


def _run_partition_tool(image: Path, partition: Partition, action, *args) -> None:
    try:
        action(*args)
    except RuntimeError as e:
        raise PartitionError(image, partition.value, str(e)) from e


# ------------------------------------------------------------------------------
# Mutations
# ------------------------------------------------------------------------------


def copy_to_image(params: list[FileCopyToParams], image: Path) -> None:
    """Copy host files into partitions of the plain image ``image``.

    Raises:
        ImageNotFoundError: If a host file does not exist
        PartitionError: If a partition or tool is missing, or a tool fails
    """
    image = Path(image)
    for param in params:
        if not Path(param.in_file).is_file():
            raise ImageNotFoundError(param.in_file, operation="copy_to_image")

    table = read_partition_table(image)
    for partition, group in _group_by_partition(params).items():
        entry: PartitionEntry = find_partition(image, partition, table)
        part_file = _scratch_path(image, partition)
        try:
            extract_partition(image, entry, part_file)
            for param in group:
                log.info(
                    f"Copying {param.in_file} to {partition.value}:{_image_path(param.out_file)}"
                )
                copy_in = _vfat_copy_in if partition.fstype == "vfat" else _ext4_copy_in
                _run_partition_tool(image, partition, copy_in, part_file, image, param)
            write_back_partition(image, entry, part_file)
        finally:
            part_file.unlink(missing_ok=True)


def copy_from_image(params: list[FileCopyFromParams], image: Path) -> None:
    """Copy files out of partitions of the plain image ``image`` onto the host.

    Raises:
        PartitionError: If a partition or tool is missing, or a tool fails
    """
    image = Path(image)
    table = read_partition_table(image)
    for partition, group in _group_by_partition(params).items():
        entry = find_partition(image, partition, table)
        part_file = _scratch_path(image, partition)
        try:
            extract_partition(image, entry, part_file)
            for param in group:
                Path(param.out_file).parent.mkdir(parents=True, exist_ok=True)
                log.info(
                    f"Copying {partition.value}:{_image_path(param.in_file)} to {param.out_file}"
                )
                copy_out = _vfat_copy_out if partition.fstype == "vfat" else _ext4_copy_out
                _run_partition_tool(image, partition, copy_out, part_file, image, param)
        finally:
            part_file.unlink(missing_ok=True)
