"""Partition table access for plain disk images."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from image_provisioner.domain.models import Partition
from image_provisioner.logging import LoggerFactory

from .command_runners import find_tool, run_checked_command
from .exceptions import PartitionError
from .sparse import SparseCopyResult, copy_range_sparse, write_range_sparse


log = LoggerFactory.for_partition()

DEFAULT_SECTOR_SIZE = 512


@dataclass(frozen=True)
class PartitionEntry:
    number: int
    start_bytes: int
    size_bytes: int
    type: Optional[str] = None


def get_partition_number(node: str) -> Optional[int]:
    """Extract the partition number from an sfdisk node name (e.g., image.wic5)."""
    match = re.search(r"(\d+)$", node or "")
    if not match:
        return None
    return int(match.group(1))


def parse_sfdisk_json(output: str) -> list[PartitionEntry]:
    """Parse ``sfdisk --json`` output into partition entries (sorted by number)."""
    data = json.loads(output)
    table = data.get("partitiontable", {})
    sector_size = int(table.get("sectorsize", DEFAULT_SECTOR_SIZE))
    entries = []
    for part in table.get("partitions", []):
        number = get_partition_number(part.get("node", ""))
        if number is None:
            continue
        entries.append(
            PartitionEntry(
                number=number,
                start_bytes=int(part["start"]) * sector_size,
                size_bytes=int(part["size"]) * sector_size,
                type=part.get("type"),
            )
        )
    return sorted(entries, key=lambda entry: entry.number)


def read_partition_table(image: Path) -> list[PartitionEntry]:
    """Read the partition table of a plain image with sfdisk.

    Raises:
        PartitionError: If sfdisk is missing or cannot parse the image
    """
    image = Path(image)
    sfdisk = find_tool("sfdisk")
    if not sfdisk:
        raise PartitionError(image, "*", "sfdisk not found")
    try:
        output = run_checked_command([sfdisk, "--json", str(image)])
        return parse_sfdisk_json(output)
    except (RuntimeError, ValueError, KeyError) as e:
        raise PartitionError(image, "*", f"cannot read partition table: {e}") from e


def find_partition(
    image: Path, partition: Partition, table: Optional[list[PartitionEntry]] = None
) -> PartitionEntry:
    table = read_partition_table(image) if table is None else table
    for entry in table:
        if entry.number == partition.number:
            return entry
    raise PartitionError(
        image, partition.value, f"partition number {partition.number} not found"
    )


def extract_partition(image: Path, entry: PartitionEntry, dest: Path) -> SparseCopyResult:
    """Copy one partition of ``image`` into the standalone file ``dest``."""
    log.debug(
        f"Extracting partition {entry.number} of {Path(image).name} "
        f"({entry.size_bytes} bytes at {entry.start_bytes})"
    )
    return copy_range_sparse(image, dest, entry.start_bytes, entry.size_bytes)


def write_back_partition(image: Path, entry: PartitionEntry, source: Path) -> SparseCopyResult:
    """Write a (modified) partition file back into ``image``.

    Raises:
        PartitionError: If the partition file size no longer matches
    """
    size = Path(source).stat().st_size
    if size != entry.size_bytes:
        raise PartitionError(
            image,
            str(entry.number),
            f"partition file is {size} bytes, expected {entry.size_bytes}",
        )
    log.debug(f"Writing partition {entry.number} back into {Path(image).name}")
    return write_range_sparse(source, image, entry.start_bytes)
