"""Domain model for image provisioning.

Typed objects passed between the command line, the pipeline and the storage
helpers, so that codecs, options and file copy requests are not juggled as
loose strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping, Optional

from image_provisioner.config import settings
from image_provisioner.storage.exceptions import PreconditionError


# ==============================================================================
# Compression Domain
# ==============================================================================


class Compression(Enum):
    """Supported image codecs.

    A plain image is represented by ``None`` rather than a member, so that
    ``Optional[Compression]`` reads as "compressed or not".
    """

    GZIP = "gzip"
    XZ = "xz"
    ZSTD = "zstd"
    BZIP2 = "bzip2"

    @property
    def extension(self) -> str:
        """File extension including the dot (e.g., ".gz")."""
        return _EXTENSIONS[self]

    @property
    def magic(self) -> bytes:
        return _MAGIC[self]

    @property
    def tools(self) -> tuple[str, ...]:
        """Executable candidates, parallel implementations first."""
        return _TOOLS[self]

    @classmethod
    def from_path(cls, path: Path) -> Optional[Compression]:
        """Detect the codec from the file extension, or None if plain."""
        suffix = Path(path).suffix.lower()
        for member in cls:
            if member.extension == suffix:
                return member
        return None

    @classmethod
    def from_magic(cls, header: bytes) -> Optional[Compression]:
        for member in cls:
            if header.startswith(member.magic):
                return member
        return None

    @classmethod
    def parse(cls, name: str) -> Compression:
        """Parse a user supplied codec name (e.g., "xz", "gz", "zstd")."""
        normalized = (name or "").strip().lower().lstrip(".")
        member = _ALIASES.get(normalized)
        if member is None:
            choices = ", ".join(sorted(_ALIASES))
            raise PreconditionError(
                f"unknown compression '{name}' (choose from: {choices})",
                operation="parse_compression",
            )
        return member


_EXTENSIONS = {
    Compression.GZIP: ".gz",
    Compression.XZ: ".xz",
    Compression.ZSTD: ".zst",
    Compression.BZIP2: ".bz2",
}

_MAGIC = {
    Compression.GZIP: b"\x1f\x8b",
    Compression.XZ: b"\xfd7zXZ\x00",
    Compression.ZSTD: b"\x28\xb5\x2f\xfd",
    Compression.BZIP2: b"BZh",
}

_TOOLS = {
    Compression.GZIP: ("pigz", "gzip"),
    Compression.XZ: ("xz",),
    Compression.ZSTD: ("pzstd", "zstd"),
    Compression.BZIP2: ("pbzip2", "bzip2"),
}

_ALIASES = {
    "gzip": Compression.GZIP,
    "gz": Compression.GZIP,
    "xz": Compression.XZ,
    "zstd": Compression.ZSTD,
    "zst": Compression.ZSTD,
    "bzip2": Compression.BZIP2,
    "bz2": Compression.BZIP2,
}


# ==============================================================================
# Pipeline Domain
# ==============================================================================


Mutation = Callable[[Path], Optional[bool]]
"""Single-use operation applied to the staged (plain) image path.

Raising or returning ``False`` signals failure; returning ``None`` or
``True`` signals success.
"""


@dataclass(frozen=True)
class PipelineOptions:
    """Options for one image pipeline run.

    ``containerized`` and ``tmp_root`` come from configuration at the call
    boundary; see ``PipelineOptions.from_settings``.
    """

    generate_bmap: bool = False
    target_compression: Optional[Compression] = None
    write_image: bool = True
    containerized: bool = False
    tmp_root: Optional[Path] = None

    @classmethod
    def from_settings(
        cls,
        *,
        generate_bmap: bool = False,
        target_compression: Optional[Compression] = None,
        write_image: bool = True,
        environ: Optional[Mapping[str, str]] = None,
    ) -> PipelineOptions:
        return cls(
            generate_bmap=generate_bmap,
            target_compression=target_compression,
            write_image=write_image,
            containerized=settings.is_containerized(environ),
            tmp_root=settings.get_tmp_root(environ),
        )


@dataclass(frozen=True)
class PipelineResult:
    """Artifacts produced by a successful pipeline run."""

    image: Optional[Path]
    bmap: Optional[Path]
    workspace: Path


# ==============================================================================
# Partition / File Copy Domain
# ==============================================================================


class Partition(Enum):
    """Named partitions of a provisioned device image."""

    BOOT = "boot"
    ROOT_A = "rootA"
    ROOT_B = "rootB"
    FACTORY = "factory"
    CERT = "cert"
    ETC = "etc"
    DATA = "data"

    @property
    def number(self) -> int:
        return _PARTITION_NUMBERS[self]

    @property
    def fstype(self) -> str:
        return "vfat" if self is Partition.BOOT else "ext4"

    @classmethod
    def parse(cls, name: str) -> Partition:
        for member in cls:
            if member.value.lower() == name.strip().lower():
                return member
        choices = ", ".join(member.value for member in cls)
        raise PreconditionError(
            f"unknown partition '{name}' (choose from: {choices})",
            operation="parse_partition",
        )


_PARTITION_NUMBERS = {
    Partition.BOOT: 1,
    Partition.ROOT_A: 2,
    Partition.ROOT_B: 3,
    Partition.FACTORY: 5,
    Partition.CERT: 6,
    Partition.ETC: 7,
    Partition.DATA: 8,
}


@dataclass(frozen=True)
class FileCopyToParams:
    """Copy a host file into a partition of the image."""

    in_file: Path
    partition: Partition
    out_file: Path

    @classmethod
    def parse(cls, value: str) -> FileCopyToParams:
        """Parse "<host file>,<partition>,<image path>"."""
        parts = [part.strip() for part in value.split(",")]
        if len(parts) != 3 or not all(parts):
            raise PreconditionError(
                f"invalid file copy '{value}', expected IN_FILE,PARTITION,OUT_FILE",
                operation="parse_file_copy",
            )
        in_file, partition, out_file = parts
        return cls(Path(in_file), Partition.parse(partition), Path(out_file))


@dataclass(frozen=True)
class FileCopyFromParams:
    """Copy a file out of a partition of the image onto the host."""

    partition: Partition
    in_file: Path
    out_file: Path

    @classmethod
    def parse(cls, value: str) -> FileCopyFromParams:
        """Parse "<partition>:<image path>,<host file>"."""
        source, sep, out_file = value.partition(",")
        partition, colon, in_file = source.partition(":")
        if not sep or not colon or not in_file.strip() or not out_file.strip():
            raise PreconditionError(
                f"invalid file copy '{value}', expected PARTITION:IN_FILE,OUT_FILE",
                operation="parse_file_copy",
            )
        return cls(
            Partition.parse(partition), Path(in_file.strip()), Path(out_file.strip())
        )
