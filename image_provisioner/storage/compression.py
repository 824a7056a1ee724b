"""Compression detection and codec invocation for disk images.

Codecs are run as external tools (pigz/gzip, xz, pzstd/zstd, pbzip2/bzip2)
streaming into a sibling file, so multi-gigabyte images never pass through
Python memory.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from image_provisioner.config import settings
from image_provisioner.domain.models import Compression
from image_provisioner.logging import LoggerFactory

from .command_runners import find_tool, run_to_file
from .exceptions import CodecError


log = LoggerFactory.for_compression()

MAGIC_HEADER_BYTES = 8


def detect(path: Path, *, read_magic: bool = False) -> Optional[Compression]:
    """Detect the codec of ``path``.

    The extension decides. With ``read_magic`` a file without a known extension
    is additionally checked for codec magic bytes.

    Returns:
        The codec, or None for a plain image
    """
    path = Path(path)
    codec = Compression.from_path(path)
    if codec is not None or not read_magic:
        return codec
    try:
        with open(path, "rb") as f:
            header = f.read(MAGIC_HEADER_BYTES)
    except OSError:
        return None
    return Compression.from_magic(header)


def is_compressed(path: Path) -> bool:
    return detect(path) is not None


def get_codec_tool(codec: Compression) -> str:
    """Return the executable for ``codec``.

    Raises:
        CodecError: If no implementation is installed
    """
    candidates = codec.tools
    if not settings.get_bool("prefer_parallel_tools", True):
        candidates = candidates[-1:]
    tool = find_tool(*candidates)
    if not tool:
        raise CodecError(
            "find_codec_tool",
            codec.extension,
            codec.value,
            f"none of {', '.join(candidates)} found",
        )
    return tool


def decompressed_path(path: Path, codec: Compression) -> Path:
    """``image.wic.gz`` -> ``image.wic``."""
    path = Path(path)
    if path.suffix.lower() == codec.extension:
        return path.with_suffix("")
    return path.with_name(f"{path.name}.raw")


def compressed_path(path: Path, codec: Compression) -> Path:
    """``image.wic`` -> ``image.wic.xz``."""
    path = Path(path)
    return path.with_name(f"{path.name}{codec.extension}")


def decompress(path: Path, codec: Compression) -> Path:
    """Decompress ``path`` in place and return the plain image path.

    The compressed input is removed once the plain image has been written.

    Raises:
        CodecError: If the tool is missing or fails
    """
    path = Path(path)
    output = decompressed_path(path, codec)
    tool = get_codec_tool(codec)
    log.info(f"Decompressing {path.name} ({codec.value})")
    try:
        run_to_file([tool, "-dc", str(path)], output)
    except (OSError, RuntimeError) as e:
        raise CodecError("decompress", path, codec.value, str(e)) from e
    path.unlink()
    return output


def compress(path: Path, codec: Compression) -> Path:
    """Compress ``path`` in place and return the compressed image path.

    Raises:
        CodecError: If the tool is missing or fails
    """
    path = Path(path)
    output = compressed_path(path, codec)
    tool = get_codec_tool(codec)
    log.info(f"Compressing {path.name} ({codec.value})")
    try:
        run_to_file([tool, "-c", str(path)], output)
    except (OSError, RuntimeError) as e:
        raise CodecError("compress", path, codec.value, str(e)) from e
    path.unlink()
    return output
