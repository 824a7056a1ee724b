"""Hole-preserving file copies for disk images.

Disk images are mostly empty. A byte-for-byte copy of a 4 GB image holding
300 MB of data would allocate the full 4 GB on the destination, so every
copy in the pipeline goes through these helpers instead of shutil.copy.

Data regions are found with SEEK_DATA/SEEK_HOLE where the filesystem
supports it; otherwise the whole file is read and all-zero chunks are
skipped. Files are processed in fixed-size chunks and never loaded whole.
"""

from __future__ import annotations

import errno
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from image_provisioner.logging import get_logger

from .exceptions import IoError


log = get_logger(source="sparse", tags=["sparse", "storage"])

CHUNK_SIZE = 4 * 1024 * 1024


@dataclass(frozen=True)
class SparseCopyResult:
    logical_size: int
    bytes_written: int


def allocated_bytes(path: Path) -> int:
    """Bytes actually allocated on disk for ``path``."""
    return os.stat(path).st_blocks * 512


def _supports_seek_data(fd: int) -> bool:
    if not hasattr(os, "SEEK_DATA"):
        return False
    try:
        os.lseek(fd, 0, os.SEEK_DATA)
    except OSError as e:
        # ENXIO: supported, the file simply has no data at all
        return e.errno == errno.ENXIO
    return True


def _data_extents(fd: int, start: int, end: int) -> Iterator[tuple[int, int]]:
    """Yield (offset, length) for data regions of ``fd`` within [start, end)."""
    if not _supports_seek_data(fd):
        if end > start:
            yield start, end - start
        return
    offset = start
    while offset < end:
        try:
            data = os.lseek(fd, offset, os.SEEK_DATA)
        except OSError as e:
            if e.errno == errno.ENXIO:
                return
            raise
        if data >= end:
            return
        hole = min(os.lseek(fd, data, os.SEEK_HOLE), end)
        yield data, hole - data
        offset = hole


def _is_zero(chunk: bytes) -> bool:
    return chunk.count(0) == len(chunk)


def _pwrite_all(fd: int, data: bytes, offset: int) -> None:
    view = memoryview(data)
    pos = 0
    while pos < len(view):
        pos += os.pwrite(fd, view[pos:], offset + pos)


def _zero_fill(fd: int, offset: int, length: int, chunk_size: int) -> int:
    """Zero [offset, offset + length) of ``fd``, skipping already-zero chunks."""
    written = 0
    while length > 0:
        size = min(chunk_size, length)
        existing = os.pread(fd, size, offset)
        if existing and not _is_zero(existing):
            _pwrite_all(fd, bytes(len(existing)), offset)
            written += len(existing)
        offset += size
        length -= size
    return written


def _copy_data(
    src_fd: int,
    dst_fd: int,
    src_offset: int,
    length: int,
    dst_offset: int,
    *,
    fresh_destination: bool,
    chunk_size: int,
) -> int:
    written = 0
    while length > 0:
        chunk = os.pread(src_fd, min(chunk_size, length), src_offset)
        if not chunk:
            break
        if _is_zero(chunk):
            if not fresh_destination:
                written += _zero_fill(dst_fd, dst_offset, len(chunk), chunk_size)
        else:
            _pwrite_all(dst_fd, chunk, dst_offset)
            written += len(chunk)
        src_offset += len(chunk)
        dst_offset += len(chunk)
        length -= len(chunk)
    return written


def _copy_region(
    src_fd: int,
    dst_fd: int,
    src_start: int,
    length: int,
    dst_start: int,
    *,
    fresh_destination: bool,
    chunk_size: int,
) -> int:
    """Copy a region, leaving source holes as holes (or zeros) in the destination.

    With ``fresh_destination`` the destination range is known to read as
    zeros, so holes and zero chunks are skipped outright. Otherwise they are
    explicitly zeroed where the destination holds other data.
    """
    end = src_start + length
    cursor = src_start
    written = 0
    for data_offset, data_length in _data_extents(src_fd, src_start, end):
        if not fresh_destination and data_offset > cursor:
            written += _zero_fill(
                dst_fd, dst_start + (cursor - src_start), data_offset - cursor, chunk_size
            )
        written += _copy_data(
            src_fd,
            dst_fd,
            data_offset,
            data_length,
            dst_start + (data_offset - src_start),
            fresh_destination=fresh_destination,
            chunk_size=chunk_size,
        )
        cursor = data_offset + data_length
    if not fresh_destination and cursor < end:
        written += _zero_fill(
            dst_fd, dst_start + (cursor - src_start), end - cursor, chunk_size
        )
    return written


def copy_sparse(src: Path, dst: Path, *, chunk_size: int = CHUNK_SIZE) -> SparseCopyResult:
    """Copy ``src`` to ``dst`` preserving holes.

    ``dst`` is created or truncated. The source is opened read-only.

    Raises:
        IoError: If either file cannot be opened, read, or written
    """
    src, dst = Path(src), Path(dst)
    try:
        src_fd = os.open(src, os.O_RDONLY)
        try:
            size = os.fstat(src_fd).st_size
            dst_fd = os.open(dst, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
            try:
                written = _copy_region(
                    src_fd, dst_fd, 0, size, 0,
                    fresh_destination=True, chunk_size=chunk_size,
                )
                os.ftruncate(dst_fd, size)
            finally:
                os.close(dst_fd)
        finally:
            os.close(src_fd)
    except OSError as e:
        raise IoError("copy_sparse", src, f"to {dst}: {e}") from e
    log.debug(f"Sparse copy {src} -> {dst}: {written} of {size} bytes written")
    return SparseCopyResult(logical_size=size, bytes_written=written)


def copy_range_sparse(
    src: Path, dst: Path, offset: int, length: int, *, chunk_size: int = CHUNK_SIZE
) -> SparseCopyResult:
    """Extract ``length`` bytes of ``src`` starting at ``offset`` into a new file."""
    src, dst = Path(src), Path(dst)
    try:
        src_fd = os.open(src, os.O_RDONLY)
        try:
            size = os.fstat(src_fd).st_size
            if offset < 0 or length < 0 or offset + length > size:
                raise IoError(
                    "copy_range_sparse",
                    src,
                    f"range {offset}+{length} exceeds file size {size}",
                )
            dst_fd = os.open(dst, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
            try:
                written = _copy_region(
                    src_fd, dst_fd, offset, length, 0,
                    fresh_destination=True, chunk_size=chunk_size,
                )
                os.ftruncate(dst_fd, length)
            finally:
                os.close(dst_fd)
        finally:
            os.close(src_fd)
    except OSError as e:
        raise IoError("copy_range_sparse", src, f"to {dst}: {e}") from e
    return SparseCopyResult(logical_size=length, bytes_written=written)


def write_range_sparse(
    src: Path, dst: Path, offset: int, *, chunk_size: int = CHUNK_SIZE
) -> SparseCopyResult:
    """Write the whole of ``src`` into the existing file ``dst`` at ``offset``.

    The destination is not truncated; bytes outside the range are untouched.
    """
    src, dst = Path(src), Path(dst)
    try:
        src_fd = os.open(src, os.O_RDONLY)
        try:
            length = os.fstat(src_fd).st_size
            dst_fd = os.open(dst, os.O_RDWR)
            try:
                dst_size = os.fstat(dst_fd).st_size
                if offset < 0 or offset + length > dst_size:
                    raise IoError(
                        "write_range_sparse",
                        dst,
                        f"range {offset}+{length} exceeds file size {dst_size}",
                    )
                written = _copy_region(
                    src_fd, dst_fd, 0, length, offset,
                    fresh_destination=False, chunk_size=chunk_size,
                )
            finally:
                os.close(dst_fd)
        finally:
            os.close(src_fd)
    except OSError as e:
        raise IoError("write_range_sparse", src, f"to {dst}: {e}") from e
    return SparseCopyResult(logical_size=length, bytes_written=written)
