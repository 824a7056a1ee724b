"""Custom exceptions for image provisioning operations.

This module defines a hierarchy of exceptions for the image pipeline so that
callers can distinguish a missing image from a failed codec or a failed
mutation, and so that every message names the path and operation involved.

Exception Hierarchy:
    ProvisionError (base)
        ├── ImageNotFoundError
        ├── PreconditionError
        ├── IoError
        │   └── WorkspaceError
        ├── CodecError
        │   └── BmapError
        ├── MutationError
        └── PartitionError

Usage:
    from image_provisioner.storage.exceptions import ImageNotFoundError

    if not image.exists():
        raise ImageNotFoundError(image)
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

PathLike = Union[str, Path]


class ProvisionError(Exception):
    """Base exception for all provisioning operations."""


class ImageNotFoundError(ProvisionError):
    """Image (or another required input file) does not exist."""

    def __init__(self, path: PathLike, operation: str = "run_image_command"):
        self.path = Path(path)
        self.operation = operation
        super().__init__(f"{operation}: image doesn't exist {self.path}")


class PreconditionError(ProvisionError):
    """Invalid option combination or input rejected before any work starts."""

    def __init__(self, reason: str, operation: str = "run_image_command"):
        self.reason = reason
        self.operation = operation
        super().__init__(f"{operation}: {reason}")


class IoError(ProvisionError):
    """Filesystem operation (copy, read, write, mkdir) failed."""

    def __init__(self, operation: str, path: PathLike, reason: str = ""):
        self.operation = operation
        self.path = Path(path)
        self.reason = reason
        msg = f"{operation} failed for {self.path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class WorkspaceError(IoError):
    """Temporary staging directory could not be created."""


class CodecError(ProvisionError):
    """Compression or decompression of an image failed."""

    def __init__(
        self,
        operation: str,
        path: PathLike,
        codec: Optional[str] = None,
        reason: str = "",
    ):
        self.operation = operation
        self.path = Path(path)
        self.codec = codec
        self.reason = reason
        msg = f"{operation} failed for {self.path}"
        if codec:
            msg += f" ({codec})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class BmapError(CodecError):
    """Block map generation failed."""

    def __init__(self, path: PathLike, reason: str = ""):
        super().__init__("generate_bmap", path, codec=None, reason=reason)


class MutationError(ProvisionError):
    """The caller-supplied mutation failed on the staged image.

    The original exception is kept as ``__cause__``.
    """

    def __init__(self, path: PathLike, reason: str = ""):
        self.path = Path(path)
        self.reason = reason
        msg = f"mutation failed on {self.path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PartitionError(ProvisionError):
    """Partition lookup or partition-level file operation failed."""

    def __init__(self, image: PathLike, partition: str, reason: str):
        self.image = Path(image)
        self.partition = partition
        self.reason = reason
        super().__init__(f"partition {partition} of {self.image}: {reason}")
