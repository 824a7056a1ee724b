"""Domain models for image provisioning."""

from .models import (
    Compression,
    FileCopyFromParams,
    FileCopyToParams,
    Mutation,
    Partition,
    PipelineOptions,
    PipelineResult,
)

__all__ = [
    "Compression",
    "FileCopyFromParams",
    "FileCopyToParams",
    "Mutation",
    "Partition",
    "PipelineOptions",
    "PipelineResult",
]
