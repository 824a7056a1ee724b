"""Transactional image mutation pipeline.

Every image-changing command runs through ``run_image_command``: the source
image is staged into a private workspace (decompressed if necessary), a
single mutation is applied to the staged copy, and only then are the block
map and the (optionally recompressed) image written to their destinations.
The workspace is removed on every exit path.

Usage:
    from image_provisioner.pipeline import run_image_command

    result = run_image_command(
        Path("image.wic.gz"),
        PipelineOptions(target_compression=Compression.XZ),
        lambda staged: inject_files(staged),
    )
    # result.image == Path("image.wic.xz")
"""

from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Optional

from image_provisioner.domain.models import Mutation, PipelineOptions, PipelineResult
from image_provisioner.logging import new_job_id, operation_context
from image_provisioner.storage import compression
from image_provisioner.storage.bmap import generate_bmap
from image_provisioner.storage.exceptions import (
    ImageNotFoundError,
    IoError,
    MutationError,
    PreconditionError,
    ProvisionError,
)
from image_provisioner.storage.sparse import copy_sparse
from image_provisioner.storage.workspace import Workspace


def check_preconditions(image: Path, options: PipelineOptions) -> None:
    """Validate inputs before anything touches the filesystem.

    Raises:
        PreconditionError: Invalid option combination
        ImageNotFoundError: Source image is missing
    """
    if options.containerized and options.generate_bmap:
        raise PreconditionError(
            "generating bmap file is not supported in containerized environments."
        )
    if not options.write_image and (options.generate_bmap or options.target_compression):
        raise PreconditionError(
            "bmap generation and compression require the image to be written back."
        )
    if not image.exists():
        raise ImageNotFoundError(image)
    if image.is_dir():
        raise PreconditionError(f"image path is a directory {image}")
    if not os.access(image, os.R_OK):
        raise IoError("read_image", image, "permission denied")


def install_artifact(staged: Path, destination: Path) -> Path:
    """Copy ``staged`` to ``destination`` via a temporary sibling and rename.

    An interrupted copy leaves the previous destination (if any) intact.
    """
    partial = destination.with_name(f".{destination.name}.{uuid.uuid4().hex[:8]}.partial")
    try:
        copy_sparse(staged, partial)
        os.replace(partial, destination)
    except OSError as e:
        partial.unlink(missing_ok=True)
        raise IoError("install_artifact", destination, str(e)) from e
    except ProvisionError:
        partial.unlink(missing_ok=True)
        raise
    return destination


def _stage_image(image: Path, ws: Workspace) -> tuple[Path, Path]:
    """Copy the source into the workspace in plain form.

    Returns:
        (staged plain image path, destination image path)
    """
    staged = ws.path_for(image.name)
    copy_sparse(image, staged)
    source_codec = compression.detect(image)
    if source_codec is None:
        return staged, image
    staged = compression.decompress(staged, source_codec)
    return staged, compression.decompressed_path(image, source_codec)


def _apply_mutation(mutation: Mutation, staged: Path) -> None:
    try:
        result = mutation(staged)
    except Exception as e:
        raise MutationError(staged, str(e)) from e
    if result is False:
        raise MutationError(staged, "mutation reported failure")
    if not staged.is_file():
        raise MutationError(staged, "staged image was removed by the mutation")


def run_image_command(
    image: Path,
    options: Optional[PipelineOptions],
    mutation: Mutation,
) -> PipelineResult:
    """Apply ``mutation`` to a staged copy of ``image`` and write the results.

    Steps: stage (sparse copy, decompress), mutate, generate bmap, compress,
    copy back. Nothing is written outside the workspace until the mutation
    has succeeded. No step is retried.

    Args:
        image: Source image; plain or .gz/.xz/.zst/.bz2 compressed
        options: Bmap/compression/environment options
        mutation: Callable receiving the staged plain image path

    Returns:
        PipelineResult with the written image and bmap paths

    Raises:
        PreconditionError, ImageNotFoundError: Before any filesystem change
        IoError, CodecError, BmapError, MutationError: During the run
    """
    image = Path(image)
    options = options or PipelineOptions()
    check_preconditions(image, options)

    job_id = new_job_id("provision")
    with operation_context("provision", job_id=job_id, image=str(image)) as log:
        with Workspace.acquire(options.tmp_root) as ws:
            log.debug(f"Staging {image} into {ws.path}")
            staged, dest_image = _stage_image(image, ws)

            log.debug(f"Running mutation on {staged.name}")
            _apply_mutation(mutation, staged)

            bmap_dest = None
            if options.generate_bmap:
                tmp_bmap = generate_bmap(staged)
                bmap_dest = install_artifact(tmp_bmap, dest_image.parent / tmp_bmap.name)
                log.info(f"Wrote block map {bmap_dest}")

            image_dest = None
            if options.write_image:
                if options.target_compression is not None:
                    staged = compression.compress(staged, options.target_compression)
                    dest_image = dest_image.with_name(staged.name)
                image_dest = install_artifact(staged, dest_image)
                log.info(f"Wrote image {image_dest}")

            return PipelineResult(image=image_dest, bmap=bmap_dest, workspace=ws.path)
