"""Block map (.bmap) generation via bmaptool."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from image_provisioner.config import settings
from image_provisioner.logging import get_logger

from .command_runners import find_tool, run_checked_command
from .exceptions import BmapError


log = get_logger(source="bmap", tags=["bmap", "storage"])


def bmap_path_for(image_path: Path) -> Path:
    """``image.wic`` -> ``image.wic.bmap`` in the same directory."""
    image_path = Path(image_path)
    return image_path.with_name(f"{image_path.name}.bmap")


def generate_bmap(image_path: Path, bmap_tool: Optional[str] = None) -> Path:
    """Scan a plain image and write ``<image>.bmap`` beside it.

    Args:
        image_path: Plain (uncompressed) image
        bmap_tool: Tool name or path; defaults to the ``bmap_tool`` setting

    Returns:
        Path of the generated block map

    Raises:
        BmapError: If bmaptool is missing or fails
    """
    image_path = Path(image_path)
    tool = find_tool(bmap_tool or settings.get_setting("bmap_tool", "bmaptool"))
    if not tool:
        raise BmapError(image_path, "bmaptool not found")
    output = bmap_path_for(image_path)
    log.info(f"Generating block map for {image_path.name}")
    try:
        run_checked_command([tool, "create", "-o", str(output), str(image_path)])
    except (OSError, RuntimeError) as e:
        raise BmapError(image_path, str(e)) from e
    if not output.exists():
        raise BmapError(image_path, f"{output} was not created")
    return output
