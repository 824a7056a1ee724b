"""
Pytest configuration and shared fixtures for image-provisioner tests.

This module provides common fixtures and utilities used across all test modules.
"""

import errno
import json
import os
from pathlib import Path
from typing import Callable, Dict, List, Tuple
from unittest.mock import Mock

import pytest

from image_provisioner.config import settings


MIB = 1024 * 1024


@pytest.fixture(autouse=True)
def default_settings(tmp_path):
    """Isolate every test from the user's settings file."""
    settings.load_settings(tmp_path / "no-settings.json")
    yield settings.settings_store
    settings.load_settings(tmp_path / "no-settings.json")


# ==============================================================================
# Filesystem Helpers
# ==============================================================================


def make_sparse_file(path: Path, size: int, extents: List[Tuple[int, bytes]]) -> Path:
    """Create ``path`` with logical ``size``, holes everywhere except ``extents``."""
    with open(path, "wb") as f:
        f.truncate(size)
        for offset, data in extents:
            f.seek(offset)
            f.write(data)
    return path


def filesystem_supports_holes(directory: Path) -> bool:
    """Check whether files in ``directory`` can be sparse."""
    sample = directory / ".sparse-check"
    try:
        with open(sample, "wb") as f:
            f.truncate(16 * MIB)
        return os.stat(sample).st_blocks * 512 < MIB
    except OSError as e:
        if e.errno in (errno.EOPNOTSUPP, errno.ENOSPC):
            return False
        raise
    finally:
        sample.unlink(missing_ok=True)


# ==============================================================================
# Image Fixtures
# ==============================================================================


@pytest.fixture
def sparse_file() -> Callable[..., Path]:
    """Fixture exposing make_sparse_file(path, size, extents)."""
    return make_sparse_file


@pytest.fixture
def tmp_root(tmp_path) -> Path:
    """
    Fixture providing a private temporary root for workspaces.

    Tests assert on its contents to prove that no workspace leaks.
    """
    root = tmp_path / "tmp-root"
    root.mkdir()
    return root


@pytest.fixture
def images_dir(tmp_path) -> Path:
    directory = tmp_path / "images"
    directory.mkdir()
    return directory


@pytest.fixture
def sparse_image_factory(images_dir) -> Callable[..., Path]:
    """
    Fixture providing a factory for sparse test images.

    Returns:
        Callable(name, size, extents) -> Path
    """

    def factory(
        name: str = "image.wic",
        size: int = 8 * MIB,
        extents: List[Tuple[int, bytes]] = None,
    ) -> Path:
        if extents is None:
            extents = [(0, b"\x55\xaa" * 256), (4 * MIB, b"rootfs-data" * 100)]
        return make_sparse_file(images_dir / name, size, extents)

    return factory


@pytest.fixture
def plain_image(sparse_image_factory) -> Path:
    return sparse_image_factory()


@pytest.fixture
def require_sparse_fs(tmp_path):
    if not filesystem_supports_holes(tmp_path):
        pytest.skip("filesystem under tmp_path does not support sparse files")


# ==============================================================================
# Subprocess Mock Fixtures
# ==============================================================================


@pytest.fixture
def mock_subprocess_success(mocker) -> Mock:
    """
    Fixture providing a mock subprocess.run that always succeeds.

    Returns:
        Mock object for subprocess.run.
    """
    mock_result = Mock()
    mock_result.returncode = 0
    mock_result.stdout = ""
    mock_result.stderr = ""
    return mocker.patch("subprocess.run", return_value=mock_result)


@pytest.fixture
def mock_subprocess_run(mocker) -> Mock:
    """Fixture providing an unconfigured mock for subprocess.run."""
    return mocker.patch("subprocess.run")


# ==============================================================================
# Partition Table Fixtures
# ==============================================================================


@pytest.fixture
def sfdisk_table() -> Dict:
    """
    Fixture providing an sfdisk --json style partition table.

    Layout (512 byte sectors): boot p1, rootA p2, rootB p3, extended p4,
    factory p5, cert p6.
    """
    return {
        "partitiontable": {
            "label": "dos",
            "id": "0x12345678",
            "device": "image.wic",
            "unit": "sectors",
            "sectorsize": 512,
            "partitions": [
                {"node": "image.wic1", "start": 2048, "size": 2048, "type": "c", "bootable": True},
                {"node": "image.wic2", "start": 4096, "size": 4096, "type": "83"},
                {"node": "image.wic3", "start": 8192, "size": 4096, "type": "83"},
                {"node": "image.wic4", "start": 12288, "size": 4096, "type": "5"},
                {"node": "image.wic5", "start": 12800, "size": 1024, "type": "83"},
                {"node": "image.wic6", "start": 14336, "size": 1024, "type": "83"},
            ],
        }
    }


@pytest.fixture
def sfdisk_json(sfdisk_table) -> str:
    return json.dumps(sfdisk_table)
