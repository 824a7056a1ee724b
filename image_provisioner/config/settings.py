"""Settings storage for process-level configuration.

Values here are read at the command boundary and passed into the pipeline
explicitly; the pipeline itself never consults the environment.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional


SETTINGS_PATH = Path(
    os.environ.get(
        "IMAGE_PROVISIONER_SETTINGS_PATH",
        Path.home() / ".config" / "image-provisioner" / "settings.json",
    )
)

CONTAINERIZED_ENV = "CONTAINERIZED"
TMP_DIR_ENV = "IMAGE_PROVISIONER_TMP_DIR"

DEFAULT_SETTINGS: dict[str, Any] = {
    "tmp_dir": None,
    "bmap_tool": "bmaptool",
    "prefer_parallel_tools": True,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings(path: Optional[Path] = None) -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    path = path or SETTINGS_PATH
    if not path.exists():
        return
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def get_bool(key: str, default: bool = False) -> bool:
    return bool(get_setting(key, default))


def is_containerized(environ: Optional[Mapping[str, str]] = None) -> bool:
    """Return True when the CONTAINERIZED flag is set to "true" or "1"."""
    environ = os.environ if environ is None else environ
    return environ.get(CONTAINERIZED_ENV, "") in ("true", "1")


def get_tmp_root(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Resolve the directory under which staging workspaces are created.

    Precedence: environment override, settings file, system temp dir.
    """
    environ = os.environ if environ is None else environ
    override = environ.get(TMP_DIR_ENV) or get_setting("tmp_dir")
    if override:
        return Path(override)
    return Path(tempfile.gettempdir())


load_settings()
