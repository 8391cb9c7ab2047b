"""Settings storage for imaging configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "VOLUME_IMAGER_SETTINGS_PATH",
        Path.home() / ".config" / "volume-imager" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_SCRATCH_MOUNTPOINT = "/mnt/img-mnt"
DEFAULT_EXCLUDES = ["/dev", "/media", "/mnt", "/proc", "/sys"]
DEFAULT_FILESYSTEM = "ext3"
DEFAULT_MTAB_PATH = "/etc/mtab"
DEFAULT_IMAGE_SIZE_MB = 10240

DEFAULT_SETTINGS: dict[str, Any] = {
    "scratch_mountpoint": DEFAULT_SCRATCH_MOUNTPOINT,
    "default_excludes": list(DEFAULT_EXCLUDES),
    "filesystem": DEFAULT_FILESYSTEM,
    "mtab_path": DEFAULT_MTAB_PATH,
    "image_size_mb": DEFAULT_IMAGE_SIZE_MB,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = {
        key: list(value) if isinstance(value, list) else value
        for key, value in DEFAULT_SETTINGS.items()
    }
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def save_settings() -> None:
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    SETTINGS_PATH.write_text(
        json.dumps(settings_store.values, indent=2, sort_keys=True),
        encoding="utf-8",
    )


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def set_setting(key: str, value: Any) -> None:
    settings_store.values[key] = value
    save_settings()


load_settings()
