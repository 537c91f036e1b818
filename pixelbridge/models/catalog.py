"""Catalog record models."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass
class PlatformRecord:
    """Gaming platform — stored in catalog.json."""

    id: int
    short_name: str  # e.g. "snes"; key into the core / playlist tables
    name: str  # e.g. "Super Nintendo Entertainment System"


@dataclass
class RomRecord:
    """ROM file record — stored in catalog.json."""

    id: int
    title: str
    platform_id: int
    file_name: str
    file_path: str
    file_hash: str = ""  # SHA-256 of the file contents
    file_size: int = 0
    added_at: str = ""

    @property
    def stem(self) -> str:
        return Path(self.file_name).stem


@dataclass
class SyncTarget:
    """A catalog ROM resolved for one sync run."""

    id: int
    title: str
    platform_id: int
    platform_short_name: str
    platform_name: str
    core_directory_name: str | None  # None when the platform has no core mapping
    file_content_hash: str
    local_file_path: str
    device_file_name: str

    @property
    def device_base_name(self) -> str:
        """Device file name without extension — prefix of its save files."""
        return Path(self.device_file_name).stem
