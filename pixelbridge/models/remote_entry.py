"""Device directory listing entries."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class SaveSubtree(StrEnum):
    """Top-level device directory a save file was found in."""

    SAVES = "saves"
    STATES = "states"


def is_directory_entry(item: dict[str, Any]) -> bool:
    """
    Decide whether a raw listing item describes a directory.

    The device is inconsistent about how it flags directories, so every
    signal is checked and any one of them is enough. Checked in order:

    1. an explicit boolean field (``isDirectory`` / ``is_directory`` / ``dir``)
    2. a ``type`` field of ``"directory"`` or ``"dir"``
    3. a ``path`` ending in ``/``
    4. a ``name`` ending in ``/``
    """
    for key in ("isDirectory", "is_directory", "dir"):
        if item.get(key) is True:
            return True
    if str(item.get("type", "")).lower() in ("directory", "dir"):
        return True
    if str(item.get("path", "")).endswith("/"):
        return True
    return str(item.get("name", "")).endswith("/")


@dataclass
class RemoteEntry:
    """One item from a device directory listing."""

    name: str
    is_directory: bool = False
    size: int = 0
    source_subtree: SaveSubtree | None = None  # set by the caller, never by the device

    @property
    def is_hidden(self) -> bool:
        return self.name.startswith(".")

    @property
    def is_special(self) -> bool:
        return self.name in ("", ".", "..")

    @classmethod
    def from_listing(
        cls, item: dict[str, Any], source_subtree: SaveSubtree | None = None
    ) -> RemoteEntry:
        """Build an entry from one raw listing item."""
        name = str(item.get("name", "")).rstrip("/")
        try:
            size = int(item.get("size") or 0)
        except (TypeError, ValueError):
            size = 0
        return cls(
            name=name,
            is_directory=is_directory_entry(item),
            size=size,
            source_subtree=source_subtree,
        )
