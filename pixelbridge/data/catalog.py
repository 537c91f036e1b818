"""ROM catalog — JSON-based store of platforms and ROM files."""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from pixelbridge.errors import CatalogNotFound, StoreUnavailable
from pixelbridge.models.catalog import PlatformRecord, RomRecord
from pixelbridge.utils import file_hash


class CatalogGateway(Protocol):
    """Read-only catalog interface used by the sync orchestrator."""

    def get_by_id(self, rom_id: int) -> RomRecord: ...

    def get_all(self, filters: dict[str, Any] | None = None) -> list[RomRecord]: ...

    def get_platform_by_id(self, platform_id: int) -> PlatformRecord: ...

    def find_by_file_name(self, file_name: str) -> RomRecord | None: ...


class Catalog:
    """
    Catalog manager — reads/writes catalog.json. Implements CatalogGateway.

    Format: {"version": 1, "platforms": {id: {...}}, "roms": {id: {...}}}
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._platforms: dict[int, PlatformRecord] = {}
        self._roms: dict[int, RomRecord] = {}
        self._version = 1

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> None:
        """Load the catalog from disk. A missing file is an empty catalog."""
        self._platforms.clear()
        self._roms.clear()
        if not self._path.exists():
            return
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Failed to load catalog: {e}")
            raise StoreUnavailable(f"Cannot read catalog {self._path}: {e}") from e

        self._version = data.get("version", 1)
        for key, raw in data.get("platforms", {}).items():
            try:
                platform = PlatformRecord(**raw)
                self._platforms[platform.id] = platform
            except TypeError as e:
                logger.warning(f"Skipping malformed platform '{key}': {e}")
        for key, raw in data.get("roms", {}).items():
            try:
                rom = RomRecord(**raw)
                self._roms[rom.id] = rom
            except TypeError as e:
                logger.warning(f"Skipping malformed ROM entry '{key}': {e}")

    def save(self) -> None:
        """Persist the catalog to disk."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "version": self._version,
            "platforms": {str(pid): asdict(p) for pid, p in sorted(self._platforms.items())},
            "roms": {str(rid): asdict(r) for rid, r in sorted(self._roms.items())},
        }
        tmp = self._path.with_suffix(".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            tmp.replace(self._path)
        except OSError as e:
            logger.error(f"Failed to save catalog: {e}")
            tmp.unlink(missing_ok=True)
            raise StoreUnavailable(f"Cannot write catalog {self._path}: {e}") from e

    # ── Reads ──

    def get_by_id(self, rom_id: int) -> RomRecord:
        rom = self._roms.get(int(rom_id))
        if rom is None:
            raise CatalogNotFound(f"ROM {rom_id} not found")
        return rom

    def get_platform_by_id(self, platform_id: int) -> PlatformRecord:
        platform = self._platforms.get(int(platform_id))
        if platform is None:
            raise CatalogNotFound(f"Platform {platform_id} not found")
        return platform

    def get_all(self, filters: dict[str, Any] | None = None) -> list[RomRecord]:
        """
        ROMs matching all given filters, sorted by title.

        Supported filters: platform_id, search (title substring, any case),
        file_name, limit, offset.
        """
        filters = filters or {}
        roms = list(self._roms.values())

        if filters.get("platform_id") is not None:
            platform_id = int(filters["platform_id"])
            roms = [r for r in roms if r.platform_id == platform_id]
        if filters.get("search"):
            needle = str(filters["search"]).lower()
            roms = [r for r in roms if needle in r.title.lower()]
        if filters.get("file_name"):
            roms = [r for r in roms if r.file_name == filters["file_name"]]

        roms.sort(key=lambda r: (r.title.lower(), r.id))

        offset = int(filters.get("offset") or 0)
        limit = filters.get("limit")
        if limit is not None:
            return roms[offset : offset + int(limit)]
        return roms[offset:]

    def find_by_file_name(self, file_name: str) -> RomRecord | None:
        matches = self.get_all({"file_name": file_name})
        if len(matches) > 1:
            logger.warning(
                f"{len(matches)} catalog ROMs share file name {file_name}, using id {matches[0].id}"
            )
        return matches[0] if matches else None

    def find_by_hash(self, content_hash: str) -> list[RomRecord]:
        return [r for r in self._roms.values() if r.file_hash == content_hash]

    def platforms(self) -> list[PlatformRecord]:
        return sorted(self._platforms.values(), key=lambda p: p.name.lower())

    @property
    def count(self) -> int:
        return len(self._roms)

    # ── Writes ──

    def add_platform(self, short_name: str, name: str) -> PlatformRecord:
        """Add a platform, or return the existing one with the same short name."""
        for platform in self._platforms.values():
            if platform.short_name == short_name:
                return platform
        platform = PlatformRecord(
            id=max(self._platforms, default=0) + 1, short_name=short_name, name=name
        )
        self._platforms[platform.id] = platform
        return platform

    def add_rom(self, path: Path, platform_id: int, title: str | None = None) -> RomRecord:
        """Register a local ROM file, hashing its contents."""
        path = Path(path)
        self.get_platform_by_id(platform_id)
        if not path.is_file():
            raise FileNotFoundError(path)

        rom = RomRecord(
            id=max(self._roms, default=0) + 1,
            title=title or path.stem,
            platform_id=int(platform_id),
            file_name=path.name,
            file_path=str(path.resolve()),
            file_hash=file_hash(path),
            file_size=path.stat().st_size,
            added_at=datetime.now(tz=timezone.utc).isoformat(),
        )
        self._roms[rom.id] = rom
        logger.info(f"Added ROM {rom.id}: {rom.title} ({rom.file_name})")
        return rom

    def remove_rom(self, rom_id: int) -> None:
        self._roms.pop(int(rom_id), None)
