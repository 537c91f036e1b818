"""Save backup store — device save/state files mirrored locally, keyed by ROM content hash.

Layout:
  {backup_root}/{content_hash}/
    ├── saves/      battery / SRAM files from /saves/{core}/
    ├── states/     savestates from /states/{core}/
    └── backup.json sidecar metadata (never uploaded)

Keys are content hashes rather than catalog ids: ids change when the
catalog is rebuilt, the hash of the ROM bytes does not.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from pixelbridge.errors import InvalidBackupKey, RemoteNotFound
from pixelbridge.models.backup_set import BackupInfo, BackupSet
from pixelbridge.models.remote_entry import RemoteEntry, SaveSubtree

if TYPE_CHECKING:
    from pixelbridge.core.remote_storage import RemoteStorageClient

_SIDECAR = "backup.json"


def _named_after(file_name: str, rom_base_name: str) -> bool:
    return file_name == rom_base_name or file_name.startswith(rom_base_name + ".")


class SaveBackupStore:
    """Content-hash keyed local mirror of device save and state files."""

    def __init__(self, root: Path, client: RemoteStorageClient) -> None:
        self._root = Path(root)
        self._client = client

    @property
    def root(self) -> Path:
        return self._root

    def key_dir(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key in (".", ".."):
            raise InvalidBackupKey(f"Invalid backup key: {key!r}")
        return self._root / key

    def _matching_entries(
        self, subtree: SaveSubtree, core: str, rom_base_name: str
    ) -> list[RemoteEntry]:
        """Files under /{subtree}/{core}/ named "{base}" or "{base}.*" ("mario2.srm" is not mario's)."""
        try:
            entries = self._client.list_directory(f"{subtree}/{core}", source_subtree=subtree)
        except RemoteNotFound:
            logger.debug(f"No /{subtree}/{core}/ directory on device")
            return []
        return [
            e
            for e in entries
            if not e.is_directory and not e.is_special and _named_after(e.name, rom_base_name)
        ]

    def backup(
        self,
        core: str,
        rom_base_name: str,
        key: str,
        title: str = "",
        device_file_name: str = "",
    ) -> list[str]:
        """
        Download a ROM's save and state files from the device into ``key``.

        Both subtrees are always created, even when one stays empty. Existing
        files with the same name are overwritten; files the device no longer
        has are kept. Returns the relative paths written ("saves/x.srm").
        """
        key_dir = self.key_dir(key)
        for subtree in SaveSubtree:
            (key_dir / subtree).mkdir(parents=True, exist_ok=True)

        # List both subtrees before downloading anything
        found: list[RemoteEntry] = []
        for subtree in SaveSubtree:
            found.extend(self._matching_entries(subtree, core, rom_base_name))

        written: list[str] = []
        for entry in found:
            subtree = entry.source_subtree or SaveSubtree.SAVES
            self._client.download_file(
                f"{subtree}/{core}/{entry.name}", key_dir / subtree / entry.name
            )
            written.append(f"{subtree}/{entry.name}")
            logger.info(f"Backed up {subtree}: {entry.name}")

        self._write_sidecar(key, core, title, device_file_name)
        return written

    def restore(self, core: str, key: str) -> list[str]:
        """
        Upload a key's backed-up files to /saves/{core}/ and /states/{core}/.

        No-op when the key has no backup. The remote core directory is only
        created (idempotently) for subtrees that actually hold files.
        Returns the relative paths uploaded.
        """
        key_dir = self.key_dir(key)
        if not key_dir.is_dir():
            return []

        restored: list[str] = []
        for subtree in SaveSubtree:
            files = self._local_files(key_dir / subtree)
            if not files:
                continue
            remote_dir = f"{subtree}/{core}"
            self._client.create_directory(remote_dir)
            for path in files:
                self._client.upload_file(path, remote_dir)
                restored.append(f"{subtree}/{path.name}")
                logger.info(f"Restored {subtree}: {path.name}")
        return restored

    @staticmethod
    def _local_files(directory: Path) -> list[Path]:
        if not directory.is_dir():
            return []
        return sorted(
            p for p in directory.iterdir() if p.is_file() and not p.name.endswith(".part")
        )

    # ── Queries ──

    def get(self, key: str) -> BackupSet | None:
        """The backup for a key, or None when it has no files at all."""
        key_dir = self.key_dir(key)
        if not key_dir.is_dir():
            return None
        backup_set = BackupSet(
            key=key,
            saves=[p.name for p in self._local_files(key_dir / SaveSubtree.SAVES)],
            states=[p.name for p in self._local_files(key_dir / SaveSubtree.STATES)],
        )
        if backup_set.is_empty:
            return None
        info = self._read_sidecar(key_dir)
        if info:
            backup_set.title = info.title
            backup_set.core = info.core
            backup_set.updated_at = info.updated_at
        return backup_set

    def has_backup(self, key: str) -> bool:
        return self.get(key) is not None

    def list_backups(self) -> list[BackupSet]:
        """All non-empty backups in the store, sorted by key."""
        if not self._root.is_dir():
            return []
        result = []
        for key_dir in sorted(self._root.iterdir()):
            if not key_dir.is_dir():
                continue
            backup_set = self.get(key_dir.name)
            if backup_set:
                result.append(backup_set)
        return result

    # ── Sidecar ──

    def _write_sidecar(self, key: str, core: str, title: str, device_file_name: str) -> None:
        key_dir = self.key_dir(key)
        info = BackupInfo(
            key=key,
            title=title,
            core=core,
            device_file_name=device_file_name,
            updated_at=datetime.now(tz=timezone.utc).isoformat(),
            saves=[p.name for p in self._local_files(key_dir / SaveSubtree.SAVES)],
            states=[p.name for p in self._local_files(key_dir / SaveSubtree.STATES)],
        )
        tmp = key_dir / (_SIDECAR + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(asdict(info), f, ensure_ascii=False, indent=2)
            tmp.replace(key_dir / _SIDECAR)
        except OSError as e:
            logger.warning(f"Failed to write backup metadata for {key}: {e}")
            tmp.unlink(missing_ok=True)

    @staticmethod
    def _read_sidecar(key_dir: Path) -> BackupInfo | None:
        path = key_dir / _SIDECAR
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return BackupInfo(**json.load(f))
        except (json.JSONDecodeError, OSError, TypeError) as e:
            logger.warning(f"Skipping malformed backup metadata: {path}: {e}")
            return None
