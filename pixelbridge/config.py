"""Application configuration — config.json in the data directory, plus device settings resolution."""

from __future__ import annotations

import copy
import json
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

from loguru import logger

_instance: "Config | None" = None

# Default data directory
_DEFAULT_DATA_DIR = Path.home() / "Documents" / "PixelBridge"

# Built-in device address, used when neither config nor environment has one
DEFAULT_DEVICE_HOST = "192.168.6.125"
DEFAULT_DEVICE_PORT = 80

ENV_DEVICE_HOST = "PIXELBRIDGE_DEVICE_HOST"
ENV_DEVICE_PORT = "PIXELBRIDGE_DEVICE_PORT"


def get_config() -> Config:
    """Module-level factory — single global Config instance."""
    global _instance
    if _instance is None:
        _instance = Config()
    return _instance


def reset_config() -> None:
    """Reset the global config instance (for testing)."""
    global _instance
    _instance = None


@dataclass(frozen=True)
class DeviceSettings:
    """Device connection parameters, resolved once per sync run."""

    host: str = DEFAULT_DEVICE_HOST
    port: int = DEFAULT_DEVICE_PORT
    request_delay: float = 1.0
    timeout: float = 10.0
    upload_timeout: float = 120.0
    download_timeout: float = 60.0
    rom_directory: str = "downloads"
    playlist_directory: str = "playlists"
    rom_path_prefix: str = "~/Library/Caches/RetroArch/downloads/"

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


_DEVICE_DEFAULTS = DeviceSettings()

# Device keys holding seconds; bad values fall back to the DeviceSettings default
_DEVICE_FLOATS = ("request_delay", "timeout", "upload_timeout", "download_timeout")


def _merged(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """New dict with override laid over base, nested dicts merged key by key."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = _merged(result[key], value)
        else:
            result[key] = value
    return result


class Config:
    """JSON-backed settings with atomic writes and batched saving."""

    _DEFAULTS: dict[str, Any] = {
        "backup_path": "",
        "catalog_path": "",
        "device": {
            "host": "",
            "port": "",
            "request_delay": _DEVICE_DEFAULTS.request_delay,
            "timeout": _DEVICE_DEFAULTS.timeout,
            "upload_timeout": _DEVICE_DEFAULTS.upload_timeout,
            "download_timeout": _DEVICE_DEFAULTS.download_timeout,
            "rom_directory": _DEVICE_DEFAULTS.rom_directory,
            "playlist_directory": _DEVICE_DEFAULTS.playlist_directory,
            "rom_path_prefix": _DEVICE_DEFAULTS.rom_path_prefix,
        },
    }

    def __init__(self, data_dir: Path | None = None) -> None:
        self._dir = Path(data_dir) if data_dir else _DEFAULT_DATA_DIR
        self._path = self._dir / "config.json"
        self._lock = threading.Lock()
        self._batch_depth = 0
        self._data = self._read()

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return copy.deepcopy(self._DEFAULTS)
        try:
            with open(self._path, encoding="utf-8") as f:
                stored = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Unreadable config {self._path}, using defaults: {e}")
            return copy.deepcopy(self._DEFAULTS)
        if not isinstance(stored, dict):
            logger.warning(f"Ignoring config {self._path}: top level is not an object")
            return copy.deepcopy(self._DEFAULTS)
        return _merged(self._DEFAULTS, stored)

    def _write(self) -> None:
        """Write config.json via a temp file; skipped inside batch_update()."""
        if self._batch_depth:
            return
        with self._lock:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_name(self._path.name + ".tmp")
            try:
                with open(tmp, "w", encoding="utf-8") as f:
                    json.dump(self._data, f, ensure_ascii=False, indent=2)
                tmp.replace(self._path)
            except OSError as e:
                logger.error(f"Failed to save config: {e}")
                tmp.unlink(missing_ok=True)

    @contextmanager
    def batch_update(self) -> Iterator[None]:
        """Group several set() calls into one write. Nested batches write once, at the outermost exit."""
        self._batch_depth += 1
        try:
            yield
        finally:
            self._batch_depth -= 1
            self._write()

    # ── Generic access ──

    def get(self, key: str, default: Any = None) -> Any:
        """Value at a dot-separated key path, e.g. ``device.host``."""
        node: Any = self._data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        """Set the value at a dot-separated key path, creating sections as needed."""
        *sections, leaf = key.split(".")
        node = self._data
        for part in sections:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[leaf] = value
        self._write()

    # ── Typed properties ──

    @property
    def data_dir(self) -> Path:
        return self._dir

    @property
    def backup_path(self) -> Path:
        raw = self.get("backup_path")
        return Path(raw) if raw else self._dir / "saves"

    @backup_path.setter
    def backup_path(self, value: Path | None) -> None:
        self.set("backup_path", str(value) if value else "")

    @property
    def catalog_path(self) -> Path:
        raw = self.get("catalog_path")
        return Path(raw) if raw else self._dir / "catalog.json"

    @property
    def device_config(self) -> dict[str, Any]:
        return self.get("device", {})

    def set_device(self, host: str, port: int | None = None) -> None:
        """Persist a new device address."""
        with self.batch_update():
            self.set("device.host", host)
            self.set("device.port", port if port is not None else "")

    def device_settings(self) -> DeviceSettings:
        """
        Resolve the device connection settings.

        Host and port come from the persisted config, then the environment,
        then the built-in defaults. Call once per sync and pass the result on.
        """
        device = self.device_config
        host = device.get("host") or os.environ.get(ENV_DEVICE_HOST) or DEFAULT_DEVICE_HOST
        raw_port = device.get("port") or os.environ.get(ENV_DEVICE_PORT) or DEFAULT_DEVICE_PORT
        try:
            port = int(raw_port)
        except (TypeError, ValueError):
            logger.warning(f"Invalid device port {raw_port!r}, using {DEFAULT_DEVICE_PORT}")
            port = DEFAULT_DEVICE_PORT

        seconds: dict[str, float] = {}
        for key in _DEVICE_FLOATS:
            fallback = getattr(_DEVICE_DEFAULTS, key)
            try:
                seconds[key] = max(0.0, float(device.get(key, fallback)))
            except (TypeError, ValueError):
                logger.warning(f"Invalid device.{key} {device.get(key)!r}, using {fallback}")
                seconds[key] = fallback

        return DeviceSettings(
            host=str(host),
            port=port,
            rom_directory=device.get("rom_directory") or _DEVICE_DEFAULTS.rom_directory,
            playlist_directory=device.get("playlist_directory") or _DEVICE_DEFAULTS.playlist_directory,
            rom_path_prefix=device.get("rom_path_prefix", _DEVICE_DEFAULTS.rom_path_prefix),
            **seconds,
        )
