"""Shared fixtures — an in-memory fake of the device's web file API."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Callable
from unittest.mock import MagicMock
from urllib.parse import parse_qs

import httpx
import pytest

from pixelbridge.config import DeviceSettings
from pixelbridge.core.backup import SaveBackupStore
from pixelbridge.core.remote_storage import RemoteStorageClient
from pixelbridge.data.catalog import Catalog


def _norm(path: str) -> str:
    return path.strip().strip("/")


def _parent(path: str) -> str:
    return path.rsplit("/", 1)[0] if "/" in path else ""


class FakeDevice:
    """
    Stateful fake of the device file API, quirks included:

    - /create on an existing directory makes "name (1)", "name (2)", ...
    - deleting the last file of a directory removes the directory
    - directory entries use a different "is directory" signal each time
    - paths in ``unreachable`` refuse connections, ``offline`` refuses all
    """

    def __init__(self, dirs: tuple[str, ...] = ("downloads", "playlists", "saves", "states")) -> None:
        self.dirs: set[str] = set(dirs)
        self.files: dict[str, bytes] = {}
        self.calls: list[tuple[str, str, str]] = []  # (method, endpoint, path)
        self.unreachable: set[str] = set()
        self.failures: dict[tuple[str, str], int] = {}  # (endpoint, path) → status
        self.offline = False
        self.vanish_empty_dirs = True
        self.on_delete: Callable[[str], None] | None = None

    # ── Setup / inspection helpers ──

    def add_dir(self, path: str) -> None:
        path = _norm(path)
        while path:
            self.dirs.add(path)
            path = _parent(path)

    def add_file(self, path: str, data: bytes = b"data") -> None:
        path = _norm(path)
        self.add_dir(_parent(path))
        self.files[path] = data

    def names_in(self, directory: str) -> list[str]:
        directory = _norm(directory)
        return sorted(p.rsplit("/", 1)[-1] for p in self.files if _parent(p) == directory)

    def subdirs_of(self, directory: str) -> list[str]:
        directory = _norm(directory)
        return sorted(d.rsplit("/", 1)[-1] for d in self.dirs if _parent(d) == directory and d)

    def count(self, endpoint: str, path: str | None = None) -> int:
        return sum(
            1
            for _, ep, p in self.calls
            if ep == endpoint and (path is None or _norm(p) == _norm(path))
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # ── Request handling ──

    def handle(self, request: httpx.Request) -> httpx.Response:
        endpoint = request.url.path
        if request.method == "GET":
            raw_path = request.url.params.get("path", "")
            fields: dict[str, str] = {}
            uploads: list[tuple[str, bytes]] = []
        elif endpoint == "/upload":
            fields, uploads = _parse_multipart(request)
            raw_path = fields.get("path", "")
        else:
            form = parse_qs(request.content.decode())
            raw_path = form.get("path", [""])[0]
            uploads = []
        self.calls.append((request.method, endpoint, raw_path))

        path = _norm(raw_path)
        if self.offline or (endpoint in ("/list", "/download") and path in self.unreachable):
            raise httpx.ConnectError("Connection refused", request=request)
        if (endpoint, path) in self.failures:
            return httpx.Response(self.failures[(endpoint, path)])

        if endpoint == "/":
            return httpx.Response(200, text="RetroArch")
        if endpoint == "/list":
            return self._list(path)
        if endpoint == "/create":
            return self._create(path)
        if endpoint == "/delete":
            return self._delete(path)
        if endpoint == "/upload":
            return self._upload(path, uploads)
        if endpoint == "/download":
            if path not in self.files:
                return httpx.Response(404)
            return httpx.Response(200, content=self.files[path])
        return httpx.Response(404)

    def _list(self, path: str) -> httpx.Response:
        if path and path not in self.dirs:
            return httpx.Response(404, text="Not found")
        items: list[dict[str, Any]] = []
        for i, name in enumerate(self.subdirs_of(path)):
            # Rotate through the inconsistent directory signals
            if i % 3 == 0:
                items.append({"name": name, "isDirectory": True})
            elif i % 3 == 1:
                items.append({"name": name, "type": "directory"})
            else:
                items.append({"name": f"{name}/"})
        for name in self.names_in(path):
            full = f"{path}/{name}" if path else name
            items.append({"name": name, "path": f"/{full}", "size": len(self.files[full])})
        return httpx.Response(200, json=items)

    def _create(self, path: str) -> httpx.Response:
        if path in self.dirs:
            n = 1
            while f"{path} ({n})" in self.dirs:
                n += 1
            self.dirs.add(f"{path} ({n})")
        else:
            self.add_dir(path)
        return httpx.Response(200)

    def _delete(self, path: str) -> httpx.Response:
        if path in self.files:
            del self.files[path]
            parent = _parent(path)
            if self.vanish_empty_dirs and parent and not self.names_in(parent) and not self.subdirs_of(parent):
                self.dirs.discard(parent)
        elif path in self.dirs:
            self.dirs = {d for d in self.dirs if d != path and not d.startswith(f"{path}/")}
            self.files = {f: v for f, v in self.files.items() if not f.startswith(f"{path}/")}
        else:
            return httpx.Response(404)
        if self.on_delete:
            self.on_delete(path)
        return httpx.Response(200)

    def _upload(self, directory: str, uploads: list[tuple[str, bytes]]) -> httpx.Response:
        if directory not in self.dirs:
            return httpx.Response(500, text="No such directory")
        for filename, data in uploads:
            self.files[f"{directory}/{filename}"] = data
        return httpx.Response(200, json={"ok": True})


def _parse_multipart(request: httpx.Request) -> tuple[dict[str, str], list[tuple[str, bytes]]]:
    boundary = request.headers["content-type"].split("boundary=", 1)[1].strip('"').encode()
    fields: dict[str, str] = {}
    uploads: list[tuple[str, bytes]] = []
    for part in request.content.split(b"--" + boundary):
        if part.startswith(b"\r\n"):
            part = part[2:]
        if part.endswith(b"\r\n"):
            part = part[:-2]
        if not part or part.startswith(b"--"):
            continue
        head, _, body = part.partition(b"\r\n\r\n")
        headers = head.decode()
        name = re.search(r'\bname="([^"]*)"', headers)
        filename = re.search(r'\bfilename="([^"]*)"', headers)
        if filename:
            uploads.append((filename.group(1), body))
        elif name:
            fields[name.group(1)] = body.decode()
    return fields, uploads


# ── Fixtures ──


@pytest.fixture
def device() -> FakeDevice:
    return FakeDevice()


@pytest.fixture
def settings() -> DeviceSettings:
    return DeviceSettings(host="retroarch.test", port=80, request_delay=0.0)


@pytest.fixture
def client(device: FakeDevice, settings: DeviceSettings) -> RemoteStorageClient:
    return RemoteStorageClient(settings, transport=device.transport)


@pytest.fixture
def store(tmp_path: Path, client: RemoteStorageClient) -> SaveBackupStore:
    return SaveBackupStore(tmp_path / "backups", client)


@pytest.fixture
def tmp_config(tmp_path: Path, settings: DeviceSettings):
    """Create a mock Config pointing to a temp directory."""
    config = MagicMock()
    config.data_dir = tmp_path
    config.backup_path = tmp_path / "backups"
    config.device_settings.return_value = settings
    return config


@pytest.fixture
def make_catalog(tmp_path: Path) -> Callable[..., Catalog]:
    """Write a catalog.json from plain dicts and load it."""

    def _make(platforms: list[dict], roms: list[dict], name: str = "catalog.json") -> Catalog:
        path = tmp_path / name
        data = {
            "version": 1,
            "platforms": {str(p["id"]): p for p in platforms},
            "roms": {str(r["id"]): r for r in roms},
        }
        path.write_text(json.dumps(data), encoding="utf-8")
        catalog = Catalog(path)
        catalog.load()
        return catalog

    return _make
