"""Remote storage client — defensive wrapper around the device's HTTP file API.

Device quirks handled here:
  - creating an existing directory makes a numbered duplicate ("downloads (1)")
    instead of failing, so creation is only attempted after a listing says 404
  - deleting the last file of a directory can delete the directory too, so
    clearing always ends by re-creating and re-listing the directory
  - the server is single-threaded and drops requests when flooded, so
    mutating calls are spaced by a FixedIntervalGate
  - endpoints disagree about leading slashes: list/create/delete/download
    want "/dir/", upload wants "dir/"
"""

from __future__ import annotations

from contextlib import nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any, Callable, Iterator

import httpx
from loguru import logger

from pixelbridge.config import DeviceSettings
from pixelbridge.core.rate_limit import CancelToken, FixedIntervalGate
from pixelbridge.errors import (
    ProtectedPathError,
    RemoteError,
    RemoteNotFound,
    RemoteRejected,
    RemoteUnavailable,
    SyncCancelled,
)
from pixelbridge.models.remote_entry import RemoteEntry, SaveSubtree

# Top-level directories that must never be the target of a delete
PROTECTED_DIRECTORIES = frozenset(
    {"", "downloads", "playlists", "saves", "states", "config", "system"}
)

# Save / state roots; ROM and playlist directory names come from DeviceSettings
SAVE_ROOTS = ("saves", "states")

_NOT_FOUND_CODES = (404, 410)


def _strip(path: str) -> str:
    return path.strip().strip("/")


def dir_path(path: str) -> str:
    """Directory path in list/create form: '/downloads/'."""
    stripped = _strip(path)
    return f"/{stripped}/" if stripped else "/"


def file_path(path: str) -> str:
    """File path in delete/download form: '/downloads/game.sfc'."""
    return f"/{_strip(path)}"


def upload_dir(path: str) -> str:
    """Directory path in upload form: 'downloads/'."""
    stripped = _strip(path)
    return f"{stripped}/" if stripped else ""


def is_protected(path: str) -> bool:
    return _strip(path).lower() in PROTECTED_DIRECTORIES


def critical_directories(settings: DeviceSettings) -> tuple[str, ...]:
    """Directories every sync expects to exist on the device."""
    return (settings.rom_directory, settings.playlist_directory, *SAVE_ROOTS)


@dataclass
class ConnectionStatus:
    online: bool
    url: str
    error: str = ""


@dataclass
class ClearResult:
    """Outcome of clearing one device directory."""

    directory: str
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    repaired: bool = False
    cancelled: bool = False


class RemoteStorageClient:
    """
    All device I/O goes through this class.

    The client is built per sync run from a DeviceSettings snapshot; every
    call opens its own httpx.Client against that snapshot's base URL.
    """

    def __init__(
        self,
        settings: DeviceSettings,
        gate: FixedIntervalGate | None = None,
        cancel: CancelToken | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._cancel = cancel
        self._gate = gate or FixedIntervalGate(settings.request_delay, cancel=cancel)
        self._transport = transport

    @property
    def settings(self) -> DeviceSettings:
        return self._settings

    @property
    def base_url(self) -> str:
        return self._settings.base_url

    def _http_client(self, timeout: float) -> httpx.Client:
        kwargs: dict[str, Any] = {"base_url": self._settings.base_url, "timeout": timeout}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.Client(**kwargs)

    def _check_cancel(self) -> None:
        if self._cancel is not None:
            self._cancel.raise_if_cancelled()

    def _request(
        self,
        method: str,
        endpoint: str,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue one request, translating transport failures to RemoteUnavailable."""
        self._check_cancel()
        try:
            with self._http_client(timeout or self._settings.timeout) as client:
                return client.request(method, endpoint, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteUnavailable(f"{method} {endpoint} timed out: {e}") from e
        except httpx.TransportError as e:
            raise RemoteUnavailable(f"{method} {endpoint} failed: {e}") from e

    @staticmethod
    def _raise_for_read(response: httpx.Response, what: str) -> None:
        """Status handling for list/download."""
        code = response.status_code
        if response.is_success:
            return
        if code in _NOT_FOUND_CODES:
            raise RemoteNotFound(f"{what}: not found on device")
        if code >= 500:
            raise RemoteUnavailable(f"{what}: device error {code}")
        raise RemoteRejected(f"{what}: device returned {code}", status_code=code)

    @staticmethod
    def _raise_for_write(response: httpx.Response, what: str) -> None:
        """Status handling for create/delete/upload."""
        if not response.is_success:
            raise RemoteRejected(
                f"{what}: device returned {response.status_code}",
                status_code=response.status_code,
            )

    # ── Reads ──

    def check_connection(self) -> ConnectionStatus:
        """Check whether the device web server answers."""
        url = self._settings.base_url
        try:
            response = self._request("GET", "/", timeout=5)
        except RemoteUnavailable as e:
            return ConnectionStatus(online=False, url=url, error=str(e))
        if response.status_code != 200:
            return ConnectionStatus(
                online=False, url=url, error=f"HTTP {response.status_code}"
            )
        return ConnectionStatus(online=True, url=url)

    def list_directory(
        self, path: str, source_subtree: SaveSubtree | None = None
    ) -> list[RemoteEntry]:
        """
        List one device directory.

        Raises RemoteNotFound when the device reports the directory absent
        (callers treat that as "needs creating"), RemoteUnavailable when it
        cannot be reached.
        """
        target = dir_path(path)
        response = self._request("GET", "/list", params={"path": target})
        self._raise_for_read(response, f"List {target}")
        try:
            items = response.json()
        except ValueError:
            logger.warning(f"Device returned a non-JSON listing for {target}")
            return []
        if not isinstance(items, list):
            return []
        entries = [
            RemoteEntry.from_listing(item, source_subtree)
            for item in items
            if isinstance(item, dict)
        ]
        logger.debug(f"Listed {target}: {len(entries)} entries")
        return entries

    def list_playlists(self) -> list[str]:
        """Names of all playlist files on the device."""
        try:
            entries = self.list_directory(self._settings.playlist_directory)
        except RemoteNotFound:
            return []
        return [e.name for e in entries if not e.is_directory and e.name.endswith(".lpl")]

    def download_file(self, remote_path: str, local_path: Path) -> Path:
        """Stream a device file to disk (via a .part file, replaced on completion)."""
        target = file_path(remote_path)
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        part = local_path.with_name(local_path.name + ".part")

        with self._gate.slot():
            self._check_cancel()
            try:
                with self._http_client(self._settings.download_timeout) as client:
                    with client.stream("GET", "/download", params={"path": target}) as response:
                        self._raise_for_read(response, f"Download {target}")
                        with open(part, "wb") as f:
                            for chunk in response.iter_bytes():
                                f.write(chunk)
            except httpx.TimeoutException as e:
                part.unlink(missing_ok=True)
                raise RemoteUnavailable(f"Download {target} timed out: {e}") from e
            except httpx.TransportError as e:
                part.unlink(missing_ok=True)
                raise RemoteUnavailable(f"Download {target} failed: {e}") from e
            except RemoteError:
                part.unlink(missing_ok=True)
                raise
            part.replace(local_path)

        logger.debug(f"Downloaded {target} → {local_path}")
        return local_path

    # ── Writes ──

    def create_directory(self, path: str) -> bool:
        """
        Create a device directory unless it already exists.

        Returns True when the directory was created, False when it already
        existed. Only a RemoteNotFound listing leads to a create call; an
        unreachable device is re-raised rather than taken as absence.
        """
        target = dir_path(path)
        try:
            self.list_directory(target)
            logger.debug(f"Directory already exists: {target}")
            return False
        except RemoteNotFound:
            pass

        with self._gate.slot():
            self._check_cancel()
            response = self._request("POST", "/create", data={"path": target})
            self._raise_for_write(response, f"Create {target}")
        logger.info(f"Created directory: {target}")
        return True

    def delete_file(self, path: str) -> None:
        """Delete a device file. Protected top-level directories are refused outright."""
        if is_protected(path):
            logger.critical(f"BLOCKED: attempted to delete protected directory: {path!r}")
            raise ProtectedPathError(f"Cannot delete protected directory: {path}")

        target = file_path(path)
        with self._gate.slot():
            self._check_cancel()
            response = self._request("POST", "/delete", data={"path": target})
            self._raise_for_write(response, f"Delete {target}")
        logger.debug(f"Deleted {target}")

    def _upload(
        self,
        payload: bytes | IO[bytes],
        remote_directory: str,
        filename: str,
        content_type: str,
    ) -> None:
        directory = upload_dir(remote_directory)
        with self._gate.slot():
            self._check_cancel()
            response = self._request(
                "POST",
                "/upload",
                timeout=self._settings.upload_timeout,
                files={"files[]": (filename, payload, content_type)},
                data={"path": directory},
                headers={"Accept": "application/json"},
            )
            self._raise_for_write(response, f"Upload {directory}{filename}")
        logger.debug(f"Uploaded {directory}{filename}")

    def upload_file(
        self,
        local_path: Path,
        remote_directory: str,
        filename: str | None = None,
        content_type: str = "application/octet-stream",
    ) -> None:
        """Upload a local file into a device directory (multipart)."""
        local_path = Path(local_path)
        with open(local_path, "rb") as f:
            self._upload(f, remote_directory, filename or local_path.name, content_type)

    def upload_bytes(
        self,
        data: bytes,
        remote_directory: str,
        filename: str,
        content_type: str = "application/octet-stream",
    ) -> None:
        """Upload in-memory bytes as a file into a device directory."""
        self._upload(data, remote_directory, filename, content_type)

    # ── Directory clearing ──

    def clear_directory(
        self,
        path: str,
        keep: Callable[[RemoteEntry], bool] | None = None,
    ) -> ClearResult:
        """
        Delete every non-hidden regular file in a directory.

        Directories, hidden files and entries accepted by ``keep`` are skipped.
        Listing and per-file failures are collected, not raised. Whatever
        happens, the directory is then re-created (the device may drop a
        directory with its last file) and re-listed; ``repaired`` tells whether
        that check passed. Cancellation stops the deletions but not the
        repair, and is reported through ``cancelled``.
        """
        target = dir_path(path)
        result = ClearResult(directory=target)
        try:
            for entry in self._clearable(target, result):
                if keep is not None and keep(entry):
                    result.skipped.append(entry.name)
                    continue
                try:
                    self.delete_file(f"{target}{entry.name}")
                    result.deleted.append(entry.name)
                    logger.info(f"Deleted: {target}{entry.name}")
                except ProtectedPathError as e:
                    result.failed.append(entry.name)
                    result.errors.append(str(e))
                except RemoteError as e:
                    result.failed.append(entry.name)
                    result.errors.append(f"Failed to delete {entry.name}: {e}")
                    logger.error(f"Failed to delete {target}{entry.name}: {e}")
        except SyncCancelled:
            logger.warning(f"Clearing {target} cancelled after {len(result.deleted)} deletions")
            result.cancelled = True
        finally:
            self._repair_directory(result)
        return result

    def _clearable(self, target: str, result: ClearResult) -> Iterator[RemoteEntry]:
        try:
            entries = self.list_directory(target)
        except RemoteNotFound:
            logger.warning(f"{target} does not exist on device, nothing to clear")
            return
        except RemoteError as e:
            result.errors.append(f"Could not list {target}: {e}")
            logger.error(f"Could not list {target}: {e}")
            return
        for entry in entries:
            if entry.is_special:
                continue
            if entry.is_hidden or entry.is_directory:
                logger.debug(f"Skipping {'hidden file' if entry.is_hidden else 'directory'}: {entry.name}")
                result.skipped.append(entry.name)
                continue
            yield entry

    def _repair_directory(self, result: ClearResult) -> None:
        """Re-create and verify a cleared directory, immune to cancellation."""
        shield = self._cancel.shield() if self._cancel is not None else nullcontext()
        with shield:
            try:
                self.create_directory(result.directory)
                self.list_directory(result.directory)
                result.repaired = True
            except (RemoteError, SyncCancelled) as e:
                result.errors.append(f"Could not restore directory {result.directory}: {e}")
                logger.error(f"Could not restore directory {result.directory}: {e}")

    def clear_downloads(self) -> ClearResult:
        """Remove every ROM from the device's ROM directory."""
        return self.clear_directory(self._settings.rom_directory)

    def clear_playlists(self) -> ClearResult:
        """Remove every playlist (.lpl) from the device's playlist directory."""
        return self.clear_directory(
            self._settings.playlist_directory,
            keep=lambda entry: not entry.name.endswith(".lpl"),
        )
