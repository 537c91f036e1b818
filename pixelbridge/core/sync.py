"""Sync orchestrator — full resync of a ROM selection onto the device.

Five phases, always run in order:
  1. backup     saves/states of every ROM currently on the device → local store
  2. cleanup    delete device ROMs and playlists, re-create their directories
  3. push       re-assert critical directories, upload the selected ROMs
  4. playlists  one playlist per platform of the selection
  5. restore    saves/states of the selected ROMs → device

A failing phase records its errors and the next phase still runs. Only an
empty selection aborts before phase 1, and only cancellation stops early.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable

import httpx
from loguru import logger

from pixelbridge.core.backup import SaveBackupStore
from pixelbridge.core.playlist import PlaylistMaterializer
from pixelbridge.core.rate_limit import CancelToken, FixedIntervalGate
from pixelbridge.core.remote_storage import RemoteStorageClient, critical_directories
from pixelbridge.errors import (
    CatalogError,
    CatalogMismatch,
    CatalogNotFound,
    InvalidBackupKey,
    RemoteError,
    RemoteNotFound,
    SyncCancelled,
    SyncInProgress,
    UnknownPlatformError,
)
from pixelbridge.models.catalog import RomRecord, SyncTarget
from pixelbridge.models.sync_log import PhaseResult, PhaseStatus, PushReport, SyncLog, new_phases
from pixelbridge.utils import file_hash

if TYPE_CHECKING:
    from pixelbridge.config import Config, DeviceSettings
    from pixelbridge.data.catalog import CatalogGateway

GateFactory = Callable[["DeviceSettings", "CancelToken | None"], FixedIntervalGate]


@dataclass
class _SyncRun:
    """Everything one sync run works with, built fresh per run."""

    settings: DeviceSettings
    client: RemoteStorageClient
    store: SaveBackupStore
    targets: list[SyncTarget]
    cancel: CancelToken | None = None

    def check_cancel(self) -> None:
        if self.cancel is not None:
            self.cancel.raise_if_cancelled()


class SyncOrchestrator:
    """Runs the backup → cleanup → push → playlists → restore workflow."""

    def __init__(
        self,
        config: Config,
        catalog: CatalogGateway,
        playlists: PlaylistMaterializer | None = None,
        transport: httpx.BaseTransport | None = None,
        gate_factory: GateFactory | None = None,
    ) -> None:
        self._config = config
        self._catalog = catalog
        self._playlists = playlists or PlaylistMaterializer()
        self._transport = transport
        self._gate_factory = gate_factory
        self._running = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    def run(self, rom_ids: Iterable[int], cancel: CancelToken | None = None) -> SyncLog:
        """
        Resync the device with the given catalog ROMs.

        Raises SyncInProgress if a run is already active; otherwise always
        returns a complete SyncLog.
        """
        if not self._running.acquire(blocking=False):
            raise SyncInProgress("A sync is already running")
        try:
            return self._run(list(rom_ids), cancel)
        finally:
            self._running.release()

    def push(self, rom_ids: Iterable[int], cancel: CancelToken | None = None) -> PushReport:
        """
        Upload ROMs into the device ROM directory, leaving everything else alone.

        Nothing is backed up, deleted or regenerated; a file of the same name
        is simply replaced. Shares the run lock with sync.
        """
        if not self._running.acquire(blocking=False):
            raise SyncInProgress("A sync is already running")
        try:
            targets, unresolved = self._resolve_targets(list(rom_ids))
            report = PushReport(unresolved_ids=unresolved)
            if not targets:
                return report

            settings = self._config.device_settings()
            client = self._make_client(settings, cancel)
            client.create_directory(settings.rom_directory)
            for target in targets:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                try:
                    client.upload_file(
                        Path(target.local_file_path), settings.rom_directory, target.device_file_name
                    )
                except (RemoteError, OSError) as e:
                    logger.error(f"Failed to push {target.device_file_name}: {e}")
                    report.failed.append(target.device_file_name)
                    report.errors.append(f"{target.device_file_name}: {e}")
                    continue
                report.pushed.append(target.device_file_name)
                logger.info(f"Pushed {target.device_file_name}")
            return report
        finally:
            self._running.release()

    # ── Setup ──

    def _make_client(self, settings: DeviceSettings, cancel: CancelToken | None) -> RemoteStorageClient:
        gate = (
            self._gate_factory(settings, cancel)
            if self._gate_factory
            else FixedIntervalGate(settings.request_delay, cancel=cancel)
        )
        return RemoteStorageClient(settings, gate=gate, cancel=cancel, transport=self._transport)

    def _to_target(self, rom: RomRecord) -> SyncTarget:
        """Resolve a catalog ROM into a SyncTarget (platform, core, content hash)."""
        short_name = ""
        platform_name = ""
        core_dir: str | None = None
        try:
            platform = self._catalog.get_platform_by_id(rom.platform_id)
            short_name = platform.short_name
            platform_name = platform.name
            core_dir = self._playlists.core_directory_for(short_name)
        except CatalogNotFound:
            logger.warning(f"ROM {rom.id} ({rom.title}) has no platform record")
        except UnknownPlatformError:
            logger.warning(f"No core mapping for platform '{short_name}' ({rom.title})")

        content_hash = rom.file_hash
        if not content_hash and rom.file_path and Path(rom.file_path).is_file():
            logger.debug(f"Hashing {rom.file_path} (no stored content hash)")
            content_hash = file_hash(rom.file_path)

        return SyncTarget(
            id=rom.id,
            title=rom.title,
            platform_id=rom.platform_id,
            platform_short_name=short_name,
            platform_name=platform_name,
            core_directory_name=core_dir,
            file_content_hash=content_hash,
            local_file_path=rom.file_path,
            device_file_name=rom.file_name,
        )

    def _resolve_targets(self, rom_ids: list[int]) -> tuple[list[SyncTarget], list[int]]:
        targets: list[SyncTarget] = []
        unresolved: list[int] = []
        seen: set[int] = set()
        for rom_id in rom_ids:
            if rom_id in seen:
                continue
            seen.add(rom_id)
            try:
                targets.append(self._to_target(self._catalog.get_by_id(rom_id)))
            except CatalogNotFound:
                logger.warning(f"ROM {rom_id} not found in catalog, skipping")
                unresolved.append(rom_id)
        return targets, unresolved

    def _match_device_file(self, file_name: str) -> SyncTarget:
        rom = self._catalog.find_by_file_name(file_name)
        if rom is None:
            raise CatalogMismatch(f"{file_name} has no catalog entry")
        return self._to_target(rom)

    # ── Run ──

    def _run(self, rom_ids: list[int], cancel: CancelToken | None) -> SyncLog:
        phases = new_phases()
        try:
            targets, unresolved = self._resolve_targets(rom_ids)
        except CatalogError as e:
            logger.error(f"Sync aborted, catalog unavailable: {e}")
            return SyncLog.collect(phases, extra_errors=[f"Catalog unavailable: {e}"], aborted=True)

        if not targets:
            logger.error("Sync aborted: no valid ROMs found")
            return SyncLog.collect(
                phases,
                extra_errors=["No valid ROMs found"],
                unresolved_ids=unresolved,
                aborted=True,
            )

        settings = self._config.device_settings()
        client = self._make_client(settings, cancel)
        run = _SyncRun(
            settings=settings,
            client=client,
            store=SaveBackupStore(self._config.backup_path, client),
            targets=targets,
            cancel=cancel,
        )
        logger.info(f"Sync started: {len(targets)} ROMs → {settings.base_url}")

        steps = (
            self._phase_backup,
            self._phase_clear,
            self._phase_push,
            self._phase_playlists,
            self._phase_restore,
        )
        cancelled = False
        for result, step in zip(phases, steps):
            result.start()
            logger.info(f"{result.name.label}: started")
            try:
                run.check_cancel()
                step(run, result)
            except SyncCancelled:
                result.error("cancelled")
                cancelled = True
            except Exception as e:
                logger.exception(f"{result.name.label} failed: {e}")
                result.error(str(e))
            if result.status == PhaseStatus.IN_PROGRESS:
                result.finish()
            logger.info(
                f"{result.name.label}: {result.status} "
                f"({len(result.actions)} actions, {len(result.errors)} errors)"
            )
            if cancelled:
                logger.warning("Sync cancelled, remaining phases not started")
                break

        log = SyncLog.collect(phases, unresolved_ids=unresolved, cancelled=cancelled)
        logger.info(f"Sync finished: {'success' if log.success else f'{len(log.errors)} errors'}")
        return log

    # ── Phases ──

    def _phase_backup(self, run: _SyncRun, result: PhaseResult) -> None:
        """Back up saves of whatever the device holds now, as found by listing it."""
        try:
            for name in run.client.list_playlists():
                result.record("playlist", name)
        except RemoteError as e:
            logger.warning(f"Could not list device playlists: {e}")
            result.notes.append(f"Device playlists not listed: {e}")

        rom_dir = run.settings.rom_directory
        try:
            entries = run.client.list_directory(rom_dir)
        except RemoteNotFound:
            result.degrade(f"/{rom_dir}/ does not exist on device, nothing to back up")
            logger.warning(result.notes[-1])
            return

        for entry in entries:
            if entry.is_special or entry.is_hidden or entry.is_directory:
                continue
            run.check_cancel()
            try:
                target = self._match_device_file(entry.name)
            except CatalogMismatch as e:
                logger.warning(f"Skipping device file: {e}")
                result.record("skipped", entry.name, detail=str(e))
                continue

            if not target.core_directory_name or not target.file_content_hash:
                logger.warning(f"Skipping {entry.name}: no core mapping or content hash")
                result.record("skipped", entry.name, detail="no core mapping or content hash")
                continue

            try:
                files = run.store.backup(
                    target.core_directory_name,
                    target.device_base_name,
                    target.file_content_hash,
                    title=target.title,
                    device_file_name=entry.name,
                )
            except (RemoteError, InvalidBackupKey, OSError) as e:
                logger.error(f"Backup failed for {entry.name}: {e}")
                result.error(f"{entry.name}: {e}")
                continue

            if files:
                result.record("backed_up", target.title, files, detail=target.file_content_hash)
        logger.info(f"Backed up {len(result.actions_of('backed_up'))} save sets")

    def _phase_clear(self, run: _SyncRun, result: PhaseResult) -> None:
        """Delete device ROMs and playlists; each directory is re-created afterwards."""
        for clear in (run.client.clear_downloads, run.client.clear_playlists):
            cleared = clear()
            for name in cleared.deleted:
                result.record("deleted", f"{cleared.directory}{name}")
            for name in cleared.skipped:
                result.record("skipped", f"{cleared.directory}{name}")
            if cleared.repaired:
                result.record("verified", cleared.directory)
            for message in cleared.errors:
                result.error(message)
            if cleared.cancelled:
                raise SyncCancelled(f"Cancelled while clearing {cleared.directory}")
        logger.info(f"Deleted {len(result.actions_of('deleted'))} files")

    def _phase_push(self, run: _SyncRun, result: PhaseResult) -> None:
        """Re-assert the critical directories, then upload every selected ROM."""
        for directory in critical_directories(run.settings):
            try:
                if run.client.create_directory(directory):
                    result.record("created", directory)
            except RemoteError as e:
                logger.error(f"Could not create /{directory}/: {e}")
                result.error(f"Could not create /{directory}/: {e}")

        rom_dir = run.settings.rom_directory
        for target in run.targets:
            run.check_cancel()
            try:
                run.client.upload_file(Path(target.local_file_path), rom_dir, target.device_file_name)
            except (RemoteError, OSError) as e:
                logger.error(f"Failed to push {target.device_file_name}: {e}")
                result.record("push_failed", target.device_file_name, detail=str(e))
                result.error(f"{target.device_file_name}: {e}")
                continue
            result.record("pushed", target.device_file_name)
            logger.info(f"Pushed {target.device_file_name}")
        logger.info(f"Pushed {len(result.targets('pushed'))}/{len(run.targets)} ROMs")

    def _phase_playlists(self, run: _SyncRun, result: PhaseResult) -> None:
        """Upload one playlist per platform of the selection."""
        groups: dict[int, list[SyncTarget]] = {}
        for target in run.targets:
            groups.setdefault(target.platform_id, []).append(target)

        for roms in groups.values():
            run.check_cancel()
            platform = roms[0]
            try:
                document = self._playlists.build(
                    platform.platform_short_name, roms, rom_path_prefix=run.settings.rom_path_prefix
                )
                filename = self._playlists.filename_for(platform.platform_name)
                run.client.upload_bytes(
                    self._playlists.render(document),
                    run.settings.playlist_directory,
                    filename,
                    content_type="application/json",
                )
            except (RemoteError, UnknownPlatformError) as e:
                label = platform.platform_name or f"platform {platform.platform_id}"
                logger.error(f"Playlist for {label} failed: {e}")
                result.error(f"{label}: {e}")
                continue
            result.record(
                "generated",
                filename,
                [r.device_file_name for r in roms],
                detail=f"{len(roms)} ROMs",
            )
            logger.info(f"Generated {filename} with {len(roms)} ROMs")

    def _phase_restore(self, run: _SyncRun, result: PhaseResult) -> None:
        """Restore backed-up saves of the newly pushed ROMs, by content hash."""
        for target in run.targets:
            run.check_cancel()
            if not target.core_directory_name or not target.file_content_hash:
                continue
            try:
                restored = run.store.restore(target.core_directory_name, target.file_content_hash)
            except (RemoteError, InvalidBackupKey, OSError) as e:
                logger.error(f"Restore failed for {target.title}: {e}")
                result.error(f"{target.title}: {e}")
                continue
            if restored:
                result.record("restored", target.title, restored, detail=target.file_content_hash)
        logger.info(f"Restored {len(result.actions_of('restored'))} save sets")
