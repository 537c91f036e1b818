"""Command-line entry point — wires services and dispatches sub-commands.

Usage:
    python main.py status
    python main.py ls /saves/snes9x/
    python main.py add-platform snes "Super Nintendo Entertainment System"
    python main.py add-rom roms/mario.sfc --platform 1
    python main.py remove-rom 3
    python main.py push 1 2
    python main.py sync 1 2 3 [--json]
    python main.py backups
"""

from __future__ import annotations

import argparse
import json
import sys
import threading
from pathlib import Path

import httpx
from loguru import logger

from pixelbridge.config import Config, get_config
from pixelbridge.context import AppContext
from pixelbridge.core.backup import SaveBackupStore
from pixelbridge.core.playlist import PlaylistMaterializer
from pixelbridge.core.rate_limit import CancelToken
from pixelbridge.core.remote_storage import RemoteStorageClient
from pixelbridge.core.sync import SyncOrchestrator
from pixelbridge.data.catalog import Catalog
from pixelbridge.errors import InvalidBackupKey, PixelBridgeError, RemoteError
from pixelbridge.logger import setup_logger
from pixelbridge.models.catalog import RomRecord
from pixelbridge.models.sync_log import SyncLog
from pixelbridge.utils import format_size


def create_context(
    data_dir: Path | None = None,
    verbose: bool = False,
    transport: httpx.BaseTransport | None = None,
) -> AppContext:
    """Wire all services and return an AppContext."""
    config = Config(data_dir) if data_dir else get_config()

    # Logger
    setup_logger(config.data_dir / "logs", verbose=verbose)

    # Data
    catalog = Catalog(config.catalog_path)
    catalog.load()

    # Services (device settings, the playlist ROM prefix included, are read per run)
    playlists = PlaylistMaterializer()
    orchestrator = SyncOrchestrator(config, catalog, playlists, transport=transport)

    return AppContext(
        config=config,
        catalog=catalog,
        playlists=playlists,
        orchestrator=orchestrator,
        transport=transport,
    )


def _client(ctx: AppContext) -> RemoteStorageClient:
    return RemoteStorageClient(ctx.config.device_settings(), transport=ctx.transport)


def _has_saves(store: SaveBackupStore, rom: RomRecord) -> bool:
    try:
        return bool(rom.file_hash) and store.has_backup(rom.file_hash)
    except InvalidBackupKey:
        return False


# ── Commands ──


def cmd_status(ctx: AppContext, args: argparse.Namespace) -> int:
    status = _client(ctx).check_connection()
    if status.online:
        print(f"Device online at {status.url}")
        return 0
    print(f"Device offline at {status.url}: {status.error}")
    return 1


def cmd_ls(ctx: AppContext, args: argparse.Namespace) -> int:
    for entry in _client(ctx).list_directory(args.path):
        suffix = "/" if entry.is_directory else ""
        size = "" if entry.is_directory else format_size(entry.size)
        print(f"{entry.name}{suffix:<2} {size}")
    return 0


def cmd_set_device(ctx: AppContext, args: argparse.Namespace) -> int:
    ctx.config.set_device(args.host, args.port)
    print(f"Device set to {ctx.config.device_settings().base_url}")
    return 0


def cmd_add_platform(ctx: AppContext, args: argparse.Namespace) -> int:
    platform = ctx.catalog.add_platform(args.short_name, args.name)
    ctx.catalog.save()
    print(f"Platform {platform.id}: {platform.name} ({platform.short_name})")
    return 0


def cmd_add_rom(ctx: AppContext, args: argparse.Namespace) -> int:
    rom = ctx.catalog.add_rom(Path(args.path), args.platform, args.title)
    ctx.catalog.save()
    print(f"ROM {rom.id}: {rom.title} [{rom.file_hash[:12]}]")
    return 0


def cmd_remove_rom(ctx: AppContext, args: argparse.Namespace) -> int:
    rom = ctx.catalog.get_by_id(args.rom_id)
    ctx.catalog.remove_rom(rom.id)
    ctx.catalog.save()
    # Saves stay in the backup store under the content hash
    print(f"Removed ROM {rom.id}: {rom.title}")
    return 0


def cmd_roms(ctx: AppContext, args: argparse.Namespace) -> int:
    store = SaveBackupStore(ctx.config.backup_path, _client(ctx))
    filters = {"platform_id": args.platform, "search": args.search}
    for rom in ctx.catalog.get_all(filters):
        saves = "  [saves]" if _has_saves(store, rom) else ""
        print(f"{rom.id:>5}  {rom.title}  ({rom.file_name}, {format_size(rom.file_size)}){saves}")
    return 0


def cmd_backups(ctx: AppContext, args: argparse.Namespace) -> int:
    # Listing the store needs no device access
    store = SaveBackupStore(ctx.config.backup_path, _client(ctx))
    for backup_set in store.list_backups():
        roms = ctx.catalog.find_by_hash(backup_set.key)
        label = roms[0].title if roms else backup_set.title or backup_set.key[:12]
        orphan = "" if roms else "  (not in catalog)"
        print(
            f"{label}: {len(backup_set.saves)} saves, {len(backup_set.states)} states "
            f"({backup_set.core}){orphan}"
        )
    return 0


def cmd_push(ctx: AppContext, args: argparse.Namespace) -> int:
    report = ctx.orchestrator.push(args.rom_ids)
    if args.json:
        print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    else:
        for name in report.pushed:
            print(f"pushed  {name}")
        for error in report.errors:
            print(f"failed  {error}")
        for rom_id in report.unresolved_ids:
            print(f"unknown ROM id {rom_id}")
    return 0 if report.success else 1


def _print_log(log: SyncLog) -> None:
    for result in log.phases:
        print(f"{result.name.label:<16} {result.status}")
        for action in result.actions:
            print(f"    {action.kind:<12} {action.target}")
    for error in log.errors:
        print(f"  ! {error}")
    print("Sync succeeded" if log.success else f"Sync finished with {len(log.errors)} errors")


def cmd_sync(ctx: AppContext, args: argparse.Namespace) -> int:
    cancel = CancelToken()
    outcome: dict[str, SyncLog] = {}

    def _worker() -> None:
        outcome["log"] = ctx.orchestrator.run(args.rom_ids, cancel=cancel)

    worker = threading.Thread(target=_worker, name="sync", daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(timeout=0.5)
    except KeyboardInterrupt:
        logger.warning("Interrupted, finishing the current phase before stopping")
        cancel.cancel()
        worker.join()

    log = outcome.get("log")
    if log is None:
        logger.error("Sync did not produce a result")
        return 1
    if args.json:
        print(json.dumps(log.to_dict(), ensure_ascii=False, indent=2))
    else:
        _print_log(log)
    return 0 if log.success else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pixelbridge",
        description="Sync a local ROM catalog onto a RetroArch device.",
    )
    parser.add_argument("--data-dir", type=Path, default=None, help="Config / catalog / backup directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging on the console")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Check whether the device answers").set_defaults(func=cmd_status)

    p = sub.add_parser("ls", help="List a device directory")
    p.add_argument("path", nargs="?", default="/")
    p.set_defaults(func=cmd_ls)

    p = sub.add_parser("set-device", help="Store the device address")
    p.add_argument("host")
    p.add_argument("--port", type=int, default=None)
    p.set_defaults(func=cmd_set_device)

    p = sub.add_parser("add-platform", help="Add a platform to the catalog")
    p.add_argument("short_name", help="e.g. snes, gba, nes")
    p.add_argument("name", help="Display name, e.g. 'Super Nintendo Entertainment System'")
    p.set_defaults(func=cmd_add_platform)

    p = sub.add_parser("add-rom", help="Register a local ROM file")
    p.add_argument("path")
    p.add_argument("--platform", type=int, required=True, help="Platform id")
    p.add_argument("--title", default=None)
    p.set_defaults(func=cmd_add_rom)

    p = sub.add_parser("remove-rom", help="Drop a ROM from the catalog (its save backup is kept)")
    p.add_argument("rom_id", type=int)
    p.set_defaults(func=cmd_remove_rom)

    p = sub.add_parser("roms", help="List catalog ROMs")
    p.add_argument("--platform", type=int, default=None)
    p.add_argument("--search", default=None)
    p.set_defaults(func=cmd_roms)

    sub.add_parser("backups", help="List local save backups").set_defaults(func=cmd_backups)

    p = sub.add_parser("push", help="Upload ROMs to the device without clearing anything")
    p.add_argument("rom_ids", type=int, nargs="+")
    p.add_argument("--json", action="store_true", help="Print the result as JSON")
    p.set_defaults(func=cmd_push)

    p = sub.add_parser("sync", help="Back up, clear, push, regenerate playlists, restore")
    p.add_argument("rom_ids", type=int, nargs="+")
    p.add_argument("--json", action="store_true", help="Print the sync log as JSON")
    p.set_defaults(func=cmd_sync)

    return parser


def main(argv: list[str] | None = None, transport: httpx.BaseTransport | None = None) -> int:
    """Application entry point."""
    args = build_parser().parse_args(argv)
    try:
        ctx = create_context(args.data_dir, verbose=args.verbose, transport=transport)
        return args.func(ctx, args)
    except RemoteError as e:
        logger.error(f"Device error: {e}")
        return 1
    except (PixelBridgeError, FileNotFoundError) as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
