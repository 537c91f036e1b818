"""Application context — service container for dependency injection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from pixelbridge.config import Config
    from pixelbridge.core.playlist import PlaylistMaterializer
    from pixelbridge.core.sync import SyncOrchestrator
    from pixelbridge.data.catalog import Catalog


@dataclass
class AppContext:
    """
    Central service container.

    Built once by main.create_context(). Device clients are not part of it:
    they are created per command or sync run from fresh DeviceSettings,
    over ``transport`` when one is set.
    """

    config: Config
    catalog: Catalog
    playlists: PlaylistMaterializer
    orchestrator: SyncOrchestrator
    transport: httpx.BaseTransport | None = None
