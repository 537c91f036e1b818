"""RetroArch playlist (.lpl) materializer — pure, no I/O."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Sequence

from pixelbridge.errors import UnknownPlatformError
from pixelbridge.models.catalog import SyncTarget


@dataclass(frozen=True)
class CoreInfo:
    core_path: str
    core_name: str
    db_name: str
    directory: str  # per-core save/state directory name on the device


def _core(library: str, core_name: str, db_name: str, directory: str) -> CoreInfo:
    return CoreInfo(
        core_path=f":/Frameworks/{library}_libretro.framework",
        core_name=core_name,
        db_name=db_name,
        directory=directory,
    )


# Platform short name → core
PLATFORM_CORES: dict[str, CoreInfo] = {
    # Nintendo
    "nes": _core("nestopia", "Nintendo - NES / Famicom (Nestopia UE)", "Nintendo - Nintendo Entertainment System.lpl", "nestopia"),
    "snes": _core("snes9x", "Nintendo - SNES / SFC (Snes9x)", "Nintendo - Super Nintendo Entertainment System.lpl", "snes9x"),
    "n64": _core("mupen64plus_next", "Nintendo - Nintendo 64 (Mupen64Plus-Next)", "Nintendo - Nintendo 64.lpl", "mupen64plus_next"),
    "gba": _core("mgba", "Nintendo - Game Boy Advance (mGBA)", "Nintendo - Game Boy Advance.lpl", "mgba"),
    "gbc": _core("gambatte", "Nintendo - Game Boy Color (Gambatte)", "Nintendo - Game Boy Color.lpl", "gambatte"),
    "gb": _core("gambatte", "Nintendo - Game Boy (Gambatte)", "Nintendo - Game Boy.lpl", "gambatte"),
    "nds": _core("desmume", "Nintendo - Nintendo DS (DeSmuME)", "Nintendo - Nintendo DS.lpl", "desmume"),
    "gamecube": _core("dolphin", "Nintendo - GameCube (Dolphin)", "Nintendo - GameCube.lpl", "dolphin"),
    # Sega
    "genesis": _core("genesis_plus_gx", "Sega - Mega Drive - Genesis (Genesis Plus GX)", "Sega - Mega Drive - Genesis.lpl", "genesis_plus_gx"),
    "mastersystem": _core("genesis_plus_gx", "Sega - Master System - Mark III (Genesis Plus GX)", "Sega - Master System - Mark III.lpl", "genesis_plus_gx"),
    "gamegear": _core("genesis_plus_gx", "Sega - Game Gear (Genesis Plus GX)", "Sega - Game Gear.lpl", "genesis_plus_gx"),
    "dreamcast": _core("flycast", "Sega - Dreamcast (Flycast)", "Sega - Dreamcast.lpl", "flycast"),
    "saturn": _core("mednafen_saturn", "Sega - Saturn (Beetle Saturn)", "Sega - Saturn.lpl", "mednafen_saturn"),
    # Sony
    "ps1": _core("mednafen_psx_hw", "Sony - PlayStation (Beetle PSX HW)", "Sony - PlayStation.lpl", "mednafen_psx_hw"),
    "ps2": _core("pcsx2", "Sony - PlayStation 2 (PCSX2)", "Sony - PlayStation 2.lpl", "pcsx2"),
    "psp": _core("ppsspp", "Sony - PlayStation Portable (PPSSPP)", "Sony - PlayStation Portable.lpl", "ppsspp"),
    # Arcade
    "arcade": _core("mame", "MAME", "MAME.lpl", "mame"),
    "neogeo": _core("fbneo", "SNK - Neo Geo (FinalBurn Neo)", "SNK - Neo Geo.lpl", "fbneo"),
    "cps1": _core("fbneo", "Capcom - CPS-1 (FinalBurn Neo)", "Capcom - CPS-1.lpl", "fbneo"),
    "cps2": _core("fbneo", "Capcom - CPS-2 (FinalBurn Neo)", "Capcom - CPS-2.lpl", "fbneo"),
    # Atari
    "atari2600": _core("stella", "Atari - 2600 (Stella)", "Atari - 2600.lpl", "stella"),
    "atari7800": _core("prosystem", "Atari - 7800 (ProSystem)", "Atari - 7800.lpl", "prosystem"),
    # Other
    "gw": _core("gw", "Nintendo - Game & Watch (gw)", "Nintendo - Game & Watch.lpl", "gw"),
}

# Platform display name → playlist file name
PLAYLIST_FILENAMES: dict[str, str] = {
    "Nintendo Entertainment System": "Nintendo - Nintendo Entertainment System.lpl",
    "Super Nintendo Entertainment System": "Nintendo - Super Nintendo Entertainment System.lpl",
    "Nintendo 64": "Nintendo - Nintendo 64.lpl",
    "Game Boy Advance": "Nintendo - Game Boy Advance.lpl",
    "Game Boy Color": "Nintendo - Game Boy Color.lpl",
    "Game Boy": "Nintendo - Game Boy.lpl",
    "Nintendo DS": "Nintendo - Nintendo DS.lpl",
    "GameCube": "Nintendo - GameCube.lpl",
    "Sega Genesis": "Sega - Mega Drive - Genesis.lpl",
    "Sega Master System": "Sega - Master System - Mark III.lpl",
    "Sega Game Gear": "Sega - Game Gear.lpl",
    "Sega Dreamcast": "Sega - Dreamcast.lpl",
    "Sega Saturn": "Sega - Saturn.lpl",
    "PlayStation": "Sony - PlayStation.lpl",
    "PlayStation 2": "Sony - PlayStation 2.lpl",
    "PlayStation Portable": "Sony - PlayStation Portable.lpl",
    "Arcade": "MAME.lpl",
    "Neo Geo": "SNK - Neo Geo.lpl",
    "CPS-1": "Capcom - CPS-1.lpl",
    "CPS-2": "Capcom - CPS-2.lpl",
    "Atari 2600": "Atari - 2600.lpl",
    "Atari 7800": "Atari - 7800.lpl",
    "Game & Watch": "Nintendo - Game & Watch.lpl",
}


class PlaylistMaterializer:
    """Turns a platform and its ROMs into a RetroArch 1.5 playlist document."""

    def __init__(self, rom_path_prefix: str = "~/Library/Caches/RetroArch/downloads/") -> None:
        self._rom_path_prefix = self._with_slash(rom_path_prefix)

    @staticmethod
    def _with_slash(prefix: str) -> str:
        if prefix and not prefix.endswith("/"):
            return prefix + "/"
        return prefix

    @staticmethod
    def core_for(platform_short_name: str) -> CoreInfo:
        core = PLATFORM_CORES.get(platform_short_name.lower())
        if core is None:
            raise UnknownPlatformError(f"Unknown platform: {platform_short_name}")
        return core

    def core_directory_for(self, platform_short_name: str) -> str:
        return self.core_for(platform_short_name).directory

    @staticmethod
    def filename_for(platform_name: str) -> str:
        return PLAYLIST_FILENAMES.get(platform_name, f"{platform_name}.lpl")

    def build_entry(
        self, rom: SyncTarget, core: CoreInfo, rom_path_prefix: str | None = None
    ) -> dict[str, Any]:
        prefix = self._rom_path_prefix if rom_path_prefix is None else self._with_slash(rom_path_prefix)
        return {
            "path": f"{prefix}{rom.device_file_name}",
            "label": rom.title or rom.device_base_name,
            "core_path": core.core_path,
            "core_name": core.core_name,
            "crc32": "DETECT|crc",
            "db_name": core.db_name,
        }

    def build(
        self,
        platform_short_name: str,
        roms: Sequence[SyncTarget],
        rom_path_prefix: str | None = None,
    ) -> dict[str, Any]:
        """Playlist document; ``rom_path_prefix`` overrides the default ROM location for this build."""
        core = self.core_for(platform_short_name)
        return {
            "version": "1.5",
            "default_core_path": core.core_path,
            "default_core_name": core.core_name,
            "label_display_mode": 0,
            "right_thumbnail_mode": 0,
            "left_thumbnail_mode": 0,
            "sort_mode": 0,
            "items": [self.build_entry(rom, core, rom_path_prefix) for rom in roms],
        }

    @staticmethod
    def render(document: dict[str, Any]) -> bytes:
        return json.dumps(document, ensure_ascii=False, indent=2).encode("utf-8")
