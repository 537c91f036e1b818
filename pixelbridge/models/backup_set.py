"""Save backup models."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class BackupInfo:
    """Sidecar metadata for a backup key (written as backup.json)."""

    key: str  # content hash of the ROM
    title: str = ""
    core: str = ""
    device_file_name: str = ""
    updated_at: str = ""
    saves: list[str] = field(default_factory=list)
    states: list[str] = field(default_factory=list)


@dataclass
class BackupSet:
    """One ROM's backed-up save and state files."""

    key: str
    saves: list[str] = field(default_factory=list)
    states: list[str] = field(default_factory=list)
    title: str = ""
    core: str = ""
    updated_at: str = ""

    @property
    def file_count(self) -> int:
        return len(self.saves) + len(self.states)

    @property
    def is_empty(self) -> bool:
        return self.file_count == 0

    def relative_paths(self) -> list[str]:
        return [f"saves/{n}" for n in self.saves] + [f"states/{n}" for n in self.states]
