"""Sync run result models — per-phase status, action log and the aggregate SyncLog."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any

from pixelbridge.errors import PhaseTransitionError


class PhaseStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class PhaseName(StrEnum):
    """The five sync phases, in execution order."""

    BACKUP = "phase1_backup"
    CLEAR = "phase2_cleanup"
    PUSH = "phase3_push"
    PLAYLISTS = "phase4_playlists"
    RESTORE = "phase5_restore"

    @property
    def label(self) -> str:
        return _PHASE_LABELS[self]


_PHASE_LABELS = {
    PhaseName.BACKUP: "Backup phase",
    PhaseName.CLEAR: "Cleanup phase",
    PhaseName.PUSH: "Push phase",
    PhaseName.PLAYLISTS: "Playlist phase",
    PhaseName.RESTORE: "Restore phase",
}

_ALLOWED_TRANSITIONS = {
    PhaseStatus.PENDING: (PhaseStatus.IN_PROGRESS,),
    PhaseStatus.IN_PROGRESS: (PhaseStatus.COMPLETED, PhaseStatus.FAILED),
    PhaseStatus.COMPLETED: (),
    PhaseStatus.FAILED: (),
}


@dataclass
class PhaseAction:
    """One thing a phase did (or tried to do)."""

    kind: str  # e.g. "backed_up", "deleted", "pushed", "push_failed"
    target: str  # file name, playlist name or ROM title
    files: list[str] = field(default_factory=list)
    detail: str = ""


@dataclass
class PhaseResult:
    """Outcome of one phase. Status only ever moves forward."""

    name: PhaseName
    status: PhaseStatus = PhaseStatus.PENDING
    actions: list[PhaseAction] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def _move(self, new: PhaseStatus) -> None:
        if new not in _ALLOWED_TRANSITIONS[self.status]:
            raise PhaseTransitionError(
                f"{self.name}: cannot move from {self.status} to {new}"
            )
        self.status = new

    def start(self) -> None:
        self._move(PhaseStatus.IN_PROGRESS)

    def finish(self) -> None:
        """Close the phase: failed if it recorded an error, completed otherwise."""
        self._move(PhaseStatus.FAILED if self.errors else PhaseStatus.COMPLETED)

    def degrade(self, note: str) -> None:
        """Close the phase as failed without contributing an error."""
        self.notes.append(note)
        self._move(PhaseStatus.FAILED)

    def record(self, kind: str, target: str, files: list[str] | None = None, detail: str = "") -> None:
        self.actions.append(PhaseAction(kind=kind, target=target, files=list(files or []), detail=detail))

    def error(self, message: str) -> None:
        self.errors.append(f"{self.name.label}: {message}")

    def targets(self, kind: str) -> list[str]:
        """Targets of all actions of the given kind, in order."""
        return [a.target for a in self.actions if a.kind == kind]

    def actions_of(self, kind: str) -> list[PhaseAction]:
        return [a for a in self.actions if a.kind == kind]

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": str(self.status),
            "actions": [asdict(a) for a in self.actions],
            "errors": list(self.errors),
            "notes": list(self.notes),
        }


@dataclass(frozen=True)
class SyncLog:
    """Aggregate, read-only result of one sync run."""

    phases: tuple[PhaseResult, ...]
    errors: tuple[str, ...] = ()
    unresolved_ids: tuple[int, ...] = ()
    cancelled: bool = False
    aborted: bool = False

    @property
    def success(self) -> bool:
        return not self.errors

    def phase(self, name: PhaseName) -> PhaseResult:
        for result in self.phases:
            if result.name == name:
                return result
        raise KeyError(name)

    @property
    def backup(self) -> PhaseResult:
        return self.phase(PhaseName.BACKUP)

    @property
    def clear(self) -> PhaseResult:
        return self.phase(PhaseName.CLEAR)

    @property
    def push(self) -> PhaseResult:
        return self.phase(PhaseName.PUSH)

    @property
    def playlists(self) -> PhaseResult:
        return self.phase(PhaseName.PLAYLISTS)

    @property
    def restore(self) -> PhaseResult:
        return self.phase(PhaseName.RESTORE)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "cancelled": self.cancelled,
            "aborted": self.aborted,
            "errors": list(self.errors),
            "unresolved_ids": list(self.unresolved_ids),
        }
        for result in self.phases:
            data[str(result.name)] = result.to_dict()
        return data

    @classmethod
    def collect(
        cls,
        phases: list[PhaseResult],
        extra_errors: list[str] | None = None,
        unresolved_ids: list[int] | None = None,
        cancelled: bool = False,
        aborted: bool = False,
    ) -> SyncLog:
        """Freeze phase results into a SyncLog, flattening their errors."""
        errors = list(extra_errors or [])
        for result in phases:
            errors.extend(result.errors)
        return cls(
            phases=tuple(phases),
            errors=tuple(errors),
            unresolved_ids=tuple(unresolved_ids or ()),
            cancelled=cancelled,
            aborted=aborted,
        )


@dataclass
class PushReport:
    """Outcome of a standalone push (no backup, no clear, no playlists)."""

    pushed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    unresolved_ids: list[int] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed and not self.unresolved_ids

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, **asdict(self)}


def new_phases() -> list[PhaseResult]:
    """Fresh pending results for all five phases, in order."""
    return [PhaseResult(name=name) for name in PhaseName]
