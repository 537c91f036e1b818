"""Exception hierarchy shared by the device client, catalog and sync engine."""

from __future__ import annotations


class PixelBridgeError(Exception):
    """Base exception for all pixelbridge errors."""


# ── Device ──


class RemoteError(PixelBridgeError):
    """Base exception for device file API failures."""


class RemoteUnavailable(RemoteError):
    """Device did not answer (timeout, refused connection, server error).

    Retryable by the caller; never retried internally.
    """


class RemoteNotFound(RemoteError):
    """Device reports the path as absent."""


class RemoteRejected(RemoteError):
    """Device answered but refused the operation."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtectedPathError(PixelBridgeError, ValueError):
    """A delete targeted one of the protected top-level device directories."""


class InvalidBackupKey(PixelBridgeError, ValueError):
    """A content hash that cannot name a backup directory."""


# ── Catalog ──


class CatalogError(PixelBridgeError):
    """Base exception for catalog access."""


class CatalogNotFound(CatalogError):
    """No catalog record with the requested id."""


class StoreUnavailable(CatalogError):
    """The catalog store could not be read."""


class CatalogMismatch(CatalogError):
    """A file on the device has no corresponding catalog entry."""


class UnknownPlatformError(PixelBridgeError, KeyError):
    """No core / playlist mapping exists for a platform."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Unknown platform"


# ── Sync ──


class SyncCancelled(PixelBridgeError):
    """Raised at a suspension point once a sync has been cancelled."""


class SyncInProgress(PixelBridgeError):
    """Another sync is already running against the device."""


class PhaseTransitionError(PixelBridgeError):
    """A phase status change would move backwards or re-enter a phase."""
