"""
Error taxonomy shared by the transport, the client and the CLI.

Every operation is a short sequence of HTTP calls; the first failure aborts the
sequence and its error reaches the caller unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass


class SyncError(Exception):
    """Base class for every error raised by dtsync."""


@dataclass
class TransportError(SyncError):
    """HTTP/transport failure with context (status 0 = no HTTP response)."""
    status: int
    url: str
    body: str = ""
    message: str = ""

    def __str__(self) -> str:
        base = f"TransportError(status={self.status}, url={self.url})"
        if self.message:
            base += f": {self.message}"
        if self.body:
            base += f" body={self.body[:200]}"
        return base


class NotFoundError(SyncError):
    """Raised when no remote object carries the requested name."""

    def __init__(self, api_id: str, name: str) -> None:
        super().__init__(f"404 - no config found with name '{name}' in api '{api_id}'")
        self.api_id = api_id
        self.name = name


class UnsupportedFamilyError(SyncError):
    """Raised for an unknown API family or an upsert strategy without handler."""


class ExtensionVersionError(SyncError):
    """Raised when the remote extension is newer than the one being uploaded."""

    def __init__(self, name: str, local_version: str, remote_version: str) -> None:
        super().__init__(
            f"extension '{name}' is outdated: remote version {remote_version} "
            f"is newer than local version {local_version}"
        )
        self.name = name
        self.local_version = local_version
        self.remote_version = remote_version
