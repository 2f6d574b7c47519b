"""Custom exceptions for upgrade operations.

Every failure category the tool can report has its own exception class with a
stable process exit code, so an operator (or a wrapping script) can tell why a
run stopped and where to resume.

Exception Hierarchy:
    UpgradeError (base)
        ├── UsageError
        ├── ArgumentError
        ├── ConfigError
        ├── TempFileError
        ├── ChecksumError
        ├── FetchError
        ├── MountError
        │   ├── MountPointBusyError
        │   └── UnmountFailedError
        ├── VirtualDeviceError
        ├── ArchiveError
        ├── ManifestError
        ├── CopyError
        │   └── RemovalError
        ├── MissingFileError
        ├── AccountError
        ├── DatabaseRebuildError
        └── StepFailedError

Usage:
    from release_upgrade.storage.exceptions import MountPointBusyError

    if bound_device:
        raise MountPointBusyError(mount_point, bound_device)
"""

from __future__ import annotations

from enum import IntEnum
from pathlib import Path
from typing import Optional, Sequence


class ExitCode(IntEnum):
    OK = 0
    USAGE = 1
    ARGUMENT = 2
    CONFIG = 3
    TEMP_FILE = 4
    CHECKSUM = 5
    FETCH = 6
    MOUNT = 7
    UNMOUNT = 8
    VIRTUAL_DEVICE = 9
    ARCHIVE = 10
    MANIFEST = 11
    COPY = 12
    MISSING_FILE = 13
    ACCOUNT = 14
    DATABASE = 15


class UpgradeError(Exception):
    """Base exception for all upgrade operations."""

    exit_code = ExitCode.USAGE


class UsageError(UpgradeError):
    """Command line could not be parsed."""

    exit_code = ExitCode.USAGE


class ArgumentError(UpgradeError):
    """Command line parsed but the arguments make no sense together."""

    exit_code = ExitCode.ARGUMENT


class ConfigError(UpgradeError):
    """Configuration file is unreadable or invalid."""

    exit_code = ExitCode.CONFIG

    def __init__(self, path: Path | str, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Invalid configuration {path}: {reason}")


class TempFileError(UpgradeError):
    """Temporary file could not be created."""

    exit_code = ExitCode.TEMP_FILE

    def __init__(self, directory: Path | str, reason: str):
        self.directory = Path(directory)
        self.reason = reason
        super().__init__(f"Failed to create temporary file in {directory}: {reason}")


class ChecksumError(UpgradeError):
    """Image checksum does not match the expected value."""

    exit_code = ExitCode.CHECKSUM

    def __init__(
        self,
        path: Path | str,
        expected: str,
        actual: Optional[str],
        reason: Optional[str] = None,
    ):
        self.path = Path(path)
        self.expected = expected
        self.actual = actual
        self.reason = reason
        if reason is not None:
            message = f"Cannot checksum {path}: {reason}"
        else:
            message = f"Checksum mismatch for {path}: expected {expected}, got {actual}"
        super().__init__(message)


class FetchError(UpgradeError):
    """Image could not be downloaded."""

    exit_code = ExitCode.FETCH

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to fetch {url}: {reason}")


class MountError(UpgradeError):
    """Base exception for mount-related errors."""

    exit_code = ExitCode.MOUNT


class MountPointBusyError(MountError):
    """Mount point already has a device bound to it."""

    def __init__(self, mount_point: Path | str, device: str):
        self.mount_point = Path(mount_point)
        self.device = device
        super().__init__(f"Mount point {mount_point} is already bound to {device}")


class UnmountFailedError(MountError):
    """Failed to resolve or unmount the device at a mount point."""

    exit_code = ExitCode.UNMOUNT

    def __init__(self, mount_point: Path | str, reason: str):
        self.mount_point = Path(mount_point)
        self.reason = reason
        super().__init__(f"Failed to unmount {mount_point}: {reason}")


class VirtualDeviceError(UpgradeError):
    """Attaching or detaching the virtual block device failed."""

    exit_code = ExitCode.VIRTUAL_DEVICE

    def __init__(self, message: str, device: str | None = None):
        self.device = device
        super().__init__(message)


class ArchiveError(UpgradeError):
    """Backup archive could not be written."""

    exit_code = ExitCode.ARCHIVE

    def __init__(self, archive: Path | str, reason: str):
        self.archive = Path(archive)
        self.reason = reason
        super().__init__(f"Failed to create archive {archive}: {reason}")


class ManifestError(UpgradeError):
    """Obsolete-file manifest could not be evaluated."""

    exit_code = ExitCode.MANIFEST

    def __init__(self, manifest: Path | str, reason: str):
        self.manifest = Path(manifest)
        self.reason = reason
        super().__init__(f"Failed to evaluate manifest {manifest}: {reason}")


class CopyError(UpgradeError):
    """Installing files into the live filesystem failed."""

    exit_code = ExitCode.COPY

    def __init__(self, message: str, source: str | None = None, destination: str | None = None):
        self.source = source
        self.destination = destination
        super().__init__(message)


class RemovalError(CopyError):
    """Removing a path from the live filesystem failed."""

    def __init__(self, path: Path | str, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Failed to remove {path}: {reason}", destination=str(path))


class MissingFileError(UpgradeError):
    """A file the upgrade needs does not exist."""

    exit_code = ExitCode.MISSING_FILE

    def __init__(self, path: Path | str, what: str = "file"):
        self.path = Path(path)
        self.what = what
        super().__init__(f"Missing {what}: {path}")


class AccountError(UpgradeError):
    """Creating or modifying a user or group failed."""

    exit_code = ExitCode.ACCOUNT

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Account operation failed for {name}: {reason}")


class DatabaseRebuildError(UpgradeError):
    """A post-upgrade system database rebuild command failed."""

    exit_code = ExitCode.DATABASE

    def __init__(self, command: Sequence[str], reason: str):
        self.command = list(command)
        self.reason = reason
        super().__init__(f"Database rebuild failed ({' '.join(command)}): {reason}")


class StepFailedError(UpgradeError):
    """A pipeline step failed; carries the exit code of the underlying error."""

    def __init__(self, index: int, name: str, cause: UpgradeError):
        self.index = index
        self.name = name
        self.cause = cause
        self.exit_code = cause.exit_code
        super().__init__(f"Step {index} ({name}) failed: {cause}")
