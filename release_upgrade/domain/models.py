"""Domain model for upgrade runs.

Type-safe objects passed between the pipeline and its components in place of
loose tuples and dicts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional


# ==============================================================================
# Pipeline Domain
# ==============================================================================


@dataclass(frozen=True)
class Step:
    """A named upgrade step at a fixed position in the pipeline."""

    index: int
    name: str
    action: Callable[[], None]
    description: str = ""

    def format_label(self) -> str:
        """Human-readable label, e.g. ``"3 (install_world)"``."""
        return f"{self.index} ({self.name})"


@dataclass(frozen=True)
class StepRange:
    """Inclusive range of step indices to execute.

    ``stop=None`` means "through the last step". A range with
    ``start > stop`` is valid and selects nothing.
    """

    start: int = 0
    stop: Optional[int] = None

    def contains(self, index: int) -> bool:
        if index < self.start:
            return False
        return self.stop is None or index <= self.stop


@dataclass
class PipelineResult:
    ran_steps: list[str] = field(default_factory=list)
    skipped_steps: list[str] = field(default_factory=list)


# ==============================================================================
# Storage Domain
# ==============================================================================


@dataclass(frozen=True)
class MountBinding:
    """An image attached as a virtual block device and mounted."""

    image_file: Path
    backing_device: str  # e.g., "md0"
    mount_point: Path
    partition_suffix: str  # e.g., "s2a"

    @property
    def partition_device(self) -> str:
        """Device node of the mounted partition (e.g., /dev/md0s2a)."""
        return f"/dev/{self.backing_device}{self.partition_suffix}"


# ==============================================================================
# Configuration Reconciliation Domain
# ==============================================================================


@dataclass(frozen=True)
class ReconciliationEntry:
    """Comparison of one staged configuration file against the live tree."""

    relative_path: str
    live_exists: bool
    identical: bool

    @property
    def is_new(self) -> bool:
        return not self.live_exists

    @property
    def needs_merge(self) -> bool:
        return self.live_exists and not self.identical


@dataclass
class ReconcileResult:
    new: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    pending_merges: list[Path] = field(default_factory=list)


# ==============================================================================
# Accounts Domain
# ==============================================================================


@dataclass(frozen=True)
class UserRecord:
    """One line of a passwd(5) format file."""

    name: str
    uid: int
    gid: int
    gecos: str
    home: str
    shell: str

    @classmethod
    def from_line(cls, line: str) -> UserRecord:
        """Parse ``name:pw:uid:gid:gecos:home:shell``.

        Raises:
            ValueError: If the line does not have seven fields or numeric ids
        """
        parts = line.rstrip("\n").split(":")
        if len(parts) != 7:
            raise ValueError(f"Malformed passwd line: {line!r}")
        name, _password, uid, gid, gecos, home, shell = parts
        return cls(
            name=name,
            uid=int(uid),
            gid=int(gid),
            gecos=gecos,
            home=home,
            shell=shell,
        )


@dataclass(frozen=True)
class GroupRecord:
    """One line of a group(5) format file."""

    name: str
    gid: int
    members: tuple[str, ...] = ()

    @classmethod
    def from_line(cls, line: str) -> GroupRecord:
        """Parse ``name:pw:gid:member,member``.

        Raises:
            ValueError: If the line does not have four fields or a numeric gid
        """
        parts = line.rstrip("\n").split(":")
        if len(parts) != 4:
            raise ValueError(f"Malformed group line: {line!r}")
        name, _password, gid, members = parts
        return cls(
            name=name,
            gid=int(gid),
            members=tuple(m for m in members.split(",") if m),
        )
