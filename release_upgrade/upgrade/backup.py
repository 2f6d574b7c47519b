"""Backups taken before the live system is modified.

Only one generation is kept: a new run overwrites the previous kernel copy
and world archive, with a warning.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from release_upgrade.config.settings import UpgradeConfig
from release_upgrade.logging import LoggerFactory
from release_upgrade.storage.commands import CommandError, run_checked_command
from release_upgrade.storage.copy import copy_tree
from release_upgrade.storage.exceptions import ArchiveError, CopyError, MissingFileError

log = LoggerFactory.for_install()


def backup_kernel(config: UpgradeConfig) -> Path:
    """Copy the running kernel directory into the backup directory.

    Raises:
        MissingFileError: If the live kernel directory does not exist
        CopyError: If the old backup cannot be removed or the copy fails
    """
    source = config.live_root / config.kernel_dir
    dest = config.backup_dir / config.kernel_backup_name
    if not source.is_dir():
        raise MissingFileError(source, "kernel directory")

    try:
        config.backup_dir.mkdir(parents=True, exist_ok=True)
        if dest.exists():
            log.warning(f"Overwriting previous kernel backup {dest}")
            shutil.rmtree(dest)
    except OSError as e:
        raise CopyError(f"Cannot prepare kernel backup {dest}: {e}", destination=str(dest)) from e

    copy_tree(
        config.live_root,
        config.backup_dir,
        config.kernel_dir,
        dest_relative=config.kernel_backup_name,
    )
    log.info(f"Kernel backed up to {dest}")
    return dest


def backup_world(config: UpgradeConfig) -> Path:
    """Archive the configured system paths into a compressed tarball.

    The archive is written next to its final name and renamed into place, so a
    failed run leaves the previous backup intact.

    Raises:
        ArchiveError: If the archive cannot be written
    """
    archive = config.backup_dir / config.world_archive_name
    partial = archive.with_name(archive.name + ".partial")

    paths = []
    for path in config.backup_paths:
        relative = path.strip("/")
        if (config.live_root / relative).exists():
            paths.append(relative)
        else:
            log.debug(f"Not archiving missing path /{relative}")
    if not paths:
        raise ArchiveError(archive, "none of the backup paths exist")

    if archive.exists():
        log.warning(f"Overwriting previous world backup {archive}")

    try:
        config.backup_dir.mkdir(parents=True, exist_ok=True)
        run_checked_command(
            [config.tar_tool, "-czf", str(partial), "-C", str(config.live_root), *paths]
        )
        os.replace(partial, archive)
    except CommandError as e:
        partial.unlink(missing_ok=True)
        raise ArchiveError(archive, e.message) from e
    except OSError as e:
        raise ArchiveError(archive, str(e)) from e

    log.info(f"World backed up to {archive}")
    return archive
