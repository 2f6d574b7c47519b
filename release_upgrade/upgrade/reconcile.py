"""Reconciliation of the release configuration tree with the live one.

The release's configuration directory is copied to a staging directory and
each staged file is compared with its live counterpart:

- identical: the staged copy is dropped
- different: the staged copy is renamed with the merge suffix
- no live file: the staged copy is kept as is

What remains in staging is then copied into the live directory, so new files
appear directly and changed files appear next to the live ones under the
merge suffix. Suffixed files are never merged automatically.

Re-running the reconciliation replaces any suffixed file left by a previous
run with the release's version again; edits an operator made to a suffixed
file are lost. A warning is logged for each such file before it is replaced.
"""

from __future__ import annotations

import filecmp
import os
import shutil
from pathlib import Path
from typing import Iterator, Optional

from release_upgrade.config.settings import UpgradeConfig
from release_upgrade.domain import ReconcileResult, ReconciliationEntry
from release_upgrade.logging import LoggerFactory
from release_upgrade.storage.copy import copy_tree
from release_upgrade.storage.exceptions import CopyError

log = LoggerFactory.for_config()


def iter_regular_files(root: Path) -> Iterator[str]:
    """Yield regular files under ``root`` as sorted relative paths."""
    found = []
    for dirpath, _dirs, files in os.walk(root):
        for name in files:
            path = Path(dirpath) / name
            if path.is_file() and not path.is_symlink():
                found.append(path.relative_to(root).as_posix())
    yield from sorted(found)


def compare_entry(staged: Path, live: Path, relative_path: str) -> ReconciliationEntry:
    live_exists = live.is_file()
    identical = live_exists and filecmp.cmp(staged, live, shallow=False)
    return ReconciliationEntry(
        relative_path=relative_path,
        live_exists=live_exists,
        identical=identical,
    )


def find_pending_merges(live_config_dir: Path, merge_suffix: str) -> list[Path]:
    """All files under the live config dir that still carry the merge suffix."""
    pending = []
    for dirpath, _dirs, files in os.walk(live_config_dir):
        for name in files:
            if name.endswith(merge_suffix):
                pending.append(Path(dirpath) / name)
    return sorted(pending)


def _remove_staging(staging_dir: Path) -> None:
    if staging_dir.exists():
        shutil.rmtree(staging_dir)


def reconcile_config(
    config: UpgradeConfig,
    exclusion_file: Optional[Path],
    mount_point: Optional[Path] = None,
) -> ReconcileResult:
    """Stage, classify and install the release configuration tree.

    Returns:
        New files, updated files and every file awaiting a manual merge

    Raises:
        CopyError: If staging, classification or the final copy fails
    """
    mount_point = Path(mount_point or config.mount_point)
    live_config_dir = config.live_config_dir
    staging_dir = config.staging_dir
    suffix = config.merge_suffix
    result = ReconcileResult()

    try:
        _remove_staging(staging_dir)
        config.cache_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise CopyError(f"Cannot prepare staging directory {staging_dir}: {e}") from e

    log.info(f"Staging /{config.config_dir} from the release in {staging_dir}")
    copy_tree(
        mount_point,
        config.cache_dir,
        config.config_dir,
        dest_relative=config.staging_name,
        exclude_from=exclusion_file,
    )

    try:
        for relative_path in iter_regular_files(staging_dir):
            staged = staging_dir / relative_path
            live = live_config_dir / relative_path
            entry = compare_entry(staged, live, relative_path)

            if entry.identical:
                staged.unlink()
                log.debug(f"Unchanged: {relative_path}")
            elif entry.needs_merge:
                merge_name = staged.with_name(staged.name + suffix)
                previous = live.with_name(live.name + suffix)
                if previous.exists():
                    log.warning(
                        f"Replacing unresolved merge file {previous}; "
                        f"edits made to it will be lost"
                    )
                staged.rename(merge_name)
                result.updated.append(relative_path)
                log.info(f"Updated: /{config.config_dir}/{relative_path}")
            else:
                result.new.append(relative_path)
                log.info(f"New: /{config.config_dir}/{relative_path}")
    except OSError as e:
        raise CopyError(f"Failed to classify staged configuration: {e}") from e

    copy_tree(
        config.cache_dir,
        config.live_root,
        config.staging_name,
        dest_relative=config.config_dir,
    )

    try:
        _remove_staging(staging_dir)
    except OSError as e:
        raise CopyError(f"Cannot remove staging directory {staging_dir}: {e}") from e

    result.pending_merges = find_pending_merges(live_config_dir, suffix)
    if result.pending_merges:
        log.warning(
            f"{len(result.pending_merges)} file(s) need a manual merge before reboot:"
        )
        for path in result.pending_merges:
            log.warning(f"  {path}")
    else:
        log.info("No configuration files need merging")
    return result
