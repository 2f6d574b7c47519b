"""Removal of files and directories the new release no longer ships.

The list of obsolete paths comes from a make-style include file, evaluated
with the configured make tool (``make -f <manifest> -V OLD_FILES -V OLD_DIRS``
by default). If the reconciliation step left a newer manifest waiting under the
merge suffix, that file is preferred over the installed one.
"""

from __future__ import annotations

import os
import re
import shutil
from pathlib import Path, PurePosixPath
from typing import Optional

from release_upgrade.config.settings import UpgradeConfig
from release_upgrade.logging import LoggerFactory
from release_upgrade.storage.commands import CommandError, run_checked_command
from release_upgrade.storage.copy import clear_protective_flags
from release_upgrade.storage.exceptions import ManifestError, MissingFileError, RemovalError

log = LoggerFactory.for_sweep()

# .../man/man1/ls.1 and .../man/<locale>/man1/ls.1
_MAN_PAGE_RE = re.compile(
    r"^(?P<prefix>(?:.*/)?man/(?:[^/]+/)?)man(?P<section>\d[^/]*)/(?P<page>[^/]+)$"
)


def resolve_manifest(
    manifest_file: Path,
    override_suffix: str,
) -> Path:
    """Pick the override manifest if present, the shipped one otherwise.

    Raises:
        MissingFileError: If neither exists
    """
    override = manifest_file.with_name(manifest_file.name + override_suffix)
    if override.is_file():
        log.info(f"Using pending manifest {override}")
        return override
    if manifest_file.is_file():
        return manifest_file
    raise MissingFileError(manifest_file, "obsolete file manifest")


def evaluate_manifest(config: UpgradeConfig, manifest: Path) -> list[str]:
    """Evaluate the manifest variables into a flat list of paths.

    Blank entries and duplicates are dropped; order is preserved, so files
    listed in the first variable come before directories in the second.

    Raises:
        ManifestError: If the make tool fails
    """
    command = [config.make_tool, "-f", str(manifest)]
    for variable in config.manifest_variables:
        command.extend(["-V", variable])
    try:
        output = run_checked_command(command)
    except CommandError as e:
        raise ManifestError(manifest, e.message) from e

    seen = set()
    entries = []
    for token in output.split():
        if token and token not in seen:
            seen.add(token)
            entries.append(token)
    log.debug(f"Manifest {manifest} lists {len(entries)} paths")
    return entries


def formatted_page_path(path: str) -> Optional[str]:
    """Formatted (catN) counterpart of a manual page in a manN directory.

    >>> formatted_page_path("/usr/share/man/man1/old.1")
    '/usr/share/man/cat1/old.1'
    >>> formatted_page_path("/usr/share/doc/obsolete.txt") is None
    True
    """
    match = _MAN_PAGE_RE.match(path)
    if not match:
        return None
    return f"{match.group('prefix')}cat{match.group('section')}/{match.group('page')}"


def _live_path(live_root: Path, entry: str) -> Optional[Path]:
    relative = PurePosixPath(entry.lstrip("/"))
    if not relative.parts or ".." in relative.parts:
        return None
    return live_root / relative


def remove_path(path: Path) -> None:
    """Clear protective flags on ``path`` and everything below it, then remove it.

    Raises:
        RemovalError: If flags cannot be cleared or the removal fails
    """
    log.info(f"Removing {path}")
    try:
        clear_protective_flags(path, recursive=True)
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            os.unlink(path)
    except OSError as e:
        raise RemovalError(path, str(e)) from e


def sweep_obsolete(
    config: UpgradeConfig,
    manifest_file: Optional[Path] = None,
    override_suffix: Optional[str] = None,
) -> list[Path]:
    """Remove every path listed in the obsolete-file manifest.

    Paths that do not exist are skipped without comment.

    Returns:
        The removed paths, including formatted manual pages

    Raises:
        MissingFileError: If no manifest exists
        ManifestError: If the manifest cannot be evaluated
        RemovalError: If a removal fails
    """
    manifest_file = Path(manifest_file or config.manifest_file)
    override_suffix = config.merge_suffix if override_suffix is None else override_suffix

    manifest = resolve_manifest(manifest_file, override_suffix)
    removed = []
    for entry in evaluate_manifest(config, manifest):
        path = _live_path(config.live_root, entry)
        if path is None:
            log.warning(f"Ignoring unsafe manifest entry {entry!r}")
            continue
        if os.path.lexists(path):
            remove_path(path)
            removed.append(path)

        formatted = formatted_page_path("/" + entry.lstrip("/"))
        if formatted is not None:
            cat_path = _live_path(config.live_root, formatted)
            if cat_path is not None and os.path.lexists(cat_path):
                remove_path(cat_path)
                removed.append(cat_path)

    log.info(f"Removed {len(removed)} obsolete paths")
    return removed
