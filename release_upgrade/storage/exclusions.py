"""Exclusion lists for bulk copies out of the mounted release.

An exclusion list is a temporary file holding one absolute path per line. Each
line is a configured path joined to the mount point; paths under the
configuration directory are first moved to the staging name, because the
configuration tree is copied into ``<staging name>`` rather than installed in
place (see :mod:`release_upgrade.upgrade.reconcile`).
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional

from release_upgrade.config.settings import UpgradeConfig
from release_upgrade.logging import LoggerFactory
from release_upgrade.storage.exceptions import TempFileError


log = LoggerFactory.for_install()


def rewrite_config_path(path: str, config_dir: str, staging_name: str) -> str:
    """Move a path under the configuration directory to the staging name.

    >>> rewrite_config_path("/etc/fstab", "etc", "etc.staged")
    '/etc.staged/fstab'
    >>> rewrite_config_path("/boot/loader.conf", "etc", "etc.staged")
    '/boot/loader.conf'
    """
    normalized = str(PurePosixPath("/") / path.lstrip("/"))
    config_root = "/" + config_dir.strip("/")
    if normalized == config_root or normalized.startswith(config_root + "/"):
        return "/" + staging_name.strip("/") + normalized[len(config_root):]
    return normalized


def build_exclusion_list(
    config: UpgradeConfig,
    static_list: Optional[Iterable[str]] = None,
    mount_point: Path | str | None = None,
) -> Path:
    """Write a fresh exclusion list file and return its path.

    The caller owns the returned file and must delete it after the copy.

    Raises:
        TempFileError: If the file cannot be created or written
    """
    static_list = config.exclusion_list if static_list is None else static_list
    mount_point = str(mount_point or config.mount_point).rstrip("/")

    lines = []
    for path in static_list:
        if not path.strip():
            continue
        rewritten = rewrite_config_path(path.strip(), config.config_dir, config.staging_name)
        lines.append(mount_point + rewritten)

    try:
        config.cache_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix="exclude.", suffix=".lst", dir=config.cache_dir)
    except OSError as e:
        raise TempFileError(config.cache_dir, str(e)) from e

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            for line in lines:
                f.write(line + "\n")
    except OSError as e:
        Path(name).unlink(missing_ok=True)
        raise TempFileError(config.cache_dir, str(e)) from e

    log.debug(f"Wrote {len(lines)} exclusions to {name}")
    return Path(name)


def load_exclusion_list(path: Path | str) -> set[str]:
    """Read an exclusion list file into a set of normalized paths."""
    entries = set()
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                entries.add(os.path.normpath(line))
    return entries
