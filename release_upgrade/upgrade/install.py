"""Bulk installation of release directories into the live root."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

from release_upgrade.config.settings import UpgradeConfig
from release_upgrade.logging import LoggerFactory
from release_upgrade.storage.commands import CommandError, run_checked_command
from release_upgrade.storage.copy import copy_tree
from release_upgrade.storage.exceptions import CopyError, MissingFileError

log = LoggerFactory.for_install()


def is_config_path(path: str, config_dir: str) -> bool:
    normalized = path.strip("/")
    config_dir = config_dir.strip("/")
    return normalized == config_dir or normalized.startswith(config_dir + "/")


def apply_directory_templates(config: UpgradeConfig, mount_point: Path) -> None:
    """Create the release's directory hierarchy in the live root.

    Each template from the release's mtree directory is applied to its live
    subtree so that directories exist with the expected owner and mode before
    files are copied on top.

    Raises:
        MissingFileError: If a template is missing from the release
        CopyError: If the hierarchy tool fails
    """
    for template, subtree in config.mtree_templates:
        template_file = mount_point / config.mtree_dir / template
        if not template_file.is_file():
            raise MissingFileError(template_file, "directory template")
        target = config.live_root / subtree
        try:
            target.mkdir(parents=True, exist_ok=True)
            run_checked_command(
                [config.mtree_tool, "-deU", "-f", str(template_file), "-p", str(target)]
            )
        except (CommandError, OSError) as e:
            raise CopyError(
                f"Failed to apply {template} to {target}: {e}",
                source=str(template_file),
                destination=str(target),
            ) from e
        log.debug(f"Applied {template} to {target}")


def install_world(
    config: UpgradeConfig,
    exclusion_file: Optional[Path],
    mount_point: Optional[Path] = None,
    install_list: Optional[Iterable[str]] = None,
) -> list[str]:
    """Copy the listed top-level release paths into the live root.

    The configuration directory is never installed here; it is reported and
    skipped, since it is merged by the reconciliation step instead.

    Returns:
        The paths that were installed

    Raises:
        MissingFileError: If a directory template is missing
        CopyError: If any path fails to copy
    """
    mount_point = Path(mount_point or config.mount_point)
    install_list = config.install_list if install_list is None else list(install_list)

    apply_directory_templates(config, mount_point)

    installed = []
    for path in install_list:
        if is_config_path(path, config.config_dir):
            log.warning(
                f"Not installing {path}: /{config.config_dir} is merged by the "
                f"config reconciliation step"
            )
            continue
        log.info(f"Installing /{path.strip('/')}")
        count = copy_tree(mount_point, config.live_root, path, exclude_from=exclusion_file)
        log.debug(f"Installed {count} entries under /{path.strip('/')}")
        installed.append(path)
    return installed
