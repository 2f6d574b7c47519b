"""The upgrade steps, in execution order.

Step indices are part of the command line interface (``-s``/``-S``), so new
steps go at the end.

    0 mount_image        attach and mount the release image
    1 backup_kernel      copy the running kernel to the backup directory
    2 backup_world       archive the base system to the backup directory
    3 install_world      bulk install release directories
    4 update_accounts    create users and groups new in this release
    5 reconcile_config   merge the release configuration directory
    6 remove_obsolete    delete files the release no longer ships
    7 unmount_image      unmount and detach the release image
    8 rebuild_databases  rebuild login, password, alias, man and library databases
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from release_upgrade.config.settings import UpgradeConfig
from release_upgrade.pipeline.registry import StepRegistry
from release_upgrade.storage.exceptions import ArgumentError
from release_upgrade.storage.exclusions import build_exclusion_list
from release_upgrade.storage.fetch import resolve_image
from release_upgrade.storage.mount import mount_image, unmount_image
from release_upgrade.upgrade.accounts import provision_accounts
from release_upgrade.upgrade.backup import backup_kernel, backup_world
from release_upgrade.upgrade.databases import rebuild_databases
from release_upgrade.upgrade.install import install_world
from release_upgrade.upgrade.obsolete import sweep_obsolete
from release_upgrade.upgrade.reconcile import reconcile_config


@dataclass
class UpgradeContext:
    config: UpgradeConfig
    image_ref: Optional[str] = None


def _mount(ctx: UpgradeContext) -> None:
    if not ctx.image_ref:
        raise ArgumentError("An image file is required to run the mount step")
    image = resolve_image(ctx.config, ctx.image_ref)
    mount_image(ctx.config, image)


def _install(ctx: UpgradeContext) -> None:
    exclusion_file = build_exclusion_list(ctx.config)
    try:
        install_world(ctx.config, exclusion_file)
    finally:
        exclusion_file.unlink(missing_ok=True)


def _reconcile(ctx: UpgradeContext) -> None:
    exclusion_file = build_exclusion_list(ctx.config)
    try:
        reconcile_config(ctx.config, exclusion_file)
    finally:
        exclusion_file.unlink(missing_ok=True)


def build_steps(ctx: UpgradeContext) -> StepRegistry:
    config = ctx.config
    registry = StepRegistry()
    registry.add("mount_image", lambda: _mount(ctx), "Attach and mount the release image")
    registry.add("backup_kernel", lambda: backup_kernel(config), "Back up the running kernel")
    registry.add("backup_world", lambda: backup_world(config), "Archive the base system")
    registry.add("install_world", lambda: _install(ctx), "Install release directories")
    registry.add("update_accounts", lambda: provision_accounts(config), "Add new users and groups")
    registry.add("reconcile_config", lambda: _reconcile(ctx), "Merge configuration files")
    registry.add("remove_obsolete", lambda: sweep_obsolete(config), "Remove obsolete files")
    registry.add("unmount_image", lambda: unmount_image(config), "Unmount the release image")
    registry.add("rebuild_databases", lambda: rebuild_databases(config), "Rebuild system databases")
    return registry
