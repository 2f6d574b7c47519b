"""User and group provisioning from the release's account files.

Users and groups that exist in the release but not on the live system are
created with ``pw``. A new user's primary group may itself be new, and a new
group may list new users as members, so the order is:

1. create the missing users with the sentinel group as primary group
2. create the missing groups (with their member lists)
3. move each new user to its real primary group
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from release_upgrade.config.settings import UpgradeConfig
from release_upgrade.domain import GroupRecord, UserRecord
from release_upgrade.logging import LoggerFactory
from release_upgrade.storage.commands import CommandError, run_checked_command
from release_upgrade.storage.exceptions import AccountError, MissingFileError

log = LoggerFactory.for_accounts()


def _records(path: Path) -> list[str]:
    if not path.is_file():
        raise MissingFileError(path, "account file")
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise AccountError(str(path), f"cannot read account file: {e}") from e
    lines = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            lines.append(stripped)
    return lines


def read_users(path: Path) -> list[UserRecord]:
    try:
        return [UserRecord.from_line(line) for line in _records(path)]
    except ValueError as e:
        raise AccountError(str(path), str(e)) from e


def read_groups(path: Path) -> list[GroupRecord]:
    try:
        return [GroupRecord.from_line(line) for line in _records(path)]
    except ValueError as e:
        raise AccountError(str(path), str(e)) from e


def _pw(config: UpgradeConfig, name: str, *args: str) -> None:
    command = [config.pw_tool]
    if config.live_root != Path("/"):
        command.extend(["-R", str(config.live_root)])
    command.extend(args)
    try:
        run_checked_command(command)
    except CommandError as e:
        raise AccountError(name, e.message) from e


def provision_accounts(
    config: UpgradeConfig,
    mount_point: Optional[Path] = None,
) -> tuple[list[str], list[str]]:
    """Create users and groups present in the release but not on the live system.

    Returns:
        (created user names, created group names)

    Raises:
        MissingFileError: If an account file is missing
        AccountError: If a record is malformed or ``pw`` fails
    """
    mount_point = Path(mount_point or config.mount_point)
    release_etc = mount_point / config.config_dir
    live_etc = config.live_config_dir

    release_users = read_users(release_etc / "passwd")
    release_groups = read_groups(release_etc / "group")
    live_users = {user.name for user in read_users(live_etc / "passwd")}
    live_groups = read_groups(live_etc / "group")
    live_group_names = {group.name for group in live_groups}

    new_users = [user for user in release_users if user.name not in live_users]
    new_groups = [group for group in release_groups if group.name not in live_group_names]

    if not new_users and not new_groups:
        log.info("No new users or groups")
        return [], []

    if new_users and config.sentinel_group not in live_group_names:
        raise AccountError(config.sentinel_group, "sentinel group does not exist")

    for user in new_users:
        log.info(f"Adding user {user.name} (uid {user.uid})")
        _pw(
            config,
            user.name,
            "useradd",
            user.name,
            "-u",
            str(user.uid),
            "-g",
            config.sentinel_group,
            "-c",
            user.gecos,
            "-d",
            user.home,
            "-s",
            user.shell,
        )

    for group in new_groups:
        log.info(f"Adding group {group.name} (gid {group.gid})")
        args = ["groupadd", group.name, "-g", str(group.gid)]
        if group.members:
            args.extend(["-M", ",".join(group.members)])
        _pw(config, group.name, *args)

    for user in new_users:
        log.debug(f"Setting primary group of {user.name} to {user.gid}")
        _pw(config, user.name, "usermod", user.name, "-g", str(user.gid))

    return [user.name for user in new_users], [group.name for group in new_groups]
