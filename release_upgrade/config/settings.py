"""Settings for an upgrade run.

Everything the pipeline can be tuned with lives on :class:`UpgradeConfig`. The
config is built once at startup from the defaults below, optionally overlaid
with a JSON file, and then handed to each component explicitly.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

from release_upgrade.storage.exceptions import ConfigError


CONFIG_PATH = Path(
    os.environ.get(
        "RELEASE_UPGRADE_CONFIG",
        "/usr/local/etc/release-upgrade.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_MERGE_SUFFIX = ".needs-merge"
DEFAULT_PARTITION_SUFFIX = "s2a"

DEFAULT_INSTALL_LIST = [
    "bin",
    "boot",
    "lib",
    "libexec",
    "rescue",
    "sbin",
    "usr",
]

DEFAULT_EXCLUSION_LIST = [
    "/boot/loader.conf",
    "/boot/entropy",
    "/etc/fstab",
    "/etc/rc.conf",
    "/etc/hosts",
    "/etc/resolv.conf",
    "/etc/passwd",
    "/etc/master.passwd",
    "/etc/group",
    "/etc/pwd.db",
    "/etc/spwd.db",
    "/etc/login.conf.db",
    "/etc/aliases.db",
]

DEFAULT_BACKUP_PATHS = [
    "bin",
    "etc",
    "lib",
    "libexec",
    "rescue",
    "sbin",
    "usr/bin",
    "usr/include",
    "usr/lib",
    "usr/libexec",
    "usr/sbin",
]

# (template file under the release's mtree directory, live subtree)
DEFAULT_MTREE_TEMPLATES = [
    ["BSD.root.dist", "."],
    ["BSD.usr.dist", "usr"],
    ["BSD.var.dist", "var"],
    ["BSD.include.dist", "usr/include"],
]

DEFAULT_DATABASE_COMMANDS = [
    ["cap_mkdb", "/etc/login.conf"],
    ["pwd_mkdb", "-p", "/etc/master.passwd"],
    ["newaliases"],
    ["makewhatis", "/usr/share/man"],
    ["service", "ldconfig", "restart"],
]


@dataclass
class UpgradeConfig:
    # Filesystem layout
    live_root: Path = Path("/")
    mount_point: Path = Path("/mnt/release-upgrade")
    cache_dir: Path = Path("/var/cache/release-upgrade")
    backup_dir: Path = Path("/var/backups/release-upgrade")

    # Tools
    mdconfig_tool: str = "mdconfig"
    mount_tool: str = "mount"
    umount_tool: str = "umount"
    make_tool: str = "make"
    mtree_tool: str = "mtree"
    tar_tool: str = "tar"
    pw_tool: str = "pw"
    # Arguments for mdconfig_tool; "{image}" and "{unit}" are substituted
    attach_args: list[str] = field(
        default_factory=lambda: ["-a", "-t", "vnode", "-f", "{image}"]
    )
    detach_args: list[str] = field(default_factory=lambda: ["-d", "-u", "{unit}"])

    # Image
    partition_suffix: str = DEFAULT_PARTITION_SUFFIX
    mount_options: str = "ro"
    image_sha256: Optional[str] = None
    fetch_timeout_seconds: float = 3600.0

    # Configuration directory handling
    config_dir: str = "etc"
    staging_name: str = "etc.staged"
    merge_suffix: str = DEFAULT_MERGE_SUFFIX

    # Install, exclusion and backup sets
    install_list: list[str] = field(default_factory=lambda: list(DEFAULT_INSTALL_LIST))
    exclusion_list: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUSION_LIST))
    backup_paths: list[str] = field(default_factory=lambda: list(DEFAULT_BACKUP_PATHS))
    kernel_dir: str = "boot/kernel"
    kernel_backup_name: str = "kernel"
    world_archive_name: str = "world.tgz"
    mtree_dir: str = "etc/mtree"
    mtree_templates: list[list[str]] = field(
        default_factory=lambda: [list(item) for item in DEFAULT_MTREE_TEMPLATES]
    )

    # Obsolete files
    manifest_path: str = "etc/upgrade/ObsoleteFiles.inc"
    manifest_variables: list[str] = field(default_factory=lambda: ["OLD_FILES", "OLD_DIRS"])

    # Accounts and databases
    sentinel_group: str = "nogroup"
    database_commands: list[list[str]] = field(
        default_factory=lambda: [list(cmd) for cmd in DEFAULT_DATABASE_COMMANDS]
    )

    @property
    def live_config_dir(self) -> Path:
        return self.live_root / self.config_dir

    @property
    def staging_dir(self) -> Path:
        return self.cache_dir / self.staging_name

    @property
    def manifest_file(self) -> Path:
        return self.live_root / self.manifest_path

    @classmethod
    def from_dict(cls, data: dict[str, Any], source: Path | str = "<dict>") -> UpgradeConfig:
        """Build a config from defaults overlaid with ``data``.

        Raises:
            ConfigError: If ``data`` has unknown keys or a value of the wrong shape
        """
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ConfigError(source, f"unknown settings: {', '.join(unknown)}")

        defaults = cls()
        values: dict[str, Any] = {}
        for key, value in data.items():
            default = getattr(defaults, key)
            if isinstance(default, Path):
                if not isinstance(value, str) or not value:
                    raise ConfigError(source, f"{key} must be a non-empty path string")
                values[key] = Path(value)
            elif isinstance(default, list):
                if not isinstance(value, list):
                    raise ConfigError(source, f"{key} must be a list")
                if key in _NESTED_LIST_KEYS:
                    if not all(_is_str_list(item) for item in value):
                        raise ConfigError(source, f"{key} must be a list of string lists")
                elif not _is_str_list(value):
                    raise ConfigError(source, f"{key} must be a list of strings")
                values[key] = value
            elif key == "image_sha256":
                if value is not None and not isinstance(value, str):
                    raise ConfigError(source, f"{key} must be a string or null")
                values[key] = value
            elif isinstance(default, float):
                # bool is an int subclass but never a valid number here
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    raise ConfigError(source, f"{key} must be a number")
                values[key] = float(value)
            else:
                if not isinstance(value, type(default)):
                    raise ConfigError(
                        source, f"{key} must be of type {type(default).__name__}"
                    )
                values[key] = value
        return cls(**values)


_NESTED_LIST_KEYS = frozenset({"mtree_templates", "database_commands"})


def _is_str_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def load_config(path: Path | str | None = None) -> UpgradeConfig:
    """Load the upgrade configuration.

    An explicitly given ``path`` must exist and parse. Without one, the default
    location is used when present and the built-in defaults otherwise.

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    if path is None:
        if not CONFIG_PATH.exists():
            return UpgradeConfig()
        path = CONFIG_PATH
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(path, str(e)) from e
    if not isinstance(data, dict):
        raise ConfigError(path, "top level must be a JSON object")
    return UpgradeConfig.from_dict(data, source=path)
