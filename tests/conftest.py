"""
Pytest configuration and shared fixtures for release-upgrade tests.

This module provides common fixtures and utilities used across all test modules.
"""

from collections import namedtuple
from pathlib import Path
from typing import Any, Dict, List
from unittest.mock import Mock

import pytest

from release_upgrade.config.settings import UpgradeConfig
from release_upgrade.logging import logger


# Same shape as psutil._common.sdiskpart for the fields we read
FakePartition = namedtuple("FakePartition", ["device", "mountpoint", "fstype", "opts"])


def write_file(path: Path, content: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


# ==============================================================================
# Configuration Fixtures
# ==============================================================================


@pytest.fixture
def upgrade_config(tmp_path) -> UpgradeConfig:
    """
    Fixture providing a config whose every directory lives under tmp_path.

    Returns:
        UpgradeConfig with live root, mount point, cache and backup dirs in tmp_path.
    """
    live_root = tmp_path / "live"
    mount_point = tmp_path / "mnt"
    live_root.mkdir()
    mount_point.mkdir()
    return UpgradeConfig(
        live_root=live_root,
        mount_point=mount_point,
        cache_dir=tmp_path / "cache",
        backup_dir=tmp_path / "backup",
        exclusion_list=["/etc/fstab", "/etc/rc.conf", "/boot/loader.conf"],
        install_list=["bin", "boot", "usr"],
        backup_paths=["bin", "etc", "usr/bin"],
        mtree_templates=[["BSD.root.dist", "."], ["BSD.usr.dist", "usr"]],
    )


@pytest.fixture
def sample_config_data() -> Dict[str, Any]:
    """
    Fixture providing sample JSON configuration data.

    Returns:
        Dict with typical configuration overrides.
    """
    return {
        "mount_point": "/mnt/upgrade",
        "partition_suffix": "p2",
        "install_list": ["bin", "sbin"],
        "image_sha256": "ab" * 32,
    }


# ==============================================================================
# File System Fixtures
# ==============================================================================


@pytest.fixture
def release_tree(upgrade_config) -> Path:
    """
    Fixture populating the mount point with a small release.

    Returns:
        Path to the mount point.
    """
    root = upgrade_config.mount_point
    write_file(root / "bin" / "ls", "ls v2\n")
    write_file(root / "bin" / "cat", "cat v2\n")
    write_file(root / "boot" / "kernel" / "kernel", "kernel v2\n")
    write_file(root / "boot" / "loader.conf", "release loader.conf\n")
    write_file(root / "usr" / "bin" / "grep", "grep v2\n")
    write_file(root / "etc" / "rc.conf", "release rc.conf\n")
    write_file(root / "etc" / "fstab", "release fstab\n")
    write_file(root / "etc" / "motd", "Welcome\n")
    write_file(root / "etc" / "ssh" / "sshd_config", "Port 22\n")
    write_file(root / "etc" / "newfile.conf", "brand new\n")
    write_file(root / "etc" / "mtree" / "BSD.root.dist", "/set type=dir\n")
    write_file(root / "etc" / "mtree" / "BSD.usr.dist", "/set type=dir\n")
    return root


@pytest.fixture
def live_tree(upgrade_config) -> Path:
    """
    Fixture populating the live root with an older installed system.

    Returns:
        Path to the live root.
    """
    root = upgrade_config.live_root
    write_file(root / "bin" / "ls", "ls v1\n")
    write_file(root / "boot" / "kernel" / "kernel", "kernel v1\n")
    write_file(root / "boot" / "loader.conf", "operator loader.conf\n")
    write_file(root / "etc" / "rc.conf", "operator rc.conf\n")
    write_file(root / "etc" / "fstab", "operator fstab\n")
    write_file(root / "etc" / "motd", "Welcome\n")
    write_file(root / "etc" / "ssh" / "sshd_config", "Port 2222\n")
    return root


# ==============================================================================
# Subprocess Mock Fixtures
# ==============================================================================


@pytest.fixture
def mock_subprocess_run(mocker):
    """
    Fixture providing a mock for subprocess.run that succeeds with no output.

    Returns:
        Mock object for subprocess.run
    """
    return mocker.patch(
        "subprocess.run", return_value=Mock(returncode=0, stdout="", stderr="")
    )


@pytest.fixture
def capture_subprocess_calls(mocker) -> List[List]:
    """
    Fixture that captures all subprocess.run calls for inspection.

    Returns:
        List that will contain all subprocess command arguments.
    """
    calls = []

    def track_call(cmd, **kwargs):
        calls.append(cmd)
        result = Mock()
        result.returncode = 0
        result.stdout = ""
        result.stderr = ""
        return result

    mocker.patch("subprocess.run", side_effect=track_call)
    return calls


@pytest.fixture
def mount_table(mocker):
    """
    Fixture replacing the live mount table read through psutil.

    Returns:
        Callable taking (device, mountpoint) that adds an active mount.
    """
    table: List[FakePartition] = []
    mocker.patch(
        "release_upgrade.storage.mount.psutil.disk_partitions",
        side_effect=lambda all=False: list(table),
    )

    def bind(device: str, mountpoint) -> None:
        table.append(FakePartition(device, str(mountpoint), "ufs", "ro"))

    return bind


# ==============================================================================
# Logging Fixtures
# ==============================================================================


@pytest.fixture
def log_messages() -> List[Dict[str, str]]:
    """
    Fixture capturing loguru records emitted during a test.

    Returns:
        List of {"level": ..., "message": ...} dicts.
    """
    records: List[Dict[str, str]] = []

    def sink(message):
        record = message.record
        records.append({"level": record["level"].name, "message": record["message"]})

    handler_id = logger.add(sink, level="TRACE")
    yield records
    logger.remove(handler_id)
