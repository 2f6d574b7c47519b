"""Release image attach/mount and unmount/detach.

The image is exposed as a virtual block device (``mdconfig`` by default) and a
single fixed partition of it is mounted read-only. Tearing down never relies on
anything remembered from the mount call: the bound device is looked up in the
live mount table, so an unmount works from a fresh process as long as the
mount is still active.

Functions:
    - find_bound_device(): Device mounted at a path, from the mount table
    - attach_image(): Attach an image file, return the device unit
    - detach_device(): Detach a device unit
    - mount_image(): Attach and mount, refusing a busy mount point
    - unmount_image(): Unmount and detach, resolving the device from the mount table
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import psutil

from release_upgrade.config.settings import UpgradeConfig
from release_upgrade.domain import MountBinding
from release_upgrade.logging import LoggerFactory
from release_upgrade.storage.commands import CommandError, run_checked_command
from release_upgrade.storage.exceptions import (
    MissingFileError,
    MountError,
    MountPointBusyError,
    UnmountFailedError,
    VirtualDeviceError,
)


log = LoggerFactory.for_mount()


def _normalize(path: Path | str) -> str:
    return os.path.realpath(str(path))


def find_bound_device(mount_point: Path | str) -> Optional[str]:
    """Return the device mounted at ``mount_point`` or None.

    Queries the live mount table on every call.
    """
    target = _normalize(mount_point)
    for partition in psutil.disk_partitions(all=True):
        if _normalize(partition.mountpoint) == target:
            return partition.device
    return None


def device_unit(device: str, partition_suffix: str) -> str:
    """Strip ``/dev/`` and the partition suffix from a partition device.

    ``/dev/md0s2a`` with suffix ``s2a`` gives ``md0``.

    Raises:
        VirtualDeviceError: If the device does not carry the partition suffix
    """
    name = device[len("/dev/"):] if device.startswith("/dev/") else device
    if not partition_suffix or not name.endswith(partition_suffix):
        raise VirtualDeviceError(
            f"Device {device} does not end with partition suffix {partition_suffix!r}",
            device=device,
        )
    unit = name[: -len(partition_suffix)]
    if not unit:
        raise VirtualDeviceError(f"Cannot derive device unit from {device}", device=device)
    return unit


def attach_image(config: UpgradeConfig, image_file: Path) -> str:
    """Attach ``image_file`` as a virtual block device.

    Returns:
        Device unit name (e.g., 'md0')

    Raises:
        VirtualDeviceError: If the attach command fails or prints nothing
    """
    args = [arg.format(image=image_file) for arg in config.attach_args]
    try:
        output = run_checked_command([config.mdconfig_tool, *args])
    except CommandError as e:
        raise VirtualDeviceError(f"Failed to attach {image_file}: {e.message}") from e
    unit = output.strip()
    if unit.startswith("/dev/"):
        unit = unit[len("/dev/"):]
    if not unit:
        raise VirtualDeviceError(f"Attaching {image_file} returned no device")
    log.info(f"Attached {image_file} as /dev/{unit}")
    return unit


def detach_device(config: UpgradeConfig, unit: str) -> None:
    """Detach a virtual block device unit.

    Raises:
        VirtualDeviceError: If the detach command fails
    """
    try:
        run_checked_command(
            [config.mdconfig_tool, *(arg.format(unit=unit) for arg in config.detach_args)]
        )
    except CommandError as e:
        raise VirtualDeviceError(f"Failed to detach {unit}: {e.message}", device=unit) from e
    log.info(f"Detached /dev/{unit}")


def mount_image(
    config: UpgradeConfig,
    image_file: Path | str,
    mount_point: Path | str | None = None,
) -> MountBinding:
    """Attach ``image_file`` and mount its release partition read-only.

    Args:
        config: Upgrade configuration (tools, partition suffix, options)
        image_file: Release disk image
        mount_point: Where to mount (default: ``config.mount_point``)

    Raises:
        MissingFileError: If the image does not exist
        MountPointBusyError: If a device is already mounted at the mount point
        VirtualDeviceError: If attaching the image fails
        MountError: If mounting the partition fails
    """
    image_file = Path(image_file)
    mount_point = Path(mount_point or config.mount_point)

    if not image_file.is_file():
        raise MissingFileError(image_file, "image file")

    bound = find_bound_device(mount_point)
    if bound is not None:
        raise MountPointBusyError(mount_point, bound)

    try:
        mount_point.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise MountError(f"Cannot create mount point {mount_point}: {e}") from e

    unit = attach_image(config, image_file)
    binding = MountBinding(
        image_file=image_file,
        backing_device=unit,
        mount_point=mount_point,
        partition_suffix=config.partition_suffix,
    )

    try:
        run_checked_command(
            [
                config.mount_tool,
                "-o",
                config.mount_options,
                binding.partition_device,
                str(mount_point),
            ]
        )
    except CommandError as e:
        log.error(f"Mounting {binding.partition_device} failed, detaching /dev/{unit}")
        try:
            detach_device(config, unit)
        except VirtualDeviceError as detach_error:
            log.error(str(detach_error))
        raise MountError(
            f"Failed to mount {binding.partition_device} at {mount_point}: {e.message}"
        ) from e

    log.info(f"Mounted {binding.partition_device} at {mount_point}")
    return binding


def unmount_image(config: UpgradeConfig, mount_point: Path | str | None = None) -> str:
    """Unmount the release partition and detach its virtual device.

    The device is resolved from the mount table, not from a stored binding.

    Returns:
        The detached device unit

    Raises:
        UnmountFailedError: If nothing is mounted there or umount fails
        VirtualDeviceError: If the unit cannot be derived or detached
    """
    mount_point = Path(mount_point or config.mount_point)

    device = find_bound_device(mount_point)
    if device is None:
        raise UnmountFailedError(mount_point, "no device is mounted there")
    log.debug(f"Mount table reports {device} at {mount_point}")
    # Derive the unit while the mount table still names the device.
    unit = device_unit(device, config.partition_suffix)

    try:
        run_checked_command([config.umount_tool, str(mount_point)])
    except CommandError as e:
        raise UnmountFailedError(mount_point, e.message) from e
    log.info(f"Unmounted {mount_point}")

    detach_device(config, unit)
    return unit
