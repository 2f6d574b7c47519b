"""Tree copies into the live filesystem.

Files are installed by writing a temporary sibling and renaming it over the
destination, so a binary that is currently executing is replaced rather than
rewritten in place. Ownership is preserved when running as root; mode, times
and (where the platform has them) file flags are preserved always. Existing
destination directories keep their own metadata.
"""

from __future__ import annotations

import os
import shutil
import stat
from pathlib import Path
from typing import Optional

from release_upgrade.logging import LoggerFactory
from release_upgrade.storage.exceptions import CopyError
from release_upgrade.storage.exclusions import load_exclusion_list


log = LoggerFactory.for_install()

# Flags that make a file impossible to replace or unlink.
PROTECTIVE_FLAGS = (
    getattr(stat, "SF_IMMUTABLE", 0)
    | getattr(stat, "UF_IMMUTABLE", 0)
    | getattr(stat, "SF_APPEND", 0)
    | getattr(stat, "UF_APPEND", 0)
    | getattr(stat, "SF_NOUNLINK", 0)
    | getattr(stat, "UF_NOUNLINK", 0)
)

_TMP_SUFFIX = ".upgrade-tmp"


def _supports_flags() -> bool:
    return hasattr(os, "lchflags")


def clear_protective_flags(path: Path | str, recursive: bool = False) -> None:
    """Clear immutable/append-only/no-unlink flags on ``path``.

    A no-op on platforms without file flags.
    """
    if not _supports_flags():
        return
    path = Path(path)
    targets = [path]
    if recursive and path.is_dir() and not path.is_symlink():
        for root, dirs, files in os.walk(path):
            targets.extend(Path(root) / name for name in dirs + files)
    for target in targets:
        st = os.lstat(target)
        flags = getattr(st, "st_flags", 0)
        if flags & PROTECTIVE_FLAGS:
            os.lchflags(target, flags & ~PROTECTIVE_FLAGS)


def _copy_owner(st: os.stat_result, path: Path) -> None:
    if os.geteuid() == 0:
        os.lchown(path, st.st_uid, st.st_gid)


def _install_entry(src: Path, dest: Path) -> bool:
    """Install a single non-directory entry. Returns False if skipped."""
    st = os.lstat(src)
    if dest.is_dir() and not dest.is_symlink():
        raise CopyError(
            f"Refusing to replace directory {dest} with a file",
            source=str(src),
            destination=str(dest),
        )
    if os.path.lexists(dest):
        clear_protective_flags(dest)

    tmp = dest.with_name(dest.name + _TMP_SUFFIX)
    if os.path.lexists(tmp):
        os.unlink(tmp)

    if stat.S_ISLNK(st.st_mode):
        os.symlink(os.readlink(src), tmp)
        _copy_owner(st, tmp)
    elif stat.S_ISREG(st.st_mode):
        shutil.copyfile(src, tmp)
        _copy_owner(st, tmp)
        os.chmod(tmp, stat.S_IMODE(st.st_mode))
        os.utime(tmp, ns=(st.st_atime_ns, st.st_mtime_ns))
    else:
        log.warning(f"Skipping special file {src}")
        return False

    os.replace(tmp, dest)

    flags = getattr(st, "st_flags", 0)
    if flags and _supports_flags():
        os.lchflags(dest, flags)
    return True


def _make_directory(src: Path, dest: Path) -> None:
    if dest.is_dir():
        return
    if os.path.lexists(dest):
        raise CopyError(
            f"Refusing to replace {dest} with a directory",
            source=str(src),
            destination=str(dest),
        )
    st = os.lstat(src)
    dest.mkdir()
    _copy_owner(st, dest)
    os.chmod(dest, stat.S_IMODE(st.st_mode))


def copy_tree(
    source_root: Path | str,
    dest_root: Path | str,
    relative: str,
    dest_relative: Optional[str] = None,
    exclude_from: Path | str | None = None,
) -> int:
    """Copy ``source_root/relative`` to ``dest_root/dest_relative``.

    Every destination path is mapped back under ``source_root`` (its path
    relative to ``dest_root`` joined to ``source_root``) and compared against
    the exclusion list; matching files are left untouched and matching
    directories are not descended into.

    Args:
        source_root: Root of the source tree (the mounted release)
        dest_root: Root of the destination tree
        relative: Path to copy, relative to ``source_root``
        dest_relative: Destination path relative to ``dest_root`` (default: ``relative``)
        exclude_from: Exclusion list file (see :mod:`.exclusions`)

    Returns:
        Number of entries installed

    Raises:
        CopyError: If the source is missing or any entry fails to copy
    """
    source_root = Path(source_root)
    dest_root = Path(dest_root)
    relative = relative.strip("/")
    dest_relative = relative if dest_relative is None else dest_relative.strip("/")
    src = source_root / relative
    dest = dest_root / dest_relative
    excluded = load_exclusion_list(exclude_from) if exclude_from else set()

    def is_excluded(path: Path) -> bool:
        if not excluded:
            return False
        key = os.path.normpath(source_root / path.relative_to(dest_root))
        return key in excluded

    if not os.path.lexists(src):
        raise CopyError(f"Source path does not exist: {src}", source=str(src))

    copied = 0
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        if is_excluded(dest):
            log.debug(f"Excluded {dest}")
            return 0
        if src.is_symlink() or not src.is_dir():
            return int(_install_entry(src, dest))

        _make_directory(src, dest)
        for root, dirs, files in os.walk(src):
            root_path = Path(root)
            dest_dir = dest / root_path.relative_to(src)

            for name in sorted(dirs):
                src_dir = root_path / name
                if is_excluded(dest_dir / name):
                    log.debug(f"Excluded {dest_dir / name}")
                    dirs.remove(name)
                elif src_dir.is_symlink():
                    dirs.remove(name)
                    copied += _install_entry(src_dir, dest_dir / name)
                else:
                    _make_directory(src_dir, dest_dir / name)

            for name in sorted(files):
                target = dest_dir / name
                if is_excluded(target):
                    log.debug(f"Excluded {target}")
                    continue
                copied += _install_entry(root_path / name, target)
    except OSError as e:
        raise CopyError(
            f"Failed to copy {src} to {dest}: {e}",
            source=str(src),
            destination=str(dest),
        ) from e

    log.debug(f"Copied {copied} entries from {src} to {dest}")
    return copied
