"""Tests for storage/copy.py - tree copies into the live filesystem."""

import os
import stat

import pytest

from release_upgrade.storage import copy as copy_module
from release_upgrade.storage.copy import clear_protective_flags, copy_tree
from release_upgrade.storage.exceptions import CopyError, ExitCode


def make_tree(root, files):
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


@pytest.fixture
def source(tmp_path):
    root = tmp_path / "src"
    make_tree(
        root,
        {
            "bin/ls": "ls v2",
            "bin/sh": "sh v2",
            "boot/loader.conf": "release",
            "boot/kernel/kernel": "kernel v2",
            "boot/kernel/if_em.ko": "em v2",
        },
    )
    return root


@pytest.fixture
def dest(tmp_path):
    root = tmp_path / "dest"
    make_tree(root, {"bin/ls": "ls v1", "boot/loader.conf": "operator"})
    return root


class TestCopyTree:
    """Tests for copy_tree()."""

    def test_copies_and_replaces(self, source, dest):
        """Test new files are created and existing ones replaced."""
        count = copy_tree(source, dest, "bin")

        assert count == 2
        assert (dest / "bin/ls").read_text() == "ls v2"
        assert (dest / "bin/sh").read_text() == "sh v2"

    def test_no_temporary_files_left(self, source, dest):
        """Test the temporary siblings are renamed away."""
        copy_tree(source, dest, "bin")

        assert sorted(os.listdir(dest / "bin")) == ["ls", "sh"]

    def test_mode_and_mtime_preserved(self, source, dest):
        """Test file mode and modification time are carried over."""
        os.chmod(source / "bin/sh", 0o555)
        os.utime(source / "bin/sh", (1_000_000_000, 1_000_000_000))

        copy_tree(source, dest, "bin")

        st = os.stat(dest / "bin/sh")
        assert stat.S_IMODE(st.st_mode) == 0o555
        assert int(st.st_mtime) == 1_000_000_000

    def test_symlinks_copied_as_links(self, source, dest):
        """Test symbolic links are recreated, not followed."""
        os.symlink("ls", source / "bin/dir")
        os.symlink("kernel", source / "boot/kernel.link")

        copy_tree(source, dest, "bin")
        copy_tree(source, dest, "boot")

        assert os.readlink(dest / "bin/dir") == "ls"
        assert os.readlink(dest / "boot/kernel.link") == "kernel"

    def test_excluded_file_left_untouched(self, source, dest, tmp_path):
        """Test an excluded destination file keeps its content."""
        exclusions = tmp_path / "exclude.lst"
        exclusions.write_text(f"{source}/boot/loader.conf\n")

        copy_tree(source, dest, "boot", exclude_from=exclusions)

        assert (dest / "boot/loader.conf").read_text() == "operator"
        assert (dest / "boot/kernel/kernel").read_text() == "kernel v2"

    def test_excluded_directory_not_descended(self, source, dest, tmp_path):
        """Test an excluded directory is pruned with everything below it."""
        exclusions = tmp_path / "exclude.lst"
        exclusions.write_text(f"{source}/boot/kernel\n")

        copy_tree(source, dest, "boot", exclude_from=exclusions)

        assert not (dest / "boot/kernel").exists()

    def test_excluded_top_level(self, source, dest, tmp_path):
        """Test excluding the copied path itself copies nothing."""
        exclusions = tmp_path / "exclude.lst"
        exclusions.write_text(f"{source}/bin\n")

        assert copy_tree(source, dest, "bin", exclude_from=exclusions) == 0
        assert (dest / "bin/ls").read_text() == "ls v1"

    def test_dest_relative_exclusions_map_to_source(self, source, tmp_path):
        """Test exclusions match the source-side path of a renamed destination."""
        exclusions = tmp_path / "exclude.lst"
        exclusions.write_text(f"{source}/boot.copy/loader.conf\n")
        target = tmp_path / "cache"

        copy_tree(source, target, "boot", dest_relative="boot.copy", exclude_from=exclusions)

        assert not (target / "boot.copy/loader.conf").exists()
        assert (target / "boot.copy/kernel/kernel").read_text() == "kernel v2"

    def test_single_file(self, source, dest):
        """Test copying a single file path."""
        assert copy_tree(source, dest, "boot/kernel/kernel") == 1
        assert (dest / "boot/kernel/kernel").read_text() == "kernel v2"

    def test_existing_directory_keeps_mode(self, source, dest):
        """Test an existing destination directory keeps its own mode."""
        os.chmod(dest / "bin", 0o700)

        copy_tree(source, dest, "bin")

        assert stat.S_IMODE(os.stat(dest / "bin").st_mode) == 0o700

    def test_new_directory_gets_source_mode(self, source, dest):
        """Test a created directory takes the source directory's mode."""
        os.chmod(source / "boot/kernel", 0o750)

        copy_tree(source, dest, "boot")

        assert stat.S_IMODE(os.stat(dest / "boot/kernel").st_mode) == 0o750

    def test_missing_source(self, source, dest):
        """Test a missing source raises CopyError."""
        with pytest.raises(CopyError) as exc_info:
            copy_tree(source, dest, "rescue")

        assert exc_info.value.exit_code == ExitCode.COPY

    def test_refuses_to_replace_directory_with_file(self, source, dest):
        """Test a file never replaces an existing directory."""
        (dest / "bin/sh").mkdir()

        with pytest.raises(CopyError, match="Refusing to replace directory"):
            copy_tree(source, dest, "bin")

    def test_refuses_to_replace_file_with_directory(self, source, dest):
        """Test a directory never replaces an existing file."""
        make_tree(dest, {"boot/kernel": "not a dir"})

        with pytest.raises(CopyError, match="with a directory"):
            copy_tree(source, dest, "boot")


class TestClearProtectiveFlags:
    """Tests for clear_protective_flags()."""

    def test_noop_without_flag_support(self, mocker, tmp_path):
        """Test nothing is touched where the platform has no file flags."""
        mocker.patch.object(copy_module, "_supports_flags", return_value=False)

        clear_protective_flags(tmp_path / "does-not-exist", recursive=True)

    def test_clears_only_protective_flags(self, mocker, tmp_path):
        """Test protective bits are cleared and other flags kept."""
        target = tmp_path / "libc.so.7"
        target.write_text("lib")
        nodump = getattr(stat, "UF_NODUMP", 0x1)
        immutable = getattr(stat, "SF_IMMUTABLE", 0x20000)
        real_lstat = os.lstat

        class FlaggedStat:
            def __init__(self, path):
                self._st = real_lstat(path)
                self.st_flags = nodump | immutable

            def __getattr__(self, name):
                return getattr(self._st, name)

        mocker.patch.object(copy_module, "_supports_flags", return_value=True)
        mocker.patch.object(copy_module.os, "lstat", side_effect=FlaggedStat)
        lchflags = mocker.patch.object(copy_module.os, "lchflags", create=True)

        clear_protective_flags(target)

        lchflags.assert_called_once_with(target, nodump)
