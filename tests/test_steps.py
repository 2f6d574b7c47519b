"""Tests for pipeline/steps.py - the upgrade step catalog."""

import pytest

from release_upgrade.pipeline import steps as steps_module
from release_upgrade.pipeline.steps import UpgradeContext, build_steps
from release_upgrade.storage.exceptions import ArgumentError, CopyError

STEP_NAMES = [
    "mount_image",
    "backup_kernel",
    "backup_world",
    "install_world",
    "update_accounts",
    "reconcile_config",
    "remove_obsolete",
    "unmount_image",
    "rebuild_databases",
]


class TestBuildSteps:
    """Tests for build_steps()."""

    def test_step_order(self, upgrade_config):
        """Test the steps and their indices."""
        registry = build_steps(UpgradeContext(upgrade_config))

        assert registry.names == STEP_NAMES
        assert registry.index_of("install_world") == 3
        assert registry.index_of("rebuild_databases") == 8

    def test_every_step_described(self, upgrade_config):
        """Test each step has a description for the listing."""
        assert all(step.description for step in build_steps(UpgradeContext(upgrade_config)))


class TestStepActions:
    """Tests for the actions wired into each step."""

    def test_mount_requires_image(self, upgrade_config):
        """Test the mount step refuses to run without an image."""
        registry = build_steps(UpgradeContext(upgrade_config))

        with pytest.raises(ArgumentError):
            registry.get(0).action()

    def test_mount_resolves_then_mounts(self, mocker, upgrade_config, tmp_path):
        """Test the image reference is resolved before mounting."""
        image = tmp_path / "memstick.img"
        resolve = mocker.patch.object(steps_module, "resolve_image", return_value=image)
        mount = mocker.patch.object(steps_module, "mount_image")
        registry = build_steps(UpgradeContext(upgrade_config, image_ref="https://mirror/x.img"))

        registry.get(0).action()

        resolve.assert_called_once_with(upgrade_config, "https://mirror/x.img")
        mount.assert_called_once_with(upgrade_config, image)

    def test_install_removes_exclusion_list(self, mocker, upgrade_config):
        """Test the exclusion list is deleted after a successful install."""
        seen = []

        def install(config, exclusion_file):
            assert exclusion_file.is_file()
            seen.append(exclusion_file)

        mocker.patch.object(steps_module, "install_world", side_effect=install)

        build_steps(UpgradeContext(upgrade_config)).get(3).action()

        assert len(seen) == 1
        assert not seen[0].exists()

    def test_reconcile_removes_exclusion_list_on_failure(self, mocker, upgrade_config):
        """Test the exclusion list is deleted even when reconciliation fails."""
        seen = []

        def reconcile(config, exclusion_file):
            seen.append(exclusion_file)
            raise CopyError("disk full")

        mocker.patch.object(steps_module, "reconcile_config", side_effect=reconcile)

        with pytest.raises(CopyError):
            build_steps(UpgradeContext(upgrade_config)).get(5).action()

        assert not seen[0].exists()

    @pytest.mark.parametrize(
        "index, target",
        [
            (1, "backup_kernel"),
            (2, "backup_world"),
            (4, "provision_accounts"),
            (6, "sweep_obsolete"),
            (7, "unmount_image"),
            (8, "rebuild_databases"),
        ],
    )
    def test_config_only_steps(self, mocker, upgrade_config, index, target):
        """Test steps that only need the config call their operation with it."""
        operation = mocker.patch.object(steps_module, target)

        build_steps(UpgradeContext(upgrade_config)).get(index).action()

        operation.assert_called_once_with(upgrade_config)
