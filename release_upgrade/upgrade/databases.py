"""Post-upgrade rebuilds of system databases (login classes, passwords, aliases, ...)."""

from __future__ import annotations

from release_upgrade.config.settings import UpgradeConfig
from release_upgrade.logging import LoggerFactory
from release_upgrade.storage.commands import CommandError, run_checked_command
from release_upgrade.storage.exceptions import DatabaseRebuildError

log = LoggerFactory.for_system()


def rebuild_databases(config: UpgradeConfig) -> int:
    """Run each configured rebuild command in order; the first failure is fatal."""
    for command in config.database_commands:
        log.info(f"Rebuilding: {' '.join(command)}")
        try:
            run_checked_command(command)
        except CommandError as e:
            raise DatabaseRebuildError(command, e.message) from e
    return len(config.database_commands)
