from __future__ import annotations

import argparse
import sys
import tempfile
from pathlib import Path
from typing import Optional

from release_upgrade.__version__ import __version__
from release_upgrade.config.settings import load_config
from release_upgrade.domain import StepRange
from release_upgrade.logging import LoggerFactory, logger, setup_logging
from release_upgrade.pipeline import run_pipeline
from release_upgrade.pipeline.steps import UpgradeContext, build_steps
from release_upgrade.storage.exceptions import (
    ArgumentError,
    ExitCode,
    StepFailedError,
    UpgradeError,
    UsageError,
)

log = LoggerFactory.for_system()


class _Parser(argparse.ArgumentParser):
    def error(self, message):
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="upgrade",
        description="Upgrade the installed system in place from a release disk image",
    )
    parser.add_argument("-c", "--config", default=None, help="JSON configuration file")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("-s", "--start", type=int, default=0, help="First step to run")
    parser.add_argument("-S", "--stop", type=int, default=None, help="Last step to run")
    parser.add_argument("-l", "--list", action="store_true", help="List the steps and exit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "image",
        nargs="?",
        default=None,
        help="Release image file or URL (required when step 0 runs)",
    )
    return parser


def _setup_logging(debug: bool) -> None:
    try:
        setup_logging(debug=debug)
    except OSError:
        fallback = Path(tempfile.gettempdir()) / "release-upgrade-logs"
        setup_logging(debug=debug, log_dir=fallback)
        log.warning(f"Log directory not writable, logging to {fallback}")


def _validate_range(args: argparse.Namespace) -> StepRange:
    if args.start < 0:
        raise ArgumentError(f"Start step must not be negative: {args.start}")
    if args.stop is not None and args.stop < 0:
        raise ArgumentError(f"Stop step must not be negative: {args.stop}")
    step_range = StepRange(start=args.start, stop=args.stop)
    if step_range.contains(0) and not args.image:
        raise ArgumentError("An image file is required when step 0 runs")
    return step_range


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except UsageError as e:
        parser.print_usage(sys.stderr)
        print(f"upgrade: {e}", file=sys.stderr)
        return int(ExitCode.USAGE)

    _setup_logging(args.debug)

    try:
        config = load_config(args.config)
        ctx = UpgradeContext(config=config, image_ref=args.image)
        steps = build_steps(ctx)

        if args.list:
            for step in steps:
                print(f"{step.index}  {step.name:<18} {step.description}")
            return int(ExitCode.OK)

        step_range = _validate_range(args)
        log.info(f"release-upgrade {__version__}, live root {config.live_root}")
        result = run_pipeline(steps, step_range)
        log.success(f"Ran {len(result.ran_steps)} step(s), skipped {len(result.skipped_steps)}")
        if "rebuild_databases" in result.ran_steps:
            log.info("Upgrade finished. Upgrade packages with the package manager next.")
            log.info(
                f"Merge any *{config.merge_suffix} files under {config.live_config_dir} "
                f"before rebooting."
            )
        return int(ExitCode.OK)
    except StepFailedError as e:
        # Already logged by the pipeline driver
        return int(e.exit_code)
    except UpgradeError as e:
        log.error(str(e))
        return int(e.exit_code)
    finally:
        logger.complete()


if __name__ == "__main__":
    sys.exit(main())
