from __future__ import annotations

from typing import Iterable

from release_upgrade.domain import PipelineResult, Step, StepRange
from release_upgrade.logging import LoggerFactory, operation_context
from release_upgrade.storage.exceptions import StepFailedError, UpgradeError

log = LoggerFactory.for_pipeline()


def run_pipeline(steps: Iterable[Step], step_range: StepRange) -> PipelineResult:
    """Run the steps inside ``step_range`` in order, skipping the rest.

    The first failing step stops the run. Nothing is retried: the operator
    fixes the cause and starts again from the failed index.

    Raises:
        StepFailedError: Wrapping the failure, with its category exit code
    """
    result = PipelineResult()

    for step in steps:
        label = step.format_label()
        if not step_range.contains(step.index):
            log.info(f"Step {label}: skipped")
            result.skipped_steps.append(step.name)
            continue

        log.info(f"Step {label}: running")
        try:
            with operation_context(step.name, step=step.index):
                step.action()
        except UpgradeError as e:
            log.error(f"Step {label} failed: {e}")
            log.error(f"Fix the cause and resume with -s {step.index}")
            raise StepFailedError(step.index, step.name, e) from e
        result.ran_steps.append(step.name)

    return result
