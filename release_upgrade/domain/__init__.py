"""Domain models for upgrade runs."""

from .models import (
    GroupRecord,
    MountBinding,
    PipelineResult,
    ReconcileResult,
    ReconciliationEntry,
    Step,
    StepRange,
    UserRecord,
)

__all__ = [
    "GroupRecord",
    "MountBinding",
    "PipelineResult",
    "ReconcileResult",
    "ReconciliationEntry",
    "Step",
    "StepRange",
    "UserRecord",
]
