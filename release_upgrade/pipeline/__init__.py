"""Step catalog and the loop that runs it."""

from .driver import run_pipeline
from .registry import StepRegistry

__all__ = ["StepRegistry", "run_pipeline"]
