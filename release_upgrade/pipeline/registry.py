"""Ordered catalog of upgrade steps."""

from __future__ import annotations

from typing import Callable, Iterator

from release_upgrade.domain import Step, StepRange


class StepRegistry:
    """Steps in execution order, indexed contiguously from 0."""

    def __init__(self) -> None:
        self._steps: list[Step] = []

    def add(self, name: str, action: Callable[[], None], description: str = "") -> Step:
        if any(step.name == name for step in self._steps):
            raise ValueError(f"Duplicate step name: {name}")
        step = Step(index=len(self._steps), name=name, action=action, description=description)
        self._steps.append(step)
        return step

    def get(self, index: int) -> Step:
        return self._steps[index]

    def index_of(self, name: str) -> int:
        for step in self._steps:
            if step.name == name:
                return step.index
        raise KeyError(name)

    def select(self, step_range: StepRange) -> list[Step]:
        """Steps whose index falls inside ``step_range``."""
        return [step for step in self._steps if step_range.contains(step.index)]

    @property
    def names(self) -> list[str]:
        return [step.name for step in self._steps]

    def __iter__(self) -> Iterator[Step]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)
