from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger("baya.agent")

StepFn = Callable[[Any], Union[None, Awaitable[None]]]


@dataclass
class Step:
    """Named pipeline step; `fn` may be a plain function or a coroutine function."""
    name: str
    fn: StepFn
    skip_if: Optional[Callable[[Any], bool]] = None
    always_run: bool = False


class StepRunner:
    """Ordered, deterministic runner for the chat pipeline steps."""

    def __init__(self, steps: list[Step]) -> None:
        self._steps = steps

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self._steps]

    async def run(self, context: Any) -> None:
        """Purpose: Execute steps in order with optional skip/always-run rules.
        Inputs/Outputs: Input is a mutable context object; no return value.
        Side Effects / State: Invokes step functions that may mutate context; awaits
            coroutine steps in place so one step finishes before the next starts.
        Dependencies: Depends on Step.fn and Step.skip_if semantics.
        Failure Modes: Exceptions in step functions propagate to the caller.
        If Removed: The agent pipeline cannot run, breaking request handling.
        Testing Notes: Verify skip_if and always_run logic with simple steps.
        """
        # Iterate steps and honor always_run/skip_if guards.
        for step in self._steps:
            if not step.always_run and step.skip_if and step.skip_if(context):
                logger.debug("step=%s skipped", step.name)
                continue
            result = step.fn(context)
            if inspect.isawaitable(result):
                await result
