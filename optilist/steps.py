"""
Step state machine: runs an ordered list of named steps at most once per
logical task, tolerating re-injection and reloads.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from optilist.errors import AutomationError
from optilist.events import EventBroker, EventType
from optilist.models import AutomationRun, RunStatus, StepStatus


StepAction = Callable[[AutomationRun], Awaitable[bool]]
StepPredicate = Callable[[AutomationRun], Awaitable[bool]]


@dataclass
class Step:
    """
    One named unit of work.

    `already_satisfied` inspects the page and says whether the effect of this
    step is already in place (e.g. the title input is gone because the page
    advanced). `fatal` steps stop the run when they fail; soft steps only warn.
    """
    name: str
    action: StepAction
    already_satisfied: Optional[StepPredicate] = None
    fatal: bool = False


@dataclass
class RunResult:
    """Result of a state machine run."""
    success: bool
    status: RunStatus
    message: str
    failed_step: Optional[str] = None
    soft_failures: Optional[List[str]] = None


class StepStateMachine:
    """Executes steps in order with idempotent skip checks and fatal/soft failure handling."""

    def __init__(self, steps: List[Step], events: EventBroker, url: str = ""):
        names = [s.name for s in steps]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate step names: {names}")
        self.steps = steps
        self.events = events
        self.url = url

    def new_run(self, **kwargs) -> AutomationRun:
        return AutomationRun(steps=[s.name for s in self.steps], **kwargs)

    async def _log(self, event_type: EventType, step: str, message: str, **details) -> None:
        await self.events.emit(event_type, step, message, url=self.url, **details)

    async def _satisfied(self, step: Step, run: AutomationRun) -> bool:
        if step.already_satisfied is None:
            return False
        try:
            return bool(await step.already_satisfied(run))
        except Exception as e:
            await self._log(EventType.WARNING, f"{step.name}_check_error",
                            f"Completion check for '{step.name}' raised", error=str(e))
            return False

    async def _attempt(self, step: Step, run: AutomationRun) -> bool:
        try:
            return bool(await step.action(run))
        except AutomationError as e:
            await self._log(EventType.WARNING, f"{step.name}_error", str(e), error=str(e))
            return False
        except Exception as e:
            await self._log(EventType.ERROR, f"{step.name}_exception",
                            f"Step '{step.name}' raised unexpectedly", error=repr(e))
            return False

    async def execute(self, run: AutomationRun) -> RunResult:
        """Run every step not yet completed. Stops at the first fatal failure."""
        soft_failures: List[str] = []
        run.status = RunStatus.IN_PROGRESS

        for step in self.steps:
            if run.is_completed(step.name):
                await self._log(EventType.STEP, f"{step.name}_skipped", f"Step '{step.name}' already completed")
                continue

            if await self._satisfied(step, run):
                run.mark_completed(step.name)
                await self._log(EventType.STEP, f"{step.name}_already_satisfied",
                                f"Page is already past '{step.name}'")
                continue

            run.statuses[step.name] = StepStatus.RUNNING
            await self._log(EventType.STEP, f"{step.name}_started", f"Running step '{step.name}'")

            if await self._attempt(step, run):
                run.mark_completed(step.name)
                await self._log(EventType.STEP, f"{step.name}_completed", f"Step '{step.name}' completed")
                continue

            # The page may have advanced on its own while the action failed
            if await self._satisfied(step, run):
                run.mark_completed(step.name)
                await self._log(EventType.STEP, f"{step.name}_recovered",
                                f"Step '{step.name}' failed but the page is already past it")
                continue

            run.statuses[step.name] = StepStatus.FAILED

            if step.fatal:
                run.status = RunStatus.FAILED
                await self._log(EventType.ERROR, f"{step.name}_fatal",
                                f"Required step '{step.name}' failed; aborting run")
                return RunResult(
                    success=False,
                    status=run.status,
                    message=f"Step '{step.name}' failed",
                    failed_step=step.name,
                    soft_failures=soft_failures
                )

            soft_failures.append(step.name)
            await self._log(EventType.WARNING, f"{step.name}_soft_failure",
                            f"Optional step '{step.name}' failed; continuing")

        run.status = RunStatus.COMPLETED
        return RunResult(
            success=True,
            status=run.status,
            message="All steps processed",
            soft_failures=soft_failures
        )
