"""Fail-fast reconciliation driver.

A reconciliation is an ordered list of idempotent steps. Each step compares
desired against observed host state and reports one of three outcomes:

    SATISFIED  host already in the desired state, nothing done
    CHANGED    the step acted and the host is now in the desired state
    FAILED     the step could not converge; the run stops here

The driver runs steps in order, stops at the first failure, and logs which
steps changed state. It keeps no state between runs.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

from devhost.modules.command_runner import CommandError

logger = logging.getLogger(__name__)


class StepOutcome(Enum):
    """Tri-state result of a reconciliation step."""

    SATISFIED = "satisfied"
    CHANGED = "changed"
    FAILED = "failed"


@dataclass
class StepResult:
    """Outcome of one step, with the failing command's output when FAILED."""

    name: str
    outcome: StepOutcome
    message: str = ""
    output: str = ""

    @classmethod
    def satisfied(cls, name: str, message: str = "") -> "StepResult":
        return cls(name, StepOutcome.SATISFIED, message)

    @classmethod
    def changed(cls, name: str, message: str = "") -> "StepResult":
        return cls(name, StepOutcome.CHANGED, message)

    @classmethod
    def failed(cls, name: str, message: str, output: str = "") -> "StepResult":
        return cls(name, StepOutcome.FAILED, message, output)

    @property
    def ok(self) -> bool:
        return self.outcome is not StepOutcome.FAILED


@dataclass
class ReconcileStep:
    """A named, idempotent step."""

    name: str
    description: str
    apply: Callable[[], StepResult]


@dataclass
class ReconcileReport:
    """Ordered results of a reconciliation run."""

    results: list[StepResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(result.ok for result in self.results)

    @property
    def changed_steps(self) -> list[str]:
        return [r.name for r in self.results if r.outcome is StepOutcome.CHANGED]

    @property
    def failed_step(self) -> StepResult | None:
        for result in self.results:
            if not result.ok:
                return result
        return None


class ReconcileError(Exception):
    """Raised when a reconciliation run stops on a failed step."""

    def __init__(self, report: ReconcileReport):
        failed = report.failed_step
        message = f"Step '{failed.name}' failed: {failed.message}" if failed else "Reconcile failed"
        super().__init__(message)
        self.report = report


ProgressCallback = Callable[[ReconcileStep, StepResult | None], None]


class Reconciler:
    """Run steps in order; halt on the first FAILED result."""

    def __init__(self, steps: Iterable[ReconcileStep], progress: ProgressCallback | None = None):
        self.steps = list(steps)
        self.progress = progress

    def _notify(self, step: ReconcileStep, result: StepResult | None) -> None:
        if self.progress is not None:
            self.progress(step, result)

    def run(self) -> ReconcileReport:
        report = ReconcileReport()

        for step in self.steps:
            logger.debug(f"==> {step.description}")
            self._notify(step, None)

            try:
                result = step.apply()
            except CommandError as e:
                result = StepResult.failed(step.name, str(e), e.output)

            report.results.append(result)
            self._notify(step, result)

            if not result.ok:
                logger.debug(f"Step '{step.name}' failed: {result.message}")
                break
            logger.debug(f"Step '{step.name}': {result.outcome.value} {result.message}".rstrip())

        if report.changed_steps:
            logger.info(f"Changed: {', '.join(report.changed_steps)}")
        elif report.succeeded:
            logger.info("Host already converged; nothing changed")

        return report


__all__ = [
    "ReconcileError",
    "ReconcileReport",
    "ReconcileStep",
    "Reconciler",
    "StepOutcome",
    "StepResult",
]
