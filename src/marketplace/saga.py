"""Ordered steps with compensations, rolled back in reverse on failure."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from .models import ReconciliationEntry
from .reconciliation import ReconciliationJournal

logger = logging.getLogger(__name__)


@dataclass
class SagaStep:
    """One forward action and the action that undoes it."""

    name: str
    action: Callable[[], Any]
    compensation: Callable[[], Any] | None = None
    # JSON-serializable description of the compensation, journaled if it fails
    compensation_record: dict[str, Any] = field(default_factory=dict)


class Saga:
    """
    Runs steps in order. If step k raises, the compensations of steps
    1..k-1 run in reverse before the original exception propagates.

    Interruptions (KeyboardInterrupt, task cancellation) are compensated the
    same way. A compensation that fails is logged and written to the
    reconciliation journal so it can be replayed later; the remaining
    compensations still run.
    """

    def __init__(self, name: str, journal: ReconciliationJournal | None = None):
        self.name = name
        self.journal = journal
        self.steps: list[SagaStep] = []

    def add_step(
        self,
        name: str,
        action: Callable[[], Any],
        compensation: Callable[[], Any] | None = None,
        compensation_record: dict[str, Any] | None = None,
    ) -> "Saga":
        self.steps.append(
            SagaStep(
                name=name,
                action=action,
                compensation=compensation,
                compensation_record=compensation_record or {},
            )
        )
        return self

    def run(self) -> list[Any]:
        """Execute every step and return their results in order."""
        completed: list[SagaStep] = []
        results: list[Any] = []
        for step in self.steps:
            try:
                results.append(step.action())
            except BaseException as exc:
                logger.warning(
                    "Saga %s failed at step %s (%s); compensating %d step(s)",
                    self.name, step.name, type(exc).__name__, len(completed),
                )
                self._compensate(completed)
                raise
            completed.append(step)
        return results

    def _compensate(self, completed: list[SagaStep]) -> None:
        for step in reversed(completed):
            if step.compensation is None:
                continue
            try:
                step.compensation()
            except Exception as exc:
                logger.exception("Compensation for %s/%s failed", self.name, step.name)
                self._journal_failure(step, exc)

    def _journal_failure(self, step: SagaStep, exc: Exception) -> None:
        if self.journal is None:
            return
        entry = ReconciliationEntry.create(
            saga=self.name,
            step=step.name,
            action=step.compensation_record,
            error=f"{type(exc).__name__}: {exc}",
        )
        try:
            self.journal.record(entry)
        except Exception:
            logger.exception(
                "Could not journal failed compensation %s/%s: %s",
                self.name, step.name, step.compensation_record,
            )
