"""Constraint checker -- runtime policies gating a due task.

Each rule inspects one field of `task.constraints` and is skipped when the
task does not set it. A rejection is a deferral, never a failure: the caller
pushes the task's next_execution forward and leaves it pending.
"""

from __future__ import annotations

import logging
from datetime import datetime

from pydantic import BaseModel, Field

from core.models.tasks import Task
from core.registry import PluginRegistry

logger = logging.getLogger(__name__)


class ConstraintEvaluation(BaseModel):
    """Result of a single constraint rule."""

    rule_name: str
    passed: bool
    reason: str
    current_value: float | None = None
    limit_value: float | None = None


class ConstraintResult(BaseModel):
    """Aggregate result of all applicable constraint rules."""

    evaluations: list[ConstraintEvaluation] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(e.passed for e in self.evaluations)

    @property
    def failed_rules(self) -> list[ConstraintEvaluation]:
        return [e for e in self.evaluations if not e.passed]

    @property
    def summary(self) -> str:
        if self.passed:
            return f"{len(self.evaluations)} constraint(s) passed"
        return "; ".join(e.reason for e in self.failed_rules)


class ExcludeHoursRule:
    """Reject during blackout hours."""

    name = "exclude_hours"

    async def evaluate(self, task: Task, now: datetime, running: int) -> ConstraintEvaluation | None:
        hours = task.constraints.exclude_hours
        if not hours:
            return None
        passed = now.hour not in hours
        return ConstraintEvaluation(
            rule_name=self.name,
            passed=passed,
            reason=(
                f"Hour {now.hour} is allowed"
                if passed
                else f"Hour {now.hour} is excluded ({sorted(hours)})"
            ),
            current_value=float(now.hour),
        )


class ConcurrencyRule:
    """Reject while too many tasks are already running."""

    name = "max_concurrent"

    async def evaluate(self, task: Task, now: datetime, running: int) -> ConstraintEvaluation | None:
        limit = task.constraints.max_concurrent
        if limit is None:
            return None
        passed = running < limit
        return ConstraintEvaluation(
            rule_name=self.name,
            passed=passed,
            reason=(
                f"{running} task(s) running (limit: {limit})"
                if passed
                else f"Already {running} task(s) running (limit: {limit})"
            ),
            current_value=float(running),
            limit_value=float(limit),
        )


class EnergyPriceRule:
    """Reject while electricity costs more than the task's ceiling.

    An unavailable price feed does not block the task.
    """

    name = "max_energy_price"

    def __init__(self, registry: PluginRegistry) -> None:
        self._registry = registry

    async def evaluate(self, task: Task, now: datetime, running: int) -> ConstraintEvaluation | None:
        ceiling = task.constraints.max_energy_price
        if ceiling is None:
            return None

        energy = self._registry.first("energy_price")
        if energy is None:
            return ConstraintEvaluation(
                rule_name=self.name, passed=True, reason="No energy price service",
                limit_value=ceiling,
            )
        try:
            current = await energy.get_current_price()
        except Exception as exc:
            logger.warning("Energy price lookup failed, ignoring price ceiling: %s", exc)
            return ConstraintEvaluation(
                rule_name=self.name, passed=True, reason="Energy price unavailable",
                limit_value=ceiling,
            )

        passed = current.price <= ceiling
        return ConstraintEvaluation(
            rule_name=self.name,
            passed=passed,
            reason=(
                f"Price {current.price:.3f} within ceiling {ceiling:.3f}"
                if passed
                else f"Price {current.price:.3f} above ceiling {ceiling:.3f}"
            ),
            current_value=current.price,
            limit_value=ceiling,
        )


class ConstraintChecker:
    """Runs every constraint rule against a task about to be queued."""

    def __init__(self, registry: PluginRegistry) -> None:
        self._rules = [ExcludeHoursRule(), ConcurrencyRule(), EnergyPriceRule(registry)]

    async def check(self, task: Task, now: datetime, running: int) -> ConstraintResult:
        evaluations: list[ConstraintEvaluation] = []
        for rule in self._rules:
            try:
                evaluation = await rule.evaluate(task, now, running)
            except Exception:
                logger.exception("Constraint rule '%s' raised an error", rule.name)
                evaluation = ConstraintEvaluation(
                    rule_name=rule.name,
                    passed=False,
                    reason="Rule raised an exception",
                )
            if evaluation is not None:
                evaluations.append(evaluation)
        return ConstraintResult(evaluations=evaluations)
