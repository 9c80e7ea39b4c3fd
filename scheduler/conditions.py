"""Condition evaluator -- do a due task's predicates hold right now?

Conditions are ANDed and an empty list is vacuously true. Each predicate
kind has its own policy when its collaborator is missing or errors:

    time_range     pure, no collaborator
    presence       fail-open  (a flaky lookup must not stall automation)
    device_state   fail-closed (never act on unknown device state)
    weather        always satisfied
    energy_price   fail-open
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from core.models.tasks import (
    DeviceStateCondition,
    EnergyPriceCondition,
    PresenceCondition,
    Task,
    TimeRangeCondition,
    WeatherCondition,
)
from core.registry import PluginRegistry

logger = logging.getLogger(__name__)


def parse_hhmm(value: str) -> int:
    """'07:30' -> minute of day (450)."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def in_time_range(now: datetime, start: str, end: str) -> bool:
    """Inclusive minute-of-day check with overnight wraparound."""
    current = now.hour * 60 + now.minute
    start_min = parse_hhmm(start)
    end_min = parse_hhmm(end)
    if start_min <= end_min:
        return start_min <= current <= end_min
    return current >= start_min or current <= end_min


def compare(actual: Any, operator: str, expected: Any) -> bool:
    if operator == "equals":
        return actual == expected
    if operator == "not_equals":
        return actual != expected
    if operator == "greater_than":
        return actual > expected
    if operator == "less_than":
        return actual < expected
    raise ValueError(f"Unknown operator: {operator!r}")


class ConditionEvaluator:
    """Evaluates a task's condition list against the current home state."""

    def __init__(self, registry: PluginRegistry) -> None:
        self._registry = registry

    async def all_met(self, task: Task, now: datetime) -> bool:
        for condition in task.conditions:
            if not await self.evaluate(condition, now):
                logger.debug("Task %s: condition %s not met", task.name, condition.type)
                return False
        return True

    async def evaluate(self, condition, now: datetime) -> bool:
        if isinstance(condition, TimeRangeCondition):
            return in_time_range(now, condition.start, condition.end)
        if isinstance(condition, PresenceCondition):
            return await self._check_presence(condition)
        if isinstance(condition, DeviceStateCondition):
            return await self._check_device_state(condition)
        if isinstance(condition, WeatherCondition):
            return True
        if isinstance(condition, EnergyPriceCondition):
            return await self._check_energy_price(condition)
        logger.warning("Unknown condition type %r, treating as met", type(condition).__name__)
        return True

    async def _check_presence(self, condition: PresenceCondition) -> bool:
        presence = self._registry.first("presence")
        if presence is None:
            return True
        try:
            status = await presence.get_status()
        except Exception as exc:
            logger.warning("Presence lookup failed, treating condition as met: %s", exc)
            return True
        return status.status == condition.expected_state

    async def _check_device_state(self, condition: DeviceStateCondition) -> bool:
        devices = self._registry.first("device")
        if devices is None:
            logger.warning("No device service registered; device_state condition not met")
            return False
        try:
            value = await devices.get_capability(condition.device_id, condition.capability)
            return compare(value, condition.operator, condition.value)
        except Exception as exc:
            logger.warning(
                "Reading %s.%s failed, treating condition as not met: %s",
                condition.device_id,
                condition.capability,
                exc,
            )
            return False

    async def _check_energy_price(self, condition: EnergyPriceCondition) -> bool:
        energy = self._registry.first("energy_price")
        if energy is None:
            return True
        try:
            current = await energy.get_current_price()
        except Exception as exc:
            logger.warning("Energy price lookup failed, treating condition as met: %s", exc)
            return True

        if condition.operator == "below":
            return current.price < condition.price
        if condition.operator == "above":
            return current.price > condition.price
        return current.level == condition.level
