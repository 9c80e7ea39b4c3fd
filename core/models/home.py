"""Readings returned by the home collaborators the scheduler consults."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field


class PresenceStatus(BaseModel):
    """Household presence as reported by the presence service."""

    status: str  # e.g. "home", "away", "sleeping"
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class EnergyPrice(BaseModel):
    """Current spot price of electricity."""

    price: float
    level: str = "normal"  # e.g. "low", "normal", "high"
    currency: str = "EUR"
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
