from __future__ import annotations

import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field, model_validator

ENV_PREFIX = "REFERRAL_"


class GrowthSettings(BaseModel):
    """Knobs for the growth simulator and the incentive search."""

    initial_participants: float = Field(100.0, ge=0)
    capacity: int = 10  # lifetime successes per participant; <= 0 means never active
    negligible_growth: float = Field(1e-12, gt=0)
    precision: int = Field(9, ge=0)  # decimals kept on cumulative totals
    target_epsilon: float = Field(1e-9, ge=0)
    max_days: int = Field(10_000, gt=0)  # safety cap for days_to_target

    bonus_increment: int = Field(10, gt=0)
    initial_bonus: int = Field(10, gt=0)
    max_bonus: int = Field(1_000_000, gt=0)

    @model_validator(mode="after")
    def _check_bonus_bounds(self) -> "GrowthSettings":
        if self.initial_bonus > self.max_bonus:
            raise ValueError("initial_bonus must not exceed max_bonus")
        return self


def load_settings(environ: Optional[Mapping[str, str]] = None) -> GrowthSettings:
    """Build settings from REFERRAL_* variables, e.g. REFERRAL_CAPACITY=5."""
    environ = os.environ if environ is None else environ
    overrides = {}
    for name in GrowthSettings.model_fields:
        raw = environ.get(ENV_PREFIX + name.upper())
        if raw is not None and raw.strip():
            overrides[name] = raw.strip()
    # pydantic coerces the strings and rejects bad values
    return GrowthSettings(**overrides)
