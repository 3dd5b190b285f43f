"""Health damage: clamping, per-side application, and knockout detection.

Two policies are supported:

* sequential (default): the user's hit lands on the attorney first. An
  attorney KO ends the round there and the counter never lands. Otherwise
  the attorney's counter then lands on the defendant.
* simultaneous: both hits land together; an attorney KO takes precedence
  over a defendant KO.
"""

import logging
from dataclasses import replace
from typing import Literal

from objection.models import HealthState, KOResult

logger = logging.getLogger(__name__)

Target = Literal["attorney", "defendant"]


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def apply_damage_to_one(
    health: HealthState,
    target: Target,
    amount: int,
) -> tuple[HealthState, bool]:
    """Subtract `amount` from one side's HP, floored at 0 and capped at max_hp.

    Returns:
        (new_health, knocked_out)
    """
    amount = max(0, amount)
    if target == "attorney":
        hp = clamp(health.attorney_hp - amount, 0, health.max_hp)
        new_health = replace(health, attorney_hp=hp)
    elif target == "defendant":
        hp = clamp(health.defendant_hp - amount, 0, health.max_hp)
        new_health = replace(health, defendant_hp=hp)
    else:
        raise ValueError(f"Unknown damage target: {target!r}")
    return new_health, hp == 0


def resolve_attack(health: HealthState, damage: int) -> tuple[HealthState, KOResult]:
    """Phase 1: the user's argument hits the attorney."""
    new_health, ko = apply_damage_to_one(health, "attorney", damage)
    logger.debug("Attack for %d, attorney at %d", damage, new_health.attorney_hp)
    return new_health, "attorney_ko" if ko else "none"


def resolve_counter(health: HealthState, damage: int) -> tuple[HealthState, KOResult]:
    """Phase 2: the attorney's counter hits the defendant."""
    new_health, ko = apply_damage_to_one(health, "defendant", damage)
    logger.debug("Counter for %d, defendant at %d", damage, new_health.defendant_hp)
    return new_health, "defendant_ko" if ko else "none"


def apply_simultaneous(
    health: HealthState,
    to_attorney: int,
    to_defendant: int,
) -> tuple[HealthState, KOResult]:
    """Apply both hits at once. Attorney KO wins a double knockout."""
    health, attorney_down = apply_damage_to_one(health, "attorney", to_attorney)
    health, defendant_down = apply_damage_to_one(health, "defendant", to_defendant)
    if attorney_down:
        return health, "attorney_ko"
    if defendant_down:
        return health, "defendant_ko"
    return health, "none"
