from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from echoes.modules.profiles.age_group import AgeGroup
from echoes.modules.session.compass import meets_threshold


class BadgeKind(str, Enum):
    COMPASS_THRESHOLD = "compass_threshold"
    FIRST_CHOICE = "first_choice"
    SESSION_COMPLETE = "session_complete"


_KIND_ORDER = {kind: rank for rank, kind in enumerate(BadgeKind)}


@dataclass(frozen=True, slots=True)
class BadgeRule:
    badge_id: str
    title: str
    axis: str
    threshold: float
    direction: str = "gte"
    age_group: str | None = None
    tier_order: int = 0
    kind: BadgeKind = BadgeKind.COMPASS_THRESHOLD

    def applies_to(self, age_group: str | None) -> bool:
        if self.age_group is None:
            return True
        return AgeGroup.parse(self.age_group) == AgeGroup.parse(age_group)


@dataclass(frozen=True, slots=True)
class UnlockedAchievement:
    badge_id: str
    title: str
    axis: str
    trigger_value: float
    threshold: float
    profile_id: str
    session_id: str
    unlocked_at: datetime
    kind: str = BadgeKind.COMPASS_THRESHOLD.value


def _trigger_value(
    rule: BadgeRule,
    compass_values: Mapping[str, float],
    *,
    choice_count: int,
    completed: bool,
) -> float | None:
    if rule.kind == BadgeKind.FIRST_CHOICE:
        return float(choice_count) if choice_count >= 1 else None
    if rule.kind == BadgeKind.SESSION_COMPLETE:
        return 1.0 if completed else None
    if rule.axis not in compass_values:
        return None
    value = float(compass_values[rule.axis])
    return value if meets_threshold(value, rule.direction, rule.threshold) else None


def qualifying_rules(
    rules: Iterable[BadgeRule],
    compass_values: Mapping[str, float],
    *,
    age_group: str | None = None,
    choice_count: int = 0,
    completed: bool = False,
) -> list[tuple[BadgeRule, float]]:
    """Rules met by the session, paired with the value that met them.

    Compass badges come first, ordered by axis then tier, followed by the
    first-choice and session-complete badges. Rules on an axis the session
    does not track never qualify.
    """
    matched: list[tuple[BadgeRule, float]] = []
    ordered = sorted(rules, key=lambda item: (_KIND_ORDER[item.kind], item.axis, item.tier_order, item.badge_id))
    for rule in ordered:
        if age_group is not None and not rule.applies_to(age_group):
            continue
        value = _trigger_value(rule, compass_values, choice_count=choice_count, completed=completed)
        if value is not None:
            matched.append((rule, value))
    return matched
