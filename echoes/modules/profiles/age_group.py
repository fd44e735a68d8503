from __future__ import annotations

from dataclasses import dataclass

from echoes.config import settings


@dataclass(frozen=True, slots=True)
class AgeGroup:
    minimum_age: int
    maximum_age: int

    @property
    def value(self) -> str:
        return f"{self.minimum_age}-{self.maximum_age}"

    @classmethod
    def parse(cls, raw: str | None) -> AgeGroup:
        parsed = _try_parse(raw)
        if parsed is None:
            parsed = _try_parse(settings.default_age_group) or cls(6, 9)
        return parsed

    def is_appropriate_for(self, required_minimum_age: int) -> bool:
        return self.minimum_age >= int(required_minimum_age)


def _try_parse(raw: str | None) -> AgeGroup | None:
    text = str(raw or "").strip()
    low, sep, high = text.partition("-")
    if not sep:
        return None
    try:
        minimum, maximum = int(low), int(high)
    except ValueError:
        return None
    if minimum < 0 or maximum < minimum:
        return None
    return AgeGroup(minimum, maximum)


def is_compatible(profile_age_group: str | None, scenario_age_group: str | None) -> bool:
    scenario_group = AgeGroup.parse(scenario_age_group)
    return AgeGroup.parse(profile_age_group).is_appropriate_for(scenario_group.minimum_age)
