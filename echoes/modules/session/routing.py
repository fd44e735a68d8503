from __future__ import annotations

from collections.abc import Mapping

from echoes.config import settings
from echoes.modules.scenario.schemas import AxisConditionRoute, LinearRoute
from echoes.modules.session.compass import meets_threshold


def resolve_next_scene_id(route: LinearRoute | AxisConditionRoute, compass_values: Mapping[str, float]) -> str:
    """Pick the scene a choice leads to, reading axis values after the choice's own deltas."""
    if isinstance(route, LinearRoute):
        return route.next_scene_id
    if isinstance(route, AxisConditionRoute):
        value = float(compass_values.get(route.axis, settings.compass_default_baseline))
        if meets_threshold(value, route.direction, route.threshold):
            return route.if_true_scene_id
        return route.if_false_scene_id
    raise TypeError(f"unsupported routing rule: {type(route).__name__}")
