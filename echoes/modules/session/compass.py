from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime

from echoes.config import settings


def clamp_compass_value(value: float, minimum: float | None = None, maximum: float | None = None) -> float:
    lo = settings.compass_min if minimum is None else minimum
    hi = settings.compass_max if maximum is None else maximum
    return float(max(lo, min(hi, float(value))))


def meets_threshold(value: float, direction: str, threshold: float) -> bool:
    if direction == "gte":
        return float(value) >= float(threshold)
    if direction == "lte":
        return float(value) <= float(threshold)
    raise ValueError(f"unsupported comparison direction: {direction}")


def initial_values(baselines: Mapping[str, float]) -> dict[str, float]:
    return {axis: clamp_compass_value(value) for axis, value in baselines.items()}


def apply_deltas(
    values: Mapping[str, float],
    deltas: Mapping[str, float],
    *,
    choice_id: str,
    choice_index: int,
    at: datetime,
) -> tuple[dict[str, float], list[dict]]:
    """Return the updated axis values and one history entry per moved axis.

    ``delta`` in each entry is the change that actually landed after clamping;
    ``requested_delta`` keeps the authored value.
    """
    updated = dict(values)
    entries: list[dict] = []
    for axis, raw_delta in deltas.items():
        before = float(updated.get(axis, settings.compass_default_baseline))
        after = clamp_compass_value(before + float(raw_delta))
        updated[axis] = after
        entries.append(
            {
                "axis": axis,
                "delta": after - before,
                "requested_delta": float(raw_delta),
                "resulting_value": after,
                "choice_id": choice_id,
                "choice_index": int(choice_index),
                "recorded_at": at.isoformat(),
            }
        )
    return updated, entries


def value_at(baselines: Mapping[str, float], history: Iterable[dict], axis: str, choice_index: int) -> float:
    """Axis value right after the choice at ``choice_index`` was applied."""
    value = clamp_compass_value(baselines.get(axis, settings.compass_default_baseline))
    for entry in history:
        if int(entry.get("choice_index", -1)) > choice_index:
            break
        if entry.get("axis") == axis:
            value = float(entry.get("resulting_value", value))
    return value
