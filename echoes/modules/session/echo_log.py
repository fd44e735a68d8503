from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from datetime import datetime

from echoes.modules.scenario.schemas import ChoiceDef


def echo_entry(choice: ChoiceDef, *, at: datetime) -> dict:
    return {
        "choice_id": choice.choice_id,
        "echo_type": choice.echo_type,
        "strength": float(choice.echo_strength),
        "recorded_at": at.isoformat(),
    }


def counts_by_type(echo_log: Iterable[dict]) -> dict[str, int]:
    counts: Counter[str] = Counter()
    for entry in echo_log:
        counts[str(entry.get("echo_type") or "")] += 1
    return dict(counts)


def strength_by_type(echo_log: Iterable[dict]) -> dict[str, float]:
    totals: dict[str, float] = {}
    for entry in echo_log:
        key = str(entry.get("echo_type") or "")
        totals[key] = totals.get(key, 0.0) + float(entry.get("strength") or 0.0)
    return totals
