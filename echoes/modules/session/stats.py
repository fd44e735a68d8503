from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from echoes.modules.achievements.evaluator import UnlockedAchievement
from echoes.modules.scenario.graph import reachable_scene_ids
from echoes.modules.scenario.schemas import ScenarioGraph
from echoes.modules.session.compass import value_at
from echoes.modules.session.echo_log import counts_by_type, strength_by_type
from echoes.modules.session.state import SessionState, count_choices, is_scene_override

RECENT_ECHO_LIMIT = 5


@dataclass(slots=True)
class SessionStats:
    session_id: str
    total_choices: int
    echo_counts: dict[str, int] = field(default_factory=dict)
    echo_strength_totals: dict[str, float] = field(default_factory=dict)
    scenes_visited: int = 0
    reachable_scenes: int = 0
    completion_ratio: float = 0.0
    elapsed_seconds: float = 0.0
    compass_values: dict[str, float] = field(default_factory=dict)
    compass_timeline: list[dict] = field(default_factory=list)
    recent_echoes: list[dict] = field(default_factory=list)
    achievements: list[UnlockedAchievement] = field(default_factory=list)


def visited_scene_ids(state: SessionState, entry_scene_id: str) -> set[str]:
    visited = {entry_scene_id, state.current_scene_id}
    for entry in state.choice_history:
        for key in ("scene_id", "next_scene_id"):
            scene_id = str(entry.get(key) or "")
            if scene_id:
                visited.add(scene_id)
    return visited


def compass_timeline(state: SessionState, baselines: dict[str, float]) -> list[dict]:
    """Per-axis compass values right after each real choice, oldest first."""
    axes = sorted(set(baselines) | set(state.compass_values))
    timeline: list[dict] = []
    for index, entry in enumerate(state.choice_history):
        if is_scene_override(entry):
            continue
        timeline.append(
            {
                "choice_index": index,
                "choice_id": str(entry.get("choice_id") or ""),
                "values": {axis: value_at(baselines, state.compass_history, axis, index) for axis in axes},
            }
        )
    return timeline


def recent_echoes(echo_log: list[dict], limit: int = RECENT_ECHO_LIMIT) -> list[dict]:
    # the log is append-only, so reversing it yields newest first
    return [dict(entry) for entry in reversed(echo_log[-limit:])] if limit > 0 else []


def compute_session_stats(
    state: SessionState,
    graph: ScenarioGraph,
    *,
    now: datetime,
    achievements: list[UnlockedAchievement] | None = None,
) -> SessionStats:
    reachable = reachable_scene_ids(graph)
    visited = visited_scene_ids(state, graph.entry_scene_id)
    ratio = 0.0
    if reachable:
        ratio = len(visited & reachable) / len(reachable)
    return SessionStats(
        session_id=state.id,
        total_choices=count_choices(state.choice_history),
        echo_counts=counts_by_type(state.echo_log),
        echo_strength_totals=strength_by_type(state.echo_log),
        scenes_visited=len(visited),
        reachable_scenes=len(reachable),
        completion_ratio=round(ratio, 4),
        elapsed_seconds=state.total_elapsed_seconds(now),
        compass_values=dict(state.compass_values),
        compass_timeline=compass_timeline(state, graph.baselines()),
        recent_echoes=recent_echoes(state.echo_log),
        achievements=list(achievements or []),
    )
