from __future__ import annotations

from echoes.modules.scenario.schemas import AxisConditionRoute, ScenarioGraph


def build_adjacency(graph: ScenarioGraph) -> dict[str, list[str]]:
    known = {scene.scene_id for scene in graph.scenes}
    adjacency: dict[str, list[str]] = {}
    for scene in graph.scenes:
        edges: list[str] = []
        seen: set[str] = set()
        for choice in scene.choices:
            route = choice.route
            if isinstance(route, AxisConditionRoute):
                targets = [route.if_true_scene_id, route.if_false_scene_id]
            else:
                targets = [route.next_scene_id]
            for nxt in targets:
                if nxt in known and nxt not in seen:
                    seen.add(nxt)
                    edges.append(nxt)
        adjacency[scene.scene_id] = edges
    return adjacency


def reachable_scene_ids(graph: ScenarioGraph) -> set[str]:
    adjacency = build_adjacency(graph)
    visited: set[str] = set()
    stack = [graph.entry_scene_id]
    while stack:
        scene_id = stack.pop()
        if scene_id in visited:
            continue
        visited.add(scene_id)
        for nxt in adjacency.get(scene_id, []):
            if nxt not in visited:
                stack.append(nxt)
    return visited
