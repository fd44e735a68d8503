from __future__ import annotations

from pydantic import ValidationError
from sqlalchemy.orm import Session

from echoes.db.models import Scenario
from echoes.errors import EngineNotFoundError, EngineValidationError
from echoes.modules.scenario.schemas import ScenarioGraph
from echoes.utils.time import utc_now_naive


def load_graph(raw: dict) -> ScenarioGraph:
    try:
        return ScenarioGraph.model_validate(raw)
    except ValidationError as exc:
        raise EngineValidationError(f"scenario graph is invalid: {exc.errors()[0].get('msg')}") from exc


def get_scenario(db: Session, scenario_id: str, *, require_published: bool = True) -> ScenarioGraph:
    row = db.get(Scenario, str(scenario_id or "").strip())
    if row is None:
        raise EngineNotFoundError("scenario not found")
    if require_published and not row.is_published:
        raise EngineNotFoundError("scenario is not published")
    payload = dict(row.graph_json or {})
    payload.setdefault("scenario_id", row.scenario_id)
    payload.setdefault("title", row.title)
    payload.setdefault("age_group", row.age_group)
    return load_graph(payload)


def save_scenario(db: Session, raw: dict, *, publish: bool = True) -> Scenario:
    graph = load_graph(raw)
    now = utc_now_naive()
    row = db.get(Scenario, graph.scenario_id)
    if row is None:
        row = Scenario(scenario_id=graph.scenario_id, created_at=now)
        db.add(row)
    row.title = graph.title
    row.age_group = graph.age_group
    row.is_published = bool(publish)
    row.graph_json = graph.model_dump(mode="json")
    row.updated_at = now
    db.flush()
    return row
