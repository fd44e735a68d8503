from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from echoes.config import settings

Direction = Literal["gte", "lte"]


class LinearRoute(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["linear"] = "linear"
    next_scene_id: str = Field(min_length=1)


class AxisConditionRoute(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["axis_condition"] = "axis_condition"
    axis: str = Field(min_length=1)
    threshold: float
    direction: Direction = "gte"
    if_true_scene_id: str = Field(min_length=1)
    if_false_scene_id: str = Field(min_length=1)


RoutingRule = Annotated[LinearRoute | AxisConditionRoute, Field(discriminator="kind")]


class ChoiceDef(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    choice_id: str = Field(min_length=1)
    text: str = ""
    echo_type: str = Field(min_length=1)
    echo_strength: float = 0.0
    compass_deltas: dict[str, float] = Field(default_factory=dict)
    route: RoutingRule


class SceneDef(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    scene_id: str = Field(min_length=1)
    title: str = ""
    narrative: str = ""
    choices: list[ChoiceDef] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return not self.choices

    def choice(self, choice_id: str) -> ChoiceDef | None:
        for item in self.choices:
            if item.choice_id == choice_id:
                return item
        return None


class CompassAxisDef(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    axis: str = Field(min_length=1)
    baseline: float = Field(default_factory=lambda: settings.compass_default_baseline)


class ScenarioGraph(BaseModel):
    """Immutable scene/choice graph a session is played against."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    scenario_id: str = Field(min_length=1)
    title: str = ""
    age_group: str = Field(min_length=1)
    entry_scene_id: str = Field(min_length=1)
    compass_axes: list[CompassAxisDef] = Field(default_factory=list)
    archetypes: list[str] = Field(default_factory=list)
    scenes: list[SceneDef] = Field(min_length=1)

    @model_validator(mode="after")
    def validate_graph(self):
        axis_names = [item.axis for item in self.compass_axes]
        if len(set(axis_names)) != len(axis_names):
            raise ValueError("compass axes must be unique")
        if len(axis_names) > settings.max_compass_axes:
            raise ValueError(f"scenario declares {len(axis_names)} compass axes (max {settings.max_compass_axes})")
        if len(set(self.archetypes)) > settings.max_character_archetypes:
            raise ValueError(
                f"scenario declares {len(set(self.archetypes))} archetypes (max {settings.max_character_archetypes})"
            )

        scene_ids = [scene.scene_id for scene in self.scenes]
        if len(set(scene_ids)) != len(scene_ids):
            raise ValueError("scene ids must be unique")
        known_scenes = set(scene_ids)
        if self.entry_scene_id not in known_scenes:
            raise ValueError(f"entry scene {self.entry_scene_id!r} is not defined")

        known_axes = set(axis_names)
        for scene in self.scenes:
            seen_choices: set[str] = set()
            for choice in scene.choices:
                if choice.choice_id in seen_choices:
                    raise ValueError(f"duplicate choice {choice.choice_id!r} in scene {scene.scene_id!r}")
                seen_choices.add(choice.choice_id)
                for axis in choice.compass_deltas:
                    if axis not in known_axes:
                        raise ValueError(f"choice {choice.choice_id!r} moves undeclared axis {axis!r}")
                route = choice.route
                if isinstance(route, AxisConditionRoute):
                    if route.axis not in known_axes:
                        raise ValueError(f"choice {choice.choice_id!r} routes on undeclared axis {route.axis!r}")
                    targets = [route.if_true_scene_id, route.if_false_scene_id]
                else:
                    targets = [route.next_scene_id]
                for target in targets:
                    if target not in known_scenes:
                        raise ValueError(f"choice {choice.choice_id!r} routes to unknown scene {target!r}")
        return self

    def scene(self, scene_id: str) -> SceneDef | None:
        for scene in self.scenes:
            if scene.scene_id == scene_id:
                return scene
        return None

    def baselines(self) -> dict[str, float]:
        return {item.axis: float(item.baseline) for item in self.compass_axes}
