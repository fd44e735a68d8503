from __future__ import annotations

from sqlalchemy.orm import Session

from echoes.db.models import Character, UserProfile
from echoes.errors import EngineNotFoundError, EngineValidationError
from echoes.modules.profiles.age_group import AgeGroup, is_compatible
from echoes.modules.scenario.schemas import ScenarioGraph


def get_profile(db: Session, profile_id: str) -> UserProfile:
    row = db.get(UserProfile, str(profile_id or "").strip())
    if row is None:
        raise EngineNotFoundError("profile not found")
    return row


def get_character(db: Session, character_id: str) -> Character:
    row = db.get(Character, str(character_id or "").strip())
    if row is None:
        raise EngineNotFoundError("character not found")
    return row


def require_age_compatible(profile: UserProfile, graph: ScenarioGraph) -> None:
    if not is_compatible(profile.age_group, graph.age_group):
        raise EngineValidationError(
            f"profile age group {profile.age_group} is not compatible with scenario age group {graph.age_group}"
        )


def require_character_in_pool(character: Character, graph: ScenarioGraph) -> None:
    if AgeGroup.parse(character.age_group) != AgeGroup.parse(graph.age_group):
        raise EngineValidationError("character does not belong to the scenario age group")
    if graph.archetypes and character.archetype not in graph.archetypes:
        raise EngineValidationError(f"character archetype {character.archetype!r} is not part of this scenario")


def upsert_profile(db: Session, *, profile_id: str, account_id: str, age_group: str, display_name: str = "") -> UserProfile:
    row = db.get(UserProfile, profile_id)
    if row is None:
        row = UserProfile(id=profile_id)
        db.add(row)
    row.account_id = account_id
    row.age_group = age_group
    row.display_name = display_name
    db.flush()
    return row


def upsert_character(db: Session, *, character_id: str, name: str, archetype: str, age_group: str) -> Character:
    row = db.get(Character, character_id)
    if row is None:
        row = Character(id=character_id)
        db.add(row)
    row.name = name
    row.archetype = archetype
    row.age_group = age_group
    db.flush()
    return row
