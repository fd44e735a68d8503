#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from echoes.db import session as db_session
from echoes.modules.achievements.service import upsert_badge_configuration
from echoes.modules.profiles.service import upsert_character, upsert_profile
from echoes.modules.scenario.service import save_scenario

DEFAULT_SCENARIO_FILE = Path("examples/scenarios/whispering_forest.json")


def _load_json_object(path: Path) -> dict:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"seed file must contain a JSON object: {path}")
    return payload


def _default_fixtures_file(scenario_file: Path) -> Path:
    return scenario_file.with_name(f"{scenario_file.stem}.fixtures.json")


def seed_scenario(*, scenario_file: Path, fixtures_file: Path | None, publish: bool) -> dict:
    if not scenario_file.exists():
        raise FileNotFoundError(f"scenario file not found: {scenario_file}")

    payload = _load_json_object(scenario_file)
    fixtures: dict = {}
    if fixtures_file is not None and fixtures_file.exists():
        fixtures = _load_json_object(fixtures_file)

    with db_session.SessionLocal() as db:
        with db.begin():
            row = save_scenario(db, payload, publish=publish)
            for badge in fixtures.get("badges", []):
                upsert_badge_configuration(
                    db,
                    badge_id=str(badge["badge_id"]),
                    title=str(badge.get("title") or badge["badge_id"]),
                    axis=str(badge.get("axis") or ""),
                    threshold=float(badge.get("threshold") or 0.0),
                    direction=str(badge.get("direction") or "gte"),
                    age_group=badge.get("age_group"),
                    tier_order=int(badge.get("tier_order") or 0),
                    kind=str(badge.get("kind") or "compass_threshold"),
                )
            for profile in fixtures.get("profiles", []):
                upsert_profile(
                    db,
                    profile_id=str(profile["profile_id"]),
                    account_id=str(profile["account_id"]),
                    age_group=str(profile["age_group"]),
                    display_name=str(profile.get("display_name") or ""),
                )
            for character in fixtures.get("characters", []):
                upsert_character(
                    db,
                    character_id=str(character["character_id"]),
                    name=str(character["name"]),
                    archetype=str(character["archetype"]),
                    age_group=str(character["age_group"]),
                )
            scenario_id = row.scenario_id

    return {
        "scenario_id": scenario_id,
        "published": bool(publish),
        "badges": len(fixtures.get("badges", [])),
        "profiles": len(fixtures.get("profiles", [])),
        "characters": len(fixtures.get("characters", [])),
        "source_path": str(scenario_file),
    }


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed or update a scenario and its fixtures into the database.")
    parser.add_argument(
        "--scenario-file",
        default=str(DEFAULT_SCENARIO_FILE),
        help="Path to scenario graph JSON file.",
    )
    parser.add_argument(
        "--fixtures-file",
        default=None,
        help="Path to badges/profiles/characters JSON (defaults to <scenario>.fixtures.json beside the scenario).",
    )
    parser.add_argument(
        "--publish",
        dest="publish",
        action="store_true",
        help="Publish the seeded scenario (default).",
    )
    parser.add_argument(
        "--no-publish",
        dest="publish",
        action="store_false",
        help="Seed without publishing.",
    )
    parser.set_defaults(publish=True)
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    scenario_file = Path(args.scenario_file)
    fixtures_file = Path(args.fixtures_file) if args.fixtures_file else _default_fixtures_file(scenario_file)
    result = seed_scenario(scenario_file=scenario_file, fixtures_file=fixtures_file, publish=bool(args.publish))
    print(
        "seeded scenario "
        f"scenario_id={result['scenario_id']} published={result['published']} "
        f"badges={result['badges']} profiles={result['profiles']} characters={result['characters']} "
        f"source={result['source_path']}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
