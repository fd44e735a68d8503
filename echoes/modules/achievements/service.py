from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from echoes.db.models import BadgeConfiguration, SessionAchievement
from echoes.errors import EngineValidationError
from echoes.modules.achievements.evaluator import BadgeKind, BadgeRule, UnlockedAchievement, qualifying_rules
from echoes.modules.profiles.age_group import AgeGroup
from echoes.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

_AWARD_UNIQUE_MARKERS = (
    "uq_session_achievements_profile_badge",
    "session_achievements.profile_id, session_achievements.badge_id",
)


def _rule_from_row(row: BadgeConfiguration) -> BadgeRule:
    return BadgeRule(
        badge_id=row.id,
        title=row.title,
        axis=row.axis,
        threshold=float(row.threshold),
        direction=row.direction,
        age_group=row.age_group,
        tier_order=int(row.tier_order or 0),
        kind=BadgeKind(row.kind or BadgeKind.COMPASS_THRESHOLD.value),
    )


def _achievement_from_row(
    row: SessionAchievement,
    *,
    title: str = "",
    kind: str = BadgeKind.COMPASS_THRESHOLD.value,
) -> UnlockedAchievement:
    return UnlockedAchievement(
        badge_id=row.badge_id,
        title=title,
        axis=row.axis,
        trigger_value=float(row.trigger_value),
        threshold=float(row.threshold),
        profile_id=row.profile_id,
        session_id=row.session_id,
        unlocked_at=row.unlocked_at,
        kind=kind,
    )


def list_badge_configurations(db: Session, *, age_group: str | None = None) -> list[BadgeRule]:
    rows = db.execute(
        select(BadgeConfiguration).order_by(
            BadgeConfiguration.kind,
            BadgeConfiguration.axis,
            BadgeConfiguration.tier_order,
            BadgeConfiguration.id,
        )
    ).scalars()
    rules = [_rule_from_row(row) for row in rows]
    if age_group is None:
        return rules
    return [rule for rule in rules if rule.applies_to(age_group)]


def upsert_badge_configuration(
    db: Session,
    *,
    badge_id: str,
    title: str,
    axis: str = "",
    threshold: float = 0.0,
    direction: str = "gte",
    age_group: str | None = None,
    tier_order: int = 0,
    kind: str = BadgeKind.COMPASS_THRESHOLD.value,
) -> BadgeConfiguration:
    try:
        badge_kind = BadgeKind(kind)
    except ValueError as exc:
        raise EngineValidationError(f"unsupported badge kind: {kind}") from exc
    if direction not in {"gte", "lte"}:
        raise EngineValidationError(f"unsupported badge direction: {direction}")
    cleaned_axis = str(axis or "").strip()
    if badge_kind == BadgeKind.COMPASS_THRESHOLD and not cleaned_axis:
        raise EngineValidationError(f"compass badge {badge_id!r} needs an axis")
    row = db.get(BadgeConfiguration, badge_id)
    if row is None:
        row = BadgeConfiguration(id=badge_id)
        db.add(row)
    row.title = title
    row.kind = badge_kind.value
    # only compass badges read an axis
    row.axis = cleaned_axis if badge_kind == BadgeKind.COMPASS_THRESHOLD else ""
    row.threshold = float(threshold)
    row.direction = direction
    row.age_group = AgeGroup.parse(age_group).value if age_group else None
    row.tier_order = int(tier_order)
    db.flush()
    return row


def _is_award_unique_conflict(exc: IntegrityError) -> bool:
    msg = str(getattr(exc, "orig", exc)).lower()
    return any(marker in msg for marker in _AWARD_UNIQUE_MARKERS)


def _award_missing(
    db: Session,
    *,
    session_id: str,
    profile_id: str,
    age_group: str | None,
    compass_values: Mapping[str, float],
    choice_count: int,
    completed: bool,
    now: datetime,
) -> list[UnlockedAchievement]:
    matched = qualifying_rules(
        list_badge_configurations(db, age_group=age_group),
        compass_values,
        choice_count=choice_count,
        completed=completed,
    )
    if not matched:
        return []
    held = set(
        db.execute(select(SessionAchievement.badge_id).where(SessionAchievement.profile_id == profile_id)).scalars()
    )
    unlocked: list[UnlockedAchievement] = []
    for rule, value in matched:
        if rule.badge_id in held:
            continue
        row = SessionAchievement(
            profile_id=profile_id,
            badge_id=rule.badge_id,
            session_id=session_id,
            axis=rule.axis,
            trigger_value=value,
            threshold=rule.threshold,
            unlocked_at=now,
        )
        db.add(row)
        held.add(rule.badge_id)
        unlocked.append(_achievement_from_row(row, title=rule.title, kind=rule.kind.value))
    db.flush()
    return unlocked


def evaluate_and_award(
    db: Session,
    *,
    session_id: str,
    profile_id: str,
    age_group: str | None,
    compass_values: Mapping[str, float],
    choice_count: int = 0,
    completed: bool = False,
    now: datetime | None = None,
) -> list[UnlockedAchievement]:
    """Award every newly met badge for the profile in its own transaction.

    Returns only the rows this call inserted. A concurrent award of the same
    badge loses on the unique constraint and the evaluation is rerun once.
    """
    awarded_at = now or utc_now_naive()
    for attempt in range(2):
        try:
            with db.begin():
                unlocked = _award_missing(
                    db,
                    session_id=session_id,
                    profile_id=profile_id,
                    age_group=age_group,
                    compass_values=compass_values,
                    choice_count=choice_count,
                    completed=completed,
                    now=awarded_at,
                )
        except IntegrityError as exc:
            if attempt or not _is_award_unique_conflict(exc):
                raise
            logger.warning("badge award raced for profile %s, re-evaluating", profile_id)
            continue
        for item in unlocked:
            logger.info("badge %s unlocked for profile %s in session %s", item.badge_id, profile_id, session_id)
        return unlocked
    return []


def _list_achievements(db: Session, *criteria) -> list[UnlockedAchievement]:
    rows = db.execute(
        select(SessionAchievement, BadgeConfiguration.title, BadgeConfiguration.kind)
        .outerjoin(BadgeConfiguration, BadgeConfiguration.id == SessionAchievement.badge_id)
        .where(*criteria)
        .order_by(SessionAchievement.unlocked_at, SessionAchievement.axis, SessionAchievement.badge_id)
    ).all()
    return [
        _achievement_from_row(row, title=title or "", kind=kind or BadgeKind.COMPASS_THRESHOLD.value)
        for row, title, kind in rows
    ]


def list_session_achievements(db: Session, session_id: str) -> list[UnlockedAchievement]:
    return _list_achievements(db, SessionAchievement.session_id == session_id)


def list_profile_achievements(db: Session, profile_id: str) -> list[UnlockedAchievement]:
    return _list_achievements(db, SessionAchievement.profile_id == profile_id)
