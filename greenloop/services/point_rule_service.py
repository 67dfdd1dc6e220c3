"""
Point earning rule service

The active rule is read fresh from the database on every ledger operation;
nothing is cached in process memory.
"""
import logging
from typing import Optional, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from greenloop.exceptions import PointNotFoundError, PointValidationError, DuplicateRuleError
from greenloop.models.point_rule import PointEarningRule
from greenloop.schemas.point_rule import (
    PointEarningRuleCreate,
    PointEarningRuleUpdate,
    PointEarningRuleResponse,
)
from greenloop.utils.timezone import to_utc

logger = logging.getLogger(__name__)

DEFAULT_RULE_NAME = "default"
EVENT_DATE_FIELDS = ("event_start_date", "event_end_date")


def _normalize_event_dates(values: dict) -> dict:
    for key in EVENT_DATE_FIELDS:
        if values.get(key) is not None:
            values[key] = to_utc(values[key])
    return values


def rule_to_response(rule: PointEarningRule) -> PointEarningRuleResponse:
    response = PointEarningRuleResponse.model_validate(rule)
    return response.model_copy(update={"event_active": rule.is_event_active()})


async def get_active_rule(db: AsyncSession) -> Optional[PointEarningRule]:
    """Currently active rule, newest first if the invariant was ever broken"""
    result = await db.execute(
        select(PointEarningRule)
        .where(PointEarningRule.is_active.is_(True))
        .order_by(PointEarningRule.created_at.desc())
        .limit(1)
    )
    return result.scalars().first()


async def list_rules(db: AsyncSession) -> List[PointEarningRule]:
    result = await db.execute(
        select(PointEarningRule).order_by(PointEarningRule.created_at.desc())
    )
    return list(result.scalars().all())


async def get_rule(db: AsyncSession, rule_id: str) -> PointEarningRule:
    result = await db.execute(
        select(PointEarningRule).where(PointEarningRule.id == rule_id)
    )
    rule = result.scalar_one_or_none()
    if not rule:
        raise PointNotFoundError(f"Rule not found with id: {rule_id}")
    return rule


async def _deactivate_all(db: AsyncSession, except_id: Optional[str] = None) -> int:
    result = await db.execute(
        select(PointEarningRule)
        .where(PointEarningRule.is_active.is_(True))
        .with_for_update()
    )
    count = 0
    for rule in result.scalars().all():
        if rule.id == except_id:
            continue
        rule.is_active = False
        count += 1
    return count


async def create_rule(db: AsyncSession, data: PointEarningRuleCreate) -> PointEarningRule:
    """
    Create a rule

    Raises:
        DuplicateRuleError: rule_name already taken
    """
    existing = await db.execute(
        select(PointEarningRule.id).where(PointEarningRule.rule_name == data.rule_name)
    )
    if existing.scalar_one_or_none():
        raise DuplicateRuleError(data.rule_name)

    if data.is_active:
        await _deactivate_all(db)

    rule = PointEarningRule(**_normalize_event_dates(data.model_dump()))
    db.add(rule)
    await db.flush()
    await db.refresh(rule)

    logger.info("Point rule created: %s (active=%s)", rule.rule_name, rule.is_active)
    return rule


async def update_rule(
    db: AsyncSession,
    rule_id: str,
    data: PointEarningRuleUpdate,
) -> PointEarningRule:
    """Partial update; the version column is bumped by the ORM on flush"""
    rule = await get_rule(db, rule_id)
    changes = _normalize_event_dates(data.model_dump(exclude_unset=True))
    for field, value in changes.items():
        setattr(rule, field, value)

    if rule.event_start_date and rule.event_end_date and rule.event_end_date <= rule.event_start_date:
        raise PointValidationError("event_end_date must be after event_start_date", "INVALID_EVENT_WINDOW")

    await db.flush()
    await db.refresh(rule)

    logger.info("Point rule %s updated to version %s: %s", rule.rule_name, rule.version, sorted(changes))
    return rule


async def delete_rule(db: AsyncSession, rule_id: str) -> None:
    rule = await get_rule(db, rule_id)
    await db.delete(rule)
    await db.flush()
    logger.info("Point rule deleted: %s", rule.rule_name)


async def activate_rule(db: AsyncSession, rule_id: str) -> PointEarningRule:
    """
    Make ``rule_id`` the only active rule

    Deactivation and activation happen in the caller's transaction, so
    readers never observe two active rules or none after commit.
    """
    rule = await get_rule(db, rule_id)
    deactivated = await _deactivate_all(db, except_id=rule.id)
    if not rule.is_active:
        rule.is_active = True
    await db.flush()
    await db.refresh(rule)

    logger.info("Point rule %s activated, %s other rule(s) deactivated", rule.rule_name, deactivated)
    return rule


async def ensure_default_rule(db: AsyncSession) -> Optional[PointEarningRule]:
    """Seed a default active rule when the table is empty"""
    result = await db.execute(select(PointEarningRule.id).limit(1))
    if result.scalar_one_or_none():
        return None
    return await create_rule(db, PointEarningRuleCreate(
        rule_name=DEFAULT_RULE_NAME,
        description="Default earning rates",
    ))
