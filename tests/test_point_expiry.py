from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from greenloop.models.point import PointTransaction, TransactionType
from greenloop.models.user import User
from greenloop.services import point_expiry
from greenloop.services import point_service as point_service_module
from greenloop.services.point_expiry import expire_points
from greenloop.services.point_service import PointService

NOW = datetime(2026, 3, 1, 12, 0, 0)
AFTER_EXPIRY = NOW + timedelta(days=31)


@pytest.fixture
async def monthly_rule(make_rule):
    return await make_rule(rule_name="monthly", points_expire_in_days=30)


async def _earn(session_factory, user_id, amount, now=NOW, tx_type=TransactionType.EARNED_COLLECTION):
    async with session_factory() as session:
        tx = await PointService(session).earn(user_id, tx_type, amount, now=now)
        await session.commit()
        return tx


async def _ledger(session_factory, user_id):
    async with session_factory() as session:
        result = await session.execute(
            select(PointTransaction)
            .where(PointTransaction.user_id == user_id)
            .order_by(PointTransaction.created_at)
        )
        user = await session.get(User, user_id)
        return result.scalars().all(), user.sustainability_points


@pytest.mark.anyio
async def test_sweep_expires_grant_and_appends_forfeiture(session_factory, user, monthly_rule):
    grant = await _earn(session_factory, user.id, 100)

    assert await expire_points(session_factory, now=AFTER_EXPIRY) == 1

    rows, cached = await _ledger(session_factory, user.id)
    original = next(r for r in rows if r.id == grant.id)
    forfeiture = next(r for r in rows if r.transaction_type == "EXPIRED")

    assert original.status == "EXPIRED"
    assert forfeiture.status == "COMPLETED"
    assert forfeiture.points_amount == 100
    assert (forfeiture.balance_before, forfeiture.balance_after) == (100, 0)
    assert forfeiture.related_transaction_id == grant.id
    assert cached == 0


@pytest.mark.anyio
async def test_sweep_floors_balance_at_zero(session_factory, user, monthly_rule):
    await _earn(session_factory, user.id, 150)
    async with session_factory() as session:
        await PointService(session).redeem(user.id, 120, "DISCOUNT", now=NOW + timedelta(days=1))
        await session.commit()

    assert await expire_points(session_factory, now=AFTER_EXPIRY) == 1

    rows, cached = await _ledger(session_factory, user.id)
    forfeiture = next(r for r in rows if r.transaction_type == "EXPIRED")
    assert forfeiture.points_amount == 30
    assert forfeiture.balance_after == 0
    assert cached == 0


@pytest.mark.anyio
async def test_sweep_keeps_ledger_and_cache_in_step(session_factory, user, monthly_rule):
    await _earn(session_factory, user.id, 100)
    await _earn(session_factory, user.id, 40, now=NOW + timedelta(days=20))

    await expire_points(session_factory, now=AFTER_EXPIRY)

    rows, cached = await _ledger(session_factory, user.id)
    posted = [r for r in rows if r.status in ("COMPLETED", "EXPIRED")]
    assert sum(r.balance_after - r.balance_before for r in posted) == cached == 40
    async with session_factory() as session:
        assert await PointService(session).get_available_points(user.id, now=AFTER_EXPIRY) == 40


@pytest.mark.anyio
async def test_sweep_is_idempotent(session_factory, user, monthly_rule):
    await _earn(session_factory, user.id, 100)

    assert await expire_points(session_factory, now=AFTER_EXPIRY) == 1
    assert await expire_points(session_factory, now=AFTER_EXPIRY) == 0

    rows, _ = await _ledger(session_factory, user.id)
    assert len([r for r in rows if r.transaction_type == "EXPIRED"]) == 1


@pytest.mark.anyio
async def test_sweep_ignores_grants_not_yet_due(session_factory, user, monthly_rule):
    await _earn(session_factory, user.id, 100)

    assert await expire_points(session_factory, now=NOW + timedelta(days=29)) == 0


@pytest.mark.anyio
async def test_sweep_expires_exactly_at_deadline(session_factory, user, monthly_rule):
    grant = await _earn(session_factory, user.id, 100)

    assert await expire_points(session_factory, now=grant.expires_at) == 1


@pytest.mark.anyio
async def test_sweep_never_touches_spent_rows(session_factory, user, monthly_rule):
    await _earn(session_factory, user.id, 200)
    async with session_factory() as session:
        spent = await PointService(session).redeem(user.id, 100, "DISCOUNT", now=NOW)
        await session.commit()

    await expire_points(session_factory, now=AFTER_EXPIRY)

    rows, _ = await _ledger(session_factory, user.id)
    assert next(r for r in rows if r.id == spent.id).status == "COMPLETED"


@pytest.mark.anyio
async def test_sweep_continues_after_a_failing_grant(session_factory, make_user, monthly_rule, monkeypatch):
    first = await make_user("first@greenloop.test")
    second = await make_user("second@greenloop.test")
    bad = await _earn(session_factory, first.id, 100)
    await _earn(session_factory, second.id, 60)

    real_expire_one = point_expiry._expire_one

    async def flaky_expire_one(factory, transaction_id, now):
        if transaction_id == bad.id:
            raise RuntimeError("row lock timeout")
        return await real_expire_one(factory, transaction_id, now)

    monkeypatch.setattr(point_expiry, "_expire_one", flaky_expire_one)

    assert await expire_points(session_factory, now=AFTER_EXPIRY) == 1

    rows, cached = await _ledger(session_factory, first.id)
    assert next(r for r in rows if r.id == bad.id).status == "COMPLETED"
    assert cached == 100
    _, second_cached = await _ledger(session_factory, second.id)
    assert second_cached == 0


@pytest.mark.anyio
async def test_notify_users_with_expiring_points(session_factory, make_user, monthly_rule, monkeypatch):
    sent = []
    monkeypatch.setattr(
        point_service_module,
        "send_points_expiry_notification",
        lambda email, points, days: sent.append((email, points, days)),
    )
    soon = await make_user("soon@greenloop.test")
    later = await make_user("later@greenloop.test")
    await _earn(session_factory, soon.id, 80)
    await _earn(session_factory, later.id, 40, now=NOW + timedelta(days=20))

    check_at = NOW + timedelta(days=25)
    assert await point_expiry.find_users_with_expiring_points(session_factory, 7, now=check_at) == [soon.id]
    assert await point_expiry.notify_users_with_expiring_points(session_factory, 7, now=check_at) == 1
    assert sent == [("soon@greenloop.test", 80, 7)]


@pytest.mark.anyio
async def test_totals_after_sweep_agree_with_points_by_type(session_factory, user, monthly_rule):
    await _earn(session_factory, user.id, 100)
    await _earn(session_factory, user.id, 40, now=NOW + timedelta(days=20))

    assert await expire_points(session_factory, now=AFTER_EXPIRY) == 1

    async with session_factory() as session:
        service = PointService(session)
        earned = await service.get_total_earned_points(user.id)
        spent = await service.get_total_spent_points(user.id)
        by_type = await service.get_points_by_transaction_type(user.id)
        available = await service.get_available_points(user.id, now=AFTER_EXPIRY)

    assert earned == 40
    assert spent == 0
    assert by_type == {"EARNED_COLLECTION": 40, "EXPIRED": 100}
    assert available == 40
