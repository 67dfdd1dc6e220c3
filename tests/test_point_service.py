import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql

from greenloop.exceptions import (
    PointNotFoundError,
    PointValidationError,
    InsufficientPointsError,
    BelowMinimumRedemptionError,
    NegativeBalanceResultError,
    ConcurrentUpdateError,
    PointOperationError,
)
from greenloop.models.point import PointTransaction, TransactionType
from greenloop.models.user import User
from greenloop.services import point_service as point_service_module
from greenloop.services.point_service import PointService, ledger_balance, lock_user_stmt

NOW = datetime(2026, 3, 1, 12, 0, 0)


async def _rows(db, user_id):
    result = await db.execute(
        select(PointTransaction).where(PointTransaction.user_id == user_id)
    )
    return result.scalars().all()


def test_user_lock_renders_for_update():
    sql = str(lock_user_stmt("user-1").compile(dialect=postgresql.dialect()))
    assert "FOR UPDATE" in sql


async def _redeem_in_own_session(session_factory, user_id, points):
    async with session_factory() as session:
        tx = await PointService(session).redeem(user_id, points, "DISCOUNT")
        await session.commit()
        return tx


@pytest.mark.anyio
async def test_concurrent_redeems_never_overspend(session_factory, user):
    async with session_factory() as session:
        await PointService(session).earn(user.id, TransactionType.EARNED_COLLECTION, 100)
        await session.commit()

    outcomes = await asyncio.gather(
        _redeem_in_own_session(session_factory, user.id, 80),
        _redeem_in_own_session(session_factory, user.id, 80),
        return_exceptions=True,
    )

    succeeded = [o for o in outcomes if not isinstance(o, BaseException)]
    assert len(succeeded) == 1
    assert succeeded[0].balance_after == 20

    async with session_factory() as session:
        cached = (await session.get(User, user.id)).sustainability_points
        assert await ledger_balance(session, user.id) == cached == 20


@pytest.mark.anyio
async def test_stale_balance_write_is_rejected(session_factory, user):
    async with session_factory() as stale_session:
        stale_user = (await stale_session.execute(lock_user_stmt(user.id))).scalar_one()

        async with session_factory() as session:
            await PointService(session).earn(user.id, TransactionType.EARNED_COLLECTION, 30)
            await session.commit()

        with pytest.raises(ConcurrentUpdateError) as exc_info:
            await PointService(stale_session)._append(
                stale_user, TransactionType.EARNED_REVIEW, 10, 0, 10, None, NOW,
            )
        await stale_session.rollback()

    assert isinstance(exc_info.value, PointOperationError)
    assert exc_info.value.status_code == 409
    assert exc_info.value.error_code == "CONCURRENT_UPDATE"

    async with session_factory() as session:
        assert await ledger_balance(session, user.id) == 30


@pytest.mark.anyio
async def test_earn_records_snapshots_and_expiry(db, user, rule):
    service = PointService(db)

    tx = await service.earn(user.id, TransactionType.EARNED_COLLECTION, 50, "Recycled 3 items", now=NOW)

    assert tx.transaction_type == "EARNED_COLLECTION"
    assert tx.points_amount == 50
    assert tx.balance_before == 0
    assert tx.balance_after == 50
    assert tx.status == "COMPLETED"
    assert tx.expires_at == NOW + timedelta(days=365)
    assert user.sustainability_points == 50


@pytest.mark.anyio
async def test_earn_without_rule_never_expires(db, user):
    tx = await PointService(db).earn(user.id, "EARNED_REVIEW", 20)
    assert tx.expires_at is None


@pytest.mark.anyio
async def test_earn_chains_balances(db, user, rule):
    service = PointService(db)
    first = await service.earn(user.id, TransactionType.EARNED_PURCHASE, 30)
    second = await service.earn(user.id, TransactionType.EARNED_REVIEW, 20)

    assert second.balance_before == first.balance_after == 30
    assert second.balance_after == 50


@pytest.mark.anyio
@pytest.mark.parametrize("amount", [0, -5])
async def test_earn_rejects_non_positive_amount(db, user, amount):
    with pytest.raises(PointValidationError):
        await PointService(db).earn(user.id, TransactionType.EARNED_COLLECTION, amount)
    assert await _rows(db, user.id) == []


@pytest.mark.anyio
async def test_earn_rejects_non_earning_type(db, user):
    with pytest.raises(PointValidationError) as exc_info:
        await PointService(db).earn(user.id, TransactionType.SPENT_DISCOUNT, 10)
    assert exc_info.value.error_code == "INVALID_TYPE"


@pytest.mark.anyio
async def test_earn_unknown_user(db):
    with pytest.raises(PointNotFoundError):
        await PointService(db).earn("missing", TransactionType.EARNED_COLLECTION, 10)


@pytest.mark.anyio
async def test_redeem_spends_points(db, user, rule):
    service = PointService(db)
    await service.earn(user.id, TransactionType.EARNED_COLLECTION, 150)

    tx = await service.redeem(user.id, 120, "DISCOUNT", order_id="order-1")

    assert tx.transaction_type == "SPENT_DISCOUNT"
    assert tx.balance_before == 150
    assert tx.balance_after == 30
    assert tx.description == "Points redeemed for DISCOUNT"
    assert tx.order_id == "order-1"
    assert await service.get_available_points(user.id) == 30


@pytest.mark.anyio
async def test_redeem_insufficient_points_writes_nothing(db, user, rule):
    service = PointService(db)
    await service.earn(user.id, TransactionType.EARNED_COLLECTION, 150)

    with pytest.raises(InsufficientPointsError) as exc_info:
        await service.redeem(user.id, 200, "DISCOUNT")

    assert exc_info.value.available == 150
    assert exc_info.value.required == 200
    assert len(await _rows(db, user.id)) == 1
    assert user.sustainability_points == 150


@pytest.mark.anyio
async def test_insufficient_points_checked_before_minimum(db, user, rule):
    service = PointService(db)
    await service.earn(user.id, TransactionType.EARNED_REVIEW, 50)

    with pytest.raises(InsufficientPointsError):
        await service.redeem(user.id, 60, "DISCOUNT")


@pytest.mark.anyio
async def test_redeem_below_minimum(db, user, rule):
    service = PointService(db)
    await service.earn(user.id, TransactionType.EARNED_REFERRAL, 500)

    with pytest.raises(BelowMinimumRedemptionError) as exc_info:
        await service.redeem(user.id, 50, "DISCOUNT")
    assert exc_info.value.minimum == 100


@pytest.mark.anyio
async def test_redeem_without_rule_has_no_minimum(db, user):
    service = PointService(db)
    await service.earn(user.id, TransactionType.EARNED_REFERRAL, 50)

    tx = await service.redeem(user.id, 10, "VOUCHER", description="Coffee voucher")
    assert tx.balance_after == 40
    assert tx.description == "Coffee voucher"


@pytest.mark.anyio
async def test_unswept_expired_grant_cannot_be_redeemed(db, user, make_rule):
    await make_rule(rule_name="short", points_expire_in_days=10)
    service = PointService(db)
    await service.earn(user.id, TransactionType.EARNED_COLLECTION, 200, now=NOW)

    later = NOW + timedelta(days=11)
    assert await service.get_available_points(user.id, now=later) == 0
    with pytest.raises(InsufficientPointsError):
        await service.redeem(user.id, 150, "DISCOUNT", now=later)


@pytest.mark.anyio
async def test_adjust_both_directions(db, user):
    service = PointService(db)

    up = await service.adjust(user.id, 30, "Compensation for lost parcel")
    down = await service.adjust(user.id, -10, "Duplicate award")

    assert (up.points_amount, up.balance_before, up.balance_after) == (30, 0, 30)
    assert (down.points_amount, down.balance_before, down.balance_after) == (10, 30, 20)
    assert down.transaction_type == "ADJUSTMENT"


@pytest.mark.anyio
async def test_adjust_rejects_zero(db, user):
    with pytest.raises(PointValidationError):
        await PointService(db).adjust(user.id, 0, "noop")


@pytest.mark.anyio
async def test_adjust_rejects_negative_result(db, user):
    service = PointService(db)
    await service.adjust(user.id, 10, "seed")

    with pytest.raises(NegativeBalanceResultError):
        await service.adjust(user.id, -11, "too much")
    assert user.sustainability_points == 10


@pytest.mark.anyio
async def test_cached_balance_matches_ledger(db, user):
    service = PointService(db)
    await service.earn(user.id, TransactionType.EARNED_COLLECTION, 150)
    await service.earn(user.id, TransactionType.EARNED_PURCHASE, 40)
    await service.redeem(user.id, 100, "DISCOUNT")
    await service.adjust(user.id, -5, "correction")

    rows = await _rows(db, user.id)
    assert sum(r.balance_after - r.balance_before for r in rows) == 85
    assert await ledger_balance(db, user.id) == 85
    assert user.sustainability_points == 85


@pytest.mark.anyio
async def test_totals_and_points_by_type(db, user):
    service = PointService(db)
    await service.earn(user.id, TransactionType.EARNED_COLLECTION, 100)
    await service.earn(user.id, TransactionType.EARNED_COLLECTION, 50)
    await service.earn(user.id, TransactionType.EARNED_REVIEW, 20)
    await service.redeem(user.id, 70, "DISCOUNT")

    assert await service.get_total_earned_points(user.id) == 170
    assert await service.get_total_spent_points(user.id) == 70
    assert await service.get_points_by_transaction_type(user.id) == {
        "EARNED_COLLECTION": 150,
        "EARNED_REVIEW": 20,
        "SPENT_DISCOUNT": 70,
    }


@pytest.mark.anyio
async def test_expiring_points_window(db, user, make_rule):
    await make_rule(rule_name="monthly", points_expire_in_days=30)
    service = PointService(db)
    await service.earn(user.id, TransactionType.EARNED_COLLECTION, 50, now=NOW)
    await service.earn(user.id, TransactionType.EARNED_REVIEW, 20, now=NOW + timedelta(days=20))

    check_at = NOW + timedelta(days=25)
    assert await service.get_expiring_points(user.id, 7, now=check_at) == 50
    assert await service.get_expiring_points(user.id, 30, now=check_at) == 70
    soon = await service.get_expiring_soon_points(user.id, 7, now=check_at)
    assert [t.points_amount for t in soon] == [50]


@pytest.mark.anyio
async def test_expiring_points_rejects_negative_days(db, user):
    with pytest.raises(PointValidationError):
        await PointService(db).get_expiring_points(user.id, -1)


@pytest.mark.anyio
async def test_summary(db, user, rule):
    service = PointService(db)
    await service.earn(user.id, TransactionType.EARNED_COLLECTION, 150)
    await service.redeem(user.id, 100, "DISCOUNT")

    summary = await service.get_point_summary(user.id)

    assert summary.total_earned_points == 150
    assert summary.total_spent_points == 100
    assert summary.available_points == 50
    assert summary.expiring_points == 0
    assert summary.expiring_in_days == 30


@pytest.mark.anyio
async def test_statistics(db, user):
    service = PointService(db)
    await service.earn(user.id, TransactionType.EARNED_REFERRAL, 100)

    stats = await service.get_point_statistics(user.id)

    assert stats["user_id"] == user.id
    assert stats["total_earned"] == 100
    assert stats["available"] == 100
    assert stats["expiring_7_days"] == 0


@pytest.mark.anyio
async def test_history_paging_and_filters(db, user):
    service = PointService(db)
    await service.earn(user.id, TransactionType.EARNED_COLLECTION, 10, now=NOW)
    await service.earn(user.id, TransactionType.EARNED_REVIEW, 20, now=NOW + timedelta(hours=1))
    await service.earn(user.id, TransactionType.EARNED_COLLECTION, 30, now=NOW + timedelta(hours=2))

    page = await service.get_user_transactions(user.id, page=1, page_size=2)
    assert page.total == 3
    assert [t.points_amount for t in page.transactions] == [30, 20]

    recent = await service.get_recent_transactions(user.id, limit=1)
    assert [t.points_amount for t in recent] == [30]

    by_type = await service.get_transactions_by_type(user.id, "EARNED_COLLECTION")
    assert by_type.total == 2

    in_range = await service.get_transactions_by_date_range(
        user.id, NOW + timedelta(minutes=30), NOW + timedelta(hours=3)
    )
    assert [t.points_amount for t in in_range.transactions] == [30, 20]


@pytest.mark.anyio
async def test_date_range_rejects_inverted_range(db, user):
    with pytest.raises(PointValidationError):
        await PointService(db).get_transactions_by_date_range(user.id, NOW, NOW - timedelta(days=1))


@pytest.mark.anyio
async def test_unknown_transaction_type_filter(db, user):
    with pytest.raises(PointValidationError):
        await PointService(db).get_transactions_by_type(user.id, "EARNED_LOTTERY")


@pytest.mark.anyio
async def test_reconcile_restores_cached_balance(db, user):
    service = PointService(db)
    await service.earn(user.id, TransactionType.EARNED_COLLECTION, 50)
    user.sustainability_points = 999
    await db.commit()

    result = await service.reconcile_balance(user.id)

    assert result == {
        "user_id": user.id,
        "cached_balance": 999,
        "ledger_balance": 50,
        "corrected": True,
    }
    assert user.sustainability_points == 50
    assert (await service.reconcile_balance(user.id))["corrected"] is False


@pytest.mark.anyio
async def test_award_purchase_points(db, user, rule):
    tx = await PointService(db).award_purchase_points(user.id, "order-42", 12.99)

    assert tx.transaction_type == "EARNED_PURCHASE"
    assert tx.points_amount == 129
    assert tx.order_id == "order-42"


@pytest.mark.anyio
async def test_award_activity_points(db, user, rule):
    service = PointService(db)

    collection = await service.award_collection_points(user.id, "pickup-7")
    review = await service.award_review_points(user.id, "item-3")
    referral = await service.award_referral_points(user.id, "friend-1")
    signup = await service.award_signup_bonus(user.id)
    login = await service.award_daily_login_points(user.id)

    assert (collection.points_amount, collection.collection_request_id) == (50, "pickup-7")
    assert (review.points_amount, review.item_id) == (20, "item-3")
    assert referral.points_amount == 100
    assert "friend-1" in referral.description
    assert (signup.transaction_type, signup.points_amount) == ("EARNED_REFERRAL", 50)
    assert (login.transaction_type, login.points_amount) == ("EARNED_REFERRAL", 5)
    assert user.sustainability_points == 225


@pytest.mark.anyio
async def test_awards_without_active_rule_return_none(db, user):
    service = PointService(db)
    assert await service.award_collection_points(user.id, "pickup-7") is None
    assert await service.award_purchase_points(user.id, "order-1", 50.0) is None
    assert await _rows(db, user.id) == []


@pytest.mark.anyio
async def test_award_purchase_rejects_negative_amount(db, user, rule):
    with pytest.raises(PointValidationError):
        await PointService(db).award_purchase_points(user.id, "order-1", -1)


@pytest.mark.anyio
async def test_redemption_checks(db, user, rule):
    service = PointService(db)
    await service.earn(user.id, TransactionType.EARNED_COLLECTION, 150)

    assert await service.has_enough_points(user.id, 150)
    assert not await service.has_enough_points(user.id, 151)
    assert await service.can_redeem_points(user.id, 100)
    assert not await service.can_redeem_points(user.id, 50)
    assert not await service.can_redeem_points(user.id, 200)
    assert not await service.can_redeem_points(user.id, 0)


@pytest.mark.anyio
async def test_notify_expiring_points(db, user, monkeypatch, make_rule):
    sent = []
    monkeypatch.setattr(
        point_service_module,
        "send_points_expiry_notification",
        lambda email, points, days: sent.append((email, points, days)),
    )
    await make_rule(rule_name="weekly", points_expire_in_days=5)
    service = PointService(db)
    await service.earn(user.id, TransactionType.EARNED_COLLECTION, 50, now=NOW)

    assert await service.notify_expiring_points(user.id, 7, now=NOW) == 50
    assert sent == [(user.email, 50, 7)]


@pytest.mark.anyio
async def test_notify_skips_users_without_expiring_points(db, user, monkeypatch):
    sent = []
    monkeypatch.setattr(
        point_service_module,
        "send_points_expiry_notification",
        lambda *args: sent.append(args),
    )

    assert await PointService(db).notify_expiring_points(user.id, 7) == 0
    assert sent == []


def test_row_helpers():
    grant = PointTransaction(
        transaction_type=TransactionType.EARNED_COLLECTION.value,
        points_amount=50,
        balance_before=10,
        balance_after=60,
        status="COMPLETED",
        expires_at=NOW + timedelta(days=1),
    )

    assert not grant.is_due_for_expiry(NOW)
    assert grant.is_due_for_expiry(NOW + timedelta(days=1))
    grant.status = "EXPIRED"
    assert not grant.is_due_for_expiry(NOW + timedelta(days=1))
    grant.status = "COMPLETED"
    grant.expires_at = None
    assert not grant.is_due_for_expiry(NOW + timedelta(days=400))
    assert TransactionType.SPENT_PREMIUM.is_spent
    assert not TransactionType.ADJUSTMENT.is_earned
