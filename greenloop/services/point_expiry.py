"""
Point expiry sweep

Each expired grant is handled in its own transaction: the grant is flipped
to EXPIRED and a forfeiture row of type EXPIRED is appended, so the balance
stays equal to the ledger sum. One failing grant does not stop the sweep.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm.attributes import flag_modified

from greenloop.models.point import (
    PointTransaction,
    TransactionType,
    TransactionStatus,
    EARNED_TYPES,
)
from greenloop.services.point_service import PointService, lock_user_stmt, ledger_balance
from greenloop.utils.metrics import POINTS_EXPIRED, record_transaction
from greenloop.utils.timezone import utc_now_naive

logger = logging.getLogger(__name__)


def _session_factory(session_factory: Optional[async_sessionmaker]) -> async_sessionmaker:
    if session_factory is not None:
        return session_factory
    from greenloop.database import AsyncSessionLocal
    return AsyncSessionLocal


async def _expire_one(session_factory: async_sessionmaker, transaction_id: str, now: datetime) -> bool:
    async with session_factory() as db:
        async with db.begin():
            result = await db.execute(
                select(PointTransaction)
                .where(PointTransaction.id == transaction_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            grant = result.scalar_one_or_none()
            # another sweep got here first
            if grant is None or not grant.is_due_for_expiry(now):
                return False

            user_id = grant.user_id
            user = (await db.execute(lock_user_stmt(user_id))).scalar_one()
            balance = await ledger_balance(db, user.id)
            forfeited = min(grant.points_amount, max(balance, 0))

            grant.status = TransactionStatus.EXPIRED.value
            db.add(PointTransaction(
                user_id=user.id,
                transaction_type=TransactionType.EXPIRED.value,
                points_amount=forfeited,
                description=f"Expired points from transaction {grant.id}",
                balance_before=balance,
                balance_after=balance - forfeited,
                status=TransactionStatus.COMPLETED.value,
                related_transaction_id=grant.id,
                created_at=now,
            ))
            user.sustainability_points = balance - forfeited
            flag_modified(user, "sustainability_points")

    POINTS_EXPIRED.inc()
    record_transaction(TransactionType.EXPIRED.value, forfeited)
    logger.info("Expired %s points (grant %s) for user %s", forfeited, transaction_id, user_id)
    return True


async def expire_points(
    session_factory: Optional[async_sessionmaker] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Expire every COMPLETED grant whose expires_at is not after ``now``

    Args:
        session_factory: sessionmaker to open one session per grant
        now: clock override

    Returns:
        number of grants expired by this run
    """
    session_factory = _session_factory(session_factory)
    now = now or utc_now_naive()

    async with session_factory() as db:
        result = await db.execute(
            select(PointTransaction.id)
            .where(
                PointTransaction.status == TransactionStatus.COMPLETED.value,
                PointTransaction.transaction_type.in_(EARNED_TYPES),
                PointTransaction.expires_at.is_not(None),
                PointTransaction.expires_at <= now,
            )
            .order_by(PointTransaction.expires_at.asc())
        )
        candidate_ids = list(result.scalars().all())

    expired = 0
    failed = 0
    for transaction_id in candidate_ids:
        try:
            if await _expire_one(session_factory, transaction_id, now):
                expired += 1
        except Exception:
            failed += 1
            logger.exception("Failed to expire point transaction %s", transaction_id)

    logger.info("Point expiry sweep finished: %s expired, %s failed, %s candidates",
                expired, failed, len(candidate_ids))
    return expired


async def find_users_with_expiring_points(
    session_factory: Optional[async_sessionmaker] = None,
    days: int = 7,
    now: Optional[datetime] = None,
) -> List[str]:
    """Ids of users holding grants that expire within ``days``"""
    session_factory = _session_factory(session_factory)
    now = now or utc_now_naive()

    async with session_factory() as db:
        result = await db.execute(
            select(PointTransaction.user_id)
            .where(
                PointTransaction.status == TransactionStatus.COMPLETED.value,
                PointTransaction.transaction_type.in_(EARNED_TYPES),
                PointTransaction.expires_at.between(now, now + timedelta(days=days)),
            )
            .distinct()
        )
        return list(result.scalars().all())


async def notify_users_with_expiring_points(
    session_factory: Optional[async_sessionmaker] = None,
    days: int = 7,
    now: Optional[datetime] = None,
) -> int:
    """Queue an expiry notice for every user with points expiring soon"""
    session_factory = _session_factory(session_factory)
    notified = 0
    for user_id in await find_users_with_expiring_points(session_factory, days, now):
        try:
            async with session_factory() as db:
                if await PointService(db).notify_expiring_points(user_id, days, now=now):
                    notified += 1
        except Exception:
            logger.exception("Failed to notify user %s about expiring points", user_id)
    return notified
