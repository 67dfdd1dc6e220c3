"""
Point ledger service - earning, redemption, adjustment and queries

Guarantees:
1. The transaction log is the source of truth; users.sustainability_points
   is rewritten from it on every write and never changed on its own
2. Every write locks the owner's users row (SELECT ... FOR UPDATE) before
   reading the balance, so concurrent earn/redeem calls serialize
3. Rows are only appended; the sweep is the only writer of status EXPIRED
"""
import logging
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from greenloop.config import get_settings
from greenloop.exceptions import (
    PointNotFoundError,
    PointValidationError,
    InsufficientPointsError,
    BelowMinimumRedemptionError,
    NegativeBalanceResultError,
    ConcurrentUpdateError,
)
from greenloop.models.user import User
from greenloop.models.point import (
    PointTransaction,
    TransactionType,
    TransactionStatus,
    EARNED_TYPES,
    SPENT_TYPES,
    POSTED_STATUSES,
)
from greenloop.models.point_rule import PointAction
from greenloop.schemas.point import (
    PointTransactionResponse,
    PointHistoryResponse,
    PointSummaryResponse,
)
from greenloop.services.email_service import send_points_expiry_notification
from greenloop.services.point_rule_service import get_active_rule
from greenloop.utils.metrics import POINTS_REJECTIONS, record_transaction
from greenloop.utils.timezone import utc_now_naive, to_utc

logger = logging.getLogger(__name__)
settings = get_settings()


def lock_user_stmt(user_id: str):
    """SELECT the user row FOR UPDATE, refreshing any copy already in the session"""
    return (
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


async def ledger_balance(db: AsyncSession, user_id: str) -> int:
    """Sum of every posted balance movement for the user"""
    result = await db.execute(
        select(
            func.coalesce(
                func.sum(PointTransaction.balance_after - PointTransaction.balance_before), 0
            )
        ).where(
            PointTransaction.user_id == user_id,
            PointTransaction.status.in_(POSTED_STATUSES),
        )
    )
    return int(result.scalar() or 0)


async def pending_expiry(db: AsyncSession, user_id: str, now: datetime) -> int:
    """Grants past their expiry that the sweep has not processed yet"""
    result = await db.execute(
        select(func.coalesce(func.sum(PointTransaction.points_amount), 0)).where(
            PointTransaction.user_id == user_id,
            PointTransaction.status == TransactionStatus.COMPLETED.value,
            PointTransaction.transaction_type.in_(EARNED_TYPES),
            PointTransaction.expires_at.is_not(None),
            PointTransaction.expires_at <= now,
        )
    )
    return int(result.scalar() or 0)


def _coerce_type(transaction_type: Union[str, TransactionType]) -> TransactionType:
    if isinstance(transaction_type, TransactionType):
        return transaction_type
    try:
        return TransactionType(transaction_type)
    except ValueError:
        raise PointValidationError(
            f"Unknown transaction type: {transaction_type}", "INVALID_TYPE"
        )


class PointService:
    """
    Point ledger operations on one database session

    Usage:
        service = PointService(db)
        await service.earn(user_id, TransactionType.EARNED_COLLECTION, 50, "Recycled 3 items")
        await service.redeem(user_id, 30, "DISCOUNT")

    Writes are flushed but not committed; the caller owns the transaction
    (the get_db dependency commits at the end of the request).
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _get_user(self, user_id: str) -> User:
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if not user:
            raise PointNotFoundError(f"User not found with id: {user_id}")
        return user

    async def _lock_user(self, user_id: str) -> User:
        result = await self.db.execute(lock_user_stmt(user_id))
        user = result.scalar_one_or_none()
        if not user:
            raise PointNotFoundError(f"User not found with id: {user_id}")
        return user

    async def _append(
        self,
        user: User,
        transaction_type: TransactionType,
        points_amount: int,
        balance_before: int,
        balance_after: int,
        description: Optional[str],
        now: datetime,
        expires_at: Optional[datetime] = None,
        order_id: Optional[str] = None,
        item_id: Optional[str] = None,
        collection_request_id: Optional[str] = None,
    ) -> PointTransaction:
        """Insert one ledger row and rewrite the cached balance with it"""
        transaction = PointTransaction(
            user_id=user.id,
            transaction_type=transaction_type.value,
            points_amount=points_amount,
            description=description,
            balance_before=balance_before,
            balance_after=balance_after,
            expires_at=expires_at,
            status=TransactionStatus.COMPLETED.value,
            order_id=order_id,
            item_id=item_id,
            collection_request_id=collection_request_id,
            created_at=now,
        )
        self.db.add(transaction)
        user.sustainability_points = balance_after
        flag_modified(user, "sustainability_points")
        try:
            await self.db.flush()
        except StaleDataError:
            POINTS_REJECTIONS.labels("concurrent_update").inc()
            logger.warning("Concurrent balance write for user %s, %s rejected",
                           user.id, transaction_type.value)
            raise ConcurrentUpdateError(user.id)

        record_transaction(transaction_type.value, points_amount)
        return transaction

    @staticmethod
    def to_response(transaction: PointTransaction) -> PointTransactionResponse:
        return PointTransactionResponse.model_validate(transaction)

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    async def earn(
        self,
        user_id: str,
        transaction_type: Union[str, TransactionType],
        points_amount: int,
        description: Optional[str] = None,
        order_id: Optional[str] = None,
        item_id: Optional[str] = None,
        collection_request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PointTransactionResponse:
        """
        Award points

        Args:
            user_id: owner
            transaction_type: one of the EARNED_* types
            points_amount: points to add, at least 1
            description: free text shown in the history
            order_id / item_id / collection_request_id: audit references
            now: clock override

        Returns:
            the created transaction

        Raises:
            PointValidationError: amount < 1 or not an EARNED_* type
            PointNotFoundError: unknown user
        """
        if points_amount is None or points_amount < 1:
            raise PointValidationError("Points amount must be at least 1")
        tx_type = _coerce_type(transaction_type)
        if not tx_type.is_earned:
            raise PointValidationError(
                f"{tx_type.value} is not an earning transaction type", "INVALID_TYPE"
            )

        now = now or utc_now_naive()
        user = await self._lock_user(user_id)
        balance = await ledger_balance(self.db, user.id)
        new_balance = balance + points_amount

        rule = await get_active_rule(self.db)
        expires_at = rule.calculate_expiration_date(now) if rule else None

        transaction = await self._append(
            user,
            tx_type,
            points_amount,
            balance,
            new_balance,
            description,
            now,
            expires_at=expires_at,
            order_id=order_id,
            item_id=item_id,
            collection_request_id=collection_request_id,
        )

        logger.info("User %s earned %s points (%s). New balance: %s",
                    user.id, points_amount, tx_type.value, new_balance)
        return self.to_response(transaction)

    async def redeem(
        self,
        user_id: str,
        points_to_redeem: int,
        redemption_type: str,
        description: Optional[str] = None,
        order_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PointTransactionResponse:
        """
        Spend points

        Raises:
            PointValidationError: points_to_redeem < 1
            InsufficientPointsError: more than the available points
            BelowMinimumRedemptionError: under the active rule's minimum
            PointNotFoundError: unknown user
        """
        if points_to_redeem is None or points_to_redeem < 1:
            raise PointValidationError("Points to redeem must be at least 1")

        now = now or utc_now_naive()
        user = await self._lock_user(user_id)
        balance = await ledger_balance(self.db, user.id)
        available = max(0, balance - await pending_expiry(self.db, user.id, now))

        if available < points_to_redeem:
            POINTS_REJECTIONS.labels("insufficient_points").inc()
            logger.warning("User %s tried to redeem %s points with %s available",
                           user.id, points_to_redeem, available)
            raise InsufficientPointsError(available, points_to_redeem)

        rule = await get_active_rule(self.db)
        if rule and points_to_redeem < rule.minimum_redemption_points:
            POINTS_REJECTIONS.labels("below_minimum").inc()
            logger.warning("User %s redemption of %s is below the minimum %s",
                           user.id, points_to_redeem, rule.minimum_redemption_points)
            raise BelowMinimumRedemptionError(rule.minimum_redemption_points, points_to_redeem)

        new_balance = balance - points_to_redeem
        transaction = await self._append(
            user,
            TransactionType.SPENT_DISCOUNT,
            points_to_redeem,
            balance,
            new_balance,
            description or f"Points redeemed for {redemption_type}",
            now,
            order_id=order_id,
        )

        logger.info("User %s redeemed %s points. New balance: %s",
                    user.id, points_to_redeem, new_balance)
        return self.to_response(transaction)

    async def adjust(
        self,
        user_id: str,
        points: int,
        reason: str,
        now: Optional[datetime] = None,
    ) -> PointTransactionResponse:
        """
        Manual correction; ``points`` may be negative

        The row stores abs(points); the direction is in the balance snapshots.

        Raises:
            PointValidationError: points == 0
            NegativeBalanceResultError: balance would go below zero
        """
        if not points:
            raise PointValidationError("Adjustment must not be zero")

        now = now or utc_now_naive()
        user = await self._lock_user(user_id)
        balance = await ledger_balance(self.db, user.id)
        new_balance = balance + points

        if new_balance < 0:
            POINTS_REJECTIONS.labels("negative_balance").inc()
            logger.warning("Rejected adjustment of %s for user %s (balance %s)", points, user.id, balance)
            raise NegativeBalanceResultError(balance, points)

        transaction = await self._append(
            user,
            TransactionType.ADJUSTMENT,
            abs(points),
            balance,
            new_balance,
            reason,
            now,
        )

        logger.info("User %s points adjusted by %s. Reason: %s. New balance: %s",
                    user.id, points, reason, new_balance)
        return self.to_response(transaction)

    async def reconcile_balance(self, user_id: str) -> Dict[str, Any]:
        """Rewrite the cached balance from the ledger"""
        user = await self._lock_user(user_id)
        cached = user.sustainability_points or 0
        ledger = await ledger_balance(self.db, user.id)
        corrected = cached != ledger
        if corrected:
            user.sustainability_points = ledger
            await self.db.flush()
            logger.warning("Cached balance for user %s drifted: %s -> %s", user.id, cached, ledger)
        return {
            "user_id": user.id,
            "cached_balance": cached,
            "ledger_balance": ledger,
            "corrected": corrected,
        }

    # ------------------------------------------------------------------
    # balances
    # ------------------------------------------------------------------

    async def get_available_points(self, user_id: str, now: Optional[datetime] = None) -> int:
        """Spendable points: the ledger balance minus unswept expired grants"""
        await self._get_user(user_id)
        now = now or utc_now_naive()
        balance = await ledger_balance(self.db, user_id)
        return max(0, balance - await pending_expiry(self.db, user_id, now))

    async def get_total_earned_points(self, user_id: str) -> int:
        """Completed grants only; grants the sweep has expired drop out"""
        await self._get_user(user_id)
        result = await self.db.execute(
            select(func.coalesce(func.sum(PointTransaction.points_amount), 0)).where(
                PointTransaction.user_id == user_id,
                PointTransaction.transaction_type.in_(EARNED_TYPES),
                PointTransaction.status == TransactionStatus.COMPLETED.value,
            )
        )
        return int(result.scalar() or 0)

    async def get_total_spent_points(self, user_id: str) -> int:
        await self._get_user(user_id)
        result = await self.db.execute(
            select(func.coalesce(func.sum(PointTransaction.points_amount), 0)).where(
                PointTransaction.user_id == user_id,
                PointTransaction.transaction_type.in_(SPENT_TYPES),
                PointTransaction.status == TransactionStatus.COMPLETED.value,
            )
        )
        return int(result.scalar() or 0)

    def _expiring_filter(self, user_id: str, days: int, now: datetime):
        if days is None or days < 0:
            raise PointValidationError("Days must not be negative", "INVALID_DAYS")
        return (
            PointTransaction.user_id == user_id,
            PointTransaction.status == TransactionStatus.COMPLETED.value,
            PointTransaction.transaction_type.in_(EARNED_TYPES),
            PointTransaction.expires_at.between(now, now + timedelta(days=days)),
        )

    async def get_expiring_points(self, user_id: str, days: int, now: Optional[datetime] = None) -> int:
        """Points of grants expiring within ``days``"""
        await self._get_user(user_id)
        now = now or utc_now_naive()
        result = await self.db.execute(
            select(func.coalesce(func.sum(PointTransaction.points_amount), 0))
            .where(*self._expiring_filter(user_id, days, now))
        )
        return int(result.scalar() or 0)

    async def get_expiring_soon_points(
        self,
        user_id: str,
        days: int,
        now: Optional[datetime] = None,
    ) -> List[PointTransactionResponse]:
        await self._get_user(user_id)
        now = now or utc_now_naive()
        result = await self.db.execute(
            select(PointTransaction)
            .where(*self._expiring_filter(user_id, days, now))
            .order_by(PointTransaction.expires_at.asc())
        )
        return [self.to_response(t) for t in result.scalars().all()]

    async def has_enough_points(self, user_id: str, required_points: int) -> bool:
        return await self.get_available_points(user_id) >= required_points

    async def can_redeem_points(self, user_id: str, points: int) -> bool:
        if points is None or points < 1:
            return False
        if not await self.has_enough_points(user_id, points):
            return False
        rule = await get_active_rule(self.db)
        if rule and points < rule.minimum_redemption_points:
            return False
        return True

    # ------------------------------------------------------------------
    # history & statistics
    # ------------------------------------------------------------------

    async def _paged(self, conditions, page: int, page_size: int) -> PointHistoryResponse:
        if page < 1 or page_size < 1:
            raise PointValidationError("page and page_size must be positive", "INVALID_PAGE")

        count_result = await self.db.execute(
            select(func.count(PointTransaction.id)).where(*conditions)
        )
        total = count_result.scalar() or 0

        offset = (page - 1) * page_size
        result = await self.db.execute(
            select(PointTransaction)
            .where(*conditions)
            .order_by(PointTransaction.created_at.desc())
            .offset(offset)
            .limit(page_size)
        )
        return PointHistoryResponse(
            transactions=[self.to_response(t) for t in result.scalars().all()],
            total=total,
            page=page,
            page_size=page_size,
        )

    async def get_user_transactions(
        self,
        user_id: str,
        page: int = 1,
        page_size: int = 20,
    ) -> PointHistoryResponse:
        await self._get_user(user_id)
        return await self._paged((PointTransaction.user_id == user_id,), page, page_size)

    async def get_recent_transactions(self, user_id: str, limit: int = 10) -> List[PointTransactionResponse]:
        await self._get_user(user_id)
        result = await self.db.execute(
            select(PointTransaction)
            .where(PointTransaction.user_id == user_id)
            .order_by(PointTransaction.created_at.desc())
            .limit(limit)
        )
        return [self.to_response(t) for t in result.scalars().all()]

    async def get_transactions_by_type(
        self,
        user_id: str,
        transaction_type: Union[str, TransactionType],
        page: int = 1,
        page_size: int = 20,
    ) -> PointHistoryResponse:
        await self._get_user(user_id)
        tx_type = _coerce_type(transaction_type)
        return await self._paged(
            (
                PointTransaction.user_id == user_id,
                PointTransaction.transaction_type == tx_type.value,
            ),
            page,
            page_size,
        )

    async def get_transactions_by_date_range(
        self,
        user_id: str,
        start_date: datetime,
        end_date: datetime,
        page: int = 1,
        page_size: int = 20,
    ) -> PointHistoryResponse:
        await self._get_user(user_id)
        start_date, end_date = to_utc(start_date), to_utc(end_date)
        if end_date < start_date:
            raise PointValidationError("end_date must not be before start_date", "INVALID_RANGE")
        return await self._paged(
            (
                PointTransaction.user_id == user_id,
                PointTransaction.created_at.between(start_date, end_date),
            ),
            page,
            page_size,
        )

    async def get_points_by_transaction_type(self, user_id: str) -> Dict[str, int]:
        await self._get_user(user_id)
        result = await self.db.execute(
            select(
                PointTransaction.transaction_type,
                func.sum(PointTransaction.points_amount),
            )
            .where(
                PointTransaction.user_id == user_id,
                PointTransaction.status == TransactionStatus.COMPLETED.value,
            )
            .group_by(PointTransaction.transaction_type)
        )
        return {tx_type: int(total or 0) for tx_type, total in result.all()}

    async def get_point_summary(self, user_id: str) -> PointSummaryResponse:
        days = settings.points_summary_expiring_days
        return PointSummaryResponse(
            total_earned_points=await self.get_total_earned_points(user_id),
            total_spent_points=await self.get_total_spent_points(user_id),
            available_points=await self.get_available_points(user_id),
            expiring_points=await self.get_expiring_points(user_id, days),
            expiring_in_days=days,
            points_by_type=await self.get_points_by_transaction_type(user_id),
        )

    async def get_point_statistics(self, user_id: str) -> Dict[str, Any]:
        return {
            "user_id": user_id,
            "total_earned": await self.get_total_earned_points(user_id),
            "total_spent": await self.get_total_spent_points(user_id),
            "available": await self.get_available_points(user_id),
            "expiring_7_days": await self.get_expiring_points(user_id, 7),
            "expiring_30_days": await self.get_expiring_points(user_id, 30),
            "points_by_type": await self.get_points_by_transaction_type(user_id),
        }

    # ------------------------------------------------------------------
    # activity awards
    # ------------------------------------------------------------------

    async def _award_action(
        self,
        user_id: str,
        action: PointAction,
        transaction_type: TransactionType,
        description: str,
        **refs,
    ) -> Optional[PointTransactionResponse]:
        rule = await get_active_rule(self.db)
        points = rule.calculate_points_for_action(action) if rule else 0
        if points <= 0:
            logger.info("No points for %s of user %s (no active rule)", action.value, user_id)
            return None
        return await self.earn(user_id, transaction_type, points, description, **refs)

    async def award_purchase_points(
        self,
        user_id: str,
        order_id: str,
        purchase_amount: float,
    ) -> Optional[PointTransactionResponse]:
        if purchase_amount is None or purchase_amount < 0:
            raise PointValidationError("Purchase amount must not be negative")
        rule = await get_active_rule(self.db)
        points = rule.calculate_points_for_purchase(purchase_amount) if rule else 0
        if points <= 0:
            return None
        return await self.earn(
            user_id,
            TransactionType.EARNED_PURCHASE,
            points,
            "Points earned from purchase",
            order_id=order_id,
        )

    async def award_collection_points(self, user_id: str, collection_request_id: str):
        return await self._award_action(
            user_id,
            PointAction.COLLECTION,
            TransactionType.EARNED_COLLECTION,
            "Points earned from recycling collection",
            collection_request_id=collection_request_id,
        )

    async def award_review_points(self, user_id: str, item_id: str):
        return await self._award_action(
            user_id,
            PointAction.REVIEW,
            TransactionType.EARNED_REVIEW,
            "Points earned from writing a review",
            item_id=item_id,
        )

    async def award_referral_points(self, user_id: str, referred_user_id: str):
        return await self._award_action(
            user_id,
            PointAction.REFERRAL,
            TransactionType.EARNED_REFERRAL,
            f"Points earned from referring user {referred_user_id}",
        )

    async def award_signup_bonus(self, user_id: str):
        return await self._award_action(
            user_id,
            PointAction.SIGNUP,
            TransactionType.EARNED_REFERRAL,
            "Welcome bonus points",
        )

    async def award_daily_login_points(self, user_id: str):
        return await self._award_action(
            user_id,
            PointAction.DAILY_LOGIN,
            TransactionType.EARNED_REFERRAL,
            "Daily login bonus",
        )

    # ------------------------------------------------------------------
    # notifications
    # ------------------------------------------------------------------

    async def notify_expiring_points(
        self,
        user_id: str,
        days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Warn the user about points expiring within ``days``

        Returns:
            points mentioned in the notification, 0 when nothing was sent
        """
        days = settings.points_expiry_notice_days if days is None else days
        user = await self._get_user(user_id)
        total = await self.get_expiring_points(user_id, days, now=now)
        if total <= 0:
            return 0

        send_points_expiry_notification(user.email, total, days)
        logger.info("Sent points expiry notification to user %s: %s points expiring in %s days",
                    user_id, total, days)
        return total
