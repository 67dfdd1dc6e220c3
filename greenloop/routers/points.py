"""
Points ledger routes
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from greenloop.config import get_settings
from greenloop.database import get_db, get_session_factory
from greenloop.exceptions import PointOperationError, to_http_exception
from greenloop.models.point import TransactionType
from greenloop.models.user import User
from greenloop.schemas.point import (
    PointEarningRequest,
    PointsRedemptionRequest,
    PointAdjustmentRequest,
    PointTransactionResponse,
    PointHistoryResponse,
    PointSummaryResponse,
    PointStatisticsResponse,
    BalanceReconcileResponse,
    ExpireSweepResponse,
    ExpiryNotificationResponse,
    AwardPurchaseRequest,
    AwardCollectionRequest,
    AwardReviewRequest,
    AwardReferralRequest,
    AwardUserRequest,
)
from greenloop.services import point_expiry
from greenloop.services.point_service import PointService
from greenloop.utils.rate_limiter import RateLimiter
from greenloop.utils.security import (
    get_current_user,
    get_staff_user,
    get_admin_user,
    ensure_owner_or_admin,
)

settings = get_settings()
router = APIRouter()

redeem_limiter = RateLimiter(
    times=settings.redeem_rate_limit,
    seconds=settings.redeem_rate_window_seconds,
)


async def _run(awaitable):
    try:
        return await awaitable
    except PointOperationError as exc:
        raise to_http_exception(exc)


# ----------------------------------------------------------------------
# writes
# ----------------------------------------------------------------------

@router.post("/earn", response_model=PointTransactionResponse)
async def earn_points(
    data: PointEarningRequest,
    staff: User = Depends(get_staff_user),
    db: AsyncSession = Depends(get_db),
):
    """Award points (staff)"""
    return await _run(PointService(db).earn(
        data.user_id,
        data.transaction_type,
        data.points_amount,
        data.description,
        order_id=data.order_id,
        item_id=data.item_id,
        collection_request_id=data.collection_request_id,
    ))


@router.post(
    "/redeem",
    response_model=PointTransactionResponse,
    dependencies=[Depends(redeem_limiter)],
)
async def redeem_points(
    data: PointsRedemptionRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Spend points for a discount, voucher or donation"""
    ensure_owner_or_admin(current_user, data.user_id)
    return await _run(PointService(db).redeem(
        data.user_id,
        data.points_to_redeem,
        data.redemption_type,
        data.description,
        order_id=data.order_id,
    ))


@router.post("/adjust", response_model=PointTransactionResponse)
async def adjust_points(
    data: PointAdjustmentRequest,
    admin: User = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db),
):
    """Manual correction (admin)"""
    return await _run(PointService(db).adjust(data.user_id, data.points, data.reason))


@router.post("/expire", response_model=ExpireSweepResponse)
async def run_expiry_sweep(
    admin: User = Depends(get_admin_user),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Run the expiry sweep now instead of waiting for the schedule"""
    expired = await point_expiry.expire_points(session_factory)
    return ExpireSweepResponse(expired_count=expired)


@router.post("/{user_id}/reconcile", response_model=BalanceReconcileResponse)
async def reconcile_balance(
    user_id: str,
    admin: User = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db),
):
    return await _run(PointService(db).reconcile_balance(user_id))


@router.post("/{user_id}/notify-expiring", response_model=ExpiryNotificationResponse)
async def notify_expiring(
    user_id: str,
    days: Optional[int] = Query(None, ge=0),
    admin: User = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db),
):
    days = settings.points_expiry_notice_days if days is None else days
    notified = await _run(PointService(db).notify_expiring_points(user_id, days))
    return ExpiryNotificationResponse(user_id=user_id, notified_points=notified, days=days)


# ----------------------------------------------------------------------
# activity awards (called by marketplace services with a staff token)
# ----------------------------------------------------------------------

@router.post("/award/purchase", response_model=Optional[PointTransactionResponse])
async def award_purchase(
    data: AwardPurchaseRequest,
    staff: User = Depends(get_staff_user),
    db: AsyncSession = Depends(get_db),
):
    return await _run(PointService(db).award_purchase_points(
        data.user_id, data.order_id, data.purchase_amount
    ))


@router.post("/award/collection", response_model=Optional[PointTransactionResponse])
async def award_collection(
    data: AwardCollectionRequest,
    staff: User = Depends(get_staff_user),
    db: AsyncSession = Depends(get_db),
):
    return await _run(PointService(db).award_collection_points(data.user_id, data.collection_request_id))


@router.post("/award/review", response_model=Optional[PointTransactionResponse])
async def award_review(
    data: AwardReviewRequest,
    staff: User = Depends(get_staff_user),
    db: AsyncSession = Depends(get_db),
):
    return await _run(PointService(db).award_review_points(data.user_id, data.item_id))


@router.post("/award/referral", response_model=Optional[PointTransactionResponse])
async def award_referral(
    data: AwardReferralRequest,
    staff: User = Depends(get_staff_user),
    db: AsyncSession = Depends(get_db),
):
    return await _run(PointService(db).award_referral_points(data.user_id, data.referred_user_id))


@router.post("/award/signup", response_model=Optional[PointTransactionResponse])
async def award_signup(
    data: AwardUserRequest,
    staff: User = Depends(get_staff_user),
    db: AsyncSession = Depends(get_db),
):
    return await _run(PointService(db).award_signup_bonus(data.user_id))


@router.post("/award/daily-login", response_model=Optional[PointTransactionResponse])
async def award_daily_login(
    data: AwardUserRequest,
    staff: User = Depends(get_staff_user),
    db: AsyncSession = Depends(get_db),
):
    return await _run(PointService(db).award_daily_login_points(data.user_id))


# ----------------------------------------------------------------------
# reads (owner or admin)
# ----------------------------------------------------------------------

@router.get("/summary/{user_id}", response_model=PointSummaryResponse)
async def get_summary(
    user_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ensure_owner_or_admin(current_user, user_id)
    return await _run(PointService(db).get_point_summary(user_id))


@router.get("/transactions/{user_id}", response_model=PointHistoryResponse)
async def get_history(
    user_id: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Paged history, newest first"""
    ensure_owner_or_admin(current_user, user_id)
    return await _run(PointService(db).get_user_transactions(user_id, page, page_size))


@router.get("/transactions/{user_id}/recent", response_model=List[PointTransactionResponse])
async def get_recent(
    user_id: str,
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ensure_owner_or_admin(current_user, user_id)
    return await _run(PointService(db).get_recent_transactions(user_id, limit))


@router.get("/transactions/{user_id}/type/{transaction_type}", response_model=PointHistoryResponse)
async def get_by_type(
    user_id: str,
    transaction_type: TransactionType,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ensure_owner_or_admin(current_user, user_id)
    return await _run(PointService(db).get_transactions_by_type(user_id, transaction_type, page, page_size))


@router.get("/transactions/{user_id}/date-range", response_model=PointHistoryResponse)
async def get_by_date_range(
    user_id: str,
    start_date: datetime = Query(...),
    end_date: datetime = Query(...),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ensure_owner_or_admin(current_user, user_id)
    return await _run(PointService(db).get_transactions_by_date_range(
        user_id, start_date, end_date, page, page_size
    ))


@router.get("/{user_id}/available", response_model=int)
async def get_available(
    user_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ensure_owner_or_admin(current_user, user_id)
    return await _run(PointService(db).get_available_points(user_id))


@router.get("/{user_id}/earned", response_model=int)
async def get_earned(
    user_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ensure_owner_or_admin(current_user, user_id)
    return await _run(PointService(db).get_total_earned_points(user_id))


@router.get("/{user_id}/spent", response_model=int)
async def get_spent(
    user_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ensure_owner_or_admin(current_user, user_id)
    return await _run(PointService(db).get_total_spent_points(user_id))


@router.get("/{user_id}/expiring", response_model=int)
async def get_expiring(
    user_id: str,
    days: int = Query(30, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ensure_owner_or_admin(current_user, user_id)
    return await _run(PointService(db).get_expiring_points(user_id, days))


@router.get("/{user_id}/expiring-soon", response_model=List[PointTransactionResponse])
async def get_expiring_soon(
    user_id: str,
    days: int = Query(30, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ensure_owner_or_admin(current_user, user_id)
    return await _run(PointService(db).get_expiring_soon_points(user_id, days))


@router.get("/{user_id}/statistics", response_model=PointStatisticsResponse)
async def get_statistics(
    user_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ensure_owner_or_admin(current_user, user_id)
    return await _run(PointService(db).get_point_statistics(user_id))


@router.get("/{user_id}/points-by-type")
async def get_points_by_type(
    user_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ensure_owner_or_admin(current_user, user_id)
    return await _run(PointService(db).get_points_by_transaction_type(user_id))


@router.get("/{user_id}/has-enough", response_model=bool)
async def has_enough(
    user_id: str,
    required_points: int = Query(..., ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ensure_owner_or_admin(current_user, user_id)
    return await _run(PointService(db).has_enough_points(user_id, required_points))


@router.get("/{user_id}/can-redeem", response_model=bool)
async def can_redeem(
    user_id: str,
    points: int = Query(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ensure_owner_or_admin(current_user, user_id)
    return await _run(PointService(db).can_redeem_points(user_id, points))
