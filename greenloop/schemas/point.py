"""
Point ledger schemas
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict

from greenloop.models.point import TransactionType


class PointEarningRequest(BaseModel):
    """Award points to a user"""
    user_id: str
    transaction_type: TransactionType = Field(..., description="One of the EARNED_* types")
    points_amount: int = Field(..., ge=1, description="Points to award, at least 1")
    description: Optional[str] = None
    order_id: Optional[str] = None
    item_id: Optional[str] = None
    collection_request_id: Optional[str] = None


class PointsRedemptionRequest(BaseModel):
    """Spend points"""
    user_id: str
    points_to_redeem: int = Field(..., ge=1)
    redemption_type: str = Field(..., description="DISCOUNT, VOUCHER, DONATION, ...")
    description: Optional[str] = None
    order_id: Optional[str] = None  # when redeeming for an order discount


class PointAdjustmentRequest(BaseModel):
    """Administrative correction, positive or negative"""
    user_id: str
    points: int
    reason: str = Field(..., min_length=1, max_length=500)


class PointTransactionResponse(BaseModel):
    id: str
    user_id: str
    transaction_type: str
    points_amount: int
    description: Optional[str]
    balance_before: int
    balance_after: int
    expires_at: Optional[datetime]
    status: str
    order_id: Optional[str] = None
    item_id: Optional[str] = None
    collection_request_id: Optional[str] = None
    related_transaction_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PointHistoryResponse(BaseModel):
    """Paged transaction list"""
    transactions: List[PointTransactionResponse]
    total: int
    page: int
    page_size: int


class PointSummaryResponse(BaseModel):
    total_earned_points: int
    total_spent_points: int
    available_points: int
    expiring_points: int
    expiring_in_days: int
    points_by_type: Dict[str, int]


class PointStatisticsResponse(BaseModel):
    user_id: str
    total_earned: int
    total_spent: int
    available: int
    expiring_7_days: int
    expiring_30_days: int
    points_by_type: Dict[str, int]


class BalanceReconcileResponse(BaseModel):
    user_id: str
    cached_balance: int
    ledger_balance: int
    corrected: bool


class ExpireSweepResponse(BaseModel):
    expired_count: int


class ExpiryNotificationResponse(BaseModel):
    user_id: str
    notified_points: int
    days: int


class AwardPurchaseRequest(BaseModel):
    user_id: str
    order_id: str
    purchase_amount: float = Field(..., ge=0, description="Order total in currency units")


class AwardCollectionRequest(BaseModel):
    user_id: str
    collection_request_id: str


class AwardReviewRequest(BaseModel):
    user_id: str
    item_id: str


class AwardReferralRequest(BaseModel):
    user_id: str
    referred_user_id: str


class AwardUserRequest(BaseModel):
    """Signup and daily-login bonuses"""
    user_id: str
