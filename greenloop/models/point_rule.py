"""
Point earning rule model
"""
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from sqlalchemy import String, Integer, Boolean, DateTime, Float, Text
from sqlalchemy.orm import Mapped, mapped_column
from greenloop.database import Base
from greenloop.utils.timezone import utc_now_naive


class PointAction(str, Enum):
    """Activities rewarded with a flat number of points"""
    COLLECTION = "COLLECTION"
    REVIEW = "REVIEW"
    REFERRAL = "REFERRAL"
    SIGNUP = "SIGNUP"
    DAILY_LOGIN = "DAILY_LOGIN"


class PointEarningRule(Base):
    """
    Earning / redemption configuration

    At most one row is active at a time; activation goes through
    point_rule_service.activate_rule which switches the others off.
    """
    __tablename__ = "point_earning_rules"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    rule_name: Mapped[str] = mapped_column(String(100), unique=True)
    description: Mapped[str] = mapped_column(Text, nullable=True)

    # earning
    points_per_purchase: Mapped[int] = mapped_column(Integer, default=10)  # per currency unit spent
    points_per_collection: Mapped[int] = mapped_column(Integer, default=50)
    points_per_review: Mapped[int] = mapped_column(Integer, default=20)
    points_per_referral: Mapped[int] = mapped_column(Integer, default=100)
    signup_bonus: Mapped[int] = mapped_column(Integer, default=50)
    daily_login_points: Mapped[int] = mapped_column(Integer, default=5)

    # redemption
    point_value_in_currency: Mapped[int] = mapped_column(Integer, default=100)  # 1 point = 100 VND
    minimum_redemption_points: Mapped[int] = mapped_column(Integer, default=100)

    # expiration
    points_expire_in_days: Mapped[int] = mapped_column(Integer, nullable=True, default=365)
    expiration_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    # special events
    event_multiplier: Mapped[float] = mapped_column(Float, nullable=True, default=1.0)
    event_start_date: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    event_end_date: Mapped[datetime] = mapped_column(DateTime, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now_naive, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now_naive, onupdate=utc_now_naive
    )

    __mapper_args__ = {"version_id_col": version}

    def is_event_active(self, now: Optional[datetime] = None) -> bool:
        """Multiplier > 1 and now strictly inside the event window"""
        if self.event_multiplier is None or self.event_multiplier <= 1.0:
            return False
        if self.event_start_date is None or self.event_end_date is None:
            return False
        now = now or utc_now_naive()
        return self.event_start_date < now < self.event_end_date

    def _apply_multiplier(self, base_points: int, now: Optional[datetime]) -> int:
        if self.is_event_active(now):
            return int(base_points * self.event_multiplier)
        return base_points

    def calculate_points_for_purchase(self, amount: float, now: Optional[datetime] = None) -> int:
        """
        Points for a purchase of ``amount``

        Both the base amount and the event bonus are truncated, not rounded.
        """
        base_points = int(amount * (self.points_per_purchase or 0))
        return self._apply_multiplier(base_points, now)

    def calculate_points_for_action(self, action_type: str, now: Optional[datetime] = None) -> int:
        """Flat points for an activity; unknown actions earn nothing"""
        rates = {
            PointAction.COLLECTION.value: self.points_per_collection,
            PointAction.REVIEW.value: self.points_per_review,
            PointAction.REFERRAL.value: self.points_per_referral,
            PointAction.SIGNUP.value: self.signup_bonus,
            PointAction.DAILY_LOGIN.value: self.daily_login_points,
        }
        action = action_type.value if isinstance(action_type, PointAction) else action_type
        base_points = rates.get(action) or 0
        return self._apply_multiplier(base_points, now)

    def calculate_expiration_date(self, now: Optional[datetime] = None) -> Optional[datetime]:
        if self.expiration_enabled and self.points_expire_in_days and self.points_expire_in_days > 0:
            return (now or utc_now_naive()) + timedelta(days=self.points_expire_in_days)
        return None
