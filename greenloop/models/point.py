"""
Point transaction (ledger) model
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional
from sqlalchemy import String, Integer, DateTime, ForeignKey, Text, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from greenloop.database import Base
from greenloop.utils.timezone import utc_now_naive


class TransactionType(str, Enum):
    """Ledger entry type; the sign of points_amount follows from it"""
    EARNED_COLLECTION = "EARNED_COLLECTION"  # recycling collection
    EARNED_PURCHASE = "EARNED_PURCHASE"      # marketplace purchase
    EARNED_REVIEW = "EARNED_REVIEW"          # item review
    EARNED_REFERRAL = "EARNED_REFERRAL"      # referral, signup and login bonuses
    SPENT_DISCOUNT = "SPENT_DISCOUNT"        # redeemed for a discount
    SPENT_PREMIUM = "SPENT_PREMIUM"          # redeemed for premium features
    EXPIRED = "EXPIRED"                      # forfeited by the expiration sweep
    ADJUSTMENT = "ADJUSTMENT"                # manual correction, either sign

    @property
    def is_earned(self) -> bool:
        return self.value.startswith("EARNED")

    @property
    def is_spent(self) -> bool:
        return self.value.startswith("SPENT")


EARNED_TYPES = [t.value for t in TransactionType if t.is_earned]
SPENT_TYPES = [t.value for t in TransactionType if t.is_spent]


class TransactionStatus(str, Enum):
    """PENDING -> COMPLETED -> EXPIRED | CANCELLED"""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


# rows whose balance movement actually happened
POSTED_STATUSES = [TransactionStatus.COMPLETED.value, TransactionStatus.EXPIRED.value]


class PointTransaction(Base):
    """Append-only point ledger"""
    __tablename__ = "point_transactions"
    __table_args__ = (
        CheckConstraint("points_amount >= 0", name="ck_point_transactions_amount_non_negative"),
        CheckConstraint("balance_after >= 0", name="ck_point_transactions_balance_non_negative"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), index=True
    )
    transaction_type: Mapped[str] = mapped_column(String(32), index=True)
    points_amount: Mapped[int] = mapped_column(Integer)  # magnitude, never negative
    description: Mapped[str] = mapped_column(Text, nullable=True)
    balance_before: Mapped[int] = mapped_column(Integer)
    balance_after: Mapped[int] = mapped_column(Integer)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=True, index=True)
    status: Mapped[str] = mapped_column(
        String(20), default=TransactionStatus.COMPLETED.value, index=True
    )
    # audit references into other marketplace modules
    order_id: Mapped[str] = mapped_column(String(36), nullable=True)
    item_id: Mapped[str] = mapped_column(String(36), nullable=True)
    collection_request_id: Mapped[str] = mapped_column(String(36), nullable=True)
    related_transaction_id: Mapped[str] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now_naive, index=True
    )

    def is_due_for_expiry(self, now: Optional[datetime] = None) -> bool:
        """Completed grant whose expires_at is not after ``now``"""
        if self.status != TransactionStatus.COMPLETED.value or self.expires_at is None:
            return False
        return self.expires_at <= (now or utc_now_naive())
