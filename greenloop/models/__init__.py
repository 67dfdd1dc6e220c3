"""
Database models
"""
from greenloop.models.user import User
from greenloop.models.point import PointTransaction, TransactionType, TransactionStatus
from greenloop.models.point_rule import PointEarningRule, PointAction

__all__ = [
    "User",
    "PointTransaction",
    "TransactionType",
    "TransactionStatus",
    "PointEarningRule",
    "PointAction",
]
