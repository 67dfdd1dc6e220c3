"""
Point ledger errors

Raised by the services; routers translate them into HTTP responses.
"""
from fastapi import HTTPException


class PointOperationError(Exception):
    """Base error for point operations"""
    status_code = 400

    def __init__(self, message: str, error_code: str = "POINT_ERROR"):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class PointNotFoundError(PointOperationError):
    """Unknown user, rule or transaction"""
    status_code = 404

    def __init__(self, message: str, error_code: str = "NOT_FOUND"):
        super().__init__(message, error_code)


class PointValidationError(PointOperationError):
    """Non-positive amounts or wrong transaction type"""

    def __init__(self, message: str, error_code: str = "INVALID_AMOUNT"):
        super().__init__(message, error_code)


class InsufficientPointsError(PointOperationError):
    status_code = 402

    def __init__(self, available: int, required: int):
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient points. Available: {available}, Required: {required}",
            "INSUFFICIENT_POINTS",
        )


class BelowMinimumRedemptionError(PointOperationError):

    def __init__(self, minimum: int, requested: int):
        self.minimum = minimum
        self.requested = requested
        super().__init__(
            f"Minimum redemption points is {minimum}, requested {requested}",
            "BELOW_MINIMUM_REDEMPTION",
        )


class NegativeBalanceResultError(PointOperationError):

    def __init__(self, balance: int, adjustment: int):
        self.balance = balance
        self.adjustment = adjustment
        super().__init__(
            f"Adjustment of {adjustment} would result in negative balance (current {balance})",
            "NEGATIVE_BALANCE",
        )


class ConcurrentUpdateError(PointOperationError):
    """Another writer changed the balance first; the caller may retry"""
    status_code = 409

    def __init__(self, user_id: str):
        super().__init__(
            f"Balance of user {user_id} was changed concurrently, please retry",
            "CONCURRENT_UPDATE",
        )


class DuplicateRuleError(PointOperationError):
    status_code = 409

    def __init__(self, rule_name: str):
        super().__init__(f"Rule name already exists: {rule_name}", "DUPLICATE_RULE")


def to_http_exception(exc: PointOperationError) -> HTTPException:
    return HTTPException(
        status_code=exc.status_code,
        detail=exc.message,
        headers={"X-Error-Code": exc.error_code},
    )
