"""
Point earning rule schemas
"""
from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import datetime
from typing import Optional


class PointEarningRuleCreate(BaseModel):
    """Create a rule; omitted rates take the model defaults"""
    rule_name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    points_per_purchase: int = Field(default=10, ge=1)
    points_per_collection: int = Field(default=50, ge=1)
    points_per_review: int = Field(default=20, ge=1)
    points_per_referral: int = Field(default=100, ge=1)
    signup_bonus: int = Field(default=50, ge=1)
    daily_login_points: int = Field(default=5, ge=1)
    point_value_in_currency: int = Field(default=100, ge=1)
    minimum_redemption_points: int = Field(default=100, ge=1)
    points_expire_in_days: Optional[int] = Field(default=365, ge=0)
    expiration_enabled: bool = True
    event_multiplier: float = Field(default=1.0, ge=1.0)
    event_start_date: Optional[datetime] = None
    event_end_date: Optional[datetime] = None
    is_active: bool = True

    @model_validator(mode="after")
    def check_event_window(self):
        if self.event_start_date and self.event_end_date and self.event_end_date <= self.event_start_date:
            raise ValueError("event_end_date must be after event_start_date")
        return self


class PointEarningRuleUpdate(BaseModel):
    """Partial update; is_active is changed through the activate endpoint"""
    description: Optional[str] = None
    points_per_purchase: Optional[int] = Field(None, ge=1)
    points_per_collection: Optional[int] = Field(None, ge=1)
    points_per_review: Optional[int] = Field(None, ge=1)
    points_per_referral: Optional[int] = Field(None, ge=1)
    signup_bonus: Optional[int] = Field(None, ge=1)
    daily_login_points: Optional[int] = Field(None, ge=1)
    point_value_in_currency: Optional[int] = Field(None, ge=1)
    minimum_redemption_points: Optional[int] = Field(None, ge=1)
    points_expire_in_days: Optional[int] = Field(None, ge=0)
    expiration_enabled: Optional[bool] = None
    event_multiplier: Optional[float] = Field(None, ge=1.0)
    event_start_date: Optional[datetime] = None
    event_end_date: Optional[datetime] = None

    @field_validator(
        "points_per_purchase",
        "points_per_collection",
        "points_per_review",
        "points_per_referral",
        "signup_bonus",
        "daily_login_points",
        "point_value_in_currency",
        "minimum_redemption_points",
        "expiration_enabled",
    )
    @classmethod
    def reject_null(cls, value):
        # omit the field to keep the stored value
        if value is None:
            raise ValueError("must not be null")
        return value


class PointEarningRuleResponse(BaseModel):
    id: str
    rule_name: str
    description: Optional[str]
    points_per_purchase: int
    points_per_collection: int
    points_per_review: int
    points_per_referral: int
    signup_bonus: int
    daily_login_points: int
    point_value_in_currency: int
    minimum_redemption_points: int
    points_expire_in_days: Optional[int]
    expiration_enabled: bool
    event_multiplier: Optional[float]
    event_start_date: Optional[datetime]
    event_end_date: Optional[datetime]
    is_active: bool
    event_active: bool = False  # filled from PointEarningRule.is_event_active()
    version: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
