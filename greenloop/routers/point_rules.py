"""
Point earning rule administration
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from greenloop.database import get_db
from greenloop.exceptions import PointOperationError, to_http_exception
from greenloop.models.user import User
from greenloop.schemas.point_rule import (
    PointEarningRuleCreate,
    PointEarningRuleUpdate,
    PointEarningRuleResponse,
)
from greenloop.services import point_rule_service
from greenloop.services.point_rule_service import rule_to_response
from greenloop.utils.security import get_current_user, get_admin_user

router = APIRouter()


@router.get("", response_model=List[PointEarningRuleResponse])
async def list_rules(
    admin: User = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db),
):
    rules = await point_rule_service.list_rules(db)
    return [rule_to_response(rule) for rule in rules]


@router.get("/active", response_model=PointEarningRuleResponse)
async def get_active_rule(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Rates currently in effect, visible to every user"""
    rule = await point_rule_service.get_active_rule(db)
    if not rule:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active point earning rule",
        )
    return rule_to_response(rule)


@router.post("", response_model=PointEarningRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    data: PointEarningRuleCreate,
    admin: User = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        rule = await point_rule_service.create_rule(db, data)
    except PointOperationError as exc:
        raise to_http_exception(exc)
    return rule_to_response(rule)


@router.get("/{rule_id}", response_model=PointEarningRuleResponse)
async def get_rule(
    rule_id: str,
    admin: User = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        rule = await point_rule_service.get_rule(db, rule_id)
    except PointOperationError as exc:
        raise to_http_exception(exc)
    return rule_to_response(rule)


@router.put("/{rule_id}", response_model=PointEarningRuleResponse)
async def update_rule(
    rule_id: str,
    data: PointEarningRuleUpdate,
    admin: User = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        rule = await point_rule_service.update_rule(db, rule_id, data)
    except PointOperationError as exc:
        raise to_http_exception(exc)
    return rule_to_response(rule)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: str,
    admin: User = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        await point_rule_service.delete_rule(db, rule_id)
    except PointOperationError as exc:
        raise to_http_exception(exc)


@router.patch("/{rule_id}/activate", response_model=PointEarningRuleResponse)
async def activate_rule(
    rule_id: str,
    admin: User = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db),
):
    """Make this the only active rule"""
    try:
        rule = await point_rule_service.activate_rule(db, rule_id)
    except PointOperationError as exc:
        raise to_http_exception(exc)
    return rule_to_response(rule)
