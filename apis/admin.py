from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from core import admin_service
from core.auth import require_admin
from core.db import DB
from core.storage_service import get_storage
from .base import success_response

router = APIRouter(prefix="/admin", tags=["后台管理"])


class UserStatusRequest(BaseModel):
    action: str = Field(..., max_length=16)
    reason: Optional[str] = Field(default=None, max_length=500)


class CreateUserRequest(BaseModel):
    email: str = Field(..., max_length=255)
    name: Optional[str] = Field(default=None, max_length=100)
    role: str = Field(default="user", max_length=20)
    status: str = Field(default="active", max_length=20)
    mother_language: str = Field(default="zh-cn", max_length=10)
    learning_language: str = Field(default="en", max_length=10)
    proficiency_level: str = Field(default="beginner", max_length=20)


class UpdateUserRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)
    name: Optional[str] = Field(default=None, max_length=100)
    role: Optional[str] = Field(default=None, max_length=20)
    status: Optional[str] = Field(default=None, max_length=20)
    mother_language: Optional[str] = Field(default=None, max_length=10)
    learning_language: Optional[str] = Field(default=None, max_length=10)
    proficiency_level: Optional[str] = Field(default=None, max_length=20)


class UserLimitRequest(BaseModel):
    daily_limit: int


class UserRoleRequest(BaseModel):
    role: str = Field(..., max_length=20)


class ReasonRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class FlagRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


@router.get("/verify", summary="校验管理员权限")
async def verify(admin: dict = Depends(require_admin)):
    return success_response(admin)


@router.get("/users", summary="用户列表")
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=200),
    sort_by: str = Query("created_at"),
    sort_direction: str = Query("desc"),
    admin: dict = Depends(require_admin),
):
    session = DB.get_session()
    try:
        return success_response(admin_service.get_admin_users(
            session, page=page, limit=limit, search=search, sort_by=sort_by, sort_direction=sort_direction,
        ))
    finally:
        session.close()


@router.post("/users", summary="创建用户")
async def create_user(payload: CreateUserRequest, admin: dict = Depends(require_admin)):
    session = DB.get_session()
    try:
        return success_response(admin_service.create_user(session, admin, **payload.model_dump()))
    finally:
        session.close()


@router.get("/users/{user_id}", summary="用户详情")
async def user_detail(user_id: str, admin: dict = Depends(require_admin)):
    session = DB.get_session()
    try:
        return success_response(admin_service.get_user_detail(session, user_id))
    finally:
        session.close()


@router.patch("/users/{user_id}", summary="停用 / 恢复用户")
async def user_status(user_id: str, payload: UserStatusRequest, admin: dict = Depends(require_admin)):
    session = DB.get_session()
    try:
        return success_response(
            admin_service.update_user_status(session, admin, user_id, payload.action, payload.reason)
        )
    finally:
        session.close()


@router.put("/users/{user_id}", summary="编辑用户资料")
async def update_user(user_id: str, payload: UpdateUserRequest, admin: dict = Depends(require_admin)):
    session = DB.get_session()
    try:
        changes = {k: v for k, v in payload.model_dump().items() if v is not None}
        return success_response(admin_service.update_user(session, admin, user_id, **changes))
    finally:
        session.close()


@router.put("/users/{user_id}/limit", summary="调整每日额度")
async def user_limit(user_id: str, payload: UserLimitRequest, admin: dict = Depends(require_admin)):
    session = DB.get_session()
    try:
        return success_response(admin_service.update_user_limit(session, admin, user_id, payload.daily_limit))
    finally:
        session.close()


@router.put("/users/{user_id}/role", summary="调整用户角色")
async def user_role(user_id: str, payload: UserRoleRequest, admin: dict = Depends(require_admin)):
    session = DB.get_session()
    try:
        return success_response(admin_service.update_user_role(session, admin, user_id, payload.role))
    finally:
        session.close()


@router.delete("/users/{user_id}", summary="删除用户")
def remove_user(
    user_id: str,
    reason: Optional[str] = Query(None, max_length=500),
    admin: dict = Depends(require_admin),
    storage=Depends(get_storage),
):
    session = DB.get_session()
    try:
        return success_response(admin_service.delete_user(session, admin, user_id, reason=reason, storage=storage))
    finally:
        session.close()


@router.get("/content", summary="待审核内容")
async def list_content(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    date_from: Optional[str] = Query(None),
    date_to: Optional[str] = Query(None),
    flagged: Optional[bool] = Query(None),
    admin: dict = Depends(require_admin),
):
    session = DB.get_session()
    try:
        return success_response(admin_service.get_moderation_content(
            session, page=page, limit=limit, date_from=date_from, date_to=date_to, flagged=flagged,
        ))
    finally:
        session.close()


@router.post("/content/{analysis_id}/flag", summary="标记内容")
async def flag(analysis_id: str, payload: FlagRequest, admin: dict = Depends(require_admin)):
    session = DB.get_session()
    try:
        return success_response(admin_service.flag_content(session, admin, analysis_id, payload.reason))
    finally:
        session.close()


@router.delete("/content/{analysis_id}", summary="删除内容")
def remove_content(
    analysis_id: str,
    reason: Optional[str] = Query(None, max_length=500),
    admin: dict = Depends(require_admin),
    storage=Depends(get_storage),
):
    session = DB.get_session()
    try:
        return success_response(
            admin_service.delete_content(session, admin, analysis_id, reason=reason, storage=storage)
        )
    finally:
        session.close()


@router.get("/logs", summary="操作日志")
async def activity_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    action: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None),
    date_to: Optional[str] = Query(None),
    admin: dict = Depends(require_admin),
):
    session = DB.get_session()
    try:
        return success_response(admin_service.get_activity_logs(
            session, page=page, limit=limit, action=action, date_from=date_from, date_to=date_to,
        ))
    finally:
        session.close()


@router.get("/stats", summary="平台统计")
async def platform_stats(admin: dict = Depends(require_admin)):
    session = DB.get_session()
    try:
        return success_response(admin_service.get_platform_stats(session))
    finally:
        session.close()


@router.get("/health", summary="系统健康")
async def system_health(admin: dict = Depends(require_admin)):
    session = DB.get_session()
    try:
        return success_response(admin_service.get_system_health(session))
    finally:
        session.close()
