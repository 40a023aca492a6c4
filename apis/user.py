from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from core.auth import get_current_user
from core.db import DB
from core.errors import AppError, ErrorKind
from core.task_service import SETUP_REQUIRED_MESSAGE
from core.user_service import get_user_profile, get_user_settings, update_user_settings
from .base import success_response

router = APIRouter(prefix="/user", tags=["用户"])


class UserSettingsRequest(BaseModel):
    mother_language: str = Field(..., max_length=10)
    learning_language: str = Field(..., max_length=10)
    proficiency_level: str = Field(..., max_length=20)
    name: Optional[str] = Field(default=None, max_length=100)


@router.get("/session", summary="获取当前会话用户")
async def get_session_user(current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        user = get_user_profile(session, current_user["id"])
        if user is None:
            raise AppError(
                ErrorKind.CONFLICT,
                SETUP_REQUIRED_MESSAGE,
                data={"user": None, "needs_setup": True},
            )
        return success_response({
            "user": {
                "id": user.id,
                "email": user.email,
                "name": user.name,
                "role": user.role,
                "status": user.status,
                "mother_language": user.mother_language,
                "learning_language": user.learning_language,
                "proficiency_level": user.proficiency_level,
            }
        })
    finally:
        session.close()


@router.get("/settings", summary="获取语言设置")
async def get_settings(current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        return success_response(get_user_settings(session, current_user["id"]))
    finally:
        session.close()


@router.put("/settings", summary="更新语言设置")
async def put_settings(payload: UserSettingsRequest, current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        data = update_user_settings(
            session,
            user_id=current_user["id"],
            email=current_user.get("email", ""),
            mother_language=payload.mother_language,
            learning_language=payload.learning_language,
            proficiency_level=payload.proficiency_level,
            name=payload.name,
        )
        return success_response(data, message="设置已更新")
    finally:
        session.close()
