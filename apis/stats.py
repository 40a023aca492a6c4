from fastapi import APIRouter, Depends

from core.auth import get_current_user
from core.db import DB
from core.stats_service import get_profile_overview, get_user_achievements, get_user_stats
from core.usage_service import get_daily_usage
from .base import success_response

router = APIRouter(tags=["学习统计"])


@router.get("/stats", summary="获取学习统计")
async def get_stats(current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        user_id = current_user["id"]
        return success_response({
            **get_user_stats(session, user_id),
            "today": get_daily_usage(session, user_id),
            "achievements": get_user_achievements(session, user_id),
        })
    finally:
        session.close()


@router.get("/profile/overview", summary="个人主页概览")
async def profile_overview(current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        return success_response(get_profile_overview(session, current_user))
    finally:
        session.close()
