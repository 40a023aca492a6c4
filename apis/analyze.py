from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel, Field

from core.auth import get_current_user
from core.db import DB
from core.log import get_logger
from core.storage_service import get_storage
from core.task_service import get_pending_task, get_task_by_id, submit_analysis, update_task
from core.usage_service import check_daily_limit
from .base import success_response

logger = get_logger(__name__)

router = APIRouter(prefix="/analyze", tags=["图片分析"])


class UpdateTaskRequest(BaseModel):
    status: Optional[str] = Field(default=None, max_length=32)
    image_url: Optional[str] = None
    description: Optional[str] = None
    vocabulary: Optional[List[Dict[str, Any]]] = None
    error_message: Optional[str] = None
    saved_analysis_id: Optional[str] = Field(default=None, max_length=64)


@router.get("/usage", summary="获取今日用量")
async def get_usage(current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        return success_response(check_daily_limit(session, current_user["id"]))
    finally:
        session.close()


@router.post("/image", summary="提交图片分析")
def analyze_image(
    image: UploadFile = File(...),
    current_user: dict = Depends(get_current_user),
    storage=Depends(get_storage),
):
    data = image.file.read()
    session = DB.get_session()
    try:
        result = submit_analysis(
            session,
            current_user,
            filename=image.filename or "image",
            content_type=image.content_type or "",
            data=data,
            storage=storage,
        )
        return success_response(result, message="分析任务已创建")
    finally:
        session.close()


@router.get("/pending", summary="获取进行中的任务")
async def pending_task(current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        return success_response({"task": get_pending_task(session, current_user["id"])})
    finally:
        session.close()


@router.get("/task/{task_id}", summary="获取任务详情")
async def task_detail(task_id: str, current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        return success_response(get_task_by_id(session, current_user["id"], task_id))
    finally:
        session.close()


@router.patch("/task/{task_id}", summary="更新任务状态")
async def patch_task(task_id: str, payload: UpdateTaskRequest, current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        changes = {k: v for k, v in payload.model_dump().items() if v is not None}
        return success_response(update_task(session, current_user["id"], task_id, **changes))
    finally:
        session.close()
