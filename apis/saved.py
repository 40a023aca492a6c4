from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from core.analysis_service import (
    delete_saved_analysis,
    get_analysis_by_id,
    get_recent_analyses,
    get_saved_analyses,
    save_analysis,
)
from core.auth import get_current_user
from core.db import DB
from core.storage_service import get_storage
from .base import success_response

router = APIRouter(prefix="/saved", tags=["收藏"])
recent_router = APIRouter(prefix="/analyses", tags=["收藏"])


class VocabularyItem(BaseModel):
    word: str = Field(..., min_length=1, max_length=200)
    translation: str = Field(..., min_length=1, max_length=500)
    pronunciation: str = Field(default="", max_length=200)
    example_sentence: str = Field(default="", max_length=1000)
    category: Optional[str] = Field(default=None, max_length=64)


class SaveAnalysisRequest(BaseModel):
    image_url: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    description_native: Optional[str] = None
    learning_language: Optional[str] = Field(default=None, max_length=10)
    mother_language: Optional[str] = Field(default=None, max_length=10)
    vocabulary: List[VocabularyItem] = Field(default_factory=list)


def _list(current_user: dict, page: int, limit: int, q: Optional[str]) -> Dict[str, Any]:
    session = DB.get_session()
    try:
        return get_saved_analyses(session, current_user["id"], page=page, limit=limit, search_query=q)
    finally:
        session.close()


@router.get("", summary="收藏列表")
async def list_saved(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(12, ge=1, le=50),
    current_user: dict = Depends(get_current_user),
):
    return success_response(_list(current_user, page, limit, None))


@router.get("/search", summary="搜索收藏")
async def search_saved(
    q: str = Query("", max_length=200),
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(12, ge=1, le=50),
    current_user: dict = Depends(get_current_user),
):
    return success_response(_list(current_user, page, limit, q))


@router.post("", summary="保存分析结果")
async def create_saved(payload: SaveAnalysisRequest, current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        data = save_analysis(
            session,
            current_user["id"],
            image_url=payload.image_url,
            description=payload.description,
            vocabulary=[item.model_dump() for item in payload.vocabulary],
            description_native=payload.description_native,
            learning_language=payload.learning_language,
            mother_language=payload.mother_language,
        )
        return success_response(data, message="已保存")
    finally:
        session.close()


@router.get("/{analysis_id}", summary="收藏详情")
async def saved_detail(analysis_id: str, current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        return success_response(get_analysis_by_id(session, current_user["id"], analysis_id))
    finally:
        session.close()


@router.delete("/{analysis_id}", summary="删除收藏")
def delete_saved(analysis_id: str, current_user: dict = Depends(get_current_user), storage=Depends(get_storage)):
    session = DB.get_session()
    try:
        return success_response(
            delete_saved_analysis(session, current_user["id"], analysis_id, storage=storage),
            message="已删除",
        )
    finally:
        session.close()


@recent_router.get("/recent", summary="最近的分析")
async def recent_analyses(
    limit: int = Query(5, ge=1, le=20),
    current_user: dict = Depends(get_current_user),
):
    session = DB.get_session()
    try:
        return success_response(get_recent_analyses(session, current_user["id"], limit=limit))
    finally:
        session.close()
