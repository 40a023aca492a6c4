from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field

from core.audio_service import (
    fetch_vocabulary_audio,
    get_description_audio,
    request_vocabulary_audio,
    vocabulary_audio_headers,
)
from core.auth import get_current_user
from core.db import DB
from core.storage_service import get_storage
from core.tts_service import AUDIO_CONTENT_TYPE
from .base import success_response

router = APIRouter(prefix="/audio", tags=["音频"])


class VocabularyAudioRequest(BaseModel):
    word: str = Field(..., min_length=1, max_length=200)
    language: str = Field(..., min_length=2, max_length=10)


class DescriptionAudioRequest(BaseModel):
    analysis_id: str = Field(..., max_length=64)
    kind: str = Field(default="translated", max_length=16)


@router.post("/vocabulary", summary="生成单词发音")
def create_vocabulary_audio(payload: VocabularyAudioRequest, current_user: dict = Depends(get_current_user)):
    return success_response(request_vocabulary_audio(payload.word, payload.language))


@router.get("/vocabulary", summary="单词发音代理下载")
def proxy_vocabulary_audio(
    lang: str = Query(""),
    word: str = Query(""),
    current_user: dict = Depends(get_current_user),
):
    audio = fetch_vocabulary_audio(word, lang)
    return Response(content=audio, media_type=AUDIO_CONTENT_TYPE, headers=vocabulary_audio_headers())


@router.post("/description", summary="描述朗读音频")
def description_audio(
    payload: DescriptionAudioRequest,
    current_user: dict = Depends(get_current_user),
    storage=Depends(get_storage),
):
    session = DB.get_session()
    try:
        return success_response(
            get_description_audio(session, current_user["id"], payload.analysis_id, payload.kind, storage)
        )
    finally:
        session.close()
