"""
音频服务

• 描述朗读：Azure TTS 合成后上传 R2，URL 回写到 saved_analyses，之后直接复用
• 单词发音：由外部词汇音频服务生成，经本服务 /api/audio/vocabulary 代理下载
"""
import uuid
from typing import Any, Dict, Tuple
from urllib.parse import quote, urlencode

import requests

from core import tts_service
from core.config import API_BASE, cfg
from core.errors import AppError, ErrorKind, invalid_input, not_configured, not_found
from core.events import log_event, E
from core.log import get_logger
from core.models.saved_analysis import SavedAnalysis
from core.storage_service import description_audio_key
from core.user_service import SUPPORTED_LANGUAGES

logger = get_logger(__name__)

DESCRIPTION_KINDS = ("translated", "native")
MAX_WORD_LENGTH = 200
DEFAULT_VOCABULARY_SERVICE_URL = "https://vocabulary-audio-service.loveyouall.qzz.io"
DEFAULT_VOCABULARY_CDN_URL = "https://mla-audo.loveyouall.qzz.io"
VOCABULARY_CACHE_CONTROL = "public, max-age=31536000"


def description_audio_enabled() -> bool:
    return cfg.get_bool("audio.description_enabled", False)


def get_description_audio(session, user_id: str, analysis_id: str, kind: str, storage) -> Dict[str, str]:
    """返回描述朗读的音频 URL，已生成过则直接复用"""
    if not description_audio_enabled():
        raise AppError(ErrorKind.NOT_CONFIGURED, "Description audio feature is disabled")
    issues = []
    try:
        analysis_id = str(uuid.UUID(str(analysis_id or "")))
    except ValueError:
        issues.append("analysis_id must be a valid UUID")
    if kind not in DESCRIPTION_KINDS:
        issues.append(f"kind must be one of {', '.join(DESCRIPTION_KINDS)}")
    if issues:
        raise invalid_input(issues=issues)
    if storage is None or not storage.is_configured():
        raise not_configured("Audio storage")
    if not tts_service.is_configured():
        raise not_configured("Azure Speech")

    analysis = session.query(SavedAnalysis).filter(
        SavedAnalysis.id == analysis_id,
        SavedAnalysis.user_id == user_id,
    ).first()
    if analysis is None:
        raise not_found("Analysis")

    field = "description_native_audio_url" if kind == "native" else "description_audio_url"
    cached = getattr(analysis, field)
    if cached:
        return {"audio_url": cached}

    locale = str((analysis.mother_language if kind == "native" else analysis.learning_language) or "en").lower()
    if locale not in SUPPORTED_LANGUAGES:
        raise invalid_input("Unsupported locale")
    if not tts_service.voice_for_locale(locale):
        raise not_configured("Azure TTS voice")
    text = (analysis.description_native if kind == "native" else analysis.description) or ""
    if not text:
        raise invalid_input("No text available")

    result = tts_service.synthesize_speech(text, locale)
    audio_url = storage.upload(result.audio, description_audio_key(analysis.id, kind, locale), result.content_type)
    setattr(analysis, field, audio_url)
    session.commit()
    return {"audio_url": audio_url}


def normalize_vocabulary_input(word: str, language: str) -> Tuple[str, str]:
    word = str(word or "").strip().lower()
    language = str(language or "").strip().lower()
    issues = []
    if not word or len(word) > MAX_WORD_LENGTH:
        issues.append(f"word must be 1-{MAX_WORD_LENGTH} characters")
    if language not in SUPPORTED_LANGUAGES:
        issues.append("language is not supported")
    if issues:
        raise invalid_input(issues=issues)
    return word, language


def proxied_vocabulary_url(word: str, language: str) -> str:
    return f"{API_BASE}/audio/vocabulary?{urlencode({'lang': language, 'word': word}, quote_via=quote)}"


def cdn_vocabulary_url(word: str, language: str) -> str:
    base = str(cfg.get("audio.vocabulary_cdn_url", DEFAULT_VOCABULARY_CDN_URL)).rstrip("/")
    return f"{base}/{language}/{quote(word, safe='')}.mp3"


def request_vocabulary_audio(word: str, language: str, timeout: int = 30) -> Dict[str, str]:
    """请外部服务生成单词发音，返回本站代理地址与直链"""
    word, language = normalize_vocabulary_input(word, language)
    key = cfg.get("audio.vocabulary_service_key", "")
    if not key:
        raise AppError(ErrorKind.UNAVAILABLE, "Audio service key not configured")
    service_url = str(cfg.get("audio.vocabulary_service_url", DEFAULT_VOCABULARY_SERVICE_URL)).rstrip("/")

    try:
        resp = requests.post(
            f"{service_url}/api/audio",
            json={"lang": language, "words": [word], "key": key},
            timeout=timeout,
        )
    except requests.RequestException as e:
        logger.error("词汇音频服务请求失败: %s", e)
        raise AppError(ErrorKind.INTERNAL, "Failed to generate audio")
    if resp.status_code >= 400:
        logger.error("词汇音频服务返回错误: status=%s body=%s", resp.status_code, resp.text[:300])
        raise AppError(ErrorKind.INTERNAL, "Failed to generate audio")

    try:
        payload = resp.json() or {}
    except ValueError:
        payload = {}
    direct_url = ""
    for item in payload.get("results") or []:
        if isinstance(item, dict) and item.get("word") == word:
            direct_url = str(item.get("url") or "")
            break
    if not direct_url:
        raise AppError(ErrorKind.INTERNAL, "Audio not generated")

    log_event(logger, E.AUDIO_VOCAB_REQUEST, word=word, language=language)
    return {"audio_url": proxied_vocabulary_url(word, language), "direct_url": direct_url}


def fetch_vocabulary_audio(word: str, language: str, timeout: int = 20) -> bytes:
    word, language = normalize_vocabulary_input(word, language)
    try:
        resp = requests.get(
            cdn_vocabulary_url(word, language),
            headers={"Accept-Encoding": "identity"},
            timeout=timeout,
        )
    except requests.RequestException as e:
        logger.error("词汇音频下载失败: %s", e)
        raise AppError(ErrorKind.INTERNAL, "Failed to fetch audio")
    if resp.status_code >= 400 or not resp.content:
        raise not_found("Audio")
    return resp.content


def vocabulary_audio_headers() -> Dict[str, Any]:
    return {
        "Cache-Control": VOCABULARY_CACHE_CONTROL,
        "Access-Control-Allow-Origin": "*",
    }
