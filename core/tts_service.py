"""
Azure 语音合成

1. POST https://{region}.api.cognitive.microsoft.com/sts/v1.0/issueToken 换取访问令牌
2. 以 SSML 调用 https://{region}.tts.speech.microsoft.com/cognitiveservices/v1，返回 MP3
"""
import os
from dataclasses import dataclass
from typing import Optional
from xml.sax.saxutils import escape

import requests

from core.config import cfg
from core.errors import AppError, ErrorKind, invalid_input, not_configured
from core.events import log_event, E
from core.log import get_logger
from core.user_service import SUPPORTED_LANGUAGES

logger = get_logger(__name__)

OUTPUT_FORMAT = "audio-16khz-128kbitrate-mono-mp3"
USER_AGENT = "lexilens"
AUDIO_CONTENT_TYPE = "audio/mpeg"

_XML_ENTITIES = {'"': "&quot;", "'": "&apos;"}


@dataclass
class TtsResult:
    audio: bytes
    content_type: str
    voice: str


def _speech_key() -> str:
    return os.environ.get("AZURE_SPEECH_KEY") or cfg.get("azure.speech_key", "")


def _speech_region() -> str:
    return os.environ.get("AZURE_SPEECH_REGION") or cfg.get("azure.speech_region", "")


def is_configured() -> bool:
    return bool(_speech_key() and _speech_region())


def voice_for_locale(locale: str) -> Optional[str]:
    locale = str(locale or "").lower()
    if locale not in SUPPORTED_LANGUAGES:
        return None
    return cfg.get(f"azure.voices.{locale}", None) or None


def build_ssml(text: str, locale: str, voice: str) -> str:
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        f'<speak version="1.0" xml:lang="{locale}" xmlns="http://www.w3.org/2001/10/synthesis" '
        'xmlns:mstts="http://www.w3.org/2001/mstts">\n'
        f'  <voice name="{voice}">{escape(text, _XML_ENTITIES)}</voice>\n'
        "</speak>"
    )


def get_access_token(timeout: int = 10) -> str:
    key, region = _speech_key(), _speech_region()
    if not key or not region:
        raise not_configured("Azure Speech")
    url = f"https://{region}.api.cognitive.microsoft.com/sts/v1.0/issueToken"
    try:
        resp = requests.post(url, headers={"Ocp-Apim-Subscription-Key": key}, timeout=timeout)
    except requests.RequestException as e:
        log_event(logger, E.TTS_FAIL, level="error", stage="token", error=str(e))
        raise AppError(ErrorKind.UNAVAILABLE, "Failed to get Azure Speech token")
    if resp.status_code >= 400:
        log_event(logger, E.TTS_FAIL, level="error", stage="token", status=resp.status_code)
        raise AppError(ErrorKind.UNAVAILABLE, "Failed to get Azure Speech token")
    return resp.text


def synthesize_speech(text: str, locale: str, timeout: int = 30) -> TtsResult:
    locale = str(locale or "").lower()
    if locale not in SUPPORTED_LANGUAGES:
        raise invalid_input("Unsupported locale")
    region = _speech_region()
    if not region:
        raise not_configured("Azure Speech")
    voice = voice_for_locale(locale)
    if not voice:
        raise not_configured("Azure TTS voice")

    token = get_access_token()
    headers = {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/ssml+xml",
        "X-Microsoft-OutputFormat": OUTPUT_FORMAT,
        "User-Agent": USER_AGENT,
    }
    url = f"https://{region}.tts.speech.microsoft.com/cognitiveservices/v1"
    try:
        resp = requests.post(
            url,
            data=build_ssml(text, locale, voice).encode("utf-8"),
            headers=headers,
            timeout=timeout,
        )
    except requests.RequestException as e:
        log_event(logger, E.TTS_FAIL, level="error", stage="synthesize", error=str(e))
        raise AppError(ErrorKind.UNAVAILABLE, "Azure TTS synthesis failed")
    if resp.status_code >= 400:
        log_event(logger, E.TTS_FAIL, level="error", stage="synthesize", status=resp.status_code)
        raise AppError(ErrorKind.UNAVAILABLE, "Azure TTS synthesis failed")

    log_event(logger, E.TTS_SYNTHESIZE, locale=locale, voice=voice, size=len(resp.content))
    return TtsResult(audio=resp.content, content_type=AUDIO_CONTENT_TYPE, voice=voice)
