import math
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import String, cast, func, or_

from core.errors import invalid_input, not_found
from core.events import log_event, E
from core.log import get_logger
from core.models.saved_analysis import SavedAnalysis
from core.stats_service import record_words_learned, unlock_achievements

logger = get_logger(__name__)

MAX_PAGE = 1000
MAX_PAGE_SIZE = 50
MAX_RECENT = 20
VOCABULARY_REQUIRED = ("word", "translation")
VOCABULARY_FIELDS = ("word", "translation", "pronunciation", "example_sentence", "category")


def normalize_vocabulary(items: Any) -> List[Dict[str, str]]:
    if not isinstance(items, list):
        raise invalid_input(issues=["vocabulary must be a list"])
    result = []
    issues = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            issues.append(f"vocabulary[{idx}] must be an object")
            continue
        for field in VOCABULARY_REQUIRED:
            if not str(item.get(field) or "").strip():
                issues.append(f"vocabulary[{idx}].{field} is required")
        entry = {
            "word": str(item.get("word") or "").strip(),
            "translation": str(item.get("translation") or "").strip(),
            "pronunciation": str(item.get("pronunciation") or ""),
            "example_sentence": str(item.get("example_sentence") or ""),
        }
        if item.get("category"):
            entry["category"] = str(item["category"])
        result.append(entry)
    if issues:
        raise invalid_input(issues=issues)
    return result


def serialize_analysis(row: SavedAnalysis, detail: bool = True) -> Dict[str, Any]:
    vocabulary = row.vocabulary or []
    data = {
        "id": row.id,
        "image_url": row.image_url,
        "description": row.description,
        "vocabulary_count": len(vocabulary),
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }
    if detail:
        data.update({
            "description_native": row.description_native,
            "learning_language": row.learning_language,
            "mother_language": row.mother_language,
            "vocabulary": vocabulary,
            "description_audio_url": row.description_audio_url,
            "description_native_audio_url": row.description_native_audio_url,
        })
    return data


def save_analysis(
    session,
    user_id: str,
    image_url: str,
    description: str,
    vocabulary: List[Dict[str, Any]],
    description_native: Optional[str] = None,
    learning_language: Optional[str] = None,
    mother_language: Optional[str] = None,
) -> Dict[str, Any]:
    issues = []
    if not str(image_url or "").strip():
        issues.append("image_url is required")
    if not str(description or "").strip():
        issues.append("description is required")
    if issues:
        raise invalid_input(issues=issues)
    vocabulary = normalize_vocabulary(vocabulary)

    row = SavedAnalysis(
        id=str(uuid.uuid4()),
        user_id=user_id,
        image_url=image_url.strip(),
        description=description.strip(),
        description_native=description_native,
        learning_language=learning_language,
        mother_language=mother_language,
        vocabulary=vocabulary,
        flagged=False,
        created_at=datetime.now(),
    )
    session.add(row)
    session.commit()
    record_words_learned(session, user_id, len(vocabulary))
    unlock_achievements(session, user_id)
    log_event(logger, E.ANALYSIS_SAVE, user_id=user_id, analysis_id=row.id, words=len(vocabulary))
    return serialize_analysis(row)


def _check_paging(page: int, limit: int) -> None:
    issues = []
    if not 1 <= int(page) <= MAX_PAGE:
        issues.append(f"page must be between 1 and {MAX_PAGE}")
    if not 1 <= int(limit) <= MAX_PAGE_SIZE:
        issues.append(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if issues:
        raise invalid_input("Invalid input parameters", issues=issues)


def get_saved_analyses(
    session,
    user_id: str,
    page: int = 1,
    limit: int = 12,
    search_query: Optional[str] = None,
) -> Dict[str, Any]:
    """分页获取收藏；search_query 对描述和词汇内容做不区分大小写的模糊匹配"""
    _check_paging(page, limit)
    query = session.query(SavedAnalysis).filter(SavedAnalysis.user_id == user_id)
    keyword = str(search_query or "").strip().lower()
    if keyword:
        pattern = f"%{keyword}%"
        query = query.filter(or_(
            func.lower(SavedAnalysis.description).like(pattern),
            func.lower(cast(SavedAnalysis.vocabulary, String)).like(pattern),
        ))
    total = query.count()
    rows = (
        query.order_by(SavedAnalysis.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "analyses": [serialize_analysis(r, detail=False) for r in rows],
        "total_count": total,
        "total_pages": math.ceil(total / limit),
        "current_page": page,
    }


def count_saved_analyses(session, user_id: str) -> int:
    return session.query(SavedAnalysis).filter(SavedAnalysis.user_id == user_id).count()


def get_recent_analyses(session, user_id: str, limit: int = 5) -> List[Dict[str, Any]]:
    if not 1 <= int(limit) <= MAX_RECENT:
        raise invalid_input("Invalid input parameters", issues=[f"limit must be between 1 and {MAX_RECENT}"])
    rows = (
        session.query(SavedAnalysis)
        .filter(SavedAnalysis.user_id == user_id)
        .order_by(SavedAnalysis.created_at.desc())
        .limit(limit)
        .all()
    )
    return [serialize_analysis(r) for r in rows]


def _get_owned(session, user_id: str, analysis_id: str) -> SavedAnalysis:
    try:
        analysis_id = str(uuid.UUID(str(analysis_id or "")))
    except ValueError:
        raise invalid_input("Invalid analysis ID")
    row = session.query(SavedAnalysis).filter(
        SavedAnalysis.id == analysis_id,
        SavedAnalysis.user_id == user_id,
    ).first()
    if row is None:
        raise not_found("Analysis")
    return row


def get_analysis_by_id(session, user_id: str, analysis_id: str) -> Dict[str, Any]:
    return serialize_analysis(_get_owned(session, user_id, analysis_id))


def remove_media(storage, row: SavedAnalysis) -> int:
    """尽力删除图片与描述音频，返回删除失败的数量"""
    if storage is None or not storage.is_configured():
        return 0
    failed = 0
    for url in row.media_urls():
        if url.startswith("data:"):
            continue
        try:
            storage.delete(storage.key_from_url(url))
        except Exception as e:
            failed += 1
            log_event(logger, E.STORAGE_DELETE_FAIL, level="warning", url=url[:120], error=str(e))
    return failed


def delete_saved_analysis(session, user_id: str, analysis_id: str, storage=None) -> Dict[str, Any]:
    row = _get_owned(session, user_id, analysis_id)
    failed = remove_media(storage, row)
    session.delete(row)
    session.commit()
    log_event(logger, E.ANALYSIS_DELETE, user_id=user_id, analysis_id=row.id, media_failed=failed)
    return {"id": row.id, "deleted": True}
