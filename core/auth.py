"""
core/auth.py - Supabase 会话解析

请求头 Authorization: Bearer <access_token>
• 配置了 supabase.jwt_secret 时，用 PyJWT 本地校验（HS256，aud=authenticated）
• 否则调用 {supabase.url}/auth/v1/user 远程校验

解析出的身份再与 users 表合并，得到 role / status。
"""
from typing import Dict, Optional

import jwt
import requests
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.config import cfg
from core.db import DB
from core.errors import AppError, ErrorKind, not_configured
from core.events import log_event, E
from core.log import get_logger
from core.models.user import User, ROLE_USER, STATUS_ACTIVE, STATUS_SUSPENDED

logger = get_logger(__name__)

ALGORITHM = "HS256"
AUDIENCE = "authenticated"

bearer_scheme = HTTPBearer(auto_error=False)


def _decode_local(token: str, secret: str) -> Optional[Dict[str, str]]:
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM], audience=AUDIENCE)
    except jwt.PyJWTError as e:
        log_event(logger, E.AUTH_TOKEN_INVALID, level="warning", reason=type(e).__name__)
        return None
    user_id = str(payload.get("sub") or "").strip()
    if not user_id:
        return None
    return {"id": user_id, "email": str(payload.get("email") or "")}


def _fetch_remote(token: str) -> Optional[Dict[str, str]]:
    base_url = str(cfg.get("supabase.url", "") or "").rstrip("/")
    if not base_url:
        raise not_configured("Supabase auth")
    headers = {"Authorization": f"Bearer {token}"}
    anon_key = cfg.get("supabase.anon_key", "")
    if anon_key:
        headers["apikey"] = anon_key
    try:
        resp = requests.get(f"{base_url}/auth/v1/user", headers=headers, timeout=10)
    except requests.RequestException:
        logger.exception("Supabase 用户校验请求失败")
        return None
    if resp.status_code != 200:
        log_event(logger, E.AUTH_TOKEN_INVALID, level="warning", status=resp.status_code)
        return None
    data = resp.json() or {}
    user_id = str(data.get("id") or "").strip()
    if not user_id:
        return None
    return {"id": user_id, "email": str(data.get("email") or "")}


def resolve_auth_identity(token: str) -> Optional[Dict[str, str]]:
    """校验访问令牌，返回 {id, email}；无效时返回 None。"""
    token = str(token or "").strip()
    if not token:
        return None
    secret = cfg.get("supabase.jwt_secret", "")
    if secret:
        return _decode_local(token, secret)
    return _fetch_remote(token)


def build_current_user(session, identity: Dict[str, str]) -> Dict:
    user = session.query(User).filter(User.id == identity["id"]).first()
    if user is None:
        return {
            "id": identity["id"],
            "email": identity.get("email", ""),
            "name": None,
            "role": ROLE_USER,
            "status": STATUS_ACTIVE,
            "needs_setup": True,
        }
    return {
        "id": user.id,
        "email": user.email or identity.get("email", ""),
        "name": user.name,
        "role": user.role or ROLE_USER,
        "status": user.status or STATUS_ACTIVE,
        "needs_setup": False,
    }


def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Dict]:
    if credentials is None or not credentials.credentials:
        return None
    identity = resolve_auth_identity(credentials.credentials)
    if identity is None:
        return None
    session = DB.get_session()
    try:
        return build_current_user(session, identity)
    finally:
        session.close()


def get_current_user(current_user: Optional[Dict] = Depends(get_current_user_optional)) -> Dict:
    if current_user is None:
        raise AppError(ErrorKind.NOT_AUTHENTICATED)
    if current_user.get("status") == STATUS_SUSPENDED:
        log_event(logger, E.AUTH_ACCOUNT_SUSPENDED, level="warning", user_id=current_user.get("id"))
        raise AppError(ErrorKind.FORBIDDEN, "Account suspended")
    return current_user


def require_admin(current_user: Dict = Depends(get_current_user)) -> Dict:
    from core.admin_service import verify_admin_access

    session = DB.get_session()
    try:
        return verify_admin_access(session, current_user.get("id"))
    finally:
        session.close()
