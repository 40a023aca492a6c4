"""
core/errors.py - 业务错误类型

服务层统一抛出 AppError(kind, message)，由 web.py 中的异常处理器
按 STATUS_MAP 转换为 HTTP 状态码与统一响应体。
"""
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    NOT_AUTHENTICATED = "not_authenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    CONFLICT = "conflict"
    LIMIT_REACHED = "limit_reached"
    NOT_CONFIGURED = "not_configured"
    UNAVAILABLE = "unavailable"
    INTERNAL = "internal"


STATUS_MAP: Dict[ErrorKind, int] = {
    ErrorKind.NOT_AUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.LIMIT_REACHED: 429,
    ErrorKind.NOT_CONFIGURED: 501,
    ErrorKind.UNAVAILABLE: 503,
    ErrorKind.INTERNAL: 500,
}

DEFAULT_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.NOT_AUTHENTICATED: "Not authenticated",
    ErrorKind.FORBIDDEN: "Admin access required",
    ErrorKind.NOT_FOUND: "Not found",
    ErrorKind.INVALID_INPUT: "Invalid input",
    ErrorKind.CONFLICT: "Conflict",
    ErrorKind.LIMIT_REACHED: "Daily limit reached",
    ErrorKind.NOT_CONFIGURED: "Service is not configured",
    ErrorKind.UNAVAILABLE: "Service unavailable",
    ErrorKind.INTERNAL: "Internal server error",
}


class AppError(Exception):
    def __init__(
        self,
        kind: ErrorKind,
        message: Optional[str] = None,
        issues: Optional[List[str]] = None,
        data: Optional[Dict[str, Any]] = None,
    ):
        self.kind = kind
        self.message = message or DEFAULT_MESSAGES[kind]
        self.issues = list(issues or [])
        self.data = dict(data or {})
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return status_for(self.kind)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "kind": self.kind.value}
        if self.issues:
            payload["issues"] = self.issues
        if self.data:
            payload.update(self.data)
        return payload


def status_for(kind: ErrorKind) -> int:
    return STATUS_MAP.get(kind, 500)


def not_found(entity: str) -> AppError:
    return AppError(ErrorKind.NOT_FOUND, f"{entity} not found")


def not_configured(service: str) -> AppError:
    return AppError(ErrorKind.NOT_CONFIGURED, f"{service} is not configured")


def invalid_input(message: str = "Invalid input", issues: Optional[List[str]] = None) -> AppError:
    return AppError(ErrorKind.INVALID_INPUT, message, issues=issues)
