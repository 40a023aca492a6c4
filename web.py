from fastapi import FastAPI, Request, APIRouter
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import json
from typing import Any
from apis.admin import router as admin_router
from apis.analyze import router as analyze_router
from apis.audio import router as audio_router
from apis.saved import router as saved_router, recent_router
from apis.stats import router as stats_router
from apis.storage import router as storage_router
from apis.user import router as user_router
from apis.base import error_response
from core.config import cfg, VERSION, API_BASE
from core.db import DB
from core.errors import AppError, ErrorKind, status_for
from core.events import log_event, E
from core.log import get_logger, set_trace_id

logger = get_logger(__name__)


class UnicodeJSONResponse(JSONResponse):
    """自定义 JSON 响应类，确保中文不被转义"""
    def render(self, content: Any) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


app = FastAPI(
    title="LexiLens API",
    description="看图学单词：图片分析、每日额度、收藏与发音服务",
    version=VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    swagger_ui_parameters={
        "persistAuthorization": True,
    },
    default_response_class=UnicodeJSONResponse,
)

# CORS配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_custom_header(request: Request, call_next):
    trace_id = set_trace_id(request.headers.get("X-Trace-Id"))
    response = await call_next(request)
    response.headers["X-Trace-Id"] = trace_id
    response.headers["X-Version"] = VERSION
    response.headers["Server"] = cfg.get("app_name", "LexiLens")
    return response


def _error_json(status_code: int, message: str, data: Any = None) -> UnicodeJSONResponse:
    return UnicodeJSONResponse(
        status_code=status_code,
        content=error_response(code=status_code * 100 + 1, message=message, data=data),
    )


@app.exception_handler(AppError)
async def handle_app_error(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.warning("请求失败: %s %s -> %s", request.method, request.url.path, exc.message)
    return _error_json(exc.status_code, exc.message, exc.to_payload())


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    issues = []
    for err in exc.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()) if x not in ("body", "query", "path"))
        issues.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    error = AppError(ErrorKind.INVALID_INPUT, issues=issues)
    return _error_json(error.status_code, error.message, error.to_payload())


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception("未处理的异常: %s %s", request.method, request.url.path)
    status_code = status_for(ErrorKind.INTERNAL)
    return _error_json(status_code, "Internal server error", {"error": "Internal server error"})


# 创建API路由分组
api_router = APIRouter(prefix=f"{API_BASE}")
api_router.include_router(user_router)
api_router.include_router(stats_router)
api_router.include_router(analyze_router)
api_router.include_router(saved_router)
api_router.include_router(recent_router)
api_router.include_router(storage_router)
api_router.include_router(audio_router)
api_router.include_router(admin_router)
app.include_router(api_router)


@app.get(f"{API_BASE}/health", tags=["默认"], summary="存活检查")
async def health():
    return {"status": "ok", "version": VERSION}


@app.on_event("startup")
async def on_startup():
    DB.create_tables()
    if cfg.get_bool("task.sweep_enabled", True):
        from jobs.task_sweep import start_task_sweep_worker
        start_task_sweep_worker()
    log_event(logger, E.SYSTEM_STARTUP, version=VERSION, db=DB.dialect)
