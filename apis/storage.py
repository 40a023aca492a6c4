from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from core.auth import get_current_user
from core.config import cfg
from core.errors import invalid_input
from core.storage_service import DOWNLOAD_URL_TTL, generate_image_key, get_storage
from core.task_service import DEFAULT_SUPPORTED_TYPES
from .base import success_response

router = APIRouter(tags=["存储"])


class UploadRequest(BaseModel):
    filename: str = Field(default="", max_length=255)
    content_type: str = Field(default="", max_length=64)


@router.post("/upload", summary="获取图片直传地址")
def create_upload_url(
    payload: UploadRequest,
    current_user: dict = Depends(get_current_user),
    storage=Depends(get_storage),
):
    if not payload.filename or not payload.content_type:
        raise invalid_input("Missing filename or content_type")
    supported = [t.strip() for t in str(cfg.get("image.supported_types", DEFAULT_SUPPORTED_TYPES)).split(",")]
    if payload.content_type not in supported:
        raise invalid_input("Invalid file type")
    key = generate_image_key(current_user["id"], payload.filename)
    upload_url = storage.signed_upload_url(key, payload.content_type)
    return success_response({
        "upload_url": upload_url,
        "public_url": f"{storage.public_url}/{key}",
        "key": key,
    })


@router.get("/image", summary="图片短时签名地址")
def get_image(key: str = Query(""), url: str = Query(""), storage=Depends(get_storage)):
    if not key and url:
        extracted = storage.key_from_url(url)
        key = "" if extracted == url else extracted
    if not key:
        if url.startswith(("http://", "https://")):
            return RedirectResponse(url)
        raise invalid_input("Missing image key or url")
    if key.startswith(("http://", "https://", "data:")):
        raise invalid_input("Invalid image key")
    signed = storage.signed_download_url(key, expires_in=DOWNLOAD_URL_TTL)
    response = RedirectResponse(signed)
    response.headers["Cache-Control"] = f"private, max-age={DOWNLOAD_URL_TTL}"
    return response
