"""
Cloudflare R2 对象存储服务
R2 兼容 S3 协议，这里通过 boto3 的 s3 客户端访问（region 固定为 auto）
"""
import os
import re
import time
from typing import Dict, Optional
from urllib.parse import urlparse

import boto3
from botocore.config import Config as BotoConfig

from core.config import cfg
from core.errors import not_configured
from core.events import log_event, E
from core.log import get_logger

logger = get_logger(__name__)

DOWNLOAD_URL_TTL = 60
UPLOAD_URL_TTL = 3600


def get_r2_config() -> Dict[str, str]:
    """获取 R2 配置，环境变量优先"""
    return {
        "endpoint": os.environ.get("CLOUDFLARE_R2_ENDPOINT") or cfg.get("r2.endpoint", ""),
        "access_key_id": os.environ.get("CLOUDFLARE_R2_ACCESS_KEY_ID") or cfg.get("r2.access_key_id", ""),
        "secret_access_key": os.environ.get("CLOUDFLARE_R2_SECRET_ACCESS_KEY") or cfg.get("r2.secret_access_key", ""),
        "bucket_name": os.environ.get("CLOUDFLARE_R2_BUCKET_NAME") or cfg.get("r2.bucket_name", ""),
        "public_url": os.environ.get("CLOUDFLARE_R2_PUBLIC_URL") or cfg.get("r2.public_url", ""),
    }


def generate_image_key(user_id: str, filename: str, now_ms: Optional[int] = None) -> str:
    ts = now_ms if now_ms is not None else int(time.time() * 1000)
    sanitized = re.sub(r"[^a-zA-Z0-9.-]", "_", filename or "image")
    return f"images/{user_id}/{ts}_{sanitized}"


def description_audio_key(analysis_id: str, kind: str, locale: str) -> str:
    return f"descriptions/{analysis_id}/{kind}_{locale}.mp3"


class R2Storage:
    def __init__(self, config: Optional[Dict[str, str]] = None, client=None):
        self.config = dict(config) if config is not None else get_r2_config()
        self._client = client

    def is_configured(self) -> bool:
        return all(self.config.get(k) for k in (
            "endpoint", "access_key_id", "secret_access_key", "bucket_name", "public_url",
        ))

    @property
    def public_url(self) -> str:
        return str(self.config.get("public_url") or "").rstrip("/")

    @property
    def bucket(self) -> str:
        return self.config.get("bucket_name", "")

    @property
    def client(self):
        if not self.is_configured():
            raise not_configured("R2")
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.config["endpoint"],
                aws_access_key_id=self.config["access_key_id"],
                aws_secret_access_key=self.config["secret_access_key"],
                region_name="auto",
                config=BotoConfig(signature_version="s3v4"),
            )
        return self._client

    def upload(self, data: bytes, key: str, content_type: str) -> str:
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        log_event(logger, E.STORAGE_UPLOAD, key=key, size=len(data), content_type=content_type)
        return f"{self.public_url}/{key}"

    def delete(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=key)
        log_event(logger, E.STORAGE_DELETE, key=key)

    def signed_upload_url(self, key: str, content_type: str, expires_in: int = UPLOAD_URL_TTL) -> str:
        return self.client.generate_presigned_url(
            "put_object",
            Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
            ExpiresIn=expires_in,
        )

    def signed_download_url(self, key: str, expires_in: int = DOWNLOAD_URL_TTL) -> str:
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in,
        )

    def key_from_url(self, url: str) -> str:
        """公开 URL -> 对象 key；不属于本桶公开域名的 URL 原样返回"""
        base = self.public_url
        if not base or not url:
            return url
        target = urlparse(url)
        base_parsed = urlparse(base)
        if (target.scheme, target.netloc) != (base_parsed.scheme, base_parsed.netloc):
            return url
        base_path = base_parsed.path if base_parsed.path.endswith("/") else f"{base_parsed.path}/"
        if not target.path.startswith(base_path):
            return url
        return target.path[len(base_path):].lstrip("/")


def get_storage() -> R2Storage:
    return R2Storage()
