"""
单词发音预取缓存（客户端侧）

两级缓存：
• AudioUrlCache   内存中的 (language, word) -> audio_url
• DiskAudioStore  以音频 URL 为键的本地文件缓存

AudioCache 对同一个键的并发请求只发起一次网络请求；
AudioPrefetcher 用有界队列 + 固定数量的 worker 预热一组单词，失败静默忽略，
cancel() 之后不再开始新的单词（已发出的请求会正常完成）。
"""
import asyncio
import hashlib
import os
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urljoin

import httpx

from core.config import cfg
from core.events import log_event, E
from core.log import get_logger

logger = get_logger(__name__)

DEFAULT_CONCURRENCY = 4
HTTP_TIMEOUT_SEC = 20.0

UrlKey = Tuple[str, str]


def cache_key(word: str, language: str) -> UrlKey:
    return (str(language or "").strip().lower(), str(word or "").strip().lower())


class AudioUrlCache:
    """(language, word) -> 音频 URL；生命周期由持有者决定"""

    def __init__(self):
        self._urls: Dict[UrlKey, str] = {}

    def get(self, word: str, language: str) -> Optional[str]:
        return self._urls.get(cache_key(word, language))

    def set(self, word: str, language: str, url: str) -> None:
        self._urls[cache_key(word, language)] = url

    def clear(self) -> None:
        self._urls.clear()

    def __len__(self) -> int:
        return len(self._urls)


class DiskAudioStore:
    def __init__(self, root: Optional[str] = None):
        self.root = root or cfg.get("audio.cache_dir", "data/audio-cache")
        os.makedirs(self.root, exist_ok=True)

    def path_for(self, url: str) -> str:
        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()
        return os.path.join(self.root, f"{digest}.mp3")

    def has(self, url: str) -> bool:
        return os.path.exists(self.path_for(url))

    def get(self, url: str) -> Optional[bytes]:
        path = self.path_for(url)
        if not os.path.exists(path):
            return None
        with open(path, "rb") as f:
            return f.read()

    def put(self, url: str, data: bytes) -> None:
        path = self.path_for(url)
        tmp = f"{path}.tmp"
        with open(tmp, "wb") as f:
            f.write(data)
        os.replace(tmp, path)


class AudioCache:
    """
    resolver(word, language) 返回音频 URL；不传时调用服务端
    POST {base_url}/api/audio/vocabulary 获取。
    """

    def __init__(
        self,
        base_url: str = "",
        client: Optional[httpx.AsyncClient] = None,
        url_cache: Optional[AudioUrlCache] = None,
        store: Optional[DiskAudioStore] = None,
        resolver: Optional[Callable[[str, str], Awaitable[str]]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._own_client = client is None
        self.client = client or httpx.AsyncClient(timeout=HTTP_TIMEOUT_SEC, follow_redirects=True)
        self.urls = url_cache if url_cache is not None else AudioUrlCache()
        self.store = store if store is not None else DiskAudioStore()
        self.resolver = resolver or self._resolve_remote
        self.headers = dict(headers or {})
        self._in_flight: Dict[Any, asyncio.Task] = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self) -> None:
        if self._own_client:
            await self.client.aclose()

    async def _shared(self, key: Any, factory: Callable[[], Awaitable[Any]]) -> Any:
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._in_flight[key] = task
            task.add_done_callback(lambda _t: self._in_flight.pop(key, None))
        return await asyncio.shield(task)

    async def _resolve_remote(self, word: str, language: str) -> str:
        resp = await self.client.post(
            f"{self.base_url}/api/audio/vocabulary",
            json={"word": word, "language": language},
            headers=self.headers,
        )
        resp.raise_for_status()
        body = resp.json() or {}
        data = body.get("data") if isinstance(body.get("data"), dict) else body
        audio_url = str(data.get("audio_url") or "")
        if not audio_url:
            raise ValueError(f"no audio url for {language}/{word}")
        return urljoin(f"{self.base_url}/", audio_url)

    async def resolve_url(self, word: str, language: str) -> str:
        cached = self.urls.get(word, language)
        if cached:
            return cached
        lang, norm_word = cache_key(word, language)

        async def _load():
            url = await self.resolver(norm_word, lang)
            self.urls.set(norm_word, lang, url)
            return url

        return await self._shared(("url", lang, norm_word), _load)

    async def ensure_cached(self, url: str) -> bool:
        """下载并缓存音频，返回缓存中是否已有该音频"""
        if not url:
            return False
        if self.store.has(url):
            return True

        async def _download():
            resp = await self.client.get(url, headers=self.headers)
            if resp.status_code >= 400:
                return False
            if "audio" not in resp.headers.get("content-type", ""):
                return False
            await asyncio.to_thread(self.store.put, url, resp.content)
            return True

        return await self._shared(("audio", url), _download)

    async def prefetch(self, word: str, language: str) -> bool:
        key = ("word",) + cache_key(word, language)

        async def _warm():
            url = await self.resolve_url(word, language)
            return await self.ensure_cached(url)

        return await self._shared(key, _warm)

    def get_cached_audio(self, url: str) -> Optional[bytes]:
        if not url:
            return None
        return self.store.get(url)


def _words_of(vocabulary: Iterable[Any]) -> List[str]:
    words = []
    seen = set()
    for item in vocabulary or []:
        word = item.get("word") if isinstance(item, dict) else item
        word = str(word or "").strip().lower()
        if word and word not in seen:
            seen.add(word)
            words.append(word)
    return words


class AudioPrefetcher:
    def __init__(self, cache: AudioCache, concurrency: Optional[int] = None, max_items: Optional[int] = None):
        self.cache = cache
        self.concurrency = max(1, int(concurrency or cfg.get("audio.prefetch_concurrency", DEFAULT_CONCURRENCY)))
        self.max_items = max_items
        self._cancelled = False
        self.fetched = 0
        self.failed = 0
        self.skipped = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    async def _worker(self, queue: asyncio.Queue, language: str) -> None:
        while True:
            word = await queue.get()
            try:
                if word is None:
                    return
                if self._cancelled:
                    self.skipped += 1
                    continue
                try:
                    if await self.cache.prefetch(word, language):
                        self.fetched += 1
                    else:
                        self.failed += 1
                except Exception as e:
                    self.failed += 1
                    logger.debug("音频预取失败: %s/%s %s", language, word, e)
            finally:
                queue.task_done()

    async def run(self, vocabulary: Iterable[Any], language: str) -> Dict[str, int]:
        self.fetched = self.failed = self.skipped = 0
        words = _words_of(vocabulary)
        if self.max_items is not None:
            words = words[: max(0, self.max_items)]
        language = str(language or "").strip().lower()
        if not words or not language:
            return {"total": 0, "fetched": 0, "failed": 0, "skipped": 0}

        log_event(logger, E.AUDIO_PREFETCH_START, language=language, total=len(words), concurrency=self.concurrency)
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.concurrency)
        workers = [asyncio.create_task(self._worker(queue, language)) for _ in range(self.concurrency)]
        try:
            for word in words:
                if self._cancelled:
                    self.skipped += 1
                    continue
                await queue.put(word)
            for _ in workers:
                await queue.put(None)
            await asyncio.gather(*workers)
        finally:
            # run 自身被取消时不留下游离的 worker
            for worker in workers:
                if not worker.done():
                    worker.cancel()

        summary = {
            "total": len(words),
            "fetched": self.fetched,
            "failed": self.failed,
            "skipped": self.skipped,
        }
        log_event(logger, E.AUDIO_PREFETCH_COMPLETE, language=language, **summary)
        return summary
