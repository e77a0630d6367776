"""Stock photo lookup for section and slide image keywords.

One resolver is created per generation: its cache lives exactly as long as
that generation. Lookups degrade to None on any failure and never raise.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

import httpx

from aiwriter.config import ImageSearchConfig
from aiwriter.models import normalize_keyword

logger = logging.getLogger(__name__)

# Preferred photo sizes, best first
VARIANT_PREFERENCE = ("medium", "large", "small")


def pick_variant(payload: Any) -> str | None:
    """Choose the photo URL from a search response body.

    Args:
        payload: Decoded JSON of the form {"photos": [{"src": {...}}]}.

    Returns:
        The medium URL if present, else large, else small, else None.
    """
    if not isinstance(payload, dict):
        return None
    photos = payload.get("photos") or []
    if not isinstance(photos, list) or not photos:
        return None
    src = photos[0].get("src") if isinstance(photos[0], dict) else None
    if not isinstance(src, dict):
        return None
    for variant in VARIANT_PREFERENCE:
        url = src.get(variant)
        if isinstance(url, str) and url:
            return url
    return None


class ImageResolver:
    """Resolves keywords to photo URLs with de-duplication and bounded concurrency."""

    def __init__(
        self,
        config: ImageSearchConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._client = client
        self._owns_client = client is None
        self._semaphore = asyncio.Semaphore(config.max_concurrency)
        self._cache: dict[str, str | None] = {}
        self._inflight: dict[str, asyncio.Task[str | None]] = {}
        self.lookups = 0

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.request_timeout),
                follow_redirects=True,
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "ImageResolver":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _headers(self) -> dict[str, str]:
        if self.config.api_key is None:
            return {}
        return {"Authorization": self.config.api_key.get_secret_value()}

    async def _search(self, keyword: str, orientation: str) -> str | None:
        async with self._semaphore:
            self.lookups += 1
            try:
                response = await asyncio.wait_for(
                    self._get_client().get(
                        f"{self.config.base_url}/search",
                        params={"query": keyword, "per_page": 1, "orientation": orientation},
                        headers=self._headers(),
                    ),
                    timeout=self.config.request_timeout,
                )
                response.raise_for_status()
                url = pick_variant(response.json())
            except httpx.HTTPStatusError as e:
                logger.warning(
                    "image_search_http_error",
                    extra={"keyword": keyword, "status_code": e.response.status_code},
                )
                return None
            except (httpx.RequestError, asyncio.TimeoutError, ValueError) as e:
                logger.warning(
                    "image_search_failed",
                    extra={"keyword": keyword, "error": repr(e)},
                )
                return None
        if url is None:
            logger.info("image_search_no_result", extra={"keyword": keyword})
        return url

    async def resolve(self, keyword: str, orientation: str | None = None) -> str | None:
        """Resolve one keyword; repeated keywords share one lookup.

        Args:
            keyword: Image keyword from a section or slide.
            orientation: Photo orientation; config default when None.

        Returns:
            Photo URL, or None when empty, not found or failed.
        """
        key = normalize_keyword(keyword)
        if not key:
            return None
        if key in self._cache:
            return self._cache[key]
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(
                self._search(key, orientation or self.config.orientation)
            )
            self._inflight[key] = task
        try:
            url = await task
        finally:
            self._inflight.pop(key, None)
        self._cache[key] = url
        return url

    async def resolve_all(self, keywords: Iterable[str]) -> dict[str, str | None]:
        """Resolve keywords concurrently within the stage timeout.

        Keywords beyond max_keywords, and lookups unfinished when the stage
        timeout expires, map to None.

        Returns:
            Mapping of normalized keyword to URL or None.
        """
        unique: dict[str, None] = {}
        for k in keywords:
            key = normalize_keyword(k)
            if key:
                unique.setdefault(key, None)
        ordered = list(unique)
        selected = ordered[: self.config.max_keywords]
        results: dict[str, str | None] = {key: None for key in ordered}
        if len(ordered) > len(selected):
            logger.info(
                "image_keywords_capped",
                extra={"requested": len(ordered), "max_keywords": self.config.max_keywords},
            )
        if not selected:
            return results

        tasks = {asyncio.ensure_future(self.resolve(key)): key for key in selected}
        done, pending = await asyncio.wait(tasks, timeout=self.config.stage_timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                "image_stage_timeout",
                extra={"unresolved": sorted(tasks[t] for t in pending)},
            )
        for task in done:
            if not task.cancelled() and task.exception() is None:
                results[tasks[task]] = task.result()
        return results
