from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from hashlib import sha256
from pathlib import Path
from typing import Any

from loguru import logger

from briefly.models.research import Article
from briefly.tools.web_utils import canonical_url

CACHE_VERSION = 1


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _cache_key(url: str) -> str:
    material = f"v{CACHE_VERSION}|{canonical_url(url)}"
    return sha256(material.encode("utf-8")).hexdigest()


@dataclass
class CacheStats:
    entries: int
    fresh: int
    total_bytes: int


class ContentCache:
    """URL-keyed article cache, one JSON file per URL.

    Writes land in a temp file and are moved into place, so concurrent
    writers for different URLs never see each other's partial files.
    """

    def __init__(self, cache_dir: str | Path, *, enabled: bool = True):
        self.cache_dir = Path(cache_dir)
        self.enabled = enabled

    def path_for(self, url: str) -> Path:
        return self.cache_dir / f"{_cache_key(url)}.json"

    def get_fresh(self, url: str, ttl: timedelta) -> Article | None:
        """Return the cached article if it was fetched within ``ttl``."""
        if not self.enabled or ttl <= timedelta(0):
            return None

        payload = self._read(self.path_for(url))
        if payload is None:
            return None

        fetched_at_raw = payload.get("fetched_at")
        if not isinstance(fetched_at_raw, str):
            return None
        try:
            fetched_at = datetime.fromisoformat(fetched_at_raw)
        except ValueError:
            return None
        if fetched_at.tzinfo is None:
            fetched_at = fetched_at.replace(tzinfo=timezone.utc)

        if _utc_now() - fetched_at >= ttl:
            return None

        article = payload.get("article")
        if not isinstance(article, dict):
            return None
        try:
            cached = Article.model_validate(article)
        except ValueError:
            return None
        if not cached.cleaned_text.strip():
            return None
        return cached.model_copy(update={"from_cache": True})

    def upsert(self, article: Article) -> None:
        if not self.enabled:
            return
        path = self.path_for(article.url)
        path.parent.mkdir(parents=True, exist_ok=True)

        payload = {
            "version": CACHE_VERSION,
            "url": canonical_url(article.url),
            "fetched_at": article.fetched_at.isoformat(),
            "article": article.model_dump(mode="json", exclude={"from_cache"}),
        }
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=True)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def invalidate(self, url: str) -> bool:
        path = self.path_for(url)
        if path.exists():
            path.unlink()
            return True
        return False

    def clear(self) -> int:
        if not self.cache_dir.exists():
            return 0
        removed = 0
        for path in self.cache_dir.glob("*.json"):
            path.unlink(missing_ok=True)
            removed += 1
        return removed

    def stats(self, ttl: timedelta) -> CacheStats:
        entries = fresh = total_bytes = 0
        if not self.cache_dir.exists():
            return CacheStats(0, 0, 0)
        now = _utc_now()
        for path in self.cache_dir.glob("*.json"):
            entries += 1
            total_bytes += path.stat().st_size
            payload = self._read(path)
            if not payload:
                continue
            try:
                fetched_at = datetime.fromisoformat(str(payload.get("fetched_at")))
            except ValueError:
                continue
            if fetched_at.tzinfo is None:
                fetched_at = fetched_at.replace(tzinfo=timezone.utc)
            if now - fetched_at < ttl:
                fresh += 1
        return CacheStats(entries=entries, fresh=fresh, total_bytes=total_bytes)

    @staticmethod
    def _read(path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.debug(f"Ignoring unreadable cache entry {path.name}: {exc}")
            return None
        if not isinstance(payload, dict) or payload.get("version") != CACHE_VERSION:
            return None
        return payload
