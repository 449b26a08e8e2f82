"""
core/selection.py

Two-tier key/value store for per-subscription selection flags:

  Tier 1 - JSON file (always available, survives restarts)
  Tier 2 - Redis (optional; enabled when REDIS_URL is set)

Keys are ``filter_<name>``; values are booleans.
Read order:  Redis -> file.  Write order: file + Redis (if available).
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from .errors import PersistError
from .storage import atomic_write_text

logger = logging.getLogger(__name__)

REDIS_PREFIX = "flmcp:"


# ---------------------------------------------------------------------------
# Tier 1: JSON file
# ---------------------------------------------------------------------------

class _FileStore:
    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path).expanduser()

    async def load(self) -> Dict[str, bool]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning("Selection store unreadable (%s): %s", self._path, exc)
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Selection store is not valid JSON (%s): %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            return {}
        # only real booleans; anything else falls back to the catalog default
        return {str(k): v for k, v in data.items() if isinstance(v, bool)}

    async def save(self, flags: Mapping[str, bool]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_text(self._path, json.dumps(dict(flags), indent=2, sort_keys=True) + "\n")
        except OSError as exc:
            raise PersistError(f"Unable to save selection to {self._path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Tier 2: Redis (optional)
# ---------------------------------------------------------------------------

class _RedisStore:
    def __init__(self, url: str) -> None:
        self._url = url
        self._client: Any = None

    async def _get_client(self) -> Any:
        if self._client is None:
            try:
                import redis.asyncio as aioredis  # type: ignore
                self._client = aioredis.from_url(self._url, decode_responses=True)
                await self._client.ping()
                logger.info("Redis selection store connected: %s", self._url)
            except Exception as exc:
                logger.warning("Redis unavailable (%s), using file store only", exc)
                self._client = None
        return self._client

    async def load(self, keys: Sequence[str]) -> Optional[Dict[str, bool]]:
        if not keys:
            return None
        client = await self._get_client()
        if client is None:
            return None
        try:
            values = await client.mget([f"{REDIS_PREFIX}{k}" for k in keys])
            flags = {k: v == "1" for k, v in zip(keys, values) if v is not None}
            return flags or None
        except Exception as exc:
            logger.debug("Redis load error: %s", exc)
            return None

    async def save(self, flags: Mapping[str, bool]) -> None:
        client = await self._get_client()
        if client is None:
            return
        try:
            await client.mset({f"{REDIS_PREFIX}{k}": "1" if v else "0" for k, v in flags.items()})
        except Exception as exc:
            logger.debug("Redis save error: %s", exc)


# ---------------------------------------------------------------------------
# Unified store facade
# ---------------------------------------------------------------------------

class SelectionStore:
    """Persists ``filter_<name>`` -> bool for every subscription."""

    def __init__(self, path: Union[str, Path], redis_url: str = "") -> None:
        self._file = _FileStore(path)
        self._redis = _RedisStore(redis_url) if redis_url else None

    async def load(self, keys: Sequence[str] = ()) -> Dict[str, bool]:
        """Return the stored flags.  The Redis tier is read for *keys* only."""
        if self._redis:
            flags = await self._redis.load(keys)
            if flags is not None:
                return flags
        return await self._file.load()

    async def save(self, flags: Mapping[str, bool]) -> None:
        await self._file.save(flags)
        if self._redis:
            await self._redis.save(flags)

    @property
    def redis_enabled(self) -> bool:
        return self._redis is not None
