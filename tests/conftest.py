"""Shared fixtures: temporary SQLite database and in-memory fakes."""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Optional, Union

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from dropwatch.db.models import Base, Retailer, UrlCandidate
from dropwatch.ingest.counter_store import RateLimitResult
from dropwatch.ingest.fetchers.base import FetchResult


class FakeCounterStore:
    """In-memory stand-in for RedisCounterStore."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.values: Dict[str, str] = {}
        self.hashes: Dict[str, Dict[str, int]] = defaultdict(dict)
        self.windows: Dict[str, int] = defaultdict(int)
        self.rate_limit_calls = []

    def _check(self):
        if self.fail:
            raise ConnectionError("counter store unavailable")

    async def get(self, key: str) -> Optional[str]:
        self._check()
        return self.values.get(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        self._check()
        self.values[key] = value

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        self._check()
        if key in self.values:
            return False
        self.values[key] = value
        return True

    async def incr_counter(self, key: str, field: str, ttl_seconds: int) -> int:
        self._check()
        self.hashes[key][field] = self.hashes[key].get(field, 0) + 1
        return self.hashes[key][field]

    async def rate_limit(self, key: str, window_seconds: int, limit: int) -> RateLimitResult:
        self._check()
        self.rate_limit_calls.append((key, window_seconds, limit))
        count = self.windows[key] + 1
        if count > limit:
            return RateLimitResult(count=count - 1, is_limited=True, reset_at=0.0)
        self.windows[key] = count
        return RateLimitResult(count=count, is_limited=False, reset_at=0.0)


Response = Union[FetchResult, Exception]


class FakeFetcher:
    """Serves canned responses per URL, separately for plain and rendered fetches."""

    def __init__(
        self,
        plain: Optional[Dict[str, Response]] = None,
        rendered: Optional[Dict[str, Response]] = None,
    ):
        self.plain = plain or {}
        self.rendered = rendered or {}
        self.calls = []

    async def get(self, url: str, timeout_ms: int, render: bool = False, use_session: bool = True):
        self.calls.append({"url": url, "timeout_ms": timeout_ms, "render": render, "use_session": use_session})
        table = self.rendered if render else self.plain
        response = table.get(url)
        if response is None:
            raise AssertionError(f"unexpected {'rendered' if render else 'plain'} fetch of {url}")
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self):
        pass


@pytest.fixture
async def session_factory(tmp_path):
    """Async session factory bound to a fresh SQLite file database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def store():
    return FakeCounterStore()


async def seed_retailer(session_factory, slug: str, retailer_id: Optional[str] = None) -> str:
    async with session_factory() as db:
        retailer = Retailer(slug=slug, name=slug.title())
        if retailer_id:
            retailer.id = retailer_id
        db.add(retailer)
        await db.commit()
        return retailer.id


async def seed_candidate(
    session_factory,
    retailer_id: str,
    url: str,
    product_id: str = "prod-1",
    status: str = "unknown",
    score: Optional[float] = 0.5,
    updated_at: Optional[datetime] = None,
) -> str:
    async with session_factory() as db:
        candidate = UrlCandidate(
            product_id=product_id,
            retailer_id=retailer_id,
            url=url,
            status=status,
            score=score,
            updated_at=updated_at or datetime.utcnow() - timedelta(hours=1),
        )
        db.add(candidate)
        await db.commit()
        return candidate.id


async def load_candidate(session_factory, candidate_id: str) -> UrlCandidate:
    async with session_factory() as db:
        return await db.get(UrlCandidate, candidate_id)
