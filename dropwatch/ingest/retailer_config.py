"""Layered per-retailer configuration for the candidate checker.

Each value is resolved from, in order:
1. the dynamic store (`config:url_candidate:<name>:<slug>`)
2. a per-retailer environment override (`URL_CANDIDATE_<NAME>_<SLUG>`)
3. the global setting
4. a hardcoded fallback
"""

import logging
from enum import Enum
from typing import Optional

from dropwatch.config import settings, retailer_env_override

logger = logging.getLogger(__name__)

FALLBACK_QPM = 6

CONFIG_PREFIX = "config:url_candidate"

_TRUE_VALUES = {"true", "1", "yes"}
_FALSE_VALUES = {"false", "0", "no"}


class RenderBehavior(str, Enum):
    """When to re-fetch a candidate with headless rendering."""

    ALWAYS = "always"
    ON_BLOCK = "on_block"
    NEVER = "never"


def _parse_positive_number(raw: Optional[str]) -> Optional[float]:
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def _parse_render_behavior(raw: Optional[str]) -> Optional[RenderBehavior]:
    if not raw:
        return None
    try:
        return RenderBehavior(raw.strip().lower())
    except ValueError:
        return None


def _parse_flag(raw: Optional[str]) -> Optional[bool]:
    if not raw:
        return None
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return None


class RetailerConfigResolver:
    """Resolves per-retailer checker settings from store, env and defaults."""

    def __init__(self, store):
        """
        Args:
            store: Shared counter/config store (get(key) -> str | None)
        """
        self._store = store

    async def _dynamic(self, name: str, slug: str) -> Optional[str]:
        """Read a dynamic value; store errors fall through to the next layer."""
        key = f"{CONFIG_PREFIX}:{name}:{slug}"
        try:
            return await self._store.get(key)
        except Exception as e:
            logger.debug(f"Config store unavailable for {key}: {e}")
            return None

    async def qpm(self, slug: str) -> float:
        """Allowed queries per minute for a retailer."""
        for name in ("qpm", "qpm_burst"):
            value = _parse_positive_number(await self._dynamic(name, slug))
            if value is not None:
                return value

        specific = _parse_positive_number(retailer_env_override("URL_CANDIDATE_QPM", slug))
        if specific is not None:
            return specific

        if settings.url_candidate_qpm_default > 0:
            return settings.url_candidate_qpm_default

        return FALLBACK_QPM

    async def render_behavior(self, slug: Optional[str]) -> RenderBehavior:
        """Render fallback policy for a retailer (default on_block)."""
        if not slug:
            return RenderBehavior.ON_BLOCK

        behavior = _parse_render_behavior(await self._dynamic("render_behavior", slug))
        if behavior is None:
            behavior = _parse_render_behavior(
                retailer_env_override("URL_CANDIDATE_RENDER_BEHAVIOR", slug)
            )
        return behavior or RenderBehavior.ON_BLOCK

    async def session_reuse(self, slug: Optional[str]) -> bool:
        """Whether fetches for this retailer keep a sticky session (default True)."""
        if not slug:
            return True

        flag = _parse_flag(await self._dynamic("session_reuse", slug))
        if flag is None:
            flag = _parse_flag(retailer_env_override("URL_CANDIDATE_SESSION_REUSE", slug))
        return True if flag is None else flag
