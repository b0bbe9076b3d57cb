"""Candidate URL liveness checker.

Walks a bounded batch of candidate product URLs, fetches each one (with a
headless render fallback for bot-checked pages), classifies the result and
nudges the candidate's persistent confidence score.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, update

from dropwatch.config import settings
from dropwatch.db.models import Retailer, UrlCandidate
from dropwatch.errors import BlockedResponseError, DefinitiveGoneError, TransientNetworkError
from dropwatch.ingest.fetchers.base import FetchResult
from dropwatch.ingest.rate_budget import RateBudgetGate
from dropwatch.ingest.retailer_config import RenderBehavior, RetailerConfigResolver
from dropwatch.ingest.signal_extractor import (
    BLOCKED_STATUS_CODES,
    body_to_text,
    evaluate,
    is_blocked_response,
    is_likely_product_page,
)
from dropwatch.logging_config import get_logger
from dropwatch.metrics import record_budget_skip, url_candidate_batch_duration_seconds

logger = logging.getLogger(__name__)

CHECKABLE_STATUSES = ("unknown", "valid")

GONE_STATUS_CODES = {404, 410}
FORBIDDEN_STATUS_CODES = {403, 429}

# Score nudges per outcome
LIVE_BOOST = 0.25
VALID_BOOST = 0.05
GONE_PENALTY = 0.3
DEGRADED_PENALTY = 0.05
ERROR_PENALTY = 0.02

LIVE_SIGNAL_CONFIDENCE = 85
SIGNAL_SOURCE = "url-candidate-checker"

GONE_ERROR_PATTERN = re.compile(r"\b(?:404|410)\b")
DEGRADED_ERROR_PATTERN = re.compile(
    r"403|429|timeout|timed out|ETIMEDOUT|ECONNRESET|ENOTFOUND|name resolution|connect",
    re.IGNORECASE,
)


def clamp01(value: float) -> float:
    """Clamp a score into [0, 1]."""
    return max(0.0, min(1.0, value))


@dataclass
class CandidateOutcome:
    """Classification of one candidate check."""

    status: str
    score: float
    reason: str
    live: bool = False
    signals: List[str] = field(default_factory=list)


@dataclass
class CheckBatchResult:
    """Aggregate counts of one check_batch call."""

    checked: int = 0
    live_found: int = 0


def classify_response(
    url: str,
    response: FetchResult,
    prior_score: float,
    rendered: bool = False,
) -> CandidateOutcome:
    """
    Classify the final response of a candidate fetch.

    Args:
        url: Candidate URL
        response: Final (possibly rendered) response
        prior_score: Score before this check
        rendered: The response came from the render fallback

    Returns:
        CandidateOutcome with the clamped new score
    """
    status_code = response.status

    if status_code in GONE_STATUS_CODES:
        return CandidateOutcome(
            status="invalid",
            score=clamp01(prior_score - GONE_PENALTY),
            reason=f"http_{status_code}",
        )

    if not 200 <= status_code < 300:
        return CandidateOutcome(
            status="unknown",
            score=clamp01(prior_score - DEGRADED_PENALTY),
            reason=f"http_{status_code}",
        )

    html = body_to_text(response.data)

    # A bot check served with 200 never reaches extraction unless a render replaced it
    if not rendered and is_blocked_response(status_code, html):
        return CandidateOutcome(
            status="unknown",
            score=clamp01(prior_score - DEGRADED_PENALTY),
            reason=f"http_{status_code}_blocked",
        )

    page = evaluate(url, html)
    product_page = is_likely_product_page(url, html)

    live = product_page and (page.is_live or (page.is_product and page.price_found))
    if live:
        return CandidateOutcome(
            status="live",
            score=clamp01(prior_score + LIVE_BOOST),
            reason=",".join(page.signals) or "live_detected",
            live=True,
            signals=page.signals,
        )

    return CandidateOutcome(
        status="valid",
        score=clamp01(prior_score + VALID_BOOST),
        reason=",".join(page.signals) or "reachable_no_live_cues",
        signals=page.signals,
    )


def classify_error(exc: Exception, prior_score: float) -> CandidateOutcome:
    """
    Classify a fetch failure by exception type, then status, then message.

    Args:
        exc: Raised exception
        prior_score: Score before this check

    Returns:
        CandidateOutcome with the clamped new score
    """
    status_code: Optional[int] = getattr(exc, "status", None)
    code: Optional[str] = getattr(exc, "code", None)
    message = str(exc) or type(exc).__name__

    if status_code is not None:
        reason = f"http_{status_code}"
    else:
        reason = code or message

    if isinstance(exc, DefinitiveGoneError) or status_code in GONE_STATUS_CODES:
        penalty = GONE_PENALTY
    elif isinstance(exc, (TransientNetworkError, BlockedResponseError)):
        penalty = DEGRADED_PENALTY
    elif status_code in FORBIDDEN_STATUS_CODES or status_code in BLOCKED_STATUS_CODES:
        penalty = DEGRADED_PENALTY
    elif status_code is None and GONE_ERROR_PATTERN.search(message):
        penalty = GONE_PENALTY
    elif DEGRADED_ERROR_PATTERN.search(f"{code or ''} {message}"):
        penalty = DEGRADED_PENALTY
    else:
        penalty = ERROR_PENALTY

    if penalty == GONE_PENALTY:
        return CandidateOutcome(
            status="invalid",
            score=clamp01(prior_score - GONE_PENALTY),
            reason=reason,
        )

    return CandidateOutcome(
        status="unknown",
        score=clamp01(prior_score - penalty),
        reason=reason,
    )


class CandidateChecker:
    """Checks a batch of candidate URLs one at a time."""

    def __init__(
        self,
        session_factory,
        fetcher,
        budget_gate: RateBudgetGate,
        config: RetailerConfigResolver,
        metrics_recorder,
        signal_publisher,
        outcome_recorder,
        timeout_ms: Optional[int] = None,
        render_timeout_ms: Optional[int] = None,
        delay_ms: Optional[int] = None,
    ):
        """
        Initialize checker.

        Args:
            session_factory: Async session factory for candidate/retailer tables
            fetcher: Object exposing get(url, timeout_ms, render, use_session)
            budget_gate: Per-retailer QPM gate
            config: Per-retailer render/session configuration
            metrics_recorder: Counter recorder (record(slug, counter))
            signal_publisher: Drop signal publisher
            outcome_recorder: Drop outcome recorder
            timeout_ms: Plain fetch timeout (defaults to settings)
            render_timeout_ms: Render fetch timeout (defaults to settings)
            delay_ms: Pacing delay between candidates (defaults to settings)
        """
        self.session_factory = session_factory
        self.fetcher = fetcher
        self.budget_gate = budget_gate
        self.config = config
        self.metrics_recorder = metrics_recorder
        self.signal_publisher = signal_publisher
        self.outcome_recorder = outcome_recorder
        self.timeout_ms = timeout_ms or settings.url_candidate_timeout_ms
        self.render_timeout_ms = max(
            self.timeout_ms,
            render_timeout_ms or settings.url_candidate_render_timeout_ms,
        )
        self.delay_ms = settings.url_candidate_delay_ms if delay_ms is None else delay_ms
        self._retailer_slugs: Optional[Dict[str, str]] = None

    async def get_retailer_slug(self, retailer_id: str) -> Optional[str]:
        """Resolve a retailer id to its slug (loaded once, then cached)."""
        if self._retailer_slugs is None:
            async with self.session_factory() as db:
                result = await db.execute(select(Retailer.id, Retailer.slug))
                self._retailer_slugs = {row.id: row.slug for row in result}
            logger.debug(f"Loaded {len(self._retailer_slugs)} retailer slugs")
        return self._retailer_slugs.get(retailer_id)

    def invalidate_retailer_cache(self):
        """Drop the cached retailer slugs; the next lookup reloads them."""
        self._retailer_slugs = None

    async def _record(self, slug: Optional[str], counter: str):
        if not slug:
            return
        try:
            await self.metrics_recorder.record(slug, counter)
        except Exception as e:
            logger.debug(f"Metrics record failed for {slug}/{counter}: {e}")

    async def _load_batch(self, limit: int) -> List[UrlCandidate]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(UrlCandidate)
                .where(UrlCandidate.status.in_(CHECKABLE_STATUSES))
                .order_by(UrlCandidate.updated_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def _persist(self, candidate_id: str, outcome: CandidateOutcome):
        now = datetime.utcnow()
        async with self.session_factory() as db:
            await db.execute(
                update(UrlCandidate)
                .where(UrlCandidate.id == candidate_id)
                .values(
                    status=outcome.status,
                    score=outcome.score,
                    reason=outcome.reason,
                    last_checked_at=now,
                    updated_at=now,
                )
            )
            await db.commit()

    async def _fetch(self, url: str, slug: Optional[str]) -> Tuple[FetchResult, bool]:
        """
        Plain fetch, then a rendered re-fetch per the retailer's render policy.

        Returns:
            (response, rendered) where rendered is True if the render fetch
            replaced the plain response
        """
        behavior = await self.config.render_behavior(slug)
        use_session = await self.config.session_reuse(slug)

        response = await self.fetcher.get(
            url, timeout_ms=self.timeout_ms, render=False, use_session=use_session
        )
        blocked = is_blocked_response(response.status, response.data)
        if blocked:
            await self._record(slug, "blocked")

        should_render = (
            behavior == RenderBehavior.ALWAYS
            or (behavior != RenderBehavior.NEVER and settings.url_candidate_force_render)
            or (
                behavior == RenderBehavior.ON_BLOCK
                and blocked
                and settings.url_candidate_render_on_block
            )
        )
        if not should_render:
            return response, False

        try:
            rendered_response = await self.fetcher.get(
                url, timeout_ms=self.render_timeout_ms, render=True, use_session=use_session
            )
        except Exception as e:
            logger.warning(f"Render fallback failed for {url}, keeping plain response: {e}")
            return response, False
        return rendered_response, True

    async def _apply_live_side_effects(self, candidate: UrlCandidate, log):
        """Outcome and signal writes for a live candidate. Failures never block the row update."""
        try:
            await self.outcome_recorder.record_first_seen(
                candidate.product_id, candidate.retailer_id, datetime.utcnow()
            )
        except Exception as e:
            log.warning(f"First-seen outcome not recorded for {candidate.url}: {e}")

        try:
            await self.signal_publisher.publish(
                product_id=candidate.product_id,
                retailer_id=candidate.retailer_id,
                signal_type="url_live",
                signal_value=candidate.url,
                confidence=LIVE_SIGNAL_CONFIDENCE,
                source=SIGNAL_SOURCE,
            )
        except Exception as e:
            log.warning(f"url_live signal not published for {candidate.url}: {e}")

    async def check_candidate(self, candidate: UrlCandidate) -> Optional[CandidateOutcome]:
        """
        Check one candidate and persist the result.

        Returns:
            The outcome, or None if the retailer's budget is exhausted
            (the row is left untouched)
        """
        slug = await self.get_retailer_slug(candidate.retailer_id)
        log = get_logger(__name__, retailer=slug, candidate_id=candidate.id)

        if slug:
            if not await self.budget_gate.allow(slug):
                log.debug(f"Budget exhausted for {slug}, skipping {candidate.url}")
                record_budget_skip(slug)
                return None
            await self._record(slug, "requests")

        prior_score = (
            candidate.score if candidate.score is not None else settings.url_candidate_default_score
        )

        try:
            response, rendered = await self._fetch(candidate.url, slug)
            outcome = classify_response(candidate.url, response, prior_score, rendered=rendered)
        except Exception as e:
            log.debug(f"Fetch failed for {candidate.url}: {e}")
            await self._record(slug, "errors")
            outcome = classify_error(e, prior_score)
        else:
            if outcome.live:
                log.info(f"Live candidate detected: {candidate.url} ({outcome.reason})")
                await self._record(slug, "live")
                await self._apply_live_side_effects(candidate, log)
            elif outcome.status == "valid":
                await self._record(slug, "valid")
            elif outcome.status == "invalid":
                await self._record(slug, "invalid")

        await self._persist(candidate.id, outcome)
        return outcome

    async def check_batch(self, limit: int = 25) -> CheckBatchResult:
        """
        Check up to `limit` candidates, oldest-updated first.

        Args:
            limit: Maximum candidates to evaluate

        Returns:
            CheckBatchResult with checked and live counts
        """
        started = time.monotonic()
        result = CheckBatchResult()

        candidates = await self._load_batch(limit)
        for candidate in candidates:
            try:
                outcome = await self.check_candidate(candidate)
            except Exception:
                logger.exception(f"Candidate check failed for {candidate.id} ({candidate.url})")
                continue

            if outcome is None:
                continue

            result.checked += 1
            if outcome.live:
                result.live_found += 1

            if self.delay_ms > 0:
                await asyncio.sleep(self.delay_ms / 1000)

        url_candidate_batch_duration_seconds.observe(time.monotonic() - started)
        logger.info(
            f"Candidate batch done: {result.checked}/{len(candidates)} checked, "
            f"{result.live_found} live"
        )
        return result
