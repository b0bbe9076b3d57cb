"""Per-retailer candidate checker counters."""

import logging
from datetime import datetime
from typing import Optional

from dropwatch.config import settings
from dropwatch.metrics import record_candidate_event

logger = logging.getLogger(__name__)

CANDIDATE_COUNTERS = ("requests", "blocked", "live", "valid", "invalid", "errors")

METRICS_KEY_PREFIX = "metrics:url_candidate"


class CandidateMetricsRecorder:
    """
    Records checker counters in Prometheus and in a per-day store hash.

    The store hash (`metrics:url_candidate:<YYYYMMDD>:<slug>`) lets other
    processes read daily totals without scraping this one.
    """

    def __init__(self, store, ttl_days: Optional[int] = None):
        self.store = store
        self.ttl_seconds = (ttl_days or settings.candidate_metrics_ttl_days) * 86400

    @staticmethod
    def daily_key(retailer_slug: str, day: Optional[datetime] = None) -> str:
        day = day or datetime.utcnow()
        return f"{METRICS_KEY_PREFIX}:{day.strftime('%Y%m%d')}:{retailer_slug}"

    async def record(self, retailer_slug: str, counter: str) -> bool:
        """
        Increment a checker counter.

        Args:
            retailer_slug: Retailer slug
            counter: One of requests, blocked, live, valid, invalid, errors

        Returns:
            True if the shared store was updated
        """
        if counter not in CANDIDATE_COUNTERS:
            logger.warning(f"Unknown candidate counter '{counter}'")
            return False

        record_candidate_event(retailer_slug, counter)

        try:
            await self.store.incr_counter(
                self.daily_key(retailer_slug), counter, self.ttl_seconds
            )
        except Exception as e:
            logger.debug(f"Failed to record {counter} for {retailer_slug}: {e}")
            return False
        return True
