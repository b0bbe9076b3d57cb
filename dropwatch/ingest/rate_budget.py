"""Per-retailer query budget gate backed by the shared counter store."""

import logging
from typing import Optional

from dropwatch.ingest.retailer_config import RetailerConfigResolver

logger = logging.getLogger(__name__)

BUDGET_KEY_PREFIX = "candqpm"


class RateBudgetGate:
    """
    Token-bucket style budget per retailer over a 60 second sliding window.

    Fails open: if the counter backend is unreachable the check is allowed,
    since keeping the checker running matters more than the exact schedule.
    """

    WINDOW_SECONDS = 60

    def __init__(
        self,
        store,
        config: Optional[RetailerConfigResolver] = None,
    ):
        """
        Args:
            store: Shared counter store exposing rate_limit(key, window, limit)
            config: Resolver for per-retailer QPM (defaults to one over `store`)
        """
        self._store = store
        self._config = config or RetailerConfigResolver(store)

    async def allow(self, retailer_slug: str) -> bool:
        """
        Consume one token from the retailer's budget.

        Args:
            retailer_slug: Retailer slug (e.g. "walmart")

        Returns:
            True if the request may proceed
        """
        try:
            qpm = await self._config.qpm(retailer_slug)
            result = await self._store.rate_limit(
                f"{BUDGET_KEY_PREFIX}:{retailer_slug}",
                self.WINDOW_SECONDS,
                max(1, int(qpm)),
            )
        except Exception as e:
            logger.warning(f"Budget check failed for {retailer_slug}, allowing: {e}")
            return True

        if result.is_limited:
            logger.debug(
                f"Budget exhausted for {retailer_slug}: {result.count}/{int(qpm)} per minute"
            )
        return not result.is_limited
