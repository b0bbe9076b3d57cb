"""Drop signal publishing with short-lived deduplication."""

import hashlib
import logging
from datetime import datetime
from typing import Optional

from dropwatch.config import settings
from dropwatch.db.models import SIGNAL_TYPES, DropEvent
from dropwatch.metrics import record_signal_published

logger = logging.getLogger(__name__)

DEDUPE_KEY_PREFIX = "dropsig"


class DropSignalPublisher:
    """Writes drop signals to the event stream, suppressing near-duplicates."""

    def __init__(self, session_factory, store, dedupe_ttl_seconds: Optional[int] = None):
        """
        Args:
            session_factory: Async session factory for the events table
            store: Shared counter store exposing set_if_absent(key, value, ttl)
            dedupe_ttl_seconds: Dedupe window (defaults to settings)
        """
        self.session_factory = session_factory
        self.store = store
        self.dedupe_ttl_seconds = dedupe_ttl_seconds or settings.drop_signal_dedupe_ttl_seconds

    @staticmethod
    def build_dedupe_key(
        product_id: str,
        retailer_id: str,
        signal_type: str,
        signal_value: Optional[str],
    ) -> str:
        """
        Generate the dedupe key for a signal.

        The value is hashed so long URLs don't end up in key names.
        """
        value_hash = hashlib.sha1((signal_value or "").encode()).hexdigest()[:10]
        return f"{DEDUPE_KEY_PREFIX}:{product_id}:{retailer_id}:{signal_type}:{value_hash}"

    async def _claim(self, key: str) -> bool:
        """Claim the dedupe key. Store errors let the signal through."""
        try:
            return await self.store.set_if_absent(key, "1", self.dedupe_ttl_seconds)
        except Exception as e:
            logger.debug(f"Signal dedupe unavailable for {key}: {e}")
            return True

    async def publish(
        self,
        product_id: str,
        retailer_id: str,
        signal_type: str,
        signal_value: Optional[str] = None,
        confidence: Optional[float] = None,
        source: Optional[str] = None,
        observed_at: Optional[datetime] = None,
    ) -> bool:
        """
        Publish a drop signal.

        Args:
            product_id: Product the signal is about
            retailer_id: Retailer the signal is about
            signal_type: One of url_seen, url_live, in_stock, price_present, status_change
            signal_value: Free-form value (URL, price, ...)
            confidence: Confidence 0-100
            source: Component that observed the signal
            observed_at: Observation time (defaults to now)

        Returns:
            True if a new event was written
        """
        if signal_type not in SIGNAL_TYPES:
            logger.warning(f"Ignoring unknown signal type '{signal_type}'")
            record_signal_published(signal_type, "rejected")
            return False

        key = self.build_dedupe_key(product_id, retailer_id, signal_type, signal_value)
        if not await self._claim(key):
            logger.debug(f"Duplicate {signal_type} signal for {product_id}@{retailer_id}")
            record_signal_published(signal_type, "duplicate")
            return False

        try:
            async with self.session_factory() as db:
                db.add(
                    DropEvent(
                        product_id=product_id,
                        retailer_id=retailer_id,
                        signal_type=signal_type,
                        signal_value=signal_value,
                        source=source,
                        confidence=confidence,
                        observed_at=observed_at or datetime.utcnow(),
                    )
                )
                await db.commit()
        except Exception as e:
            logger.warning(f"Failed to publish {signal_type} signal for {product_id}: {e}")
            record_signal_published(signal_type, "error")
            return False

        record_signal_published(signal_type, "published")
        return True
