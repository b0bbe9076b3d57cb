"""Ground-truth drop outcome bookkeeping."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select

from dropwatch.db.models import DropOutcome

logger = logging.getLogger(__name__)

FIRST_SEEN_WINDOW = timedelta(hours=48)
FIRST_IN_STOCK_WINDOW = timedelta(hours=72)


class DropOutcomeRecorder:
    """Associates live/in-stock observations with drop outcomes."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    @staticmethod
    async def _recent_outcome(
        db,
        product_id: str,
        retailer_id: str,
        since: datetime,
    ) -> Optional[DropOutcome]:
        result = await db.execute(
            select(DropOutcome)
            .where(
                DropOutcome.product_id == product_id,
                DropOutcome.retailer_id == retailer_id,
                DropOutcome.drop_at >= since,
            )
            .order_by(DropOutcome.drop_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def record_first_seen(
        self,
        product_id: str,
        retailer_id: str,
        seen_at: Optional[datetime] = None,
    ) -> bool:
        """
        Record when a drop was first seen live.

        Attaches to the latest outcome of the pair dropped within the last
        48h, keeping the earliest first_seen_at; otherwise starts a new one.

        Returns:
            True if the outcome was written
        """
        seen_at = seen_at or datetime.utcnow()
        try:
            async with self.session_factory() as db:
                outcome = await self._recent_outcome(
                    db, product_id, retailer_id, seen_at - FIRST_SEEN_WINDOW
                )
                if outcome:
                    if outcome.first_seen_at is None or seen_at < outcome.first_seen_at:
                        outcome.first_seen_at = seen_at
                    outcome.updated_at = datetime.utcnow()
                else:
                    db.add(
                        DropOutcome(
                            product_id=product_id,
                            retailer_id=retailer_id,
                            drop_at=seen_at,
                            first_seen_at=seen_at,
                            success_flag=False,
                        )
                    )
                await db.commit()
        except Exception as e:
            logger.warning(f"record_first_seen failed for {product_id}@{retailer_id}: {e}")
            return False
        return True

    async def record_first_in_stock(
        self,
        product_id: str,
        retailer_id: str,
        in_stock_at: Optional[datetime] = None,
    ) -> bool:
        """
        Record the first in-stock observation of a drop.

        Not called by the candidate checker. Exposed for the stock monitors
        that write availability snapshots, which own first_instock_at.

        Attaches to the latest outcome dropped within the last 72h, keeps the
        earliest first_instock_at and derives the buy window from first_seen_at.

        Returns:
            True if the outcome was written
        """
        in_stock_at = in_stock_at or datetime.utcnow()
        try:
            async with self.session_factory() as db:
                outcome = await self._recent_outcome(
                    db, product_id, retailer_id, in_stock_at - FIRST_IN_STOCK_WINDOW
                )
                if outcome:
                    first_in = outcome.first_instock_at or in_stock_at
                    first_in = min(first_in, in_stock_at)
                    first_seen = outcome.first_seen_at or in_stock_at
                    outcome.first_instock_at = first_in
                    outcome.buy_window_sec = max(0, int((first_in - first_seen).total_seconds()))
                    outcome.updated_at = datetime.utcnow()
                else:
                    db.add(
                        DropOutcome(
                            product_id=product_id,
                            retailer_id=retailer_id,
                            drop_at=in_stock_at,
                            first_instock_at=in_stock_at,
                            success_flag=False,
                        )
                    )
                await db.commit()
        except Exception as e:
            logger.warning(f"record_first_in_stock failed for {product_id}@{retailer_id}: {e}")
            return False
        return True
