"""Per-retailer hour-of-day drop propensity model.

Histograms the UTC hour of recent `url_live` / `in_stock` events per
retailer. The classifier trainer uses the normalized weights as its
hourly prior.
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy import select

from dropwatch.config import settings
from dropwatch.db.models import DropEvent, Retailer
from dropwatch.detect.artifacts import load_json, write_json_atomic

logger = logging.getLogger(__name__)

HOURS = 24
MAX_EVENTS = 100000
DROP_SIGNAL_TYPES = ("url_live", "in_stock")


class HourWeightModel:
    """Loads, trains and serves per-retailer hour weights."""

    def __init__(self, model_path: Optional[Path] = None):
        """
        Args:
            model_path: JSON model location (defaults to settings)
        """
        self.model_path = Path(model_path or settings.drop_window_model_path)
        self._model: Optional[dict] = None
        self._loaded = False

    def _ensure_loaded(self):
        if not self._loaded:
            self._model = load_json(self.model_path)
            self._loaded = True

    def get_retailer_hour_weights(self, slug: str) -> Optional[List[float]]:
        """24 weights summing to ~1 for a retailer, or None if unknown."""
        self._ensure_loaded()
        if not self._model:
            return None
        retailer = self._model.get("retailers", {}).get(slug)
        if not retailer:
            return None
        weights = retailer.get("hourWeights")
        if not isinstance(weights, list) or len(weights) != HOURS:
            return None
        return weights

    async def train(self, session_factory, horizon_days: Optional[int] = None) -> dict:
        """
        Rebuild the model from recent drop events and write it to disk.

        Args:
            session_factory: Async session factory
            horizon_days: How many days of events to use

        Returns:
            The written model
        """
        horizon_days = horizon_days or settings.drop_window_horizon_days
        start = datetime.utcnow() - timedelta(days=horizon_days)

        async with session_factory() as db:
            retailer_rows = await db.execute(select(Retailer.id, Retailer.slug))
            id_to_slug = {row.id: row.slug for row in retailer_rows}

            event_rows = await db.execute(
                select(DropEvent.retailer_id, DropEvent.observed_at)
                .where(
                    DropEvent.observed_at >= start,
                    DropEvent.signal_type.in_(DROP_SIGNAL_TYPES),
                )
                .limit(MAX_EVENTS)
            )
            events = event_rows.all()

        histograms: Dict[str, List[int]] = {}
        for retailer_id, observed_at in events:
            slug = id_to_slug.get(retailer_id)
            if not slug:
                continue
            histograms.setdefault(slug, [0] * HOURS)[observed_at.hour] += 1

        retailers = {}
        for slug, counts in histograms.items():
            total = sum(counts)
            retailers[slug] = {
                "hourWeights": [round(c / (total or 1), 6) for c in counts],
                "totalEvents": total,
            }

        model = {
            "trainedAt": datetime.utcnow().isoformat() + "Z",
            "horizonDays": horizon_days,
            "retailers": retailers,
        }
        write_json_atomic(self.model_path, model)
        self._model = model
        self._loaded = True

        logger.info(
            f"Hour weight model trained: {len(events)} events, {len(retailers)} retailers"
        )
        return model
