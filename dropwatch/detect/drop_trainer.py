"""Drop classifier calibration trainer.

Builds `(raw score, label)` samples from the drop event history, fits the
logistic calibrator and writes it as a JSON artifact.

Sampling, per (product, retailer) pair with events in the lookback window:
- t steps forward by `sample_step_minutes` up to the pair's last event
- features come from `[t - history_window_days, t)`
- label is 1 if a url_live/in_stock event falls in `[t, t + horizon_minutes]`
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, select

from dropwatch.config import settings
from dropwatch.db.models import SIGNAL_TYPES, AvailabilitySnapshot, DropEvent, Retailer
from dropwatch.detect.artifacts import write_json_atomic
from dropwatch.detect.calibration import (
    DEFAULT_HOUR_WEIGHT,
    Calibrator,
    Sample,
    calibrate_samples,
    raw_score,
)
from dropwatch.detect.hour_weights import HourWeightModel
from dropwatch.metrics import record_calibration

logger = logging.getLogger(__name__)

MAX_PAIRS = 1000
LABEL_SIGNAL_TYPES = ("url_live", "in_stock")


def _bound(value: Optional[int], default: int, low: int, high: int) -> int:
    if value is None:
        value = default
    return max(low, min(int(value), high))


@dataclass
class TrainingWindow:
    """Bounded sampling parameters for one training run."""

    lookback_days: int
    horizon_minutes: int
    history_window_days: int
    sample_step_minutes: int
    max_samples: int

    @classmethod
    def bounded(
        cls,
        lookback_days: Optional[int] = None,
        horizon_minutes: Optional[int] = None,
        history_window_days: Optional[int] = None,
        sample_step_minutes: Optional[int] = None,
        max_samples: Optional[int] = None,
    ) -> "TrainingWindow":
        """Clamp inputs into their sane ranges, filling defaults from settings."""
        return cls(
            lookback_days=_bound(lookback_days, settings.drop_classifier_lookback_days, 7, 120),
            horizon_minutes=_bound(horizon_minutes, settings.drop_classifier_horizon_minutes, 30, 240),
            history_window_days=_bound(
                history_window_days, settings.drop_classifier_history_window_days, 1, 30
            ),
            sample_step_minutes=_bound(
                sample_step_minutes, settings.drop_classifier_sample_step_minutes, 30, 180
            ),
            max_samples=_bound(max_samples, settings.drop_classifier_max_samples, 500, 20000),
        )


class TrainingDatasetBuilder:
    """Database adapter producing training samples."""

    def __init__(self, session_factory, hour_weights: Optional[HourWeightModel] = None):
        self.session_factory = session_factory
        self.hour_weights = hour_weights or HourWeightModel()

    def _hour_weight(self, slug: Optional[str], at: datetime) -> float:
        weights = self.hour_weights.get_retailer_hour_weights(slug) if slug else None
        if not weights:
            return DEFAULT_HOUR_WEIGHT
        return weights[at.hour] or DEFAULT_HOUR_WEIGHT

    async def build(self, window: TrainingWindow, now: Optional[datetime] = None) -> List[Sample]:
        """
        Build samples for the given window.

        Args:
            window: Bounded sampling parameters
            now: Reference time (defaults to utcnow)

        Returns:
            List of (score, label) pairs, at most window.max_samples long
        """
        now = now or datetime.utcnow()
        lookback = timedelta(days=window.lookback_days)
        history = timedelta(days=window.history_window_days)
        horizon = timedelta(minutes=window.horizon_minutes)
        step = timedelta(minutes=window.sample_step_minutes)
        start = now - lookback

        samples: List[Sample] = []

        async with self.session_factory() as db:
            retailer_rows = await db.execute(select(Retailer.id, Retailer.slug))
            id_to_slug = {row.id: row.slug for row in retailer_rows}

            pair_rows = await db.execute(
                select(
                    DropEvent.product_id,
                    DropEvent.retailer_id,
                    func.max(DropEvent.observed_at).label("max_time"),
                )
                .where(DropEvent.observed_at >= start)
                .group_by(DropEvent.product_id, DropEvent.retailer_id)
                .limit(MAX_PAIRS)
            )
            pairs = pair_rows.all()

            for product_id, retailer_id, max_time in pairs:
                if len(samples) >= window.max_samples:
                    break

                events = (
                    await db.execute(
                        select(DropEvent.signal_type, DropEvent.observed_at).where(
                            DropEvent.product_id == product_id,
                            DropEvent.retailer_id == retailer_id,
                            DropEvent.observed_at >= start - history,
                        )
                    )
                ).all()
                snapshots = (
                    await db.execute(
                        select(AvailabilitySnapshot.snapshot_time, AvailabilitySnapshot.in_stock).where(
                            AvailabilitySnapshot.product_id == product_id,
                            AvailabilitySnapshot.retailer_id == retailer_id,
                            AvailabilitySnapshot.snapshot_time >= start - history,
                        )
                    )
                ).all()

                slug = id_to_slug.get(retailer_id)
                t = max(start, max_time - lookback)
                while t < max_time and len(samples) < window.max_samples:
                    hist_start = t - history

                    counts: Dict[str, int] = {signal_type: 0 for signal_type in SIGNAL_TYPES}
                    label = 0
                    for signal_type, observed_at in events:
                        if hist_start <= observed_at < t:
                            counts[signal_type] = counts.get(signal_type, 0) + 1
                        elif t <= observed_at <= t + horizon and signal_type in LABEL_SIGNAL_TYPES:
                            label = 1

                    window_snaps = [in_stock for snap_time, in_stock in snapshots if hist_start <= snap_time < t]
                    availability = (
                        sum(1 for in_stock in window_snaps if in_stock) / len(window_snaps)
                        if window_snaps
                        else 0.0
                    )

                    score = raw_score(counts, availability, self._hour_weight(slug, t + horizon))
                    samples.append((score, label))
                    t += step

        logger.info(f"Built {len(samples)} training samples from {len(pairs)} pairs")
        return samples


class DropClassifierTrainer:
    """
    Trains the drop classifier calibrator.

    Callers must not overlap runs; the scheduler runs this job with
    max_instances=1.
    """

    def __init__(
        self,
        session_factory=None,
        hour_weights: Optional[HourWeightModel] = None,
        artifact_path: Optional[Path] = None,
        dataset_builder: Optional[TrainingDatasetBuilder] = None,
    ):
        """
        Initialize trainer.

        Args:
            session_factory: Async session factory (needed by train())
            hour_weights: Hourly propensity model
            artifact_path: Calibration artifact location (defaults to settings)
            dataset_builder: Override for the database adapter
        """
        self.artifact_path = Path(artifact_path or settings.drop_classifier_calibration_path)
        self.dataset_builder = dataset_builder
        if self.dataset_builder is None and session_factory is not None:
            self.dataset_builder = TrainingDatasetBuilder(session_factory, hour_weights)

    async def train(
        self,
        lookback_days: Optional[int] = None,
        horizon_minutes: Optional[int] = None,
        history_window_days: Optional[int] = None,
        sample_step_minutes: Optional[int] = None,
        max_samples: Optional[int] = None,
    ) -> Optional[Calibrator]:
        """
        Build the dataset from history and train on it.

        Returns:
            The persisted Calibrator, or None on insufficient data
        """
        if self.dataset_builder is None:
            raise RuntimeError("DropClassifierTrainer.train() needs a session factory")

        window = TrainingWindow.bounded(
            lookback_days=lookback_days,
            horizon_minutes=horizon_minutes,
            history_window_days=history_window_days,
            sample_step_minutes=sample_step_minutes,
            max_samples=max_samples,
        )
        logger.info(f"Starting drop classifier training: {window}")

        samples = await self.dataset_builder.build(window)
        return self.train_from_samples(samples)

    def train_from_samples(self, samples: Sequence[Sample]) -> Optional[Calibrator]:
        """Fit, persist and report a calibrator from prebuilt samples."""
        calibrator = calibrate_samples(samples)
        if calibrator is None:
            return None

        self.save_artifact(calibrator)
        record_calibration(calibrator.rows, calibrator.auc, calibrator.precision_at10)
        logger.info(
            f"Drop classifier trained: a={calibrator.a:.4f} b={calibrator.b:.4f} "
            f"rows={calibrator.rows} auc={calibrator.auc} p@10={calibrator.precision_at10}"
        )
        return calibrator

    def save_artifact(self, calibrator: Calibrator) -> Path:
        """Overwrite the calibration artifact."""
        return write_json_atomic(self.artifact_path, calibrator.to_dict())
