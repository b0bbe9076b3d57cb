"""Background jobs for the drop-signal pipeline."""

import logging
from typing import Optional

from dropwatch.config import settings
from dropwatch.db.session import AsyncSessionLocal
from dropwatch.detect.calibration import Calibrator
from dropwatch.detect.drop_trainer import DropClassifierTrainer
from dropwatch.detect.hour_weights import HourWeightModel
from dropwatch.ingest.candidate_checker import CandidateChecker, CheckBatchResult
from dropwatch.ingest.counter_store import RedisCounterStore
from dropwatch.ingest.fetchers import HttpFetcher
from dropwatch.ingest.rate_budget import RateBudgetGate
from dropwatch.ingest.retailer_config import RetailerConfigResolver
from dropwatch.metrics import record_scheduler_run
from dropwatch.notify.candidate_metrics import CandidateMetricsRecorder
from dropwatch.notify.outcome_recorder import DropOutcomeRecorder
from dropwatch.notify.signal_publisher import DropSignalPublisher

logger = logging.getLogger(__name__)


class TaskRunner:
    """
    Runner for background tasks.

    Owns the long-lived collaborators (counter store, fetchers, checker)
    so scheduled runs share one Redis connection and one browser.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or AsyncSessionLocal
        self.store: Optional[RedisCounterStore] = None
        self.fetcher: Optional[HttpFetcher] = None
        self.checker: Optional[CandidateChecker] = None
        self.hour_weights = HourWeightModel()

    async def initialize(self):
        """Initialize task runner."""
        self.store = RedisCounterStore(settings.redis_url)
        self.fetcher = HttpFetcher()
        config = RetailerConfigResolver(self.store)

        self.checker = CandidateChecker(
            session_factory=self.session_factory,
            fetcher=self.fetcher,
            budget_gate=RateBudgetGate(self.store, config),
            config=config,
            metrics_recorder=CandidateMetricsRecorder(self.store),
            signal_publisher=DropSignalPublisher(self.session_factory, self.store),
            outcome_recorder=DropOutcomeRecorder(self.session_factory),
        )
        logger.info(f"Task runner initialized (fetch provider: {self.fetcher.provider})")

    async def close(self):
        """Clean up resources."""
        if self.fetcher:
            await self.fetcher.close()
            self.fetcher = None
        if self.store:
            await self.store.close()
            self.store = None
        self.checker = None

    async def run_candidate_checks(self, limit: Optional[int] = None) -> Optional[CheckBatchResult]:
        """Check one batch of candidate URLs."""
        if self.checker is None:
            await self.initialize()

        try:
            result = await self.checker.check_batch(limit or settings.url_candidate_batch_size)
        except Exception as e:
            logger.error(f"Candidate check batch failed: {e}", exc_info=True)
            record_scheduler_run("candidate_check", success=False)
            return None

        record_scheduler_run("candidate_check", success=True)
        return result

    async def train_hour_weights(self) -> Optional[dict]:
        """Rebuild the per-retailer hour weight model."""
        try:
            model = await self.hour_weights.train(self.session_factory)
        except Exception as e:
            logger.error(f"Hour weight training failed: {e}", exc_info=True)
            record_scheduler_run("hour_weights", success=False)
            return None

        record_scheduler_run("hour_weights", success=True)
        return model

    async def train_drop_classifier(self, **window) -> Optional[Calibrator]:
        """
        Train and persist the drop classifier calibrator.

        Args:
            **window: Optional lookback_days, horizon_minutes, history_window_days,
                sample_step_minutes, max_samples

        Returns:
            Calibrator, or None on insufficient data or failure
        """
        trainer = DropClassifierTrainer(self.session_factory, hour_weights=self.hour_weights)
        try:
            calibrator = await trainer.train(**window)
        except Exception as e:
            logger.error(f"Drop classifier training failed: {e}", exc_info=True)
            record_scheduler_run("drop_classifier", success=False)
            return None

        if calibrator is None:
            logger.warning("Drop classifier not updated: insufficient training data")
        record_scheduler_run("drop_classifier", success=True)
        return calibrator


# Global task runner instance
task_runner = TaskRunner()
