"""Prometheus metrics for the drop-signal pipeline."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("dropwatch", "Drop watch application info")
app_info.info({"version": "0.1.0", "name": "dropwatch"})

# Candidate checker metrics
url_candidate_checks_total = Counter(
    "url_candidate_checks_total",
    "Candidate checker events per retailer",
    ["retailer", "counter"],
)

url_candidate_batch_duration_seconds = Histogram(
    "url_candidate_batch_duration_seconds",
    "Time spent on one candidate check batch",
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
)

url_candidate_fetch_duration_seconds = Histogram(
    "url_candidate_fetch_duration_seconds",
    "Time spent fetching a candidate URL",
    ["render"],
    buckets=[0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

url_candidate_budget_skips_total = Counter(
    "url_candidate_budget_skips_total",
    "Candidates skipped because the retailer budget was exhausted",
    ["retailer"],
)

# Drop signal metrics
drop_signals_published_total = Counter(
    "drop_signals_published_total",
    "Drop signals handed to the publisher",
    ["signal_type", "status"],
)

# Classifier training metrics
drop_classifier_auc = Gauge(
    "drop_classifier_auc",
    "Training-set AUC of the last drop classifier calibration",
)

drop_classifier_precision_at10 = Gauge(
    "drop_classifier_precision_at10",
    "Training-set precision@10% of the last drop classifier calibration",
)

drop_classifier_training_rows = Gauge(
    "drop_classifier_training_rows",
    "Samples used by the last drop classifier calibration",
)

# Scheduler metrics
scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler runs",
    ["job_type", "status"],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduler run",
    ["job_type"],
)


def record_candidate_event(retailer: str, counter: str):
    """Record a candidate checker counter (requests, blocked, live, ...)."""
    url_candidate_checks_total.labels(retailer=retailer, counter=counter).inc()


def record_budget_skip(retailer: str):
    """Record a candidate skipped by the budget gate."""
    url_candidate_budget_skips_total.labels(retailer=retailer).inc()


def record_fetch_duration(render: bool, duration: float):
    """Record how long a candidate fetch took."""
    url_candidate_fetch_duration_seconds.labels(render=str(render).lower()).observe(duration)


def record_signal_published(signal_type: str, status: str):
    """Record a drop signal publish outcome (published, duplicate, error)."""
    drop_signals_published_total.labels(signal_type=signal_type, status=status).inc()


def record_calibration(rows: int, auc: float, precision_at10: float):
    """Record quality metrics of a freshly trained calibrator."""
    drop_classifier_training_rows.set(rows)
    drop_classifier_auc.set(auc)
    drop_classifier_precision_at10.set(precision_at10)


def record_scheduler_run(job_type: str, success: bool):
    """Record a scheduler job run."""
    status = "success" if success else "error"
    scheduler_runs_total.labels(job_type=job_type, status=status).inc()
    scheduler_last_run_timestamp.labels(job_type=job_type).set(time.time())
