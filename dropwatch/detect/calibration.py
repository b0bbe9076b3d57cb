"""Logistic calibration of the heuristic drop score.

Numeric routines over `(score, label)` pairs, independent of storage:
- raw_score(): heuristic drop score from signal counts
- fit_logistic(): full-batch gradient descent for p = sigmoid(a*s + b)
- rank_auc() / precision_at_fraction(): training-set quality metrics
- calibrate_samples(): all of the above in one call
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

MIN_SAMPLES = 50
ITERATIONS = 200
LEARNING_RATE = 0.1
TOP_FRACTION = 0.1
DEFAULT_HOUR_WEIGHT = 1.0 / 24

Sample = Tuple[float, int]


def sigmoid(x):
    """Logistic function, vectorized."""
    return 1.0 / (1.0 + np.exp(-x))


def raw_score(
    counts: Dict[str, int],
    availability_ratio: float,
    hour_weight: float = DEFAULT_HOUR_WEIGHT,
) -> float:
    """
    Heuristic drop score for one sample.

    Args:
        counts: DropEvent counts per signal type in the history window
        availability_ratio: Fraction of in-stock snapshots in the window
        hour_weight: Retailer propensity for the target hour

    Returns:
        Uncalibrated score
    """
    return (
        1.5 * hour_weight
        + 0.8 * min(1.0, counts.get("url_live", 0) / 5)
        + 0.4 * min(1.0, counts.get("price_present", 0) / 10)
        + 0.3 * min(1.0, counts.get("status_change", 0) / 10)
        + 0.2 * min(1.0, counts.get("url_seen", 0) / 10)
        - 0.5 * max(0.0, 0.5 - availability_ratio)
    )


def fit_logistic(
    scores: Sequence[float],
    labels: Sequence[int],
    iterations: int = ITERATIONS,
    learning_rate: float = LEARNING_RATE,
) -> Tuple[float, float]:
    """Fit a and b of sigmoid(a*s + b) starting from a=1, b=0."""
    s = np.asarray(scores, dtype=float)
    y = np.asarray(labels, dtype=float)
    a, b = 1.0, 0.0
    for _ in range(iterations):
        p = sigmoid(a * s + b)
        error = p - y
        ga = float(np.mean(error * s))
        gb = float(np.mean(error))
        a -= learning_rate * ga
        b -= learning_rate * gb
    return a, b


def _average_ranks(values: np.ndarray) -> np.ndarray:
    """1-based ascending ranks, ties sharing their mean rank."""
    order = np.argsort(values, kind="mergesort")
    sorted_values = values[order]
    ranks = np.empty(len(values), dtype=float)
    i = 0
    n = len(values)
    while i < n:
        j = i
        while j + 1 < n and sorted_values[j + 1] == sorted_values[i]:
            j += 1
        ranks[order[i:j + 1]] = (i + j) / 2 + 1
        i = j + 1
    return ranks


def rank_auc(probs: Sequence[float], labels: Sequence[int]) -> float:
    """
    AUC via the rank-sum (Mann-Whitney U) formula.

    Returns 0.5 when either class is empty.
    """
    p = np.asarray(probs, dtype=float)
    positive = np.asarray(labels) == 1
    n_pos = int(positive.sum())
    n_neg = len(p) - n_pos
    if n_pos == 0 or n_neg == 0:
        return 0.5

    rank_sum = float(_average_ranks(p)[positive].sum())
    u = rank_sum - n_pos * (n_pos + 1) / 2
    return u / (n_pos * n_neg)


def precision_at_fraction(
    probs: Sequence[float],
    labels: Sequence[int],
    fraction: float = TOP_FRACTION,
) -> float:
    """Share of positives among the top `fraction` by probability (at least one sample)."""
    p = np.asarray(probs, dtype=float)
    y = np.asarray(labels)
    if len(p) == 0:
        return 0.0
    k = max(1, int(math.floor(len(p) * fraction)))
    top = np.argsort(-p, kind="stable")[:k]
    return float(np.mean(y[top] == 1))


@dataclass
class Calibrator:
    """Fitted calibration parameters plus training-set metrics."""

    a: float
    b: float
    rows: int
    auc: float
    precision_at10: float
    trained_at: datetime = field(default_factory=datetime.utcnow)

    def predict(self, score: float) -> float:
        """Calibrated drop probability for a raw score."""
        return float(sigmoid(self.a * score + self.b))

    def to_dict(self) -> dict:
        return {
            "a": self.a,
            "b": self.b,
            "trainedAt": self.trained_at.isoformat() + "Z",
            "metrics": {
                "rows": self.rows,
                "auc": self.auc,
                "precisionAt10": self.precision_at10,
            },
        }


def calibrate_samples(samples: Sequence[Sample]) -> Optional[Calibrator]:
    """
    Fit a calibrator on `(score, label)` pairs.

    Args:
        samples: Raw scores with 0/1 labels

    Returns:
        Calibrator, or None if fewer than MIN_SAMPLES pairs are given
    """
    if len(samples) < MIN_SAMPLES:
        logger.warning(
            f"Insufficient training data: {len(samples)} samples (need {MIN_SAMPLES})"
        )
        return None

    scores = [s for s, _ in samples]
    labels = [int(y) for _, y in samples]

    a, b = fit_logistic(scores, labels)
    probs = sigmoid(a * np.asarray(scores, dtype=float) + b)

    return Calibrator(
        a=a,
        b=b,
        rows=len(samples),
        auc=round(rank_auc(probs, labels), 4),
        precision_at10=round(precision_at_fraction(probs, labels), 4),
    )
