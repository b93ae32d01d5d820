"""Decision-threshold scan maximising Youden's J."""
from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


@dataclass
class ThresholdChoice:
    threshold: float
    j: float
    sensitivity: float
    specificity: float
    scan: pd.DataFrame


def threshold_grid(start: float = 0.5, stop: float = 1.0, step: float = 0.01) -> np.ndarray:
    """Thresholds from *start* in steps of *step*, never past *stop*.

    *stop* is included when a whole number of steps reaches it; values are
    rounded to shed float drift.
    """
    n = int(np.floor((stop - start) / step + 1e-9))
    return np.round(start + step * np.arange(n + 1), 10)


def scan_thresholds(
    y_true: np.ndarray,
    prob: np.ndarray,
    *,
    start: float = 0.5,
    stop: float = 1.0,
    step: float = 0.01,
) -> pd.DataFrame:
    """Sensitivity, specificity and J at each threshold; ``prob >= t`` is a quotation."""
    y_true = np.asarray(y_true, dtype=int)
    prob = np.asarray(prob, dtype=float)
    pos = y_true == 1
    neg = ~pos
    rows = []
    for t in threshold_grid(start, stop, step):
        pred = prob >= t
        tp = int(np.sum(pred & pos))
        tn = int(np.sum(~pred & neg))
        sens = tp / pos.sum() if pos.any() else 0.0
        spec = tn / neg.sum() if neg.any() else 0.0
        rows.append((float(t), float(sens), float(spec), float(sens + spec - 1.0)))
    return pd.DataFrame(rows, columns=["threshold", "sensitivity", "specificity", "j"])


def select_threshold(
    y_true: np.ndarray,
    prob: np.ndarray,
    *,
    start: float = 0.5,
    stop: float = 1.0,
    step: float = 0.01,
) -> ThresholdChoice:
    """Return the threshold with the highest J; the lowest such threshold on ties."""
    scan = scan_thresholds(y_true, prob, start=start, stop=stop, step=step)
    best = scan.loc[scan["j"].idxmax()]
    logger.info(
        "Threshold %.2f: J=%.4f (sensitivity=%.3f, specificity=%.3f)",
        best["threshold"], best["j"], best["sensitivity"], best["specificity"],
    )
    return ThresholdChoice(
        threshold=float(best["threshold"]),
        j=float(best["j"]),
        sensitivity=float(best["sensitivity"]),
        specificity=float(best["specificity"]),
        scan=scan,
    )
