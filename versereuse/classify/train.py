"""Model grid for separating genuine quotations from noise.

Every grid cell is one (model family, predictor set, hyperparameter point).
A cell is scored from stratified k-fold out-of-fold probabilities on the
training partition, so the test partition is never touched here. Scaling
lives inside the sklearn ``Pipeline``, which fits the centre/scale statistics
on whatever rows the pipeline is fitted on and reuses them at predict time.
"""
from __future__ import annotations

import json
import logging
import math
import warnings
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.base import BaseEstimator
from sklearn.ensemble import RandomForestClassifier
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import accuracy_score, confusion_matrix, f1_score, roc_auc_score
from sklearn.model_selection import ParameterGrid, StratifiedKFold, cross_val_predict
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from .features import label_vector

logger = logging.getLogger(__name__)


class TrainingError(RuntimeError):
    """No grid cell produced a usable model."""


# -----------------------------------------------------------
# Registries
# -----------------------------------------------------------

# Feature-subset id -> explicit feature names. "a:b" is the product of a and b.
PREDICTOR_SETS: Dict[str, Tuple[str, ...]] = {
    "core": ("tokens", "tfidf", "proportion"),
    "core_runs": ("tokens", "tfidf", "proportion", "runs_pval"),
    "core_sim": ("tokens", "tfidf", "proportion", "sim_total", "sim_mean"),
    "core_runs_sim": ("tokens", "tfidf", "proportion", "runs_pval", "sim_total", "sim_mean"),
    "core_interactions": ("tokens", "tfidf", "proportion", "tokens:tfidf", "tokens:proportion", "tfidf:proportion"),
}

# Relative cost of computing each base feature for a new candidate.
FEATURE_COSTS: Dict[str, float] = {
    "tokens": 1.0,
    "tfidf": 1.0,
    "proportion": 1.0,
    "runs_pval": 3.0,
    "sim_total": 2.0,
    "sim_mean": 2.0,
}


@dataclass(frozen=True)
class ModelFamily:
    name: str
    factory: Callable[[], BaseEstimator]
    param_grid: Dict[str, List[Any]]


MODEL_FAMILIES: Dict[str, ModelFamily] = {
    "logistic": ModelFamily(
        name="logistic",
        factory=lambda: LogisticRegression(max_iter=1000),
        param_grid={"C": [0.01, 0.1, 1.0, 10.0]},
    ),
    "random_forest": ModelFamily(
        name="random_forest",
        factory=lambda: RandomForestClassifier(n_estimators=200, random_state=0),
        param_grid={"max_depth": [3, 6, None], "min_samples_leaf": [1, 5]},
    ),
}


def base_features(features: Sequence[str]) -> List[str]:
    """Distinct raw columns needed to build *features* (interactions expanded)."""
    out: List[str] = []
    for feat in features:
        for part in feat.split(":"):
            if part not in out:
                out.append(part)
    return out


def feature_cost(features: Sequence[str]) -> float:
    """Cost of a predictor set: each base feature counted once, interactions nearly free."""
    interactions = sum(1 for f in features if ":" in f)
    return sum(FEATURE_COSTS[f] for f in base_features(features)) + 0.1 * interactions


def build_matrix(frame: pd.DataFrame, features: Sequence[str]) -> np.ndarray:
    """Design matrix for *features*, one column each, in order."""
    cols = []
    for feat in features:
        parts = feat.split(":")
        col = frame[parts[0]].to_numpy(dtype=float)
        for part in parts[1:]:
            col = col * frame[part].to_numpy(dtype=float)
        cols.append(col)
    return np.column_stack(cols)


def make_pipeline(family: str, params: Dict[str, Any]) -> Pipeline:
    """Scaler + classifier, with *params* applied to the classifier."""
    model = MODEL_FAMILIES[family].factory()
    model.set_params(**params)
    return Pipeline([("scale", StandardScaler()), ("model", model)])


# -----------------------------------------------------------
# Metrics
# -----------------------------------------------------------


def classification_metrics(y_true: np.ndarray, prob: np.ndarray, threshold: float = 0.5) -> Dict[str, float]:
    """Accuracy, F1, Youden's J and ROC-AUC for probabilities *prob*."""
    pred = (prob >= threshold).astype(int)
    tn, fp, fn, tp = confusion_matrix(y_true, pred, labels=[0, 1]).ravel()
    sensitivity = tp / (tp + fn) if (tp + fn) else 0.0
    specificity = tn / (tn + fp) if (tn + fp) else 0.0
    try:
        auc = roc_auc_score(y_true, prob)
    except ValueError:  # a single class present
        auc = float("nan")
    return {
        "accuracy": float(accuracy_score(y_true, pred)),
        "f1": float(f1_score(y_true, pred, zero_division=0)),
        "j": float(sensitivity + specificity - 1.0),
        "roc_auc": float(auc),
        "sensitivity": float(sensitivity),
        "specificity": float(specificity),
    }


# -----------------------------------------------------------
# Grid
# -----------------------------------------------------------


@dataclass
class GridCell:
    cell: int
    family: str
    predictor_set: str
    params: Dict[str, Any]

    @property
    def features(self) -> Tuple[str, ...]:
        return PREDICTOR_SETS[self.predictor_set]


@dataclass
class CellResult:
    cell: GridCell
    metrics: Dict[str, float] = field(default_factory=dict)
    oof_prob: Optional[np.ndarray] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not math.isnan(self.metrics.get("roc_auc", float("nan")))

    def row(self) -> Dict[str, Any]:
        nan = float("nan")
        return {
            "cell": self.cell.cell,
            "family": self.cell.family,
            "predictor_set": self.cell.predictor_set,
            "params": json.dumps(self.cell.params, sort_keys=True),
            "cost": feature_cost(self.cell.features),
            "accuracy": self.metrics.get("accuracy", nan),
            "f1": self.metrics.get("f1", nan),
            "j": self.metrics.get("j", nan),
            "roc_auc": self.metrics.get("roc_auc", nan),
            "error": self.error,
        }


def build_grid(predictor_sets: Sequence[str], families: Sequence[str]) -> List[GridCell]:
    cells: List[GridCell] = []
    for family in families:
        for pset in predictor_sets:
            for params in ParameterGrid(MODEL_FAMILIES[family].param_grid):
                cells.append(GridCell(len(cells), family, pset, dict(params)))
    return cells


def evaluate_cell(cell: GridCell, train: pd.DataFrame, folds: int, seed: int) -> CellResult:
    """Score one grid cell with out-of-fold probabilities.

    Failures (including non-convergence) are returned as a result with an
    error message instead of being raised.
    """
    X = build_matrix(train, cell.features)
    y = label_vector(train["match"])
    cv = StratifiedKFold(n_splits=folds, shuffle=True, random_state=seed)
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            prob = cross_val_predict(make_pipeline(cell.family, cell.params), X, y, cv=cv, method="predict_proba")[:, 1]
    except (ValueError, ConvergenceWarning, np.linalg.LinAlgError) as e:
        logger.warning("Grid cell %d (%s/%s %s) failed: %s", cell.cell, cell.family, cell.predictor_set, cell.params, e)
        return CellResult(cell=cell, error=f"{type(e).__name__}: {e}")
    return CellResult(cell=cell, metrics=classification_metrics(y, prob), oof_prob=prob)


def run_grid(
    train: pd.DataFrame,
    cells: Sequence[GridCell],
    *,
    folds: int = 5,
    seed: int = 20,
    n_jobs: int = 1,
) -> List[CellResult]:
    """Evaluate every cell; cells are independent so they may run in parallel."""
    results = Parallel(n_jobs=n_jobs)(delayed(evaluate_cell)(cell, train, folds, seed) for cell in cells)
    failed = sum(1 for r in results if not r.ok)
    logger.info("Evaluated %d grid cells (%d failed)", len(results), failed)
    return list(results)


def results_frame(results: Sequence[CellResult]) -> pd.DataFrame:
    frame = pd.DataFrame([r.row() for r in results])
    frame["cell"] = frame["cell"].astype("int64")
    return frame


# -----------------------------------------------------------
# Selection
# -----------------------------------------------------------


def rank_results(results: Sequence[CellResult]) -> List[CellResult]:
    """Usable cells ordered by ROC-AUC, then J, then F1 (all descending)."""
    usable = [r for r in results if r.ok]
    return sorted(
        usable,
        key=lambda r: (-r.metrics["roc_auc"], -r.metrics["j"], -r.metrics["f1"], r.cell.cell),
    )


def select_model(results: Sequence[CellResult], tolerance: float = 0.005) -> CellResult:
    """Pick the final cell.

    Among cells whose ROC-AUC is within *tolerance* of the best, the cheapest
    predictor set wins; ties on cost keep the ROC-AUC/J/F1 order.
    """
    ranked = rank_results(results)
    if not ranked:
        raise TrainingError("Every grid cell failed; nothing to select")
    best_auc = ranked[0].metrics["roc_auc"]
    near = [r for r in ranked if r.metrics["roc_auc"] >= best_auc - tolerance]
    # min() keeps the first of equal-cost cells, i.e. the best ranked one.
    chosen = min(near, key=lambda r: feature_cost(r.cell.features))
    logger.info(
        "Selected cell %d (%s/%s %s): roc_auc=%.4f j=%.4f f1=%.4f; best roc_auc=%.4f",
        chosen.cell.cell, chosen.cell.family, chosen.cell.predictor_set, chosen.cell.params,
        chosen.metrics["roc_auc"], chosen.metrics["j"], chosen.metrics["f1"], best_auc,
    )
    return chosen


def fit_final(cell: GridCell, train: pd.DataFrame) -> Pipeline:
    """Refit the chosen cell on the whole training partition."""
    pipeline = make_pipeline(cell.family, cell.params)
    pipeline.fit(build_matrix(train, cell.features), label_vector(train["match"]))
    return pipeline
