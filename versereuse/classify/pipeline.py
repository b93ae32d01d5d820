"""Classification workflow: join, split, grid, selection, threshold, evaluation.

The test partition is read exactly twice in a run's lifetime: when it is
written by the split, and when the final model is scored on it. That score is
stored under ``test_report`` and returned as-is on later runs.
"""
from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import pandas as pd

from ..detector.output import ArtifactStore
from .features import Label, join_features, label_vector, load_or_split
from .model import ModelArtifact
from .threshold import select_threshold
from .train import (
    CellResult,
    TrainingError,
    build_grid,
    build_matrix,
    classification_metrics,
    fit_final,
    results_frame,
    run_grid,
    select_model,
)

if TYPE_CHECKING:  # pragma: no cover
    from ..stores import LabelStore, VerseStore

logger = logging.getLogger(__name__)


def evaluate_on_test(model: ModelArtifact, test: pd.DataFrame) -> Dict[str, float]:
    """Score *model* on the holdout at its stored threshold."""
    y = label_vector(test["match"])
    prob = model.pipeline.predict_proba(build_matrix(test, model.features))[:, 1]
    report = classification_metrics(y, prob, threshold=model.threshold)
    report["threshold"] = model.threshold
    report["n"] = float(len(test))
    return report


class ClassificationPipeline:
    """Labelled quotation candidates in, a persisted :class:`ModelArtifact` out."""

    def __init__(
        self,
        verse_store: "VerseStore",
        label_store: "LabelStore",
        artifacts: ArtifactStore,
        config: Dict[str, Any],
        verbose: bool = True,
    ):
        self.verse_store = verse_store
        self.label_store = label_store
        self.artifacts = artifacts
        self.config = config
        self.settings = config["classify"]
        self.verbose = verbose
        self.drop_counts: Dict[str, int] = {}

    # --------------------------------------------------
    # Stages
    # --------------------------------------------------

    def _verse_summary(self) -> pd.DataFrame:
        summary = self.verse_store.summary()
        if summary is None and self.artifacts.has("verse_similarity"):
            summary = self.artifacts.load("verse_similarity")
        if summary is None:
            raise RuntimeError("No verse similarity summary found; run the similarity pipeline first")
        return summary

    def labeled(self) -> pd.DataFrame:
        def compute() -> pd.DataFrame:
            frame, counts = join_features(
                self.label_store.labels(),
                self.label_store.measurements(),
                self.verse_store.groups(),
                self._verse_summary(),
                derivative_groups=self.settings["derivative_groups"],
                required_features=self.settings["required_features"],
            )
            self.artifacts.save("drop_counts", counts)
            return frame

        frame = self.artifacts.get_or_compute("labeled", compute)
        # Reused ``labeled`` tables keep their drop counts.
        if self.artifacts.has("drop_counts"):
            self.drop_counts = dict(self.artifacts.load("drop_counts"))
        return frame

    def split(self):
        return load_or_split(
            self.artifacts,
            self.labeled(),
            test_size=float(self.settings["test_size"]),
            seed=int(self.settings["seed"]),
        )

    def grid(self, train: pd.DataFrame) -> List[CellResult]:
        if self.artifacts.has("grid"):
            logger.info("Reusing stored grid results")
            return self.artifacts.load("grid")
        cells = build_grid(self.settings["predictor_sets"], self.settings["families"])
        logger.info("Fitting %d grid cells on %d training rows", len(cells), len(train))
        results = run_grid(
            train,
            cells,
            folds=int(self.settings["cv_folds"]),
            seed=int(self.settings["seed"]),
            n_jobs=int(self.settings["n_jobs"]),
        )
        self.artifacts.save("grid", results)
        self.artifacts.save("grid_results", results_frame(results))
        return results

    def model(self, train: pd.DataFrame) -> ModelArtifact:
        def compute() -> ModelArtifact:
            chosen = select_model(self.grid(train), tolerance=float(self.settings["tolerance"]))
            thr = self.settings["threshold"]
            choice = select_threshold(
                label_vector(train["match"]),
                chosen.oof_prob,
                start=float(thr["start"]),
                stop=float(thr["stop"]),
                step=float(thr["step"]),
            )
            metrics = dict(chosen.metrics)
            metrics.update({"threshold_j": choice.j, "threshold_sensitivity": choice.sensitivity,
                            "threshold_specificity": choice.specificity})
            return ModelArtifact(
                pipeline=fit_final(chosen.cell, train),
                features=chosen.cell.features,
                threshold=choice.threshold,
                family=chosen.cell.family,
                predictor_set=chosen.cell.predictor_set,
                params=chosen.cell.params,
                metrics=metrics,
            )

        return self.artifacts.get_or_compute("model", compute)

    def test_report(self, model: ModelArtifact, test: pd.DataFrame) -> Dict[str, float]:
        return self.artifacts.get_or_compute("test_report", lambda: evaluate_on_test(model, test))

    # --------------------------------------------------
    # Run
    # --------------------------------------------------

    def run(self) -> Dict[str, Any]:
        start = time.time()
        train, test = self.split()
        if train["match"].nunique() < 2:
            raise TrainingError("Training partition holds a single class")
        model = self.model(train)
        report = self.test_report(model, test)

        stats = {
            "processing_time_seconds": time.time() - start,
            "drop_counts": dict(self.drop_counts),
            "train_rows": len(train),
            "test_rows": len(test),
            "family": model.family,
            "predictor_set": model.predictor_set,
            "params": model.params,
            "threshold": model.threshold,
            "train_metrics": model.metrics,
            "test_metrics": report,
        }
        if self.verbose:
            self._print_final_stats(stats)
        return stats

    def _print_final_stats(self, stats: Dict[str, Any]) -> None:
        print("\n" + "=" * 60)
        print("📊 CLASSIFICATION COMPLETE")
        print("=" * 60)
        print(f"⏱️  Processing Time: {stats['processing_time_seconds']:.2f}s")
        if stats["drop_counts"]:
            print("🗑️  Dropped:")
            for reason, count in stats["drop_counts"].items():
                print(f"   - {reason}: {count:,}")
        print(f"📥 Train / test: {stats['train_rows']:,} / {stats['test_rows']:,}")
        print(f"🏆 Model: {stats['family']} on '{stats['predictor_set']}' {stats['params']}")
        print(f"🎚️  Threshold: {stats['threshold']:.2f}")
        tm = stats["test_metrics"]
        print(f"🧪 Test: accuracy={tm['accuracy']:.3f} f1={tm['f1']:.3f} "
              f"J={tm['j']:.3f} roc_auc={tm['roc_auc']:.3f}")


def predict_frame(model: ModelArtifact, frame: pd.DataFrame, threshold: Optional[float] = None) -> pd.DataFrame:
    """Return *frame* with ``probability`` and ``prediction`` columns added."""
    out = frame.copy()
    out["probability"] = model.predict_proba(frame)
    cut = model.threshold if threshold is None else threshold
    out["prediction"] = [
        (Label.QUOTATION if p >= cut else Label.NOISE).value for p in out["probability"]
    ]
    return out
