"""Persisted model bundle: scaler + classifier + decision threshold."""
from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

import joblib
import numpy as np
import pandas as pd
from sklearn.pipeline import Pipeline

from .features import Label
from .train import base_features, build_matrix

BUNDLE_VERSION = 1


@dataclass
class ModelArtifact:
    """Everything needed to label new quotation candidates.

    ``pipeline`` holds the centring/scaling step fitted on the training
    partition followed by the classifier.
    """

    pipeline: Pipeline
    features: Tuple[str, ...]
    threshold: float
    family: str
    predictor_set: str
    params: Dict[str, Any]
    metrics: Dict[str, float] = field(default_factory=dict)
    created: str = field(default_factory=lambda: _dt.datetime.now(_dt.timezone.utc).isoformat())
    version: int = BUNDLE_VERSION

    @property
    def required_columns(self) -> List[str]:
        return base_features(self.features)

    def predict_proba(self, frame: pd.DataFrame) -> np.ndarray:
        """Probability that each row is a genuine quotation."""
        missing = [c for c in self.required_columns if c not in frame.columns]
        if missing:
            raise ValueError(f"Input is missing feature columns: {missing}")
        return self.pipeline.predict_proba(build_matrix(frame, self.features))[:, 1]

    def predict(self, frame: pd.DataFrame) -> List[Label]:
        """Label each row at the stored threshold."""
        prob = self.predict_proba(frame)
        return [Label.QUOTATION if p >= self.threshold else Label.NOISE for p in prob]

    # --------------------------------------------------
    # Persistence
    # --------------------------------------------------

    def save(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(self, path)
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ModelArtifact":
        obj = joblib.load(path)
        if not isinstance(obj, cls):
            raise TypeError(f"{path} does not contain a ModelArtifact (got {type(obj).__name__})")
        if obj.version != BUNDLE_VERSION:
            raise ValueError(f"{path}: bundle version {obj.version}, expected {BUNDLE_VERSION}")
        return obj
