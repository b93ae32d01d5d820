"""verse-reuse classify package.

Separates genuine scripture quotations from spurious matches::

    from versereuse.classify.features import Label, join_features, load_or_split
    from versereuse.classify.train import PREDICTOR_SETS, MODEL_FAMILIES, run_grid, select_model
    from versereuse.classify.threshold import select_threshold
    from versereuse.classify.model import ModelArtifact
    from versereuse.classify.pipeline import ClassificationPipeline
"""

from .features import Label, join_features, load_or_split
from .threshold import select_threshold
from .model import ModelArtifact
from .pipeline import ClassificationPipeline, predict_frame

__all__ = [
    "Label",
    "join_features",
    "load_or_split",
    "select_threshold",
    "ModelArtifact",
    "ClassificationPipeline",
    "predict_frame",
]
