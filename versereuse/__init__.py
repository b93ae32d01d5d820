"""verse-reuse - textual borrowing in scripture and quotation classification.

The package has two halves:

- ``versereuse.detector``: tokenisation, MinHash signatures, LSH candidate
  pairs, exact Jaccard scoring and per-verse similarity summaries.
- ``versereuse.classify``: joining quotation candidates with labels and
  similarity features, the train/test split, the model grid and the
  decision-threshold scan.

Quick Start:
    # CLI usage
    versereuse similarity config.yml
    versereuse train config.yml

    # Python API
    from versereuse.detector import SimilarityPipeline
    stats = SimilarityPipeline(verse_store, artifacts, config).run()
"""

from .detector import __version__

from .detector import (
    SimilarityPipeline,
    LSHIndex,
    SimilarityGraph,
    skip_ngram_tokenize,
    word_tokenize,
)
from .classify import (
    Label,
    ClassificationPipeline,
    ModelArtifact,
    select_threshold,
)

__all__ = [
    "__version__",
    "SimilarityPipeline",
    "LSHIndex",
    "SimilarityGraph",
    "skip_ngram_tokenize",
    "word_tokenize",
    "Label",
    "ClassificationPipeline",
    "ModelArtifact",
    "select_threshold",
]
