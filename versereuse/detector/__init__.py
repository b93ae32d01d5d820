"""verse-reuse detector package.

Near-duplicate detection over a corpus of verses::

    from versereuse.detector.ingest import skip_ngram_tokenize, word_tokenize
    from versereuse.detector.minhash import make_signer, generate_signatures
    from versereuse.detector.lsh_index import LSHIndex
    from versereuse.detector.dedup import score_candidates
    from versereuse.detector.similarity import summarize_similarity
    from versereuse.detector.pipeline import SimilarityPipeline
"""

from importlib.metadata import version as _pkg_version


# Semantic version of the installed package
try:
    __version__: str = _pkg_version("verse-reuse")
except Exception:  # pragma: no cover – local dev path
    __version__ = "0.3.0"


from .ingest import skip_ngram_tokenize, word_tokenize, bible_stopwords
from .lsh_index import LSHIndex
from .similarity import SimilarityGraph, summarize_similarity
from .pipeline import SimilarityPipeline

__all__ = [
    "__version__",
    "skip_ngram_tokenize",
    "word_tokenize",
    "bible_stopwords",
    "LSHIndex",
    "SimilarityGraph",
    "summarize_similarity",
    "SimilarityPipeline",
]
