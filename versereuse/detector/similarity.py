"""Per-verse similarity features.

Similarity records become a symmetric weighted graph; every verse is then
reduced to ``sim_total`` (sum of its edge weights) and ``sim_mean`` (mean of
its edge weights, 0 for an isolated verse). Records under the reporting floor
never become edges.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class GraphInvariantError(AssertionError):
    """The similarity graph is asymmetric or has a self-loop."""


class SimilarityGraph:
    """Undirected weighted graph kept as a symmetric adjacency map."""

    def __init__(self) -> None:
        self._adj: Dict[str, Dict[str, float]] = defaultdict(dict)

    def add_edge(self, a: str, b: str, weight: float) -> None:
        """Insert ``a -> b`` and ``b -> a`` with the same *weight*."""
        if a == b:
            raise GraphInvariantError(f"Self-loop on {a!r}")
        weight = float(weight)
        self._adj[a][b] = weight
        self._adj[b][a] = weight

    def add_node(self, node: str) -> None:
        self._adj.setdefault(node, {})

    def weight(self, a: str, b: str) -> float:
        """Edge weight, 0 when absent (including the diagonal)."""
        if a == b:
            return 0.0
        return self._adj.get(a, {}).get(b, 0.0)

    def neighbors(self, node: str) -> Dict[str, float]:
        return dict(self._adj.get(node, {}))

    def nodes(self) -> Iterable[str]:
        return self._adj.keys()

    def edges(self) -> Iterable[Tuple[str, str, float]]:
        """Each undirected edge once, as ``(a, b, weight)`` with ``a < b``."""
        for a, nbrs in self._adj.items():
            for b, w in nbrs.items():
                if a < b:
                    yield a, b, w

    def check_invariants(self) -> None:
        """Raise :class:`GraphInvariantError` on any asymmetric edge or self-loop."""
        for a, nbrs in self._adj.items():
            if a in nbrs:
                raise GraphInvariantError(f"Non-zero diagonal for {a!r}")
            for b, w in nbrs.items():
                back = self._adj.get(b, {}).get(a)
                if back is None or back != w:
                    raise GraphInvariantError(f"Asymmetric edge {a!r} -> {b!r}: {w} vs {back}")

    def __len__(self) -> int:
        return len(self._adj)

    # --------------------------------------------------
    # Construction
    # --------------------------------------------------

    @classmethod
    def from_records(cls, records: pd.DataFrame, *, min_score: float = 0.0) -> "SimilarityGraph":
        """Build a graph from similarity records, keeping non-zero scores ``>= min_score``."""
        graph = cls()
        kept = records.loc[(records["score"] >= min_score) & (records["score"] > 0)]
        for a, b, score in zip(kept["a"], kept["b"], kept["score"]):
            graph.add_edge(str(a), str(b), score)
        logger.debug("Graph: %d of %d records at or above %.3f", len(kept), len(records), min_score)
        graph.check_invariants()
        return graph

    def node_features(self, node: str) -> Tuple[float, float]:
        weights = list(self._adj.get(node, {}).values())
        if not weights:
            return 0.0, 0.0
        total = float(np.sum(weights))
        return total, total / len(weights)


def summarize_similarity(
    records: pd.DataFrame,
    doc_ids: Iterable[str],
    *,
    min_score: float = 0.0,
) -> pd.DataFrame:
    """Return ``verse_id, sim_total, sim_mean`` for every id in *doc_ids*.

    Isolated verses (no qualifying edge) get ``0.0`` for both features.
    """
    graph = SimilarityGraph.from_records(records, min_score=min_score)
    rows = []
    for doc_id in doc_ids:
        total, mean = graph.node_features(str(doc_id))
        rows.append((str(doc_id), total, mean))
    summary = pd.DataFrame(rows, columns=["verse_id", "sim_total", "sim_mean"])
    isolated = int((summary["sim_mean"] == 0).sum())
    logger.info("Similarity summary for %d verses (%d isolated)", len(summary), isolated)
    return summary


def validate_records(records: pd.DataFrame) -> None:
    """Check the similarity-record invariants: scores in [0, 1], no self-pairs, no duplicates."""
    if not records["score"].between(0.0, 1.0).all():
        raise GraphInvariantError("Similarity score outside [0, 1]")
    if (records["a"] == records["b"]).any():
        raise GraphInvariantError("Similarity record pairs a document with itself")
    swap = records["a"] > records["b"]
    lo = records["a"].where(~swap, records["b"])
    hi = records["b"].where(~swap, records["a"])
    if pd.DataFrame({"lo": lo, "hi": hi}).duplicated().any():
        raise GraphInvariantError("Duplicate unordered pair in similarity records")
