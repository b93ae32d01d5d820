"""Exact Jaccard scoring of LSH candidate pairs.

LSH only shortlists pairs; the score reported for each pair is recomputed from
the documents' real token sets. Cross-version pairs (usually different
translations of the same verse) are dropped *before* any token set is built,
so the expensive step only sees same-group pairs.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, List, Mapping

import pandas as pd
from tqdm import tqdm

from .minhash import batch_xxhash64

logger = logging.getLogger(__name__)

# -----------------------------------------------------------
# Helpers
# -----------------------------------------------------------


def _jaccard(a: set[int], b: set[int]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def jaccard(a, b) -> float:
    """Jaccard similarity of two token collections (duplicates ignored)."""
    return _jaccard(set(a), set(b))


# -----------------------------------------------------------
# Group filter
# -----------------------------------------------------------


def filter_same_group(candidates: pd.DataFrame, groups: Mapping[str, str]) -> pd.DataFrame:
    """Keep only candidate pairs whose two documents belong to the same group.

    The returned frame gains a ``group`` column.
    """
    group_a = candidates["a"].map(groups)
    group_b = candidates["b"].map(groups)
    keep = group_a.notna() & (group_a == group_b)
    kept = candidates.loc[keep].copy()
    kept["group"] = group_a[keep]
    rate = len(kept) / len(candidates) if len(candidates) else 0.0
    logger.info("Same-group filter kept %d of %d candidate pairs (%.1f%%)", len(kept), len(candidates), rate * 100)
    return kept


# -----------------------------------------------------------
# Exact scoring
# -----------------------------------------------------------


def score_candidates(
    candidates: pd.DataFrame,
    docs: pd.DataFrame,
    tokenizer: Callable[[str], List[str]],
    *,
    group_column: str = "version",
    verbose: bool = False,
) -> pd.DataFrame:
    """Turn candidate pairs into similarity records ``a, b, score, group``.

    Parameters
    ----------
    candidates : DataFrame
        Columns ``a, b, band_count`` as produced by the LSH index.
    docs : DataFrame
        Columns ``doc_id, text`` and *group_column*.
    tokenizer : callable
        Must be the tokenizer the signatures were built from.
    """
    doc_ids = docs["doc_id"].astype(str)
    groups = dict(zip(doc_ids, docs[group_column].astype(str)))
    texts = dict(zip(doc_ids, docs["text"]))

    same = filter_same_group(candidates, groups)

    # Exact-Jaccard cache (doc_id -> set[hash]), filled only for docs that need it.
    shingle_cache: Dict[str, set[int]] = {}

    def shingles(doc_id: str) -> set[int]:
        if doc_id not in shingle_cache:
            shingle_cache[doc_id] = set(batch_xxhash64(tokenizer(texts[doc_id])))
        return shingle_cache[doc_id]

    records = []
    seen = set()
    rows = same.itertuples(index=False)
    if verbose:
        rows = tqdm(rows, total=len(same), desc="Exact Jaccard")
    for row in rows:
        a, b = (row.a, row.b) if row.a < row.b else (row.b, row.a)
        if a == b or (a, b) in seen:
            continue
        seen.add((a, b))
        records.append((a, b, _jaccard(shingles(a), shingles(b)), row.group))

    out = pd.DataFrame(records, columns=["a", "b", "score", "group"])
    out["score"] = out["score"].astype("float64")
    logger.info("Scored %d same-group pairs over %d documents", len(out), len(shingle_cache))
    return out
