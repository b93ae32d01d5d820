"""Banded LSH index over MinHash signatures.

A signature of ``num_hashes`` values is cut into ``num_bands`` contiguous
slices of ``rows = num_hashes / num_bands`` values. Two documents share a
bucket in a band when their slices are identical, and any shared bucket makes
them a candidate pair. The probability of becoming a candidate is the S-curve
``1 - (1 - s**rows) ** bands``, which crosses 50% near
``(1 / bands) ** (1 / rows)``.
"""
from __future__ import annotations

import itertools
import logging
from collections import Counter
from typing import List, Mapping

import numpy as np
import pandas as pd
from datasketch import MinHash, MinHashLSH

from .minhash import MINHASH_SCHEME

logger = logging.getLogger(__name__)

# -----------------------------------------------------------
# S-curve helpers
# -----------------------------------------------------------


def crossing_threshold(num_hashes: int, num_bands: int) -> float:
    """Similarity at which the candidate probability is roughly one half."""
    rows = num_hashes // num_bands
    return (1.0 / num_bands) ** (1.0 / rows)


def candidate_probability(similarity: float, num_hashes: int, num_bands: int) -> float:
    """Probability that two documents with Jaccard *similarity* become candidates."""
    rows = num_hashes // num_bands
    return 1.0 - (1.0 - similarity ** rows) ** num_bands


def choose_bands(num_hashes: int, min_similarity: float) -> int:
    """Pick the band count whose crossing threshold sits at or just below *min_similarity*.

    Only divisors of *num_hashes* are considered. Erring low costs extra exact
    comparisons; erring high loses true pairs for good.
    """
    divisors = [b for b in range(1, num_hashes + 1) if num_hashes % b == 0]
    below = [b for b in divisors if crossing_threshold(num_hashes, b) <= min_similarity]
    if not below:
        return max(divisors)
    return min(below, key=lambda b: min_similarity - crossing_threshold(num_hashes, b))



# -----------------------------------------------------------
# Index
# -----------------------------------------------------------


class LSHIndex:
    """Wrapper around ``datasketch.MinHashLSH`` with explicit bands and rows.

    Stored signatures are rebuilt as :class:`datasketch.MinHash` objects and
    inserted; ``MinHashLSH`` cuts them into contiguous ``hashranges`` of
    ``rows`` values and keeps one hashtable per band.
    """

    def __init__(self, *, num_hashes: int = 120, num_bands: int = 30, seed: int) -> None:
        if num_bands < 2 or num_hashes % num_bands:
            raise ValueError(f"num_bands ({num_bands}) must be >= 2 and evenly divide num_hashes ({num_hashes})")
        self.num_hashes = num_hashes
        self.num_bands = num_bands
        self.rows = num_hashes // num_bands
        self.lsh = MinHashLSH(num_perm=num_hashes, params=(num_bands, self.rows))
        self._permutations = MinHash(num_perm=num_hashes, seed=seed, scheme=MINHASH_SCHEME).permutations
        self.seed = seed

    @property
    def threshold(self) -> float:
        return crossing_threshold(self.num_hashes, self.num_bands)

    def _minhash(self, signature: np.ndarray) -> MinHash:
        sig = np.asarray(signature)
        if sig.shape != (self.num_hashes,):
            raise ValueError(f"Expected signature of length {self.num_hashes}, got {sig.shape}")
        return MinHash(seed=self.seed, hashvalues=sig, permutations=self._permutations, scheme=MINHASH_SCHEME)

    # --------------------------------------------------
    # Mutation
    # --------------------------------------------------

    def add(self, key: str, signature: np.ndarray) -> None:
        """Add *signature* under *key*; ``ValueError`` if *key* is already indexed."""
        self.lsh.insert(key, self._minhash(signature))

    def update(self, signatures: Mapping[str, np.ndarray]) -> None:
        for key, sig in signatures.items():
            self.add(key, sig)

    # --------------------------------------------------
    # Queries
    # --------------------------------------------------

    def get_candidates(self, signature: np.ndarray) -> List[str]:
        """Return keys sharing at least one band bucket with *signature*."""
        return list(self.lsh.query(self._minhash(signature)))

    def candidate_pairs(self) -> Counter:
        """Count, for every unordered same-bucket pair, the bands they collide in.

        Keys are ``(a, b)`` with ``a < b``; no self-pairs.
        """
        counts: Counter = Counter()
        for table in self.lsh.hashtables:
            for bkey in table.keys():
                members = table.get(bkey)
                if len(members) < 2:
                    continue
                for a, b in itertools.combinations(sorted(members), 2):
                    counts[(a, b)] += 1
        return counts

    def candidates_frame(self) -> pd.DataFrame:
        """Candidate pairs as a table with columns ``a, b, band_count``."""
        pairs = self.candidate_pairs()
        frame = pd.DataFrame(
            [(a, b, n) for (a, b), n in sorted(pairs.items())],
            columns=["a", "b", "band_count"],
        )
        frame["band_count"] = frame["band_count"].astype("int64")
        logger.info(
            "%d candidate pairs from %d documents (%d bands x %d rows, threshold≈%.3f)",
            len(frame), len(self), self.num_bands, self.rows, self.threshold,
        )
        return frame

    def __len__(self) -> int:
        return len(self.lsh.keys)


def build_index(signatures: Mapping[str, np.ndarray], num_hashes: int, num_bands: int, *, seed: int) -> LSHIndex:
    index = LSHIndex(num_hashes=num_hashes, num_bands=num_bands, seed=seed)
    index.update(signatures)
    return index
