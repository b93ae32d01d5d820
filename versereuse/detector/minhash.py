"""MinHash utilities for verse-reuse."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd
import xxhash
from datasketch import MinHash
from tqdm import tqdm

logger = logging.getLogger(__name__)

# -----------------------------------------------------------
# xxHash helpers
# -----------------------------------------------------------


def batch_xxhash64(strings: List[str]) -> List[int]:
    """64-bit hashes for *strings*; stable across runs and process restarts."""
    return [xxhash.xxh64_intdigest(s) for s in strings]


# -----------------------------------------------------------
# MinHash helpers
# -----------------------------------------------------------

# Permutation scheme for every sketch; the LSH index rebuilds sketches with it.
MINHASH_SCHEME = "affine32"


def make_signer(seed: int, num_hashes: int) -> Callable[[Iterable[str]], Optional[np.ndarray]]:
    """Return a function mapping a document's tokens to its signature.

    The signature is an unsigned integer array of length *num_hashes*; element *i* is
    the minimum over all tokens under hash function *i*. Documents without
    tokens give ``None`` and must be recorded as skipped by the caller.
    """
    # One template carries the seeded permutations; copies skip regenerating them.
    template = MinHash(num_perm=num_hashes, seed=seed, scheme=MINHASH_SCHEME)

    def sign(tokens: Iterable[str]) -> Optional[np.ndarray]:
        unique = set(tokens)
        if not unique:
            return None
        mh = template.copy()
        mh.update_batch([h.to_bytes(8, byteorder="little") for h in batch_xxhash64(sorted(unique))])
        return mh.hashvalues.copy()

    return sign


# -----------------------------------------------------------
# Corpus signatures
# -----------------------------------------------------------


@dataclass
class SignatureSet:
    """Signatures for a corpus plus the documents that were too short to hash."""

    seed: int
    num_hashes: int
    signatures: Dict[str, np.ndarray] = field(default_factory=dict)
    skipped: List[Tuple[str, str]] = field(default_factory=list)

    def skipped_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.skipped, columns=["doc_id", "reason"])

    def __len__(self) -> int:
        return len(self.signatures)


def generate_signatures(
    docs: pd.DataFrame,
    tokenizer: Callable[[str], List[str]],
    *,
    seed: int,
    num_hashes: int,
    verbose: bool = False,
) -> SignatureSet:
    """Sign every row of *docs* (columns ``doc_id``, ``text``).

    Rows whose text yields no tokens are collected in ``skipped`` with reason
    ``too_short_to_hash``; nothing is dropped silently.
    """
    sign = make_signer(seed, num_hashes)
    result = SignatureSet(seed=seed, num_hashes=num_hashes)

    rows = zip(docs["doc_id"].astype(str), docs["text"])
    if verbose:
        rows = tqdm(rows, total=len(docs), desc="Signatures")

    for doc_id, text in rows:
        sig = sign(tokenizer(text))
        if sig is None:
            result.skipped.append((doc_id, "too_short_to_hash"))
            continue
        result.signatures[doc_id] = sig

    if result.skipped:
        logger.warning("%d documents too short to hash", len(result.skipped))
    logger.info("Generated %d signatures (seed=%d, num_hashes=%d)", len(result), seed, num_hashes)
    return result
