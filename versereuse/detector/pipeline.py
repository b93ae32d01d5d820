"""Similarity pipeline for verse-reuse.

Integrates:
- Scripture payload (document-term matrix + vectorizer)
- MinHash signatures (with a skipped-document list)
- LSH candidate pairs
- Exact Jaccard scoring of same-version pairs
- Per-verse similarity summary, written back to the verse store

Each stage checks the artifact store first and reuses a stored result.
"""
from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Dict, Optional

import pandas as pd
import psutil

from .dedup import score_candidates
from .ingest import make_tokenizers
from .lsh_index import build_index
from .minhash import SignatureSet, generate_signatures
from .output import ArtifactStore
from .payload import build_payload
from .similarity import summarize_similarity, validate_records

if TYPE_CHECKING:  # pragma: no cover
    from ..stores import VerseStore

logger = logging.getLogger(__name__)


class SimilarityPipeline:
    """Verses in, similarity records and per-verse summary out."""

    def __init__(
        self,
        verse_store: "VerseStore",
        artifacts: ArtifactStore,
        config: Dict[str, Any],
        verbose: bool = True,
    ):
        """
        Initialize the pipeline.

        Args:
            verse_store: Source of verses and sink for similarity tables
            artifacts: Checkpoint store for intermediate results
            config: Validated configuration (see ``versereuse.config``)
            verbose: Show progress bars and print the final summary
        """
        self.verse_store = verse_store
        self.artifacts = artifacts
        self.config = config
        self.verbose = verbose

        tok = config["tokenizer"]
        self.ngram_tokenizer, self.word_tokenizer = make_tokenizers(
            n=int(tok["n"]), n_min=int(tok["n_min"]), k=int(tok["k"]), stopwords=tok["stopwords"]
        )
        lsh = config["lsh"]
        self.num_hashes = int(lsh["num_hashes"])
        self.num_bands = int(lsh["num_bands"])
        self.seed = int(lsh["seed"])
        self.min_score = float(config["similarity"]["min_score"])

        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None
        self._verses: Optional[pd.DataFrame] = None

    @property
    def verses(self) -> pd.DataFrame:
        if self._verses is None:
            self._verses = self.verse_store.verses()
        return self._verses

    # --------------------------------------------------
    # Stages
    # --------------------------------------------------

    def payload(self):
        return self.artifacts.get_or_compute(
            "payload",
            lambda: build_payload(self.verses, self.ngram_tokenizer, self.word_tokenizer),
        )

    def signatures(self) -> SignatureSet:
        if self.artifacts.has("signatures"):
            sigs = self.artifacts.load("signatures")
            if (sigs.seed, sigs.num_hashes) != (self.seed, self.num_hashes):
                logger.warning(
                    "Stored signatures use seed=%d, num_hashes=%d; configuration says seed=%d, num_hashes=%d. "
                    "Delete the 'signatures' artifact to recompute.",
                    sigs.seed, sigs.num_hashes, self.seed, self.num_hashes,
                )
            return sigs
        sigs = generate_signatures(
            self.verses,
            self.ngram_tokenizer,
            seed=self.seed,
            num_hashes=self.num_hashes,
            verbose=self.verbose,
        )
        self.artifacts.save("signatures", sigs)
        self.artifacts.save("skipped", sigs.skipped_frame())
        return sigs

    def candidates(self) -> pd.DataFrame:
        def compute() -> pd.DataFrame:
            sigs = self.signatures()
            index = build_index(sigs.signatures, sigs.num_hashes, self.num_bands, seed=sigs.seed)
            return index.candidates_frame()

        return self.artifacts.get_or_compute("candidates", compute)

    def similarity(self) -> pd.DataFrame:
        def compute() -> pd.DataFrame:
            records = score_candidates(
                self.candidates(), self.verses, self.ngram_tokenizer, verbose=self.verbose
            )
            validate_records(records)
            return records

        return self.artifacts.get_or_compute("similarity", compute)

    def summary(self) -> pd.DataFrame:
        return self.artifacts.get_or_compute(
            "verse_similarity",
            lambda: summarize_similarity(
                self.similarity(), self.verses["doc_id"].astype(str), min_score=self.min_score
            ),
        )

    # --------------------------------------------------
    # Run
    # --------------------------------------------------

    def run(self) -> Dict[str, Any]:
        """Run every stage and write the similarity tables back to the verse store."""
        self.start_time = time.time()
        if self.verbose:
            print(f"🚀 Similarity pipeline: {len(self.verses):,} verses")

        payload = self.payload()
        sigs = self.signatures()
        candidates = self.candidates()
        records = self.similarity()
        summary = self.summary()

        self.verse_store.save_similarity(records)
        self.verse_store.save_summary(summary)
        self.end_time = time.time()

        stats = self._generate_final_stats(payload, sigs, candidates, records, summary)
        if self.verbose:
            self._print_final_stats(stats)
        return stats

    def _generate_final_stats(self, payload, sigs, candidates, records, summary) -> Dict[str, Any]:
        elapsed = self.end_time - self.start_time
        memory_mb = psutil.Process().memory_info().rss / 1024 / 1024
        return {
            "processing_time_seconds": elapsed,
            "peak_memory_mb": memory_mb,
            "verses": len(self.verses),
            "vocabulary_size": payload.vocabulary_size,
            "signatures": len(sigs),
            "skipped": len(sigs.skipped),
            "num_hashes": self.num_hashes,
            "num_bands": self.num_bands,
            "candidate_pairs": len(candidates),
            "scored_pairs": len(records),
            "same_group_rate": len(records) / max(len(candidates), 1),
            "isolated_verses": int((summary["sim_mean"] == 0).sum()),
        }

    def _print_final_stats(self, stats: Dict[str, Any]) -> None:
        print("\n" + "=" * 60)
        print("📊 SIMILARITY PIPELINE COMPLETE")
        print("=" * 60)
        print(f"⏱️  Processing Time: {stats['processing_time_seconds']:.2f}s")
        print(f"💾 Peak Memory: {stats['peak_memory_mb']:.1f} MB")
        print(f"📥 Verses: {stats['verses']:,} ({stats['skipped']:,} too short to hash)")
        print(f"🔤 Vocabulary: {stats['vocabulary_size']:,} n-gram terms")
        print(f"🪣 LSH: {stats['num_bands']} bands x {stats['num_hashes'] // stats['num_bands']} rows")
        print(f"🔄 Candidates: {stats['candidate_pairs']:,} pairs, "
              f"{stats['scored_pairs']:,} same-version ({stats['same_group_rate']:.1%})")
        print(f"🏝️  Isolated verses: {stats['isolated_verses']:,}")
