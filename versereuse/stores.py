"""Repositories for verses and labelled quotation candidates.

Stores are built once at the process boundary (the CLI) and handed to the
pipeline objects. The CSV-backed versions read the exports of the scripture
database and labelling tool; the in-memory versions back the tests.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from .detector.output import read_table

logger = logging.getLogger(__name__)

VERSE_COLUMNS = ["doc_id", "text", "version", "part"]
LABEL_COLUMNS = ["verse_id", "doc_id", "match"]
MEASUREMENT_COLUMNS = ["verse_id", "doc_id", "tokens", "tfidf", "proportion", "runs_pval"]
WORDCOUNT_COLUMNS = ["year", "wordcount", "pages", "batches"]


def _require(frame: pd.DataFrame, columns, what: str) -> pd.DataFrame:
    missing = [c for c in columns if c not in frame.columns]
    if missing:
        raise ValueError(f"{what} is missing columns: {missing}")
    return frame


# -----------------------------------------------------------
# Verse store
# -----------------------------------------------------------


class VerseStore(ABC):
    """Source of verses and sink for the similarity tables."""

    @abstractmethod
    def verses(self) -> pd.DataFrame:
        """Columns ``doc_id, text, version, part``."""

    @abstractmethod
    def save_similarity(self, records: pd.DataFrame) -> None:
        ...

    @abstractmethod
    def save_summary(self, summary: pd.DataFrame) -> None:
        ...

    @abstractmethod
    def summary(self) -> Optional[pd.DataFrame]:
        """Per-verse ``verse_id, sim_total, sim_mean`` or ``None`` if not computed yet."""

    def groups(self) -> pd.Series:
        """Version of each verse, indexed by ``doc_id``."""
        verses = self.verses()
        return pd.Series(verses["version"].astype(str).values, index=verses["doc_id"].astype(str), name="group")


class InMemoryVerseStore(VerseStore):
    def __init__(self, verses: pd.DataFrame) -> None:
        self._verses = _require(verses.copy(), VERSE_COLUMNS, "verse table")
        self._verses["doc_id"] = self._verses["doc_id"].astype(str)
        self.similarity: Optional[pd.DataFrame] = None
        self._summary: Optional[pd.DataFrame] = None

    def verses(self) -> pd.DataFrame:
        return self._verses.copy()

    def save_similarity(self, records: pd.DataFrame) -> None:
        self.similarity = records.copy()

    def save_summary(self, summary: pd.DataFrame) -> None:
        self._summary = summary.copy()

    def summary(self) -> Optional[pd.DataFrame]:
        return None if self._summary is None else self._summary.copy()


class CsvVerseStore(VerseStore):
    """Verses from a CSV export; similarity tables written next to it in *output_dir*."""

    def __init__(self, path: Union[str, Path], output_dir: Union[str, Path]) -> None:
        self.path = Path(path)
        self.output_dir = Path(output_dir)
        self._cache: Optional[pd.DataFrame] = None

    def verses(self) -> pd.DataFrame:
        if self._cache is None:
            frame = pd.read_csv(self.path, dtype={"doc_id": str, "version": str})
            self._cache = _require(frame, VERSE_COLUMNS, str(self.path))
            logger.info("Loaded %d verses from %s", len(frame), self.path)
        return self._cache.copy()

    def save_similarity(self, records: pd.DataFrame) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        records.to_csv(self.output_dir / "similarity.csv", index=False)

    def save_summary(self, summary: pd.DataFrame) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        summary.to_csv(self.output_dir / "verse_similarity.csv", index=False)

    def summary(self) -> Optional[pd.DataFrame]:
        path = self.output_dir / "verse_similarity.csv"
        if not path.exists():
            return None
        return read_table(path, "verse_similarity")


# -----------------------------------------------------------
# Label store
# -----------------------------------------------------------


class LabelStore(ABC):
    """Source of labels, measured features and newspaper word counts."""

    @abstractmethod
    def labels(self) -> pd.DataFrame:
        """Columns ``verse_id, doc_id, match`` (match is boolean)."""

    @abstractmethod
    def measurements(self) -> pd.DataFrame:
        """Columns ``verse_id, doc_id, tokens, tfidf, proportion, runs_pval``."""

    def wordcounts(self) -> Optional[pd.DataFrame]:
        """Columns ``year, wordcount, pages, batches``; reporting only."""
        return None


class InMemoryLabelStore(LabelStore):
    def __init__(
        self,
        labels: pd.DataFrame,
        measurements: pd.DataFrame,
        wordcounts: Optional[pd.DataFrame] = None,
    ) -> None:
        self._labels = _require(labels.copy(), LABEL_COLUMNS, "label table")
        self._measurements = _require(measurements.copy(), MEASUREMENT_COLUMNS, "measurement table")
        self._wordcounts = wordcounts

    def labels(self) -> pd.DataFrame:
        return self._labels.copy()

    def measurements(self) -> pd.DataFrame:
        return self._measurements.copy()

    def wordcounts(self) -> Optional[pd.DataFrame]:
        return None if self._wordcounts is None else self._wordcounts.copy()


class CsvLabelStore(LabelStore):
    def __init__(
        self,
        labels_path: Union[str, Path],
        measurements_path: Union[str, Path],
        wordcounts_path: Union[str, Path, None] = None,
    ) -> None:
        self.labels_path = Path(labels_path)
        self.measurements_path = Path(measurements_path)
        self.wordcounts_path = Path(wordcounts_path) if wordcounts_path else None

    def labels(self) -> pd.DataFrame:
        frame = pd.read_csv(self.labels_path, dtype={"verse_id": str, "doc_id": str})
        return _require(frame, LABEL_COLUMNS, str(self.labels_path))

    def measurements(self) -> pd.DataFrame:
        frame = pd.read_csv(self.measurements_path, dtype={"verse_id": str, "doc_id": str})
        return _require(frame, MEASUREMENT_COLUMNS, str(self.measurements_path))

    def wordcounts(self) -> Optional[pd.DataFrame]:
        if self.wordcounts_path is None or not self.wordcounts_path.exists():
            return None
        frame = pd.read_csv(self.wordcounts_path)
        return _require(frame, WORDCOUNT_COLUMNS, str(self.wordcounts_path))
