"""Artifact persistence for verse-reuse.

Every pipeline stage checkpoints its result through an :class:`ArtifactStore`
and checks the store before recomputing. A persisted artifact is authoritative
once written: nothing here invalidates it, a caller must ``delete`` it to force
recomputation.

Tables go to CSV with a fixed column/dtype schema; anything else (signatures,
fitted models) goes through joblib.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Union

import joblib
import pandas as pd

logger = logging.getLogger(__name__)


class SchemaError(ValueError):
    """A persisted table does not match its declared schema."""


LABEL_VALUES = frozenset({"quotation", "noise"})

_CANDIDATE_COLUMNS = {
    "verse_id": str,
    "doc_id": str,
    "match": str,
    "tokens": "int64",
    "tfidf": "float64",
    "proportion": "float64",
    "runs_pval": "float64",
    "group": str,
    "sim_total": "float64",
    "sim_mean": "float64",
}

SCHEMAS: Dict[str, Dict[str, Any]] = {
    "skipped": {"doc_id": str, "reason": str},
    "candidates": {"a": str, "b": str, "band_count": "int64"},
    "similarity": {"a": str, "b": str, "score": "float64", "group": str},
    "verse_similarity": {"verse_id": str, "sim_total": "float64", "sim_mean": "float64"},
    "labeled": _CANDIDATE_COLUMNS,
    "train": _CANDIDATE_COLUMNS,
    "test": _CANDIDATE_COLUMNS,
    "grid_results": {
        "cell": "int64",
        "family": str,
        "predictor_set": str,
        "params": str,
        "cost": "float64",
        "accuracy": "float64",
        "f1": "float64",
        "j": "float64",
        "roc_auc": "float64",
        "error": str,
    },
}


def check_schema(key: str, frame: pd.DataFrame) -> None:
    """Raise :class:`SchemaError` when *frame* does not carry exactly the columns of *key*."""
    schema = SCHEMAS.get(key)
    if schema is None:
        return
    expected = list(schema)
    actual = list(frame.columns)
    if actual != expected:
        raise SchemaError(f"Artifact '{key}' has columns {actual}, expected {expected}")
    if "match" in frame.columns:
        bad = set(frame["match"].dropna().astype(str)) - LABEL_VALUES
        if bad:
            raise SchemaError(f"Artifact '{key}' has unknown labels: {sorted(bad)}")


# -----------------------------------------------------------
# Stores
# -----------------------------------------------------------


class ArtifactStore(ABC):
    """Keyed storage for intermediate results."""

    @abstractmethod
    def has(self, key: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def load(self, key: str) -> Any:
        raise NotImplementedError

    @abstractmethod
    def save(self, key: str, value: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        raise NotImplementedError

    def get_or_compute(self, key: str, compute) -> Any:
        """Return the stored artifact for *key*, computing and saving it if absent."""
        if self.has(key):
            logger.info("Reusing stored artifact '%s'", key)
            return self.load(key)
        value = compute()
        self.save(key, value)
        return value


class MemoryArtifactStore(ArtifactStore):
    """Dict-backed store, mostly for tests."""

    def __init__(self) -> None:
        self._items: Dict[str, Any] = {}

    def has(self, key: str) -> bool:
        return key in self._items

    def load(self, key: str) -> Any:
        value = self._items[key]
        return value.copy() if isinstance(value, pd.DataFrame) else value

    def save(self, key: str, value: Any) -> None:
        if isinstance(value, pd.DataFrame):
            check_schema(key, value)
            value = value.copy()
        self._items[key] = value

    def delete(self, key: str) -> None:
        self._items.pop(key, None)


class FileArtifactStore(ArtifactStore):
    """Directory-backed store: ``<key>.csv`` for tables, ``<key>.joblib`` otherwise."""

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _csv(self, key: str) -> Path:
        return self.root / f"{key}.csv"

    def _pickle(self, key: str) -> Path:
        return self.root / f"{key}.joblib"

    def path(self, key: str) -> Optional[Path]:
        for p in (self._csv(key), self._pickle(key)):
            if p.exists():
                return p
        return None

    def has(self, key: str) -> bool:
        return self.path(key) is not None

    def load(self, key: str) -> Any:
        path = self.path(key)
        if path is None:
            raise KeyError(key)
        if path.suffix == ".joblib":
            return joblib.load(path)
        return read_table(path, key)

    def save(self, key: str, value: Any) -> None:
        if isinstance(value, pd.DataFrame):
            check_schema(key, value)
            value.to_csv(self._csv(key), index=False)
            logger.debug("Saved table '%s' (%d rows) to %s", key, len(value), self._csv(key))
        else:
            joblib.dump(value, self._pickle(key))
            logger.debug("Saved object '%s' to %s", key, self._pickle(key))

    def delete(self, key: str) -> None:
        for p in (self._csv(key), self._pickle(key)):
            if p.exists():
                p.unlink()


def read_table(path: Union[str, Path], key: Optional[str] = None) -> pd.DataFrame:
    """Read a CSV artifact, enforcing the schema registered for *key*.

    Type drift between runs is fatal: values that do not parse as the declared
    dtype raise :class:`SchemaError` instead of being coerced.
    """
    path = Path(path)
    key = key or path.stem
    schema = SCHEMAS.get(key)
    if schema is None:
        return pd.read_csv(path)

    header = list(pd.read_csv(path, nrows=0).columns)
    if header != list(schema):
        raise SchemaError(f"{path} has columns {header}, expected {list(schema)}")
    try:
        frame = pd.read_csv(path, dtype=schema, keep_default_na=True)
    except (ValueError, TypeError) as e:
        raise SchemaError(f"{path} does not match schema '{key}': {e}") from e
    check_schema(key, frame)
    return frame
