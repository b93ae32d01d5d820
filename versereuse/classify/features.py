"""Label type, feature join and the train/test split."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Iterable, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split

from ..detector.output import SCHEMAS, ArtifactStore

logger = logging.getLogger(__name__)

MEASURED_FEATURES = ["tokens", "tfidf", "proportion", "runs_pval"]
SIMILARITY_FEATURES = ["sim_total", "sim_mean"]
COLUMNS = list(SCHEMAS["labeled"])


class Label(str, Enum):
    """Ground truth for a quotation candidate."""

    QUOTATION = "quotation"
    NOISE = "noise"

    @classmethod
    def from_value(cls, value: Any) -> "Label":
        """Accept a :class:`Label`, its string value, or a boolean ``match`` flag."""
        if isinstance(value, cls):
            return value
        if isinstance(value, (bool, np.bool_)):
            return cls.QUOTATION if value else cls.NOISE
        if isinstance(value, str):
            text = value.strip().lower()
            if text in ("true", "t", "1", "yes"):
                return cls.QUOTATION
            if text in ("false", "f", "0", "no"):
                return cls.NOISE
            return cls(text)
        if isinstance(value, (int, np.integer)) and value in (0, 1):
            return cls.QUOTATION if value else cls.NOISE
        raise ValueError(f"Cannot interpret {value!r} as a label")

    @property
    def is_quotation(self) -> bool:
        return self is Label.QUOTATION


def label_vector(labels: Iterable[Any]) -> np.ndarray:
    """1 for :attr:`Label.QUOTATION`, 0 for :attr:`Label.NOISE`."""
    return np.array([int(Label.from_value(v).is_quotation) for v in labels], dtype=int)


# -----------------------------------------------------------
# Join
# -----------------------------------------------------------


def join_features(
    labels: pd.DataFrame,
    measurements: pd.DataFrame,
    verse_groups: pd.Series,
    verse_summary: pd.DataFrame,
    *,
    derivative_groups: Sequence[str] = (),
    required_features: Sequence[str] = MEASURED_FEATURES,
) -> Tuple[pd.DataFrame, Dict[str, int]]:
    """Join labelled candidates with their features.

    Returns the labelled table (columns of the ``labeled`` schema) and a dict of
    drop counts: ``missing_label`` (empty ``match``), ``duplicate_label``
    (repeated verse/document key; the first label is kept),
    ``no_measurement`` (no feature row), ``missing_features``
    (measurement failed), ``unknown_verse`` (verse not in the verse store),
    ``derivative`` (verse in a derivative group).
    """
    counts: Dict[str, int] = {}

    frame = labels[["verse_id", "doc_id", "match"]].copy()
    frame["verse_id"] = frame["verse_id"].astype(str)
    frame["doc_id"] = frame["doc_id"].astype(str)

    unlabelled = frame["match"].isna()
    counts["missing_label"] = int(unlabelled.sum())
    if counts["missing_label"]:
        logger.warning("Dropped %d candidates with no label", counts["missing_label"])
        frame = frame.loc[~unlabelled]

    duplicated = frame.duplicated(subset=["verse_id", "doc_id"], keep="first")
    counts["duplicate_label"] = int(duplicated.sum())
    if counts["duplicate_label"]:
        keys = frame.loc[duplicated, ["verse_id", "doc_id"]].drop_duplicates().values.tolist()
        logger.warning("Dropped %d repeated labels, keeping the first for %s", counts["duplicate_label"], keys[:10])
        frame = frame.loc[~duplicated]

    frame = frame.assign(match=[Label.from_value(v).value for v in frame["match"]])

    meas = measurements[["verse_id", "doc_id"] + MEASURED_FEATURES].copy()
    meas["verse_id"] = meas["verse_id"].astype(str)
    meas["doc_id"] = meas["doc_id"].astype(str)

    before = len(frame)
    frame = frame.merge(meas, on=["verse_id", "doc_id"], how="inner", validate="one_to_one")
    counts["no_measurement"] = before - len(frame)
    if counts["no_measurement"]:
        logger.warning("Dropped %d labelled candidates with no feature row", counts["no_measurement"])

    before = len(frame)
    frame = frame.dropna(subset=list(required_features))
    counts["missing_features"] = before - len(frame)
    if counts["missing_features"]:
        logger.warning("Dropped %d candidates with missing %s", counts["missing_features"], list(required_features))

    frame["group"] = frame["verse_id"].map(verse_groups)
    unknown = frame["group"].isna()
    if unknown.any():
        logger.warning("Dropped %d candidates whose verse is not in the verse store", int(unknown.sum()))
        frame = frame.loc[~unknown]
    counts["unknown_verse"] = int(unknown.sum())

    before = len(frame)
    frame = frame.loc[~frame["group"].isin(list(derivative_groups))]
    counts["derivative"] = before - len(frame)
    if counts["derivative"]:
        logger.info("Excluded %d candidates from derivative groups %s", counts["derivative"], list(derivative_groups))

    summary = verse_summary.copy()
    summary["verse_id"] = summary["verse_id"].astype(str)
    frame = frame.merge(summary[["verse_id"] + SIMILARITY_FEATURES], on="verse_id", how="left")
    frame[SIMILARITY_FEATURES] = frame[SIMILARITY_FEATURES].fillna(0.0)

    frame["tokens"] = frame["tokens"].astype("int64")
    for col in ["tfidf", "proportion", "runs_pval"] + SIMILARITY_FEATURES:
        frame[col] = frame[col].astype("float64")

    frame = frame[COLUMNS].reset_index(drop=True)
    logger.info("Joined %d labelled candidates (%s)", len(frame), counts)
    return frame, counts


# -----------------------------------------------------------
# Split
# -----------------------------------------------------------


def stratified_split(data: pd.DataFrame, *, test_size: float = 0.15, seed: int = 20) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Split *data* by label with a fixed seed; same input and seed give the same split."""
    train, test = train_test_split(
        data,
        test_size=test_size,
        random_state=seed,
        shuffle=True,
        stratify=data["match"],
    )
    return train.reset_index(drop=True), test.reset_index(drop=True)


def load_or_split(
    artifacts: ArtifactStore,
    data: pd.DataFrame,
    *,
    test_size: float = 0.15,
    seed: int = 20,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Return the persisted split, computing and storing it on first use.

    Once stored, the test partition is the holdout for the whole run and is
    never recomputed.
    """
    if artifacts.has("train") and artifacts.has("test"):
        logger.info("Reusing stored train/test split")
        return artifacts.load("train"), artifacts.load("test")
    train, test = stratified_split(data, test_size=test_size, seed=seed)
    artifacts.save("train", train)
    artifacts.save("test", test)
    logger.info("Split %d records into %d train / %d test", len(data), len(train), len(test))
    return train, test
