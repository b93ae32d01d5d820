"""Artifact store, repositories and configuration."""
from __future__ import annotations

import pandas as pd
import pytest

from versereuse.config import ConfigError, load_config
from versereuse.detector.output import FileArtifactStore, MemoryArtifactStore, SchemaError, read_table
from versereuse.stores import CsvLabelStore, CsvVerseStore, InMemoryVerseStore

CANDIDATES = pd.DataFrame({"a": ["v1", "v2"], "b": ["v3", "v4"], "band_count": pd.Series([3, 1], dtype="int64")})


# -----------------------------------------------------------
# Artifact store
# -----------------------------------------------------------


@pytest.mark.parametrize("store_factory", [MemoryArtifactStore, None])
def test_table_round_trip(tmp_path, store_factory) -> None:
    store = store_factory() if store_factory else FileArtifactStore(tmp_path)
    assert not store.has("candidates")
    store.save("candidates", CANDIDATES)
    assert store.has("candidates")
    loaded = store.load("candidates")
    assert loaded["a"].tolist() == ["v1", "v2"]
    assert loaded["band_count"].dtype == "int64"
    store.delete("candidates")
    assert not store.has("candidates")


def test_wrong_columns_rejected_on_save(tmp_path) -> None:
    bad = CANDIDATES.rename(columns={"band_count": "bands"})
    for store in (MemoryArtifactStore(), FileArtifactStore(tmp_path)):
        with pytest.raises(SchemaError):
            store.save("candidates", bad)


def test_type_drift_is_fatal(tmp_path) -> None:
    (tmp_path / "candidates.csv").write_text("a,b,band_count\nv1,v2,three\n")
    with pytest.raises(SchemaError):
        FileArtifactStore(tmp_path).load("candidates")


def test_header_mismatch_is_fatal(tmp_path) -> None:
    (tmp_path / "verse_similarity.csv").write_text("verse_id,sim_mean,sim_total\nv1,0.5,1.0\n")
    with pytest.raises(SchemaError):
        read_table(tmp_path / "verse_similarity.csv")


def test_unknown_label_is_fatal(tmp_path) -> None:
    header = "verse_id,doc_id,match,tokens,tfidf,proportion,runs_pval,group,sim_total,sim_mean\n"
    (tmp_path / "train.csv").write_text(header + "v1,p1,maybe,10,1.0,0.5,0.1,KJV,0.0,0.0\n")
    with pytest.raises(SchemaError):
        FileArtifactStore(tmp_path).load("train")


def test_objects_go_through_joblib(tmp_path) -> None:
    store = FileArtifactStore(tmp_path)
    store.save("grid", {"cells": [1, 2, 3]})
    assert (tmp_path / "grid.joblib").exists()
    assert store.load("grid") == {"cells": [1, 2, 3]}


def test_get_or_compute_runs_once(tmp_path) -> None:
    store = FileArtifactStore(tmp_path)
    calls = []

    def compute():
        calls.append(1)
        return CANDIDATES

    first = store.get_or_compute("candidates", compute)
    second = store.get_or_compute("candidates", compute)
    assert len(calls) == 1
    assert first["b"].tolist() == second["b"].tolist()


def test_missing_artifact_raises(tmp_path) -> None:
    with pytest.raises(KeyError):
        FileArtifactStore(tmp_path).load("similarity")


# -----------------------------------------------------------
# Repositories
# -----------------------------------------------------------


def test_verse_store_groups_and_summary(tmp_path) -> None:
    verses = pd.DataFrame(
        {"doc_id": ["v1", "v2"], "text": ["x", "y"], "version": ["KJV", "LDS"], "part": ["OT", "BoM"]}
    )
    path = tmp_path / "verses.csv"
    verses.to_csv(path, index=False)

    store = CsvVerseStore(path, tmp_path / "out")
    assert store.groups().to_dict() == {"v1": "KJV", "v2": "LDS"}
    assert store.summary() is None
    store.save_summary(pd.DataFrame({"verse_id": ["v1", "v2"], "sim_total": [0.0, 0.0], "sim_mean": [0.0, 0.0]}))
    assert store.summary()["verse_id"].tolist() == ["v1", "v2"]

    assert InMemoryVerseStore(verses).groups().to_dict() == {"v1": "KJV", "v2": "LDS"}


def test_verse_store_requires_columns() -> None:
    with pytest.raises(ValueError):
        InMemoryVerseStore(pd.DataFrame({"doc_id": ["v1"], "text": ["x"]}))


def test_label_store_requires_columns(tmp_path) -> None:
    (tmp_path / "labels.csv").write_text("verse_id,doc_id\nv1,p1\n")
    (tmp_path / "measurements.csv").write_text("verse_id,doc_id,tokens\nv1,p1,3\n")
    store = CsvLabelStore(tmp_path / "labels.csv", tmp_path / "measurements.csv")
    with pytest.raises(ValueError):
        store.labels()
    with pytest.raises(ValueError):
        store.measurements()
    assert store.wordcounts() is None


# -----------------------------------------------------------
# Configuration
# -----------------------------------------------------------


def test_defaults_resolve_bands() -> None:
    cfg = load_config()
    assert cfg["lsh"]["num_bands"] == 60
    assert cfg["tokenizer"] == {"n": 4, "n_min": 3, "k": 1, "stopwords": "bible"}
    assert cfg["classify"]["derivative_groups"] == ["LDS"]


def test_yaml_merges_over_defaults(tmp_path) -> None:
    path = tmp_path / "run.yml"
    path.write_text("paths:\n  verses: data/v.csv\nlsh:\n  num_hashes: 60\n  num_bands: 20\n")
    cfg = load_config(path)
    assert cfg["paths"]["verses"] == str(tmp_path.resolve() / "data" / "v.csv")
    assert cfg["lsh"]["num_bands"] == 20
    assert cfg["lsh"]["seed"] == 42
    assert cfg["similarity"]["min_score"] == 0.1


@pytest.mark.parametrize(
    "overrides",
    [
        {"lsh": {"num_bands": 7}},
        {"lsh": {"num_bands": 1}},
        {"tokenizer": {"n": 2, "n_min": 3}},
        {"tokenizer": {"stopwords": "latin"}},
        {"similarity": {"min_score": 1.5}},
        {"classify": {"predictor_sets": ["everything"]}},
        {"classify": {"families": ["svm"]}},
        {"classify": {"test_size": 0}},
        {"classify": {"threshold": {"start": 0.9, "stop": 0.5, "step": 0.01}}},
    ],
)
def test_invalid_config(overrides) -> None:
    with pytest.raises(ConfigError):
        load_config(overrides=overrides)


def test_non_mapping_yaml(tmp_path) -> None:
    path = tmp_path / "run.yml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigError):
        load_config(path)
