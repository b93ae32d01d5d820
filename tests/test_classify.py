"""Label handling, feature join, split, grid selection and threshold scan."""
from __future__ import annotations

import math

import numpy as np
import pandas as pd
import pytest

from versereuse.classify.features import Label, join_features, label_vector, load_or_split, stratified_split
from versereuse.classify.model import ModelArtifact
from versereuse.classify.pipeline import predict_frame
from versereuse.classify.threshold import scan_thresholds, select_threshold, threshold_grid
from versereuse.classify.train import (
    CellResult,
    GridCell,
    TrainingError,
    base_features,
    build_grid,
    build_matrix,
    evaluate_cell,
    feature_cost,
    fit_final,
    results_frame,
    run_grid,
    select_model,
)
from versereuse.detector.output import MemoryArtifactStore


def _candidates(n: int = 120, seed: int = 0) -> pd.DataFrame:
    """Synthetic labelled candidates where quotations score higher on every feature."""
    rng = np.random.default_rng(seed)
    quote = np.arange(n) % 3 != 0
    return pd.DataFrame(
        {
            "verse_id": [f"v{i % 17}" for i in range(n)],
            "doc_id": [f"page{i}" for i in range(n)],
            "match": np.where(quote, "quotation", "noise"),
            "tokens": np.where(quote, rng.integers(8, 40, n), rng.integers(3, 20, n)).astype("int64"),
            "tfidf": np.where(quote, rng.uniform(0.5, 3.0, n), rng.uniform(0.0, 1.5, n)),
            "proportion": np.where(quote, rng.uniform(0.4, 1.0, n), rng.uniform(0.0, 0.6, n)),
            "runs_pval": rng.uniform(0.0, 1.0, n),
            "group": "KJV",
            "sim_total": rng.uniform(0.0, 2.0, n),
            "sim_mean": rng.uniform(0.0, 1.0, n),
        }
    )


# -----------------------------------------------------------
# Labels
# -----------------------------------------------------------


@pytest.mark.parametrize(
    "value, expected",
    [
        (True, Label.QUOTATION),
        (False, Label.NOISE),
        ("quotation", Label.QUOTATION),
        ("Noise", Label.NOISE),
        ("TRUE", Label.QUOTATION),
        (0, Label.NOISE),
        (Label.NOISE, Label.NOISE),
    ],
)
def test_label_from_value(value, expected) -> None:
    assert Label.from_value(value) is expected


def test_label_rejects_unknown_values() -> None:
    with pytest.raises(ValueError):
        Label.from_value("maybe")
    with pytest.raises(ValueError):
        Label.from_value(2)


def test_label_vector() -> None:
    assert label_vector(["quotation", "noise", True]).tolist() == [1, 0, 1]


# -----------------------------------------------------------
# Join
# -----------------------------------------------------------


def test_join_drops_and_excludes() -> None:
    labels = pd.DataFrame(
        {
            "verse_id": ["v1", "v1", "v2", "v3", "v9", "v2"],
            "doc_id": ["p1", "p2", "p3", "p4", "p5", "p6"],
            "match": [True, False, True, True, False, False],
        }
    )
    measurements = pd.DataFrame(
        {
            "verse_id": ["v1", "v1", "v2", "v3", "v9"],
            "doc_id": ["p1", "p2", "p3", "p4", "p5"],
            "tokens": [10, 4, 12, 9, 5],
            "tfidf": [2.0, 0.3, 1.5, 1.1, 0.2],
            "proportion": [0.9, 0.2, np.nan, 0.8, 0.1],
            "runs_pval": [0.01, 0.5, 0.02, 0.03, 0.7],
        }
    )
    groups = pd.Series({"v1": "KJV", "v2": "KJV", "v3": "LDS"})
    summary = pd.DataFrame({"verse_id": ["v1", "v2", "v3"], "sim_total": [1.7, 0.0, 0.4], "sim_mean": [0.85, 0.0, 0.4]})

    frame, counts = join_features(labels, measurements, groups, summary, derivative_groups=["LDS"])

    assert counts == {
        "missing_label": 0,
        "duplicate_label": 0,
        "no_measurement": 1,
        "missing_features": 1,
        "unknown_verse": 1,
        "derivative": 1,
    }
    assert list(frame["doc_id"]) == ["p1", "p2"]
    assert list(frame["match"]) == ["quotation", "noise"]
    assert list(frame["group"]) == ["KJV", "KJV"]
    assert frame["sim_total"].tolist() == [1.7, 1.7]
    assert frame["tokens"].dtype == np.int64


def test_join_drops_unlabelled_and_repeated_rows() -> None:
    labels = pd.DataFrame(
        {
            "verse_id": ["v1", "v1", "v1", "v2"],
            "doc_id": ["p1", "p2", "p1", "p3"],
            "match": ["quotation", np.nan, "noise", None],
        }
    )
    measurements = pd.DataFrame(
        {
            "verse_id": ["v1", "v1", "v2"],
            "doc_id": ["p1", "p2", "p3"],
            "tokens": [10, 4, 12],
            "tfidf": [2.0, 0.3, 1.5],
            "proportion": [0.9, 0.2, 0.7],
            "runs_pval": [0.01, 0.5, 0.02],
        }
    )
    groups = pd.Series({"v1": "KJV", "v2": "KJV"})
    summary = pd.DataFrame({"verse_id": ["v1", "v2"], "sim_total": [1.0, 0.0], "sim_mean": [0.5, 0.0]})

    frame, counts = join_features(labels, measurements, groups, summary)

    assert counts["missing_label"] == 2
    assert counts["duplicate_label"] == 1
    assert counts["no_measurement"] == 0
    assert frame[["verse_id", "doc_id", "match"]].values.tolist() == [["v1", "p1", "quotation"]]


def test_join_fills_missing_summary_with_zero() -> None:
    labels = pd.DataFrame({"verse_id": ["v1"], "doc_id": ["p1"], "match": [True]})
    measurements = pd.DataFrame(
        {"verse_id": ["v1"], "doc_id": ["p1"], "tokens": [7], "tfidf": [1.0], "proportion": [0.5], "runs_pval": [0.1]}
    )
    empty = pd.DataFrame({"verse_id": pd.Series([], dtype=str), "sim_total": [], "sim_mean": []})
    frame, _ = join_features(labels, measurements, pd.Series({"v1": "KJV"}), empty)
    assert frame.loc[0, "sim_total"] == 0.0
    assert frame.loc[0, "sim_mean"] == 0.0


# -----------------------------------------------------------
# Split
# -----------------------------------------------------------


def _hundred() -> pd.DataFrame:
    data = _candidates(100)
    data["match"] = ["quotation"] * 70 + ["noise"] * 30
    return data


def test_split_is_stratified_and_reproducible() -> None:
    data = _hundred()
    train, test = stratified_split(data, test_size=0.15, seed=20)
    assert len(test) == 15
    assert len(train) == 85
    assert (train["match"] == "quotation").mean() == pytest.approx(0.70, abs=0.02)
    assert set(train["doc_id"]).isdisjoint(test["doc_id"])
    assert set(train["doc_id"]) | set(test["doc_id"]) == set(data["doc_id"])

    train2, test2 = stratified_split(data, test_size=0.15, seed=20)
    pd.testing.assert_frame_equal(train, train2)
    pd.testing.assert_frame_equal(test, test2)


def test_stored_split_is_reused() -> None:
    store = MemoryArtifactStore()
    data = _hundred()
    _, test = load_or_split(store, data, test_size=0.15, seed=20)
    _, test_again = load_or_split(store, data.iloc[:50], test_size=0.5, seed=1)
    pd.testing.assert_frame_equal(test, test_again)


# -----------------------------------------------------------
# Threshold
# -----------------------------------------------------------


def test_threshold_grid_is_clean() -> None:
    grid = threshold_grid(0.5, 1.0, 0.01)
    assert len(grid) == 51
    assert grid[0] == 0.5
    assert grid[-1] == 1.0
    assert 0.7 in grid


@pytest.mark.parametrize(
    "start, stop, step, expected_last, expected_len",
    [
        (0.5, 1.0, 0.03, 0.98, 17),
        (0.5, 0.9, 0.15, 0.8, 3),
        (0.5, 0.9, 0.1, 0.9, 5),
    ],
)
def test_threshold_grid_never_passes_stop(start, stop, step, expected_last, expected_len) -> None:
    grid = threshold_grid(start, stop, step)
    assert len(grid) == expected_len
    assert grid[-1] == expected_last
    assert grid.max() <= stop


def test_threshold_fixture() -> None:
    prob = np.array([0.95, 0.8, 0.65, 0.55, 0.3])
    y = np.array([1, 1, 0, 1, 0])
    choice = select_threshold(y, prob, step=0.05)
    assert choice.threshold == pytest.approx(0.70)
    assert choice.j == pytest.approx(2 / 3)


def test_threshold_matches_brute_force() -> None:
    rng = np.random.default_rng(4)
    y = rng.integers(0, 2, 200)
    prob = np.clip(0.5 * y + rng.uniform(0.2, 0.6, 200), 0, 1)
    choice = select_threshold(y, prob)

    scores = []
    for i in range(51):
        t = round(0.5 + 0.01 * i, 10)
        pred = prob >= t
        j = (pred & (y == 1)).sum() / (y == 1).sum() + (~pred & (y == 0)).sum() / (y == 0).sum() - 1
        scores.append((t, j))
    best_j = max(j for _, j in scores)
    best = [t for t, j in scores if abs(j - best_j) < 1e-9]
    assert choice.j == pytest.approx(best_j)
    assert any(abs(choice.threshold - t) < 1e-9 for t in best)


def test_scan_thresholds_columns() -> None:
    scan = scan_thresholds(np.array([1, 0]), np.array([0.9, 0.1]), step=0.25)
    assert list(scan.columns) == ["threshold", "sensitivity", "specificity", "j"]
    assert scan["threshold"].tolist() == [0.5, 0.75, 1.0]
    assert scan["j"].tolist() == [1.0, 1.0, 0.0]


# -----------------------------------------------------------
# Grid and selection
# -----------------------------------------------------------


def test_feature_helpers() -> None:
    assert base_features(("tokens", "tokens:tfidf", "tfidf:proportion")) == ["tokens", "tfidf", "proportion"]
    assert feature_cost(("tokens", "tfidf")) == 2.0
    assert feature_cost(("tokens", "runs_pval")) == 4.0
    frame = pd.DataFrame({"tokens": [2, 3], "tfidf": [0.5, 2.0]})
    assert build_matrix(frame, ("tokens", "tokens:tfidf")).tolist() == [[2.0, 1.0], [3.0, 6.0]]


def test_build_grid_expands_params() -> None:
    cells = build_grid(["core", "core_sim"], ["logistic"])
    assert len(cells) == 8
    assert [c.cell for c in cells] == list(range(8))
    assert {c.predictor_set for c in cells} == {"core", "core_sim"}


def _result(cell: int, pset: str, auc: float, j: float = 0.5, f1: float = 0.5) -> CellResult:
    return CellResult(
        cell=GridCell(cell, "logistic", pset, {"C": 1.0}),
        metrics={"accuracy": 0.8, "f1": f1, "j": j, "roc_auc": auc},
        oof_prob=np.zeros(3),
    )


def test_cheaper_set_wins_near_tie() -> None:
    results = [_result(0, "core_runs_sim", 0.900), _result(1, "core", 0.898)]
    assert select_model(results, tolerance=0.005).cell.predictor_set == "core"


def test_better_set_wins_outside_tolerance() -> None:
    results = [_result(0, "core_runs_sim", 0.900), _result(1, "core", 0.880)]
    assert select_model(results, tolerance=0.005).cell.predictor_set == "core_runs_sim"


def test_failed_cells_are_excluded() -> None:
    failed = CellResult(cell=GridCell(0, "logistic", "core", {"C": 1.0}), error="ValueError: boom")
    nan_auc = _result(1, "core", float("nan"))
    good = _result(2, "core_sim", 0.7)
    assert not failed.ok
    assert not nan_auc.ok
    assert select_model([failed, nan_auc, good]) is good
    with pytest.raises(TrainingError):
        select_model([failed, nan_auc])


def test_grid_survives_failing_cells() -> None:
    train = _candidates()
    train["runs_pval"] = np.nan
    cells = [GridCell(0, "logistic", "core_runs", {"C": 1.0}), GridCell(1, "logistic", "core", {"C": 1.0})]

    results = run_grid(train, cells, folds=3, seed=20)
    assert results[0].error is not None
    assert results[1].ok
    assert 0.5 < results[1].metrics["roc_auc"] <= 1.0
    assert len(results[1].oof_prob) == len(train)

    frame = results_frame(results)
    assert math.isnan(frame.loc[0, "roc_auc"])
    assert frame.loc[1, "error"] is None
    assert select_model(results).cell.cell == 1


def test_evaluate_cell_is_deterministic() -> None:
    train = _candidates()
    cell = GridCell(0, "logistic", "core_interactions", {"C": 0.1})
    first = evaluate_cell(cell, train, folds=5, seed=20)
    second = evaluate_cell(cell, train, folds=5, seed=20)
    assert first.ok
    assert np.allclose(first.oof_prob, second.oof_prob)


def test_non_converging_cell_is_recorded_as_failed() -> None:
    train = _candidates()
    cell = GridCell(0, "logistic", "core_interactions", {"C": 1000.0, "max_iter": 1})
    result = evaluate_cell(cell, train, folds=3, seed=20)
    assert not result.ok
    assert result.error.startswith("ConvergenceWarning")
    assert result.oof_prob is None
    assert math.isnan(results_frame([result]).loc[0, "roc_auc"])


# -----------------------------------------------------------
# Model artifact
# -----------------------------------------------------------


def test_model_artifact_round_trip(tmp_path) -> None:
    train = _candidates()
    cell = GridCell(0, "logistic", "core", {"C": 1.0})
    model = ModelArtifact(
        pipeline=fit_final(cell, train),
        features=cell.features,
        threshold=0.6,
        family=cell.family,
        predictor_set=cell.predictor_set,
        params=cell.params,
    )
    path = model.save(tmp_path / "model.joblib")
    loaded = ModelArtifact.load(path)

    new = train.drop(columns=["match", "runs_pval", "sim_total", "sim_mean"]).head(10)
    assert np.allclose(loaded.predict_proba(new), model.predict_proba(new))
    assert all(isinstance(label, Label) for label in loaded.predict(new))

    out = predict_frame(loaded, new, threshold=0.0)
    assert (out["prediction"] == "quotation").all()
    assert out["probability"].between(0.0, 1.0).all()

    with pytest.raises(ValueError):
        loaded.predict_proba(new.drop(columns=["tfidf"]))


def test_model_load_rejects_other_objects(tmp_path) -> None:
    import joblib

    joblib.dump({"not": "a model"}, tmp_path / "other.joblib")
    with pytest.raises(TypeError):
        ModelArtifact.load(tmp_path / "other.joblib")
