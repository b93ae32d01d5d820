"""Run configuration.

A YAML file is deep-merged over :data:`DEFAULTS`; any key left out keeps its
default. Example::

    paths:
      verses: data/scriptures.csv
      labels: data/labels.csv
      measurements: data/measurements.csv
      artifacts: artifacts/
    lsh:
      num_hashes: 120
      num_bands: auto
"""
from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml  # type: ignore

from .detector.lsh_index import choose_bands


class ConfigError(ValueError):
    """The configuration is invalid."""


DEFAULTS: Dict[str, Any] = {
    "paths": {
        "verses": "data/scriptures.csv",
        "labels": "data/labels.csv",
        "measurements": "data/measurements.csv",
        "wordcounts": None,
        "artifacts": "artifacts",
        "output": "results",
    },
    "tokenizer": {
        "n": 4,
        "n_min": 3,
        "k": 1,
        "stopwords": "bible",
    },
    "lsh": {
        "num_hashes": 120,
        "num_bands": "auto",
        "seed": 42,
        "min_similarity": 0.25,
    },
    "similarity": {
        "min_score": 0.1,
    },
    "classify": {
        "test_size": 0.15,
        "seed": 20,
        "derivative_groups": ["LDS"],
        "required_features": ["tokens", "tfidf", "proportion", "runs_pval"],
        "predictor_sets": ["core", "core_runs", "core_sim", "core_runs_sim", "core_interactions"],
        "families": ["logistic"],
        "cv_folds": 5,
        "n_jobs": 1,
        "tolerance": 0.005,
        "threshold": {"start": 0.5, "stop": 1.0, "step": 0.01},
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def validate(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Check the merged configuration and resolve ``num_bands: auto``."""
    tok = cfg["tokenizer"]
    if not 1 <= int(tok["n_min"]) <= int(tok["n"]):
        raise ConfigError(f"tokenizer: need 1 <= n_min <= n, got n_min={tok['n_min']}, n={tok['n']}")
    if int(tok["k"]) < 0:
        raise ConfigError("tokenizer.k must be >= 0")
    if tok["stopwords"] not in ("bible", "custom", "none"):
        raise ConfigError(f"tokenizer.stopwords must be bible, custom or none, got {tok['stopwords']!r}")

    lsh = cfg["lsh"]
    num_hashes = int(lsh["num_hashes"])
    if num_hashes <= 0:
        raise ConfigError("lsh.num_hashes must be positive")
    if lsh["num_bands"] == "auto":
        lsh["num_bands"] = choose_bands(num_hashes, float(lsh["min_similarity"]))
    num_bands = int(lsh["num_bands"])
    if num_bands < 2 or num_hashes % num_bands:
        raise ConfigError(f"lsh.num_bands ({num_bands}) must be >= 2 and evenly divide lsh.num_hashes ({num_hashes})")

    min_score = float(cfg["similarity"]["min_score"])
    if not 0.0 <= min_score <= 1.0:
        raise ConfigError("similarity.min_score must lie in [0, 1]")

    cls = cfg["classify"]
    if not 0.0 < float(cls["test_size"]) < 1.0:
        raise ConfigError("classify.test_size must lie strictly between 0 and 1")
    if int(cls["cv_folds"]) < 2:
        raise ConfigError("classify.cv_folds must be at least 2")

    # Local import: the registries live with the trainer.
    from .classify.train import MODEL_FAMILIES, PREDICTOR_SETS

    unknown = [p for p in cls["predictor_sets"] if p not in PREDICTOR_SETS]
    if unknown:
        raise ConfigError(f"Unknown predictor sets: {unknown}")
    unknown = [f for f in cls["families"] if f not in MODEL_FAMILIES]
    if unknown:
        raise ConfigError(f"Unknown model families: {unknown}")

    thr = cls["threshold"]
    if not 0.0 <= float(thr["start"]) < float(thr["stop"]) <= 1.0 or float(thr["step"]) <= 0:
        raise ConfigError("classify.threshold needs 0 <= start < stop <= 1 and step > 0")
    return cfg


def load_config(path: Union[str, Path, None] = None, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Load *path* (YAML), merge it over the defaults, apply *overrides*, validate."""
    cfg = copy.deepcopy(DEFAULTS)
    if path is not None:
        path = Path(path)
        with path.open() as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ConfigError(f"{path}: top level must be a mapping")
        cfg = _merge(cfg, raw)
        base = path.resolve().parent
        for key, value in cfg["paths"].items():
            if value is not None and not Path(value).is_absolute():
                cfg["paths"][key] = str(base / value)
    if overrides:
        cfg = _merge(cfg, overrides)
    return validate(cfg)
