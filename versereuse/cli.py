"""verse-reuse unified command-line interface.

Usage
-----
$ versereuse similarity config.yml
$ versereuse train config.yml
$ versereuse predict artifacts/model.joblib candidates.csv -o labelled.csv
$ versereuse report config.yml

The *similarity* command builds the scripture payload, MinHash signatures,
LSH candidate pairs, exact same-version similarity records and the per-verse
summary, and writes the tables back to the verse store.

The *train* command joins labelled quotation candidates with their features,
splits them, fits the model grid, picks a model and threshold, and scores the
holdout once.

The *predict* command labels new candidates with a saved model.

The *report* command prints newspaper word counts per decade.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

from .config import load_config
from .classify.model import ModelArtifact
from .classify.pipeline import ClassificationPipeline, predict_frame
from .detector.output import FileArtifactStore
from .detector.pipeline import SimilarityPipeline
from .stores import CsvLabelStore, CsvVerseStore

logger = logging.getLogger(__name__)

# -----------------------------------------------------------
# Helpers
# -----------------------------------------------------------


def setup_logging(verbose: bool = False) -> None:
    """Console logging with timestamps; DEBUG env var or *verbose* for debug level."""
    debug = verbose or os.environ.get("DEBUG", "").lower() in ("true", "1", "yes")
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    for noisy in ("joblib", "nltk", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _verse_store(cfg: Dict[str, Any]) -> CsvVerseStore:
    return CsvVerseStore(cfg["paths"]["verses"], cfg["paths"]["output"])


def _label_store(cfg: Dict[str, Any]) -> CsvLabelStore:
    paths = cfg["paths"]
    return CsvLabelStore(paths["labels"], paths["measurements"], paths.get("wordcounts"))


def _dump_stats(stats: Dict[str, Any], path: Path) -> None:
    with path.open("w") as f:
        json.dump(stats, f, indent=2, default=str)
    print(f"💾 Detailed stats saved to {path}")


# -----------------------------------------------------------
# Commands
# -----------------------------------------------------------


def _cmd_similarity(args: argparse.Namespace) -> None:
    cfg = load_config(args.config)
    artifacts = FileArtifactStore(cfg["paths"]["artifacts"])
    pipeline = SimilarityPipeline(_verse_store(cfg), artifacts, cfg, verbose=not args.quiet)
    stats = pipeline.run()
    if args.save_stats:
        _dump_stats(stats, Path(cfg["paths"]["artifacts"]) / "similarity_stats.json")


def _cmd_train(args: argparse.Namespace) -> None:
    cfg = load_config(args.config)
    artifacts = FileArtifactStore(cfg["paths"]["artifacts"])
    pipeline = ClassificationPipeline(
        _verse_store(cfg), _label_store(cfg), artifacts, cfg, verbose=not args.quiet
    )
    stats = pipeline.run()
    if args.save_stats:
        _dump_stats(stats, Path(cfg["paths"]["artifacts"]) / "train_stats.json")


def _cmd_predict(args: argparse.Namespace) -> None:
    model = ModelArtifact.load(args.model)
    frame = pd.read_csv(args.input, dtype={"verse_id": str, "doc_id": str})
    out = predict_frame(model, frame, threshold=args.threshold)
    out.to_csv(args.output, index=False)
    n_quote = int((out["prediction"] == "quotation").sum())
    print(f"✅ Labelled {len(out):,} candidates ({n_quote:,} quotations) at threshold "
          f"{args.threshold if args.threshold is not None else model.threshold:.2f} → {args.output}")


def _cmd_report(args: argparse.Namespace) -> None:
    cfg = load_config(args.config)
    counts = _label_store(cfg).wordcounts()
    if counts is None:
        print("No word-count table configured (paths.wordcounts).", file=sys.stderr)
        return
    counts = counts.assign(decade=(counts["year"] // 10) * 10)
    by_decade = counts.groupby("decade")[["wordcount", "pages", "batches"]].sum()

    print("\n======= Newspaper corpus =======")
    for decade, row in by_decade.iterrows():
        print(f"{decade}s : {int(row['wordcount']):>15,} words  {int(row['pages']):>10,} pages")
    print(f"Total  : {int(by_decade['wordcount'].sum()):>15,} words  {int(by_decade['pages'].sum()):>10,} pages")


# -----------------------------------------------------------
# Entrypoint
# -----------------------------------------------------------


def main(argv: List[str] | None = None) -> None:  # noqa: D401 – simple
    parser = argparse.ArgumentParser(
        prog="versereuse",
        description="Scripture borrowing detection and quotation classification",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(required=True, dest="cmd")

    # similarity
    p_sim = sub.add_parser("similarity", help="Compute verse-to-verse similarity tables")
    p_sim.add_argument("config", type=Path, help="Path to YAML configuration file")
    p_sim.add_argument("--save-stats", action="store_true", help="Save run statistics to JSON")
    p_sim.add_argument("-q", "--quiet", action="store_true", help="Suppress progress output")
    p_sim.set_defaults(func=_cmd_similarity)

    # train
    p_train = sub.add_parser("train", help="Fit and select the quotation classifier")
    p_train.add_argument("config", type=Path, help="Path to YAML configuration file")
    p_train.add_argument("--save-stats", action="store_true", help="Save run statistics to JSON")
    p_train.add_argument("-q", "--quiet", action="store_true", help="Suppress progress output")
    p_train.set_defaults(func=_cmd_train)

    # predict
    p_pred = sub.add_parser("predict", help="Label new quotation candidates with a saved model")
    p_pred.add_argument("model", type=Path, help="Saved model artifact (.joblib)")
    p_pred.add_argument("input", type=Path, help="CSV of candidates with feature columns")
    p_pred.add_argument("-o", "--output", type=Path, required=True, help="Output CSV path")
    p_pred.add_argument("--threshold", type=float, help="Override the stored decision threshold")
    p_pred.set_defaults(func=_cmd_predict)

    # report
    p_rep = sub.add_parser("report", help="Newspaper word counts per decade")
    p_rep.add_argument("config", type=Path, help="Path to YAML configuration file")
    p_rep.set_defaults(func=_cmd_report)

    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    args.func(args)


if __name__ == "__main__":  # pragma: no cover
    main()
