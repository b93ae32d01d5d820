"""Tokenisation utilities for verse-reuse.

Two tokenizers are provided, both pure functions of ``(text, params)``:

* :func:`skip_ngram_tokenize` - skip n-grams for approximate matching. Extra
  skips make matching more robust to bad OCR, at the cost of many more tokens.
* :func:`word_tokenize` - plain words with numerals stripped, for statistics
  where word order matters (e.g. a runs test).

Stopwords are removed from the word sequence *before* n-grams are formed, so a
gram is always built from adjacent surviving words.
"""
from __future__ import annotations

import functools
import itertools
import logging
import re
import string
from typing import Callable, FrozenSet, Iterable, List

import nltk

logger = logging.getLogger(__name__)

Tokenizer = Callable[[str], List[str]]

# -----------------------------------------------------------
# Stopwords
# -----------------------------------------------------------

CUSTOM_STOPWORDS: FrozenSet[str] = frozenset(
    """
    a an at and are as be but by do for from he her his i in into is it my of
    on or say she that the their there these they this to was what will with
    you two four five six seven eight nine ten eleven twelve thirteen fourteen
    fifteen sixteen seventeen eighteen nineteen twenty thirty forty fifty sixty
    seventy eighty ninety hundred
    """.split()
)


def _ensure_nltk_stopwords() -> None:
    try:
        nltk.data.find("corpora/stopwords")
    except LookupError:
        logger.info("Downloading nltk stopwords corpus")
        nltk.download("stopwords", quiet=True)


@functools.lru_cache(maxsize=None)
def bible_stopwords(include_english: bool = True) -> FrozenSet[str]:
    """Return the stopword set used for scripture matching.

    The set is the custom list above, plus every single letter, plus (when
    *include_english* is true) the nltk English stopword list.
    """
    words = set(CUSTOM_STOPWORDS) | set(string.ascii_lowercase)
    if include_english:
        _ensure_nltk_stopwords()
        from nltk.corpus import stopwords

        words |= set(stopwords.words("english"))
    return frozenset(words)


def resolve_stopwords(name: str) -> FrozenSet[str]:
    """Map a configuration name (``bible``, ``custom`` or ``none``) to a stopword set."""
    if name == "bible":
        return bible_stopwords(True)
    if name == "custom":
        return bible_stopwords(False)
    if name == "none":
        return frozenset()
    raise ValueError(f"Unknown stopword set: {name!r}")


# -----------------------------------------------------------
# Tokenisation helpers
# -----------------------------------------------------------

_WORD_RE = re.compile(r"\w+(?:'\w+)*")
_NUMERIC_RE = re.compile(r"^[\d_]+$")


def _words(text: str, stopwords: Iterable[str], strip_numeric: bool) -> List[str]:
    # Cast non-string (e.g. NaN from a CSV) to empty string.
    if text is None or not isinstance(text, str):
        text = ""
    stops = stopwords if isinstance(stopwords, (set, frozenset)) else set(stopwords)
    words = _WORD_RE.findall(text.lower())
    if strip_numeric:
        words = [w for w in words if not _NUMERIC_RE.match(w)]
    return [w for w in words if w not in stops]


def word_tokenize(
    text: str,
    *,
    stopwords: Iterable[str] = frozenset(),
    strip_numeric: bool = True,
) -> List[str]:
    """Split *text* into lower-cased words, dropping stopwords and numerals."""
    return _words(text, stopwords, strip_numeric)


@functools.lru_cache(maxsize=64)
def _valid_skips(n: int, k: int) -> List[tuple]:
    """Word offsets for every n-gram shape with at most *k* words skipped per gap."""
    if n == 1:
        return [(0,)]
    shapes = []
    for gaps in itertools.product(range(1, k + 2), repeat=n - 1):
        shapes.append((0,) + tuple(itertools.accumulate(gaps)))
    return shapes


def skip_ngrams(words: List[str], n: int, n_min: int = 1, k: int = 0) -> List[str]:
    """Generate skip n-grams of length ``n_min..n`` from an already filtered word list."""
    if n < 1 or n_min < 1 or n_min > n:
        raise ValueError(f"Invalid n-gram range: n_min={n_min}, n={n}")
    if k < 0:
        raise ValueError("k must be non-negative")

    grams: List[str] = []
    length = len(words)
    for size in range(n_min, n + 1):
        for shape in _valid_skips(size, k):
            span = shape[-1]
            for start in range(length - span):
                grams.append(" ".join(words[start + off] for off in shape))
    return grams


def skip_ngram_tokenize(
    text: str,
    *,
    n: int = 4,
    n_min: int = 3,
    k: int = 1,
    stopwords: Iterable[str] = frozenset(),
) -> List[str]:
    """Tokenise *text* into skip n-grams.

    Parameters
    ----------
    text : str
        The raw verse or quotation text.
    n, n_min : int
        Longest and shortest gram length in words.
    k : int
        Maximum number of words skipped between two constituent words.
    stopwords : iterable of str
        Removed before grams are formed.
    """
    return skip_ngrams(_words(text, stopwords, strip_numeric=False), n, n_min, k)


def make_tokenizers(
    *,
    n: int = 4,
    n_min: int = 3,
    k: int = 1,
    stopwords: str | Iterable[str] = "bible",
) -> tuple[Tokenizer, Tokenizer]:
    """Return ``(ngram_tokenizer, word_tokenizer)`` bound to the given parameters.

    Both are :func:`functools.partial` objects so they pickle with joblib.
    """
    if isinstance(stopwords, str):
        stops = resolve_stopwords(stopwords)
    else:
        stops = frozenset(stopwords)
    ngram_tok = functools.partial(skip_ngram_tokenize, n=n, n_min=n_min, k=k, stopwords=stops)
    word_tok = functools.partial(word_tokenize, stopwords=stops, strip_numeric=True)
    return ngram_tok, word_tok
