"""Scripture payload: document-term matrix, vectorizer and word tokens.

Several choices made here shape how quotations are found later: the stopword
set, the skip n-gram parameters, and the vocabulary itself. The vectorizer is
saved with the matrix so that newspaper matrices are built with the same
columns as the scripture matrix.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List

import pandas as pd
from scipy import sparse
from sklearn.feature_extraction.text import CountVectorizer

logger = logging.getLogger(__name__)


@dataclass
class ScripturePayload:
    vectorizer: CountVectorizer
    dtm: sparse.csr_matrix
    doc_ids: List[str]
    word_tokens: Dict[str, List[str]]

    @property
    def vocabulary_size(self) -> int:
        return len(self.vectorizer.vocabulary_)

    def transform(self, texts: List[str]) -> sparse.csr_matrix:
        """Vectorise new texts (e.g. newspaper pages) onto the scripture columns."""
        return self.vectorizer.transform(texts)


def build_payload(
    docs: pd.DataFrame,
    ngram_tokenizer: Callable[[str], List[str]],
    word_tokenizer: Callable[[str], List[str]],
) -> ScripturePayload:
    """Build the scripture document-term matrix over n-gram tokens.

    *ngram_tokenizer* must be picklable (a module-level function or a
    :func:`functools.partial` of one) because it is stored on the vectorizer.
    """
    texts = docs["text"].fillna("").astype(str).tolist()
    doc_ids = docs["doc_id"].astype(str).tolist()

    vectorizer = CountVectorizer(analyzer=ngram_tokenizer)
    dtm = vectorizer.fit_transform(texts).tocsr()
    word_tokens = {doc_id: word_tokenizer(text) for doc_id, text in zip(doc_ids, texts)}

    logger.info("Payload: %d documents x %d n-gram terms (%d non-zero)", dtm.shape[0], dtm.shape[1], dtm.nnz)
    return ScripturePayload(vectorizer=vectorizer, dtm=dtm, doc_ids=doc_ids, word_tokens=word_tokens)
