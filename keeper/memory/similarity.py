"""
Similarity Helpers
==================

Plain functions used by lesson retrieval:

- tokenize / jaccard: lexical overlap between two texts
- cosine_similarity / normalized_cosine: semantic overlap between embeddings
- infer_category: fixed keyword classifier for task text

Cosine Similarity:
    cos(A, B) = (A · B) / (||A|| × ||B||)

    Ranges from -1 to 1. normalized_cosine maps it onto [0, 1] with
    (cos + 1) / 2 so it can be mixed with the other [0, 1] score terms.
"""

import re
from typing import Sequence

import numpy as np

_TOKEN_PATTERN = re.compile(r"\w+")

# Checked in this order; the first category with a keyword in the task wins
CATEGORY_KEYWORDS: dict[str, frozenset[str]] = {
    "debug": frozenset({
        "debug", "fix", "bug", "bugs", "error", "errors", "failing", "fails",
        "failure", "broken", "crash", "crashes", "traceback", "exception",
    }),
    "writing": frozenset({
        "draft", "essay", "article", "blog", "email", "letter", "summarize",
        "summary", "rewrite", "proofread", "poem", "story", "documentation",
    }),
    "analysis": frozenset({
        "analyze", "analyse", "analysis", "compare", "evaluate", "investigate",
        "measure", "metrics", "statistics", "stats", "report", "trend", "data",
    }),
    "coding": frozenset({
        "code", "implement", "function", "script", "refactor", "program",
        "class", "module", "api", "python", "javascript", "compile", "build",
    }),
}

DEFAULT_CATEGORY = "general"


def tokenize(text: str) -> set[str]:
    """Lowercased word tokens of a text, as a set."""
    return set(_TOKEN_PATTERN.findall(text.lower()))


def jaccard(a: str, b: str) -> float:
    """Token-set Jaccard similarity; 0.0 when either text has no tokens."""
    tokens_a = tokenize(a)
    tokens_b = tokenize(b)
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 if either vector is all zeros or the dimensions differ.
    """
    vec_a = np.asarray(a, dtype=float)
    vec_b = np.asarray(b, dtype=float)
    if vec_a.shape != vec_b.shape:
        return 0.0

    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(vec_a, vec_b) / (norm_a * norm_b))


def normalized_cosine(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity mapped onto [0, 1]."""
    return (cosine_similarity(a, b) + 1.0) / 2.0


def infer_category(task: str) -> str:
    """
    Classify task text into debug, writing, analysis, coding or general.

    Example:
        infer_category("Fix failing tests in parser")  # "debug"
        infer_category("Hello there")                  # "general"
    """
    tokens = tokenize(task)
    for category, keywords in CATEGORY_KEYWORDS.items():
        if tokens & keywords:
            return category
    return DEFAULT_CATEGORY
