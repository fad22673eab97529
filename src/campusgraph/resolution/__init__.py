"""Entity resolution for campusgraph.

Resolves raw identifiers and names to canonical catalog entities.
"""

from .resolver import (
    EntityResolver,
    ResolutionMethod,
    ResolutionResult,
    Suggestion,
    coerce_kind,
)
from .similarity import fuzzy_confidence, normalize_name, similarity_score, tokenize

__all__ = [
    "EntityResolver",
    "ResolutionMethod",
    "ResolutionResult",
    "Suggestion",
    "coerce_kind",
    "fuzzy_confidence",
    "normalize_name",
    "similarity_score",
    "tokenize",
]
