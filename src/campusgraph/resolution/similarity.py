"""Name similarity scoring for entity resolution.

Containment and token overlap, not edit distance. Short institutional
names with inconsistent abbreviations ("A J Institute" vs
"A J INSTITUTE OF MEDICAL SCIENCES") still score high.

Scoring rules:
- Either side empty after normalization: 0.0
- Candidate contains the query: 0.9
- Query contains the candidate: 0.85
- Otherwise token overlap: query tokens that contain, or are contained
  in, some candidate token, divided by the larger token count, scaled
  to at most 0.8

The final score is the maximum of the containment and overlap heuristics.
"""

import re

CONTAINS_QUERY_SCORE = 0.9
CONTAINED_IN_QUERY_SCORE = 0.85
MAX_TOKEN_OVERLAP_SCORE = 0.8

_WHITESPACE = re.compile(r"\s+")


def normalize_name(value: str | None) -> str:
    """Lower-case, trim and collapse internal whitespace."""
    if not value:
        return ""
    return _WHITESPACE.sub(" ", value.strip().lower())


def tokenize(value: str | None) -> list[str]:
    """Split a name into normalized whitespace-delimited tokens."""
    normalized = normalize_name(value)
    return normalized.split(" ") if normalized else []


def token_overlap_score(query: str, candidate: str) -> float:
    """Share of matching tokens, scaled to at most 0.8."""
    query_tokens = tokenize(query)
    candidate_tokens = tokenize(candidate)
    if not query_tokens or not candidate_tokens:
        return 0.0

    shared = sum(
        1
        for token in query_tokens
        if any(token in other or other in token for other in candidate_tokens)
    )
    ratio = shared / max(len(query_tokens), len(candidate_tokens))
    return min(MAX_TOKEN_OVERLAP_SCORE, ratio * MAX_TOKEN_OVERLAP_SCORE)


def similarity_score(query: str, candidate: str) -> float:
    """Score how well ``candidate`` matches ``query`` on a [0, 1] scale."""
    normalized_query = normalize_name(query)
    normalized_candidate = normalize_name(candidate)
    if not normalized_query or not normalized_candidate:
        return 0.0

    containment = 0.0
    if normalized_query in normalized_candidate:
        containment = CONTAINS_QUERY_SCORE
    elif normalized_candidate in normalized_query:
        containment = CONTAINED_IN_QUERY_SCORE

    return max(containment, token_overlap_score(normalized_query, normalized_candidate))


def fuzzy_confidence(score: float, threshold: float) -> float:
    """Map a similarity score at or above ``threshold`` onto [0.7, 0.99]."""
    if threshold >= 1.0:
        return 0.99
    confidence = 0.7 + 0.29 * (score - threshold) / (1.0 - threshold)
    return min(0.99, max(0.7, confidence))
