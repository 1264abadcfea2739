"""Payee normalization and similarity scoring."""

import re
from typing import List, Optional

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_TOKEN = re.compile(r"[a-z]+|[0-9]+")


def normalize_payee(payee: Optional[str]) -> str:
    """
    Lowercase and drop everything that is not a letter or digit.

    >>> normalize_payee("SHELL #1234 OAKVILLE ON")
    'shell1234oakvilleon'
    """
    if not payee:
        return ""
    return _NON_ALNUM.sub("", payee.lower())


def normalized_match(payee1: Optional[str], payee2: Optional[str]) -> bool:
    norm1 = normalize_payee(payee1)
    norm2 = normalize_payee(payee2)
    if not norm1 or not norm2:
        return False
    return norm1 == norm2


def _levenshtein(str1: str, str2: str) -> int:
    previous = list(range(len(str2) + 1))
    for i, char1 in enumerate(str1, start=1):
        current = [i]
        for j, char2 in enumerate(str2, start=1):
            cost = 0 if char1 == char2 else 1
            current.append(min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


def fuzzy_match(payee1: Optional[str], payee2: Optional[str]) -> float:
    """Edit-distance similarity of the normalized payees, 0-100."""
    norm1 = normalize_payee(payee1)
    norm2 = normalize_payee(payee2)

    if not norm1 or not norm2:
        return 0.0
    if norm1 == norm2:
        return 100.0

    distance = _levenshtein(norm1, norm2)
    max_len = max(len(norm1), len(norm2))
    similarity = (1 - distance / max_len) * 100
    return max(0.0, min(100.0, similarity))


def _tokens(normalized: str) -> List[str]:
    return _TOKEN.findall(normalized)


def token_based_similarity(payee1: Optional[str], payee2: Optional[str]) -> float:
    """
    Jaccard overlap of letter/digit runs, 0-100.

    Normalization removes whitespace, so tokens are split on alpha/numeric
    boundaries: "SHELL #1234" and "Shell 1234 Gas" share {"1234"}.
    """
    tokens1 = set(_tokens(normalize_payee(payee1)))
    tokens2 = set(_tokens(normalize_payee(payee2)))

    if not tokens1 or not tokens2:
        return 0.0

    matches = len(tokens1 & tokens2)
    union = len(tokens1 | tokens2)
    return (matches / union) * 100


def payee_similarity(payee1: Optional[str], payee2: Optional[str]) -> float:
    """Best of exact-normalized, edit-distance and token scores."""
    if normalized_match(payee1, payee2):
        return 100.0
    return max(fuzzy_match(payee1, payee2), token_based_similarity(payee1, payee2))


def payee_contains(payee: Optional[str], substring: Optional[str]) -> bool:
    """True if the normalized substring occurs in the normalized payee."""
    norm = normalize_payee(payee)
    norm_sub = normalize_payee(substring)
    if not norm or not norm_sub:
        return False
    return norm_sub in norm
