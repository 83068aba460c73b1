"""Camelot wheel key compatibility rules."""

import re
from typing import Callable, List, Optional, Tuple

_CAMELOT_RE = re.compile(r"^(\d{1,2})([AB])$")

UNKNOWN_RELATION = (0.2, "unknown")


def parse_camelot(key: str) -> Optional[Tuple[int, str]]:
    """Parse Camelot notation ("8A") into (number, mode), or None if invalid."""
    if not key:
        return None
    match = _CAMELOT_RE.match(key.strip().upper())
    if not match:
        return None
    number = int(match.group(1))
    if not 1 <= number <= 12:
        return None
    return number, match.group(2)


def wheel_distance(num_a: int, num_b: int) -> int:
    """Steps between two wheel positions, going the short way round."""
    diff = abs(num_a - num_b) % 12
    return min(diff, 12 - diff)


# Each rule sees (num_a, mode_a, num_b, mode_b). First match wins, so the
# order below is the precedence.
_Rule = Tuple[Callable[[int, str, int, str], bool], float, str]

KEY_RULES: List[_Rule] = [
    (lambda na, ma, nb, mb: na == nb and ma != mb, 0.9, "relative"),
    (lambda na, ma, nb, mb: wheel_distance(na, nb) == 1 and ma == mb, 0.85, "compatible"),
    (lambda na, ma, nb, mb: wheel_distance(na, nb) == 2 and ma == mb, 0.7, "harmonic"),
    (lambda na, ma, nb, mb: wheel_distance(na, nb) == 1 and ma != mb, 0.6, "diagonal"),
]


def key_similarity(key_a: str, key_b: str) -> Tuple[float, str]:
    """Score harmonic compatibility of two Camelot keys.

    Returns:
        (similarity, relation) where relation is one of same, relative,
        compatible, harmonic, diagonal, clash or unknown.
    """
    if key_a and key_a == key_b:
        return 1.0, "same"

    parsed_a = parse_camelot(key_a)
    parsed_b = parse_camelot(key_b)
    if parsed_a is None or parsed_b is None:
        return UNKNOWN_RELATION

    if parsed_a == parsed_b:
        # "8a" vs "8A"
        return 1.0, "same"

    num_a, mode_a = parsed_a
    num_b, mode_b = parsed_b
    for matches, score, relation in KEY_RULES:
        if matches(num_a, mode_a, num_b, mode_b):
            return score, relation
    return 0.2, "clash"
