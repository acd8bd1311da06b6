"""
Sample Code Validator

Grammar check for the handwritten sample codes photographed alongside each
sample. A code is a country prefix followed by dot-separated numeric
segments, each constrained to a range; some segments accept a single
trailing capital letter.
"""

import re
from typing import List, Tuple

# (prefix, [(low, high), ...]) per accepted grammar, one range per segment
CODE_GRAMMARS: List[Tuple[str, List[Tuple[int, int]]]] = [
    # MWI.<region>.<district>.<site><letter?>.<household>.<sample>
    ("MWI", [(1, 3), (1, 99), (1, 999), (1, 99), (1, 99)]),
    # KEN.<county>.<site><letter?>.<household>.<sample>
    ("KEN", [(1, 47), (1, 999), (1, 99), (1, 99)]),
]

# Segments (0-based, after the prefix) that may carry a letter suffix
LETTER_SEGMENTS = {
    "MWI": {2},
    "KEN": {1},
}

SEGMENT_PATTERN = re.compile(r"([1-9][0-9]{0,2})([A-Z]?)")


def _segment_ok(segment: str, low: int, high: int, letter_allowed: bool) -> bool:
    match = SEGMENT_PATTERN.fullmatch(segment)
    if not match:
        return False
    number, letter = match.groups()
    if letter and not letter_allowed:
        return False
    return low <= int(number) <= high


def is_valid_code(value) -> bool:
    """
    Check whether a string is a well-formed sample code.

    Matching is anchored and case-sensitive. Any non-string input is
    simply invalid; the function never raises.

    Examples:
        >>> is_valid_code("MWI.1.2.10A.5.3")
        True
        >>> is_valid_code("mwi.1.2.10A.5.3")
        False
    """
    if not isinstance(value, str) or not value:
        return False

    parts = value.split(".")
    prefix, segments = parts[0], parts[1:]

    for grammar_prefix, ranges in CODE_GRAMMARS:
        if prefix != grammar_prefix or len(segments) != len(ranges):
            continue
        letters = LETTER_SEGMENTS.get(grammar_prefix, set())
        if all(
            _segment_ok(segment, low, high, index in letters)
            for index, (segment, (low, high)) in enumerate(zip(segments, ranges))
        ):
            return True

    return False
