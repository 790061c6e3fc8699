"""
Answer matching for typed-mode study sessions.

This is a pure computation module with no I/O.
"""

import re
from difflib import SequenceMatcher

from flashmark.domain.constants import DEFAULT_FUZZY_THRESHOLD
from flashmark.domain.errors import ValidationError
from flashmark.domain.models import DiffSegment, DiffType, MatchingMode, MatchResult

_TOKEN_RE = re.compile(r"\s+|\S+")


def normalize_whitespace(text: str) -> str:
    """Trim and collapse internal whitespace runs to a single space."""
    return " ".join(text.split())


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance over code points, two-row dynamic programming."""
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        curr = [i] + [0] * len(b)
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            curr[j] = min(prev[j] + 1, curr[j - 1] + 1, prev[j - 1] + cost)
        prev = curr
    return prev[-1]


def normalized_similarity(a: str, b: str) -> float:
    """1 - distance / max(len). Two empty strings are identical (1.0)."""
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / max_len


def _tokens(text: str) -> list[str]:
    return _TOKEN_RE.findall(text)


def word_diff(typed: str, correct: str) -> list[DiffSegment]:
    """
    Token-level alignment of typed against correct text.

    Whitespace runs are tokens too, so SAME+ADDED segments concatenate back
    to `typed` and SAME+REMOVED segments concatenate back to `correct`.
    Adjacent segments of the same type are merged.
    """
    a = _tokens(typed)
    b = _tokens(correct)
    segments: list[DiffSegment] = []

    def emit(parts: list[str], diff_type: DiffType) -> None:
        text = "".join(parts)
        if not text:
            return
        if segments and segments[-1].diff_type is diff_type:
            segments[-1] = DiffSegment(segments[-1].text + text, diff_type)
        else:
            segments.append(DiffSegment(text, diff_type))

    matcher = SequenceMatcher(a=a, b=b, autojunk=False)
    for op, i1, i2, j1, j2 in matcher.get_opcodes():
        if op == "equal":
            emit(a[i1:i2], DiffType.SAME)
        else:
            # "replace", "delete" and "insert" all reduce to both sides.
            emit(a[i1:i2], DiffType.ADDED)
            emit(b[j1:j2], DiffType.REMOVED)
    return segments


def compare(
    typed: str,
    correct: str,
    mode: MatchingMode | str = MatchingMode.FUZZY,
    fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
) -> MatchResult:
    """
    Compare a typed answer to the canonical answer.

    Raises:
        ValidationError: unknown mode or threshold outside [0, 1].
    """
    mode = MatchingMode.parse(mode)
    if not 0.0 <= fuzzy_threshold <= 1.0:
        raise ValidationError(f"fuzzy threshold must be within [0, 1], got {fuzzy_threshold}")

    normalized_typed = normalize_whitespace(typed)
    normalized_correct = normalize_whitespace(correct)

    if mode is MatchingMode.EXACT:
        is_correct = normalized_typed == normalized_correct
        similarity = 1.0 if is_correct else 0.0
    elif mode is MatchingMode.CASE_INSENSITIVE:
        is_correct = normalized_typed.lower() == normalized_correct.lower()
        similarity = 1.0 if is_correct else 0.0
    else:
        similarity = normalized_similarity(normalized_typed.lower(), normalized_correct.lower())
        is_correct = similarity >= fuzzy_threshold

    return MatchResult(
        is_correct=is_correct,
        similarity=similarity,
        matching_mode=mode,
        normalized_typed=normalized_typed,
        normalized_correct=normalized_correct,
        diff=word_diff(normalized_typed, normalized_correct),
    )
