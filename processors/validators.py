"""Deterministic answer checks for the challenge kinds that need no AI.

Every validator takes the submitted answer and the canonical answer and returns
``True`` when the submission is correct. They are pure functions; ``validate`` picks
the right one through ``VALIDATORS``.
"""
import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Callable

from processors.challenge import ChallengeKind

PAIR_SEPARATOR = " - "


def clean_text(text: str) -> str:
    """Removes punctuation and extra whitespace and converts to lowercase."""
    text = re.sub(r"[^\w\s]", "", text)
    text = re.sub(r"\s+", " ", text)
    return text.lower().strip()


def _as_options(canonical: Any) -> tuple[str, ...]:
    if isinstance(canonical, str):
        return (canonical,)
    return tuple(canonical)


def validate_choice(submitted: Any, canonical: Any) -> bool:
    if not isinstance(submitted, str):
        return False
    return submitted in _as_options(canonical)


def validate_fill_blank(submitted: Any, canonical: Any) -> bool:
    if not isinstance(submitted, str):
        return False
    return submitted.strip() in {option.strip() for option in _as_options(canonical)}


def validate_listening(submitted: Any, canonical: Any) -> bool:
    # Compares the learner's transcription of the clip; no speech-to-text happens here.
    if not isinstance(submitted, str) or not clean_text(submitted):
        return False
    return clean_text(submitted) in {clean_text(option) for option in _as_options(canonical)}


def split_pair(pair: Any) -> tuple[str, str] | None:
    """Turns ``"cat - gato"`` or ``["cat", "gato"]`` into ``("cat", "gato")``."""
    if isinstance(pair, str):
        left, sep, right = pair.partition(PAIR_SEPARATOR)
        if not sep:
            return None
    elif isinstance(pair, Sequence) and len(pair) == 2:
        left, right = pair
        if not isinstance(left, str) or not isinstance(right, str):
            return None
    else:
        return None
    return left.strip(), right.strip()


def _is_collection(value: Any) -> bool:
    return isinstance(value, Iterable) and not isinstance(value, (str, bytes, Mapping))


def validate_match_pairs(submitted: Any, canonical: Any) -> bool:
    if not _is_collection(submitted):
        return False
    submitted = list(submitted)
    if not submitted:
        return False
    canonical_pairs = set()
    for pair in _as_options(canonical):
        sides = split_pair(pair)
        if sides:
            canonical_pairs.add(sides)
            canonical_pairs.add((sides[1], sides[0]))
    for pair in submitted:
        sides = split_pair(pair)
        if sides is None or sides not in canonical_pairs:
            return False
    return True


def validate_sentence_order(submitted: Any, canonical: Any) -> bool:
    if isinstance(submitted, str) or not isinstance(submitted, Sequence):
        return False
    return list(submitted) == list(_as_options(canonical))


VALIDATORS: dict[ChallengeKind, Callable[[Any, Any], bool]] = {
    ChallengeKind.MULTIPLE_CHOICE: validate_choice,
    ChallengeKind.FILL_BLANK: validate_fill_blank,
    ChallengeKind.LISTENING: validate_listening,
    ChallengeKind.MATCH_PAIRS: validate_match_pairs,
    ChallengeKind.SENTENCE_ORDER: validate_sentence_order,
}


def validate(kind: ChallengeKind, submitted: Any, canonical: Any) -> bool:
    try:
        validator = VALIDATORS[kind]
    except KeyError:
        raise ValueError(f"{kind.value} challenges are not graded deterministically") from None
    return validator(submitted, canonical)
