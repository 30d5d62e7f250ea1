"""String normalization and similarity for free-text template names.

``normalize`` turns a display name into a comparison key:

    "Acknowledgment of Receipt (AOR)"   ->  "aor received"
    "Biometrics Instruction Letter!"    ->  "biometrics letter"

Substitutions are an ordered list, not a mapping: later rules run on the
output of earlier ones ("acknowledgment of receipt" -> "aor" ->
"aor received"). Every replacement is a fixed point of the whole table, so
``normalize(normalize(x)) == normalize(x)``.
"""

from __future__ import annotations

import re

from rapidfuzz.distance import Levenshtein

_PARENTHETICAL = re.compile(r"\([^)]*\)")
_NON_WORD = re.compile(r"[^\w\s]+")
_UNDERSCORE = re.compile(r"_+")
_WHITESPACE = re.compile(r"\s+")

# Applied strictly in sequence.
SUBSTITUTIONS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\backnowledge?ment of receipt\b"), "aor"),
    (re.compile(r"\baor\b(?: received)?"), "aor received"),
    (re.compile(r"\bbiometrics? instructions? letters?\b"), "biometrics letter"),
    (re.compile(r"\bbil\b"), "biometrics letter"),
    (re.compile(r"\bbiometric\b"), "biometrics"),
    (re.compile(r"\bitas?\b"), "invitation to apply"),
    (re.compile(r"\bpassport request\b"), "ppr"),
    (re.compile(r"\bconfirmation of permanent residence\b"), "copr"),
    (re.compile(r"\bmedical examination\b"), "medical exam"),
    (re.compile(r"\bmedicals\b"), "medical exam"),
    (re.compile(r"\bdocs\b"), "documents"),
    (re.compile(r"\b(?:final )+decision\b"), "decision"),
    (re.compile(r"\bdecision(?: made)+\b"), "decision"),
]


def _collapse(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def normalize(text: str | None) -> str:
    """Return the comparison key for ``text`` ('' for empty input)."""
    if not text:
        return ""
    out = text.lower().strip()
    out = _PARENTHETICAL.sub(" ", out)
    out = _NON_WORD.sub(" ", out)
    out = _UNDERSCORE.sub(" ", out)
    out = _collapse(out)
    for pattern, replacement in SUBSTITUTIONS:
        out = pattern.sub(replacement, out)
    return _collapse(out)


def similarity(a: str | None, b: str | None) -> float:
    """Levenshtein similarity of the normalized forms, in [0, 1].

    1.0 for identical keys; 0.0 when exactly one side normalizes to empty.
    """
    na, nb = normalize(a), normalize(b)
    if na == nb:
        return 1.0
    if not na or not nb:
        return 0.0
    longest = max(len(na), len(nb))
    return 1.0 - Levenshtein.distance(na, nb) / longest
