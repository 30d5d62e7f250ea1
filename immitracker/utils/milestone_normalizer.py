"""Milestone-name grouping keys and categories.

The grouping key is coarser than ``string_normalizer.normalize``: it folds
verb tenses ("Biometrics Completion" and "Biometrics completed" share
``biometrics_completed``) so that the merge job can find duplicates that the
display-string key keeps apart.
"""

from __future__ import annotations

import re

_PARENTHETICAL = re.compile(r"\s*\([^)]*\)\s*")
_WHITESPACE = re.compile(r"\s+")
_FIRST_PARENTHETICAL = re.compile(r"\(([^)]+)\)")

# Applied strictly in sequence on the lowercased name.
TENSE_FOLDS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"completion|completed|complete"), "completed"),
    (re.compile(r"required|requested|requirement"), "required"),
    (re.compile(r"submission|submitted|submit"), "submitted"),
    (re.compile(r"instructions|instruction"), "instruction"),
    (re.compile(r"received|receipt"), "received"),
    (re.compile(r"passed|passing"), "passed"),
    (re.compile(r"assessment|assessed|assessing"), "assessment"),
]

# (category, keywords); first rule with a matching keyword wins.
CATEGORY_RULES: list[tuple[str, tuple[str, ...]]] = [
    ("application", ("application", "submit", "aor", "ita")),
    ("biometrics", ("biometric",)),
    ("medical", ("medical", "exam")),
    ("document", ("document",)),
    ("decision", ("decision", "approved", "rejected", "copr")),
    ("background_check", ("background", "check")),
]
DEFAULT_CATEGORY = "other"


def normalize_milestone_name(name: str | None) -> str:
    """Return the tense-insensitive, underscore-joined grouping key."""
    if not name:
        return ""
    base = _PARENTHETICAL.sub(" ", name).strip().lower()
    for pattern, replacement in TENSE_FOLDS:
        base = pattern.sub(replacement, base)
    return _WHITESPACE.sub("_", base)


def categorize(name: str | None) -> str:
    """Map a milestone name onto one of the fixed milestone categories."""
    key = normalize_milestone_name(name)
    for category, keywords in CATEGORY_RULES:
        if any(k in key for k in keywords):
            return category
    return DEFAULT_CATEGORY


def are_similar_milestone_names(a: str, b: str) -> bool:
    return normalize_milestone_name(a) == normalize_milestone_name(b)


def extract_program_type(name: str) -> str | None:
    """'Biometrics Completed (Work Permit)' -> 'Work Permit'."""
    match = _FIRST_PARENTHETICAL.search(name or "")
    return match.group(1) if match else None
