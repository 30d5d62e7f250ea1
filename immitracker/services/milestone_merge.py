"""
Milestone template normalization and duplicate merging.

Batch job, run on demand (admin endpoint, ``flask normalize-milestones`` or
``scripts/normalize_milestones.py``):

    1. update_normalization()   recompute normalized_name + category
    2. find_duplicate_groups()  group live templates by milestone key
    3. merge_duplicates()       one canonical per group, members deprecated

Each group is merged in its own transaction with the member rows locked and
re-checked, so a crash leaves a group either fully merged or untouched and
re-running the job is safe.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from immitracker.core.exceptions import MergeError
from immitracker.models.milestone import MilestoneTemplate
from immitracker.services.repositories import MilestoneTemplateRepository
from immitracker.utils.milestone_normalizer import categorize, normalize_milestone_name
from immitracker.utils.string_normalizer import normalize, similarity

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.85


@dataclass
class DuplicateGroup:
    normalized_key: str
    members: list = field(default_factory=list)

    def to_dict(self):
        return {
            "normalized_key": self.normalized_key,
            "members": [m.to_dict() for m in self.members],
        }


def _unique_in_order(values) -> list[str]:
    seen = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


def _split_scopes(values):
    # A previous canonical already carries a comma-joined scope list.
    for value in values:
        for part in (value or "").split(","):
            yield part.strip()


def _created_order(template):
    # Freshly flushed rows carry an aware datetime, reloaded ones a naive UTC one.
    created = template.created_at
    if created is not None and created.tzinfo is not None:
        created = created.replace(tzinfo=None)
    return (created or datetime.min, template.id)


def _most_common_name(members) -> str:
    """Most frequent raw display name; ties go to the first encountered."""
    counts = Counter(m.name for m in members)
    best = max(counts.values())
    return next(m.name for m in members if counts[m.name] == best)


# ── Normalization pass ───────────────────────────────────────────────────


def update_normalization(repo: MilestoneTemplateRepository | None = None) -> dict:
    """Recompute normalized_name and category of every live template.

    A recomputed key that collides with another live template in the same
    scope is left unchanged and reported under ``skipped``.
    """
    repo = repo or MilestoneTemplateRepository()
    session = repo.session
    updated = 0
    skipped = []
    for template in repo.list_live(include_unapproved=True):
        key = normalize(template.name)
        category = categorize(template.name)
        if template.normalized_name == key and template.category == category:
            continue
        try:
            with session.begin_nested():
                template.normalized_name = key
                template.category = category
        except IntegrityError:
            logger.warning(
                "Normalization of template %s (%r) collides with key=%r; skipped",
                template.id, template.name, key,
            )
            skipped.append(template.id)
            continue
        updated += 1
    session.commit()
    logger.info("Normalization pass: %d template(s) updated, %d skipped", updated, len(skipped))
    return {"updated_count": updated, "skipped": skipped}


# ── Duplicate detection ──────────────────────────────────────────────────


def find_duplicate_groups(repo: MilestoneTemplateRepository | None = None) -> list[DuplicateGroup]:
    """Live templates grouped by milestone key; only groups of two or more."""
    repo = repo or MilestoneTemplateRepository()
    groups: dict[str, DuplicateGroup] = {}
    templates = sorted(
        repo.list_live(include_unapproved=True),
        key=_created_order,
    )
    for template in templates:
        key = normalize_milestone_name(template.name)
        groups.setdefault(key, DuplicateGroup(normalized_key=key)).members.append(template)
    return [g for g in groups.values() if len(g.members) > 1]


def find_similar_templates(
    threshold: float | None = None,
    repo: MilestoneTemplateRepository | None = None,
) -> list[dict]:
    """Pairs of live templates whose names are similar but not identical keys.

    Used as a review report; nothing is changed.
    """
    if threshold is None:
        threshold = DEFAULT_SIMILARITY_THRESHOLD
        if has_app_context():
            threshold = current_app.config.get("DUPLICATE_SIMILARITY_THRESHOLD", threshold)
    repo = repo or MilestoneTemplateRepository()
    templates = sorted(
        repo.list_live(include_unapproved=True),
        key=_created_order,
    )
    pairs = []
    for i, original in enumerate(templates):
        for duplicate in templates[i + 1:]:
            score = similarity(original.name, duplicate.name)
            if score < threshold:
                continue
            pairs.append({
                "original": original.to_dict(),
                "duplicate": duplicate.to_dict(),
                "similarity": round(score, 4),
            })
    return pairs


# ── Merge ────────────────────────────────────────────────────────────────


def _existing_canonical(repo, members):
    for member in members:
        if member.is_deprecated and member.canonical_id:
            canonical = repo.get(member.canonical_id)
            while canonical is not None and canonical.is_deprecated and canonical.canonical_id:
                canonical = repo.get(canonical.canonical_id)
            return canonical
    return None


def merge_group(group: DuplicateGroup, repo: MilestoneTemplateRepository | None = None):
    """Merge one duplicate group into a new canonical template.

    Returns ``(canonical, merged_count)``. When the group was already merged
    the existing canonical is returned with ``merged_count == 0``.

    Raises:
        MergeError: the group's transaction failed and was rolled back.
    """
    repo = repo or MilestoneTemplateRepository()
    session = repo.session
    key = group.normalized_key
    member_ids = [m.id for m in group.members]
    try:
        members = [
            m for m in repo.lock_live(member_ids)
            if normalize_milestone_name(m.name) == key
        ]
        if len(members) < 2:
            session.rollback()
            stale = [repo.get(mid) for mid in member_ids]
            canonical = _existing_canonical(repo, [m for m in stale if m is not None])
            logger.info("Group %r already merged; nothing to do", key)
            return canonical, 0

        name = _most_common_name(members)
        canonical_fields = {
            "name": name,
            "normalized_name": normalize(name),
            "description": members[0].description or f"Standardized milestone for {key}",
            "category": categorize(name),
            "program_type": ",".join(_unique_in_order(_split_scopes(m.program_type for m in members))),
            "program_sub_type": ",".join(_unique_in_order(_split_scopes(m.program_sub_type for m in members))),
            "use_count": sum(m.use_count or 0 for m in members),
            "is_approved": True,
        }

        # Retire members first so the canonical may reuse a member's key.
        for member in members:
            member.is_deprecated = True
        session.flush()

        canonical = MilestoneTemplate(**canonical_fields)
        session.add(canonical)
        session.flush()

        repointed = 0
        for member in members:
            history, milestones = repo.repoint_references(member.id, canonical.id)
            repointed += history + milestones
            member.canonical_id = canonical.id
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.exception("Merge of duplicate group %r failed", key, extra={"normalized_key": key})
        raise MergeError(key, str(exc)) from exc

    logger.info(
        "Merged %d template(s) into canonical %s (%r), %d reference(s) re-pointed",
        len(members), canonical.id, canonical.name, repointed,
        extra={
            "template_id": canonical.id,
            "normalized_key": key,
            "merged_count": len(members),
            "repointed": repointed,
        },
    )
    return canonical, len(members)


def merge_duplicates(groups: list[DuplicateGroup] | None = None,
                     repo: MilestoneTemplateRepository | None = None) -> dict:
    """Merge every duplicate group; one failing group does not stop the rest."""
    repo = repo or MilestoneTemplateRepository()
    if groups is None:
        groups = find_duplicate_groups(repo)
    merged, failed = [], []
    for group in groups:
        try:
            canonical, count = merge_group(group, repo)
        except MergeError as exc:
            failed.append({"normalized_name": exc.normalized_key, "error": exc.reason})
            continue
        if count:
            merged.append({
                "normalized_name": group.normalized_key,
                "canonical_id": canonical.id,
                "merged_count": count,
            })
    return {"merged": merged, "failed": failed}


def run_normalization(merge: bool = False, repo: MilestoneTemplateRepository | None = None) -> dict:
    """Normalization pass + duplicate report, optionally followed by the merge."""
    repo = repo or MilestoneTemplateRepository()
    update = update_normalization(repo)
    groups = find_duplicate_groups(repo)
    logger.info("Found %d group(s) of duplicate milestone templates", len(groups))

    result = {
        "updated_count": update["updated_count"],
        "duplicate_groups": len(groups),
        "merged_groups": 0,
        "failed_groups": [],
        "merges": [],
    }
    if merge and groups:
        report = merge_duplicates(groups, repo)
        result["merged_groups"] = len(report["merged"])
        result["failed_groups"] = report["failed"]
        result["merges"] = report["merged"]
    return result
