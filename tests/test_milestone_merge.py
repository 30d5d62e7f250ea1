"""Normalization pass, duplicate detection and per-group merging."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from immitracker.core.exceptions import MergeError
from immitracker.models import db
from immitracker.models.application import StatusHistory
from immitracker.models.milestone import Milestone, MilestoneTemplate
from immitracker.services import milestone_merge
from immitracker.services.repositories import MilestoneTemplateRepository
from immitracker.utils.milestone_normalizer import normalize_milestone_name


def _at(day):
    return datetime(2026, 1, day, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def biometrics_group(make_template):
    """Three live templates sharing the ``biometrics_completed`` key."""
    return [
        make_template("Biometrics Completed (Work Permit)", program_type="work_permit",
                      use_count=2, created_at=_at(1)),
        make_template("Biometrics completed", program_type="study_permit",
                      use_count=3, created_at=_at(2)),
        make_template("Biometrics completed", program_type="express_entry",
                      program_sub_type="cec", use_count=1, created_at=_at(3)),
    ]


def _live():
    return db.session.execute(
        select(MilestoneTemplate).where(MilestoneTemplate.is_deprecated.is_(False))
    ).scalars().all()


def test_find_duplicate_groups(biometrics_group, make_template):
    make_template("Medical Exam Required", created_at=_at(4))

    groups = milestone_merge.find_duplicate_groups()

    assert len(groups) == 1
    assert groups[0].normalized_key == "biometrics_completed"
    assert [m.id for m in groups[0].members] == [t.id for t in biometrics_group]


def test_merge_group_builds_canonical(biometrics_group, make_application):
    first = biometrics_group[0]
    application = make_application(template_id=first.id, status_name=first.name)
    milestone = Milestone(name="Biometrics completed", program_type="study_permit",
                          template_id=biometrics_group[1].id)
    db.session.add(milestone)
    db.session.commit()

    group = milestone_merge.find_duplicate_groups()[0]
    canonical, merged = milestone_merge.merge_group(group)

    assert merged == 3
    assert canonical.name == "Biometrics completed"
    assert canonical.use_count == 6
    assert canonical.is_approved is True
    assert canonical.is_deprecated is False
    assert canonical.program_type == "work_permit,study_permit,express_entry"
    assert canonical.program_sub_type == "cec"
    assert canonical.category == "biometrics"

    for member in biometrics_group:
        db.session.refresh(member)
        assert member.is_deprecated is True
        assert member.canonical_id == canonical.id

    history = db.session.execute(
        select(StatusHistory).where(StatusHistory.application_id == application.id)
    ).scalars().one()
    assert history.template_id == canonical.id
    assert db.session.get(Milestone, milestone.id).template_id == canonical.id


def test_most_frequent_name_tie_goes_to_oldest(make_template):
    make_template("Biometrics Completion", program_type="work_permit", created_at=_at(1))
    make_template("Biometrics completed", program_type="study_permit", created_at=_at(2))

    canonical, _ = milestone_merge.merge_group(milestone_merge.find_duplicate_groups()[0])
    assert canonical.name == "Biometrics Completion"


def test_merging_twice_keeps_same_canonical(biometrics_group):
    group = milestone_merge.find_duplicate_groups()[0]
    canonical, merged = milestone_merge.merge_group(group)
    assert merged == 3

    again, merged_again = milestone_merge.merge_group(group)
    assert merged_again == 0
    assert again.id == canonical.id

    assert milestone_merge.find_duplicate_groups() == []
    report = milestone_merge.merge_duplicates()
    assert report == {"merged": [], "failed": []}

    live = [t for t in _live() if t.normalized_name == "biometrics completed"]
    assert [t.id for t in live] == [canonical.id]


def test_remerge_with_new_member_keeps_scope_union_distinct(biometrics_group, make_template):
    first, _ = milestone_merge.merge_group(milestone_merge.find_duplicate_groups()[0])
    assert first.program_type == "work_permit,study_permit,express_entry"

    make_template("Biometrics completed", program_type="work_permit", use_count=4)
    make_template("Biometrics completion", program_type="visitor_visa",
                  program_sub_type="cec", use_count=1)

    result = milestone_merge.run_normalization(merge=True)
    assert result["merged_groups"] == 1

    live = [t for t in _live() if normalize_milestone_name(t.name) == "biometrics_completed"]
    assert len(live) == 1
    assert live[0].id != first.id
    assert live[0].program_type == "work_permit,study_permit,express_entry,visitor_visa"
    assert live[0].program_sub_type == "cec"
    assert live[0].use_count == 11


def test_failed_group_is_rolled_back(biometrics_group, monkeypatch):
    def _boom(self, from_id, to_id):
        raise RuntimeError("database went away")

    monkeypatch.setattr(MilestoneTemplateRepository, "repoint_references", _boom)
    group = milestone_merge.find_duplicate_groups()[0]

    with pytest.raises(MergeError) as excinfo:
        milestone_merge.merge_group(group)
    assert excinfo.value.normalized_key == "biometrics_completed"

    live = _live()
    assert sorted(t.id for t in live) == sorted(t.id for t in biometrics_group)
    assert all(t.canonical_id is None for t in live)


def test_merge_duplicates_reports_failures(biometrics_group, monkeypatch):
    def _boom(self, from_id, to_id):
        raise RuntimeError("lock timeout")

    monkeypatch.setattr(MilestoneTemplateRepository, "repoint_references", _boom)
    report = milestone_merge.merge_duplicates()

    assert report["merged"] == []
    assert report["failed"][0]["normalized_name"] == "biometrics_completed"
    assert "lock timeout" in report["failed"][0]["error"]


def test_update_normalization_recomputes_keys(make_template):
    stale = make_template("AOR Received", normalized_name="aor", category="other")
    current = make_template("Medical Exam Required", category="medical")

    result = milestone_merge.update_normalization()

    assert result["updated_count"] == 1
    assert stale.normalized_name == "aor received"
    assert stale.category == "application"
    assert current.normalized_name == "medical exam required"


def test_run_normalization_report_only(biometrics_group):
    result = milestone_merge.run_normalization(merge=False)

    assert result["updated_count"] == 0
    assert result["duplicate_groups"] == 1
    assert result["merged_groups"] == 0
    assert len(_live()) == 3


def test_run_normalization_with_merge(biometrics_group):
    result = milestone_merge.run_normalization(merge=True)

    assert result["duplicate_groups"] == 1
    assert result["merged_groups"] == 1
    assert result["failed_groups"] == []
    assert result["merges"][0]["merged_count"] == 3
    assert len(_live()) == 1


def test_find_similar_templates(make_template):
    make_template("Biometrics Completed", program_type="work_permit", created_at=_at(1))
    make_template("Biometrics Complete", program_type="study_permit", created_at=_at(2))
    make_template("Medical Exam Required", created_at=_at(3))

    pairs = milestone_merge.find_similar_templates(0.85)

    assert len(pairs) == 1
    assert pairs[0]["original"]["name"] == "Biometrics Completed"
    assert pairs[0]["duplicate"]["name"] == "Biometrics Complete"
    assert pairs[0]["similarity"] == pytest.approx(0.95)
