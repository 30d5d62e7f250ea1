import pytest
from sqlalchemy import func, select

from immitracker.core.exceptions import AlreadyFlaggedError, ForbiddenError, NotFoundError, ValidationError
from immitracker.models import db
from immitracker.models.milestone import Milestone, MilestoneTemplate
from immitracker.services.milestone_service import MilestoneService


@pytest.fixture()
def service():
    return MilestoneService()


def _orders(program_type, sub_type=""):
    rows = db.session.execute(
        select(Milestone.name, Milestone.order)
        .where(Milestone.program_type == program_type, Milestone.program_sub_type == sub_type)
        .order_by(Milestone.order)
    ).all()
    return [(name, order) for name, order in rows]


# ── Templates ────────────────────────────────────────────────────────────


def test_create_or_reuse_template_requires_program_type(service):
    with pytest.raises(ValidationError):
        service.create_or_reuse_template("Biometrics Completed", "")
    with pytest.raises(ValidationError):
        service.create_or_reuse_template("", "work_permit")


def test_create_or_reuse_template_sets_category_and_author(service):
    template = service.create_or_reuse_template(
        "Medical Exam Required", "work_permit", user_id="u1", description="IME requested",
    )
    assert template.category == "medical"
    assert template.created_by_id == "u1"
    assert template.program_sub_type == ""
    assert template.to_dict()["program_sub_type"] is None


def test_list_templates_hides_unapproved_and_deprecated(service, make_template):
    approved = make_template("Biometrics Completed", is_approved=True, use_count=9)
    pending = make_template("Profile Created", use_count=1)
    canonical = make_template("Decision Made", program_type="study_permit", is_approved=True)
    make_template("Final Decision", normalized_name="decision old", is_approved=True,
                  is_deprecated=True, canonical_id=canonical.id)

    names = [t["name"] for t in service.list_templates("work_permit")]
    assert names == [approved.name]

    with_pending = [t["id"] for t in service.list_templates("work_permit", include_unapproved=True)]
    assert with_pending == [approved.id, pending.id]


def test_list_all_unique_templates_keeps_most_used(service, make_template):
    make_template("Biometrics Completed", program_type="work_permit", is_approved=True, use_count=2)
    busiest = make_template("Biometrics completed", program_type="study_permit", is_approved=True, use_count=8)
    make_template("AOR Received", program_type="express_entry", is_approved=True)

    templates = service.list_all_unique_templates()
    assert [t["name"] for t in templates] == ["AOR Received", "Biometrics completed"]
    assert templates[1]["id"] == busiest.id


def test_list_templates_by_category(service, make_template):
    make_template("Biometrics Completed", is_approved=True)
    make_template("Medical Exam Required")
    make_template("COPR Issued", program_type="express_entry", is_approved=True)

    grouped = service.list_templates_by_category("work_permit")
    assert set(grouped) == {"biometrics", "medical"}
    assert set(service.list_templates_by_category()) == {"biometrics", "medical", "decision"}


def test_approve_template(service, make_template):
    template = make_template("Profile Created")
    assert service.approve_template(template.id).is_approved is True
    with pytest.raises(NotFoundError):
        service.approve_template("missing")

    merged = make_template("Profile Created", program_type="pnp", is_deprecated=True, canonical_id=template.id)
    with pytest.raises(NotFoundError):
        service.approve_template(merged.id)


def test_promote_popular_templates_marks_milestones_default(service, make_template):
    template = make_template("ITA Received", program_type="express_entry", use_count=3)
    db.session.add(Milestone(name="ITA Received", program_type="express_entry", template_id=template.id))
    db.session.commit()

    assert [t["id"] for t in service.get_popular_templates()] == [template.id]
    results = service.promote_popular_templates()

    assert results == [{"template": "ITA Received", "template_id": template.id, "milestones_updated": 1}]
    assert template.is_approved is True
    milestone = db.session.execute(select(Milestone)).scalars().one()
    assert milestone.is_default is True
    assert service.get_popular_templates() == []


def test_flag_service_commits_and_rolls_back(service, make_template):
    template = make_template("Passport Request", is_approved=True)
    service.flag_template(template.id, "u1")
    db.session.expire_all()
    assert db.session.get(MilestoneTemplate, template.id).flag_count == 1

    with pytest.raises(AlreadyFlaggedError):
        service.flag_template(template.id, "u1")
    assert db.session.get(MilestoneTemplate, template.id).flag_count == 1


def test_process_flagged_templates(service, make_template):
    unused = make_template("Passport Request", is_approved=True, flag_count=4)
    result = service.process_flagged_templates()
    assert result == [{"template": unused.name, "template_id": unused.id, "program_type": "work_permit"}]
    assert unused.is_approved is False


# ── Milestones ───────────────────────────────────────────────────────────


def test_add_custom_milestone_appends_and_reuses_template(service):
    first = service.add_custom_milestone("Language Test Passed", "work_permit", user_id="u1")
    second = service.add_custom_milestone("language test passed!", "work_permit", user_id="u2")

    assert (first.order, second.order) == (0, 1)
    assert first.is_default is False
    assert first.template_id == second.template_id
    assert db.session.get(MilestoneTemplate, first.template_id).use_count == 2


def test_list_milestones_is_ordered(service):
    service.add_custom_milestone("A step", "pnp")
    service.add_custom_milestone("B step", "pnp")
    service.add_custom_milestone("C step", "pnp", "ontario")

    # Without a sub type every pnp milestone is listed; ties on order go to the oldest.
    assert [m["name"] for m in service.list_milestones("pnp")] == ["A step", "C step", "B step"]
    assert [m["name"] for m in service.list_milestones("pnp", "ontario")] == ["C step"]


def test_update_milestone_order_keeps_orders_dense(service):
    a = service.add_custom_milestone("A step", "pnp")
    service.add_custom_milestone("B step", "pnp")
    c = service.add_custom_milestone("C step", "pnp")

    service.update_milestone_order(c.id, 0)
    assert _orders("pnp") == [("C step", 0), ("A step", 1), ("B step", 2)]

    service.update_milestone_order(a.id, 99)
    assert _orders("pnp") == [("C step", 0), ("B step", 1), ("A step", 2)]

    with pytest.raises(ValidationError):
        service.update_milestone_order(a.id, -1)
    with pytest.raises(NotFoundError):
        service.update_milestone_order("missing", 0)


def test_delete_milestone(service):
    service.seed_default_milestones("work_permit", ["Application Submitted", "Decision Made"])
    custom = service.add_custom_milestone("Job Offer Signed", "work_permit")
    default = db.session.execute(
        select(Milestone).where(Milestone.is_default.is_(True)).order_by(Milestone.order)
    ).scalars().first()

    with pytest.raises(ForbiddenError):
        service.delete_milestone(default.id)
    with pytest.raises(NotFoundError):
        service.delete_milestone("missing")

    service.delete_milestone(custom.id)
    assert _orders("work_permit") == [("Application Submitted", 0), ("Decision Made", 1)]


# ── Seeding ──────────────────────────────────────────────────────────────


def test_seed_default_milestones_is_repeatable(service):
    names = ["Application Submitted", "Biometrics Completed", "Decision Made"]
    service.seed_default_milestones("work_permit", names)
    service.seed_default_milestones("work_permit", names)

    assert _orders("work_permit") == [(n, i) for i, n in enumerate(names)]
    templates = db.session.execute(select(MilestoneTemplate)).scalars().all()
    assert len(templates) == 3
    assert all(t.is_approved and t.use_count == 1 for t in templates)


def test_seed_all_programs(service):
    results = {row["program_id"]: row["milestones_created"] for row in service.seed_all_programs()}

    assert results["work_permit"] == 8
    assert results["family_sponsorship"] == 14
    assert len(results) == 6
    total = db.session.execute(select(func.count()).select_from(Milestone)).scalar_one()
    assert total == sum(results.values())
