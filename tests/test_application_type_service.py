import pytest

from immitracker.core.exceptions import NotFlaggedError, NotFoundError, ValidationError
from immitracker.models import db
from immitracker.models.application import ApplicationType
from immitracker.services.application_type_service import ApplicationTypeService


@pytest.fixture()
def service():
    return ApplicationTypeService()


def test_create_or_reuse_requires_name_and_category(service):
    with pytest.raises(ValidationError) as excinfo:
        service.create_or_reuse("", "")
    assert set(excinfo.value.details) == {"name", "category"}


def test_create_or_reuse_promotes_on_third_use(service):
    first = service.create_or_reuse("Study Permit", "Temporary Residence", user_id="u1")
    service.create_or_reuse("study-permit", "Temporary Residence", user_id="u2")
    assert first.is_default is False

    third = service.create_or_reuse("STUDY PERMIT (SDS)", "Temporary Residence", user_id="u3")
    assert third.id == first.id
    assert third.use_count == 3
    assert third.is_default is True
    assert third.created_by_id == "u1"


def test_same_name_other_category_is_separate(service):
    a = service.create_or_reuse("Spousal Sponsorship", "Permanent Residence")
    b = service.create_or_reuse("Spousal Sponsorship", "Family")
    assert a.id != b.id


def test_listing(service):
    db.session.add_all([
        ApplicationType(name="Work Permit", normalized_name="work permit",
                        category="Temporary Residence", is_default=True),
        ApplicationType(name="Express Entry", normalized_name="express entry",
                        category="Permanent Residence", is_default=True),
        ApplicationType(name="Super Visa", normalized_name="super visa",
                        category="Temporary Residence"),
    ])
    db.session.commit()

    assert [t["name"] for t in service.list_application_types()] == ["Express Entry", "Work Permit"]
    assert [t["name"] for t in service.list_application_types(include_non_default=True)] == [
        "Express Entry", "Super Visa", "Work Permit",
    ]
    assert [t["name"] for t in service.list_by_category("Temporary Residence")] == ["Work Permit"]


def test_flag_demotes_unused_default(service):
    app_type = service.create_or_reuse("Visitor Record", "Temporary Residence")
    app_type.is_default = True
    db.session.commit()

    for user in ("u1", "u2", "u3"):
        service.flag(app_type.id, user)

    refreshed = db.session.get(ApplicationType, app_type.id)
    assert refreshed.flag_count == 3
    assert refreshed.is_default is False
    assert refreshed.to_dict()["flagged_by"] == ["u1", "u2", "u3"]


def test_flag_kept_with_application(service, make_application):
    app_type = service.create_or_reuse("Work Permit", "Temporary Residence")
    app_type.is_default = True
    db.session.commit()
    make_application(application_type_id=app_type.id)

    for user in ("u1", "u2", "u3"):
        service.flag(app_type.id, user)
    assert db.session.get(ApplicationType, app_type.id).is_default is True


def test_unflag_errors(service):
    app_type = service.create_or_reuse("Work Permit", "Temporary Residence")
    with pytest.raises(NotFlaggedError):
        service.unflag(app_type.id, "u1")
    with pytest.raises(NotFoundError):
        service.unflag("missing", "u1")
    assert db.session.get(ApplicationType, app_type.id).flag_count == 0


def test_promote_and_process_flagged(service):
    db.session.add_all([
        ApplicationType(name="PGWP", normalized_name="pgwp", category="Temporary Residence", use_count=5),
        ApplicationType(name="Old Type", normalized_name="old type", category="Temporary Residence",
                        is_default=True, flag_count=3),
    ])
    db.session.commit()

    promoted = service.promote_popular()
    demoted = service.process_flagged()

    assert [t["name"] for t in promoted] == ["PGWP"]
    assert promoted[0]["is_default"] is True
    assert [t["name"] for t in demoted] == ["Old Type"]
    assert demoted[0]["is_default"] is False
