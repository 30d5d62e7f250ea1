"""Milestones blueprint through the Flask test client."""

from immitracker.models import db
from immitracker.models.milestone import Milestone, MilestoneTemplate


def _create(client, name="Biometrics Completed", program_type="work_permit", **extra):
    payload = {"name": name, "programType": program_type, **extra}
    return client.post("/api/v1/milestone-templates", json=payload, headers={"X-User": "u1"})


# ── Templates ────────────────────────────────────────────────────────────


def test_create_template_and_reuse(client):
    res = _create(client, "AOR Received")
    assert res.status_code == 201
    body = res.get_json()
    assert body["normalized_name"] == "aor received"
    assert body["use_count"] == 1
    assert body["created_by_id"] == "u1"

    res = _create(client, "Acknowledgment of Receipt")
    assert res.status_code == 201
    assert res.get_json()["id"] == body["id"]
    assert res.get_json()["use_count"] == 2


def test_create_template_validation(client):
    res = client.post("/api/v1/milestone-templates", json={"programType": "work_permit"})
    assert res.status_code == 422
    assert res.get_json()["code"] == "ERR_VALIDATION_RULE"

    res = client.post("/api/v1/milestone-templates", json=["not", "an", "object"])
    assert res.status_code == 400
    assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    res = client.post("/api/v1/milestone-templates", data="name=x", content_type="text/plain")
    assert res.status_code == 415


def test_list_templates(client, make_template):
    make_template("Biometrics Completed", is_approved=True)
    make_template("Profile Created")

    res = client.get("/api/v1/milestone-templates?programType=work_permit")
    assert res.status_code == 200
    assert [t["name"] for t in res.get_json()] == ["Biometrics Completed"]

    res = client.get("/api/v1/milestone-templates?programType=work_permit&includeUnapproved=true")
    assert len(res.get_json()) == 2

    res = client.get("/api/v1/milestone-templates")
    assert res.status_code == 400
    assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"


def test_list_all_and_categories(client, make_template):
    make_template("Biometrics Completed", is_approved=True)
    make_template("Medical Exam Required", program_type="study_permit", is_approved=True)

    res = client.get("/api/v1/milestone-templates/all")
    assert [t["name"] for t in res.get_json()] == ["Biometrics Completed", "Medical Exam Required"]

    res = client.get("/api/v1/milestone-templates/categories?programType=study_permit")
    assert list(res.get_json()) == ["medical"]


def test_flag_and_unflag(client, make_template):
    template = make_template("Passport Request", is_approved=True)
    url = f"/api/v1/milestone-templates/{template.id}/flag"

    assert client.post(url).status_code == 401

    res = client.post(url, headers={"X-User": "u1"})
    assert res.status_code == 200
    assert res.get_json()["flag_count"] == 1
    assert res.get_json()["flagged_by"] == ["u1"]

    res = client.post(url, headers={"X-User": "u1"})
    assert res.status_code == 409
    assert res.get_json()["code"] == "ERR_ALREADY_FLAGGED"

    res = client.delete(url, headers={"X-User": "u2"})
    assert res.status_code == 409
    assert res.get_json()["code"] == "ERR_NOT_FLAGGED"

    res = client.delete(url, headers={"X-User": "u1"})
    assert res.status_code == 200
    assert res.get_json()["flag_count"] == 0


def test_flag_unknown_template(client):
    res = client.post("/api/v1/milestone-templates/nope/flag", headers={"X-User": "u1"})
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"


def test_flag_demotes_after_three_users(client, make_template):
    template = make_template("Passport Request", is_approved=True)
    url = f"/api/v1/milestone-templates/{template.id}/flag"
    for user in ("u1", "u2", "u3"):
        res = client.post(url, headers={"X-User": user})
    assert res.get_json()["is_approved"] is False


# ── Milestones ───────────────────────────────────────────────────────────


def test_custom_milestone_lifecycle(client, make_template):
    res = client.post(
        "/api/v1/milestones/custom",
        json={"name": "Job Offer Signed", "programType": "work_permit"},
    )
    assert res.status_code == 201
    first = res.get_json()
    assert first["order"] == 0
    assert first["is_default"] is False

    second = client.post(
        "/api/v1/milestones/custom",
        json={"name": "LMIA Approved", "programType": "work_permit"},
    ).get_json()

    res = client.put(f"/api/v1/milestones/{second['id']}/order", json={"order": 0})
    assert res.status_code == 200
    names = [m["name"] for m in client.get("/api/v1/milestones/work_permit").get_json()]
    assert names == ["LMIA Approved", "Job Offer Signed"]

    assert client.put(f"/api/v1/milestones/{second['id']}/order", json={}).status_code == 400
    assert client.put(f"/api/v1/milestones/{second['id']}/order", json={"order": "x"}).status_code == 422

    assert client.delete(f"/api/v1/milestones/{first['id']}").status_code == 204
    assert client.delete(f"/api/v1/milestones/{first['id']}").status_code == 404


def test_default_milestone_cannot_be_deleted(client):
    assert client.post("/api/v1/milestones/initialize").status_code == 200
    default = db.session.query(Milestone).filter_by(program_type="pnp", order=0).one()

    res = client.delete(f"/api/v1/milestones/{default.id}")
    assert res.status_code == 403
    assert res.get_json()["code"] == "ERR_FORBIDDEN"

    res = client.get("/api/v1/milestones/pnp")
    assert res.get_json()[0]["name"] == "Provincial Application Submitted"


# ── Administration ───────────────────────────────────────────────────────


def test_admin_endpoints_require_admin_role(client, make_template, auth_enabled, admin_headers, user_headers):
    template = make_template("Profile Created")
    url = f"/api/v1/milestone-templates/{template.id}/approve"

    assert client.put(url).status_code == 401
    res = client.put(url, headers=user_headers)
    assert res.status_code == 403
    assert res.get_json()["code"] == "ERR_FORBIDDEN"

    res = client.put(url, headers=admin_headers)
    assert res.status_code == 200
    assert res.get_json()["is_approved"] is True


def test_flag_with_jwt_identity(client, make_template, auth_enabled, user_headers):
    template = make_template("Passport Request")
    url = f"/api/v1/milestone-templates/{template.id}/flag"

    assert client.post(url, headers={"X-User": "spoofed"}).status_code == 401
    res = client.post(url, headers=user_headers)
    assert res.status_code == 200
    assert res.get_json()["flagged_by"] == ["user-1"]


def test_popular_promote_and_process_flagged(client, make_template):
    popular = make_template("ITA Received", program_type="express_entry", use_count=3)
    make_template("Passport Request", is_approved=True, flag_count=3)

    res = client.get("/api/v1/milestone-templates/popular")
    assert [t["id"] for t in res.get_json()] == [popular.id]

    res = client.post("/api/v1/milestone-templates/promote")
    assert res.get_json()["promoted"][0]["template_id"] == popular.id

    res = client.post("/api/v1/milestone-templates/process-flagged")
    assert [d["template"] for d in res.get_json()["demoted"]] == ["Passport Request"]


def test_duplicates_report(client, make_template):
    make_template("Biometrics Completed", program_type="work_permit")
    make_template("Biometrics Complete", program_type="study_permit")

    res = client.get("/api/v1/milestone-templates/duplicates?threshold=0.9")
    assert res.status_code == 200
    assert len(res.get_json()) == 1

    assert client.get("/api/v1/milestone-templates/duplicates?threshold=2").status_code == 400


def test_normalize_endpoint(client, make_template):
    make_template("Biometrics Completed (Work Permit)", program_type="work_permit", use_count=2)
    make_template("Biometrics completed", program_type="study_permit", use_count=3)

    res = client.post("/api/v1/milestone-templates/normalize")
    body = res.get_json()
    assert res.status_code == 200
    assert body["duplicateGroups"] == 1
    assert body["mergedGroups"] == 0

    body = client.post("/api/v1/milestone-templates/normalize?merge=true").get_json()
    assert body["success"] is True
    assert body["mergedGroups"] == 1
    assert body["merges"][0]["merged_count"] == 2

    live = db.session.query(MilestoneTemplate).filter_by(is_deprecated=False).all()
    assert len(live) == 1
    assert live[0].use_count == 5
