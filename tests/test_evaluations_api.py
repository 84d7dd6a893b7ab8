import pytest
from fastapi.testclient import TestClient

from perfreview.models.audit_event import AuditEvent
from perfreview.models.evaluation import Evaluation

from tests.helpers import auth, create_competency, create_cycle, create_evaluation, create_org, create_team, create_user


@pytest.fixture()
def world(db_session):
    org = create_org(db_session)
    admin = create_user(db_session, org, "admin@acme.test", "Admin", role="ADMIN")
    manager = create_user(db_session, org, "boss@acme.test", "Boss", role="MANAGER")
    alice = create_user(db_session, org, "alice@acme.test", "Alice")
    bob = create_user(db_session, org, "bob@acme.test", "Bob")
    create_team(db_session, org, "Core", manager=manager, members=[alice, bob])
    comm = create_competency(db_session, org, "Communication", order=1)
    team = create_competency(db_session, org, "Teamwork", order=2)
    cycle = create_cycle(db_session, org, created_by=admin)
    evaluation = create_evaluation(db_session, cycle, bob, alice, "PEER")
    return {
        "org": org,
        "admin": admin,
        "manager": manager,
        "alice": alice,
        "bob": bob,
        "comm": comm,
        "team": team,
        "cycle": cycle,
        "evaluation": evaluation,
    }


def _submit_body(world, **overrides):
    body = {
        "kind": "submit",
        "overall_rating": 4,
        "overall_comments": "Reliable teammate",
        "strengths": "Clear writing",
        "improvements": "Delegate more",
        "competency_ratings": [
            {"competency_id": str(world["comm"].id), "rating": 4, "comments": "Good"},
            {"competency_id": str(world["team"].id), "rating": 5},
        ],
    }
    body.update(overrides)
    return body


def test_list_my_evaluations_only_returns_own(client: TestClient, world):
    r = client.get("/evaluations", headers=auth(world["bob"]))
    assert r.status_code == 200
    assert [e["id"] for e in r.json()] == [str(world["evaluation"].id)]

    assert client.get("/evaluations", headers=auth(world["alice"])).json() == []
    r = client.get("/evaluations?status=SUBMITTED", headers=auth(world["bob"]))
    assert r.json() == []


def test_get_evaluation_carries_the_rubric(client: TestClient, world):
    r = client.get(f"/evaluations/{world['evaluation'].id}", headers=auth(world["bob"]))
    assert r.status_code == 200
    data = r.json()
    assert data["cycle_status"] == "ACTIVE"
    assert [c["name"] for c in data["competencies"]] == ["Communication", "Teamwork"]
    assert data["competency_ratings"] == []


def test_evaluatee_cannot_see_unshared_evaluation(client: TestClient, world):
    url = f"/evaluations/{world['evaluation'].id}"
    assert client.get(url, headers=auth(world["alice"])).status_code == 404
    assert client.get(url, headers=auth(world["admin"])).status_code == 200


def test_draft_save_replaces_the_whole_snapshot(client: TestClient, db_session, world):
    url = f"/evaluations/{world['evaluation'].id}"
    first = {
        "kind": "draft",
        "strengths": "Writes things down",
        "competency_ratings": [
            {"competency_id": str(world["comm"].id), "rating": 3},
            {"competency_id": str(world["team"].id), "rating": 2},
        ],
    }
    r = client.patch(url, json=first, headers=auth(world["bob"]))
    assert r.status_code == 200, r.text
    assert len(r.json()["competency_ratings"]) == 2

    second = {"kind": "draft", "competency_ratings": [{"competency_id": str(world["team"].id), "rating": 4}]}
    r = client.patch(url, json=second, headers=auth(world["bob"]))
    data = r.json()
    assert data["strengths"] is None
    assert [(cr["competency_id"], cr["rating"]) for cr in data["competency_ratings"]] == [(str(world["team"].id), 4)]
    assert data["status"] == "DRAFT"

    actions = [a.action for a in db_session.query(AuditEvent).filter(AuditEvent.entity_id == world["evaluation"].id)]
    assert actions.count("EVALUATION_DRAFT_SAVED") == 2


def test_draft_rejects_bad_competencies(client: TestClient, db_session, world):
    url = f"/evaluations/{world['evaluation'].id}"
    headers = auth(world["bob"])
    cid = str(world["comm"].id)

    twice = {"kind": "draft", "competency_ratings": [{"competency_id": cid}, {"competency_id": cid}]}
    r = client.patch(url, json=twice, headers=headers)
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "validation_error"

    other_org = create_org(db_session, "Globex")
    foreign = create_competency(db_session, other_org, "Sales")
    r = client.patch(url, json={"kind": "draft", "competency_ratings": [{"competency_id": str(foreign.id)}]}, headers=headers)
    assert r.status_code == 400

    r = client.patch(url, json={"kind": "draft", "overall_rating": 9}, headers=headers)
    assert r.status_code == 422


def test_submit_moves_to_submitted(client: TestClient, db_session, world):
    url = f"/evaluations/{world['evaluation'].id}/submit"
    r = client.post(url, json=_submit_body(world), headers=auth(world["bob"]))
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["status"] == "SUBMITTED"
    assert data["submitted_at"] is not None
    assert len(data["competency_ratings"]) == 2

    db_session.expire_all()
    assert db_session.get(Evaluation, world["evaluation"].id).status == "SUBMITTED"


def test_submit_by_someone_else_is_forbidden(client: TestClient, world):
    url = f"/evaluations/{world['evaluation'].id}/submit"
    r = client.post(url, json=_submit_body(world), headers=auth(world["alice"]))
    assert r.status_code == 403


def test_submit_unknown_evaluation_is_not_found(client: TestClient, world):
    url = "/evaluations/7f1d7b1e-0000-4000-8000-000000000000/submit"
    assert client.post(url, json=_submit_body(world), headers=auth(world["bob"])).status_code == 404


def test_submit_twice_conflicts(client: TestClient, world):
    url = f"/evaluations/{world['evaluation'].id}/submit"
    assert client.post(url, json=_submit_body(world), headers=auth(world["bob"])).status_code == 200
    r = client.post(url, json=_submit_body(world), headers=auth(world["bob"]))
    assert r.status_code == 409
    assert r.json()["detail"]["status"] == "SUBMITTED"


def test_submit_on_inactive_cycle_conflicts(client: TestClient, db_session, world):
    world["cycle"].status = "COMPLETED"
    db_session.commit()
    url = f"/evaluations/{world['evaluation'].id}/submit"
    r = client.post(url, json=_submit_body(world), headers=auth(world["bob"]))
    assert r.status_code == 409
    assert r.json()["detail"]["cycle_status"] == "COMPLETED"


def test_submit_requires_a_complete_payload(client: TestClient, world):
    url = f"/evaluations/{world['evaluation'].id}/submit"
    headers = auth(world["bob"])

    assert client.post(url, json=_submit_body(world, competency_ratings=[]), headers=headers).status_code == 422
    unrated = _submit_body(world, competency_ratings=[{"competency_id": str(world["comm"].id)}])
    assert client.post(url, json=unrated, headers=headers).status_code == 422
    assert client.post(url, json=_submit_body(world, kind="draft"), headers=headers).status_code == 422


def test_failed_submit_leaves_the_draft_untouched(client: TestClient, db_session, world):
    url = f"/evaluations/{world['evaluation'].id}/submit"
    bad = _submit_body(world)
    bad["competency_ratings"].append({"competency_id": "not-a-uuid", "rating": 3})
    r = client.post(url, json=bad, headers=auth(world["bob"]))
    assert r.status_code == 400

    db_session.expire_all()
    e = db_session.get(Evaluation, world["evaluation"].id)
    assert e.status == "DRAFT"
    assert e.competency_ratings == []
    assert e.submitted_at is None


def test_submit_is_idempotent_with_key(client: TestClient, world):
    url = f"/evaluations/{world['evaluation'].id}/submit"
    headers = {**auth(world["bob"]), "Idempotency-Key": "submit-1"}

    first = client.post(url, json=_submit_body(world), headers=headers)
    assert first.status_code == 200
    again = client.post(url, json=_submit_body(world), headers=headers)
    assert again.status_code == 200
    assert again.json() == first.json()

    changed = client.post(url, json=_submit_body(world, overall_rating=2), headers=headers)
    assert changed.status_code == 409


def test_reviewer_workflow(client: TestClient, world):
    eid = world["evaluation"].id
    client.post(f"/evaluations/{eid}/submit", json=_submit_body(world), headers=auth(world["bob"]))

    # bob is not a manager; alice's manager is
    assert client.post(f"/evaluations/{eid}/approve", headers=auth(world["bob"])).status_code == 403

    r = client.post(f"/evaluations/{eid}/approve", headers=auth(world["manager"]))
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "invalid_state"

    r = client.post(
        f"/evaluations/{eid}/review",
        json={"approved": True, "manager_comments": "Fair"},
        headers=auth(world["manager"]),
    )
    assert r.json()["status"] == "REVIEWED"
    assert client.post(f"/evaluations/{eid}/approve", headers=auth(world["manager"])).json()["status"] == "APPROVED"

    # not shared yet
    assert client.get(f"/evaluations/{eid}", headers=auth(world["alice"])).status_code == 404
    assert client.post(f"/evaluations/{eid}/share", headers=auth(world["admin"])).json()["status"] == "SHARED"
    r = client.get(f"/evaluations/{eid}", headers=auth(world["alice"]))
    assert r.status_code == 200
    assert r.json()["manager_comments"] == "Fair"


def test_review_can_return_evaluation_to_draft(client: TestClient, db_session, world):
    eid = world["evaluation"].id
    client.post(f"/evaluations/{eid}/submit", json=_submit_body(world), headers=auth(world["bob"]))

    r = client.post(f"/evaluations/{eid}/review", json={"approved": False}, headers=auth(world["manager"]))
    assert r.status_code == 200
    assert r.json()["status"] == "DRAFT"
    assert r.json()["submitted_at"] is None

    # the evaluator can submit again
    r = client.post(f"/evaluations/{eid}/submit", json=_submit_body(world), headers=auth(world["bob"]))
    assert r.status_code == 200


def test_manager_of_another_team_cannot_review(client: TestClient, db_session, world):
    other = create_user(db_session, world["org"], "other-boss@acme.test", role="MANAGER")
    eid = world["evaluation"].id
    client.post(f"/evaluations/{eid}/submit", json=_submit_body(world), headers=auth(world["bob"]))
    r = client.post(f"/evaluations/{eid}/review", json={"approved": True}, headers=auth(other))
    assert r.status_code == 403
