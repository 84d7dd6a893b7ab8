from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from perfreview.core.errors import ConflictError, NotFoundError, StateError, ValidationError
from perfreview.models.audit_event import AuditEvent
from perfreview.models.idempotency import IdempotencyKey
from perfreview.services import cycle_manager

from tests.helpers import auth, create_cycle, create_evaluation, create_org, create_team, create_user, ctx_for

H1 = {"name": "H1", "type": "360", "start_date": "2025-01-01", "end_date": "2025-03-31"}


@pytest.fixture()
def org(db_session):
    return create_org(db_session)


@pytest.fixture()
def admin(db_session, org):
    return create_user(db_session, org, "admin@acme.test", "Admin", role="ADMIN")


def _create(ctx, start=date(2025, 1, 1), end=date(2025, 3, 31), name="H1", type="360", **kwargs):
    return cycle_manager.create_cycle(ctx, name=name, type=type, start_date=start, end_date=end, **kwargs)


@pytest.mark.parametrize("days", [1, 2, 30, 365])
def test_create_cycle_accepts_any_forward_range(db_session, admin, days):
    c = _create(ctx_for(db_session, admin), end=date(2025, 1, 1) + timedelta(days=days))
    assert c.status == "DRAFT"
    assert c.phases == []


@pytest.mark.parametrize("days", [0, -1, -90])
def test_create_cycle_rejects_empty_or_backwards_range(db_session, admin, days):
    with pytest.raises(ValidationError):
        _create(ctx_for(db_session, admin), start=date(2025, 6, 1), end=date(2025, 6, 1) + timedelta(days=days))


def test_overlapping_open_cycle_conflicts(db_session, admin):
    ctx = ctx_for(db_session, admin)
    first = _create(ctx, start=date(2025, 1, 1), end=date(2025, 3, 31))

    with pytest.raises(ConflictError) as exc:
        _create(ctx, start=date(2025, 3, 1), end=date(2025, 5, 31))
    assert exc.value.details["conflicting_cycle_id"] == str(first.id)

    # adjacent ranges do not overlap
    _create(ctx, start=date(2025, 4, 1), end=date(2025, 6, 30))


def test_overlap_check_locks_the_organization_first(db_session, admin, monkeypatch):
    ctx = ctx_for(db_session, admin)
    real = cycle_manager.get_organization
    locks = []

    def spy(ctx, *, for_update=False):
        locks.append(for_update)
        return real(ctx, for_update=for_update)

    monkeypatch.setattr(cycle_manager, "get_organization", spy)

    c = _create(ctx)
    assert locks == [True]

    cycle_manager.update_cycle(ctx, c.id, end_date=date(2025, 4, 30))
    assert locks == [True, True]

    # renaming only keeps the dates, so no overlap check and no lock
    cycle_manager.update_cycle(ctx, c.id, name="H1 renamed")
    assert locks == [True, True]


def test_closed_cycles_do_not_block_new_ones(db_session, admin):
    ctx = ctx_for(db_session, admin)
    c = _create(ctx)
    cycle_manager.activate_cycle(ctx, c.id)
    cycle_manager.complete_cycle(ctx, c.id)

    assert _create(ctx, name="H1 rerun").status == "DRAFT"


def test_overlap_is_scoped_to_the_organization(db_session, admin):
    _create(ctx_for(db_session, admin))

    other_org = create_org(db_session, "Globex")
    other_admin = create_user(db_session, other_org, "admin@globex.test", role="ADMIN")
    assert _create(ctx_for(db_session, other_admin)).status == "DRAFT"


def test_cycles_of_other_organizations_are_not_found(db_session, admin):
    c = _create(ctx_for(db_session, admin))

    other_org = create_org(db_session, "Globex")
    other_admin = create_user(db_session, other_org, "admin@globex.test", role="ADMIN")
    with pytest.raises(NotFoundError):
        cycle_manager.activate_cycle(ctx_for(db_session, other_admin), c.id)


def test_lifecycle_is_forward_only(db_session, admin):
    ctx = ctx_for(db_session, admin)
    c = _create(ctx)

    with pytest.raises(StateError):
        cycle_manager.complete_cycle(ctx, c.id)

    assert cycle_manager.activate_cycle(ctx, c.id).status == "ACTIVE"
    with pytest.raises(StateError):
        cycle_manager.activate_cycle(ctx, c.id)
    with pytest.raises(StateError):
        cycle_manager.archive_cycle(ctx, c.id)

    assert cycle_manager.complete_cycle(ctx, c.id).status == "COMPLETED"
    with pytest.raises(StateError):
        cycle_manager.cancel_cycle(ctx, c.id)

    assert cycle_manager.archive_cycle(ctx, c.id).status == "ARCHIVED"
    for transition in (cycle_manager.activate_cycle, cycle_manager.complete_cycle, cycle_manager.archive_cycle):
        with pytest.raises(StateError):
            transition(ctx, c.id)


def test_cancel_archives_open_cycles(db_session, admin):
    ctx = ctx_for(db_session, admin)
    draft = _create(ctx)
    assert cycle_manager.cancel_cycle(ctx, draft.id).status == "ARCHIVED"

    active = _create(ctx, name="Retry")
    cycle_manager.activate_cycle(ctx, active.id)
    assert cycle_manager.cancel_cycle(ctx, active.id).status == "ARCHIVED"


def test_completing_abandons_drafts(db_session, org, admin):
    ctx = ctx_for(db_session, admin)
    c = _create(ctx)
    cycle_manager.activate_cycle(ctx, c.id)
    member = create_user(db_session, org, "m@acme.test")
    draft = create_evaluation(db_session, c, member, member, type="SELF")

    cycle_manager.complete_cycle(ctx, c.id)
    db_session.refresh(draft)
    assert draft.status == "DRAFT"

    event = (
        db_session.query(AuditEvent)
        .filter(AuditEvent.action == "CYCLE_COMPLETED", AuditEvent.entity_id == c.id)
        .one()
    )
    assert event.event_metadata["abandoned_drafts"] == 1


def test_update_only_in_draft(db_session, admin):
    ctx = ctx_for(db_session, admin)
    c = _create(ctx)
    updated = cycle_manager.update_cycle(ctx, c.id, name="Renamed", end_date=date(2025, 4, 30))
    assert updated.name == "Renamed"
    assert updated.end_date == date(2025, 4, 30)

    with pytest.raises(ValidationError):
        cycle_manager.update_cycle(ctx, c.id, end_date=date(2024, 12, 1))

    cycle_manager.activate_cycle(ctx, c.id)
    with pytest.raises(StateError):
        cycle_manager.update_cycle(ctx, c.id, name="Too late")


def test_default_phases_split_the_cycle(db_session, admin):
    # 100 days
    c = _create(ctx_for(db_session, admin), start=date(2025, 1, 1), end=date(2025, 4, 11), with_default_phases=True)

    assert [p.type for p in c.phases] == ["SELF", "PEER", "MANAGER", "CALIBRATION"]
    assert [p.order for p in c.phases] == [1, 2, 3, 4]
    assert c.phases[0].start_date == date(2025, 1, 1)
    assert c.phases[0].end_date == date(2025, 1, 31)
    assert c.phases[3].end_date == date(2025, 4, 11)
    for prev, nxt in zip(c.phases, c.phases[1:]):
        assert prev.end_date == nxt.start_date


def test_components_follow_type_unless_overridden(db_session, admin):
    ctx = ctx_for(db_session, admin)
    c360 = _create(ctx, type="360")
    assert set(cycle_manager.cycle_components(c360)) == {"SELF", "MANAGER", "PEER", "UPWARD", "SKIP_LEVEL"}

    custom = _create(ctx, name="Custom", start=date(2025, 5, 1), end=date(2025, 6, 1),
                     components=["PEER", "SELF", "MANAGER"])
    assert cycle_manager.cycle_components(custom) == ("SELF", "MANAGER", "PEER")

    with pytest.raises(ValidationError):
        _create(ctx, name="Bad", start=date(2025, 7, 1), end=date(2025, 8, 1), components=["BOSS"])


# ---------- HTTP ----------


def test_create_cycle_requires_admin_or_manager(db_session, client: TestClient, org):
    member = create_user(db_session, org, "member@acme.test")
    r = client.post("/evaluation-cycles", headers=auth(member), json=H1)
    assert r.status_code == 403


def test_create_cycle_api_validation_and_conflict(client: TestClient, admin):
    r = client.post("/evaluation-cycles", headers=auth(admin),
                    json={**H1, "start_date": "2025-03-31", "end_date": "2025-01-01"})
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "validation_error"

    assert client.post("/evaluation-cycles", headers=auth(admin), json=H1).status_code == 201

    r = client.post("/evaluation-cycles", headers=auth(admin), json={**H1, "name": "Dup"})
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "conflict"


def test_create_cycle_with_auto_generate(db_session, client: TestClient, org, admin):
    manager = create_user(db_session, org, "boss@acme.test", role="MANAGER")
    a = create_user(db_session, org, "a@acme.test")
    b = create_user(db_session, org, "b@acme.test")
    create_team(db_session, org, "Core", manager=manager, members=[a, b])

    r = client.post(
        "/evaluation-cycles",
        headers=auth(admin),
        json={**H1, "name": "Manager round", "type": "MANAGER", "auto_generate": True},
    )
    assert r.status_code == 201, r.text
    data = r.json()
    assert data["status"] == "DRAFT"
    assert data["components"] == ["MANAGER"]
    assert data["generated_evaluations"] == 2


def test_list_cycles_with_counts(db_session, client: TestClient, org, admin):
    member = create_user(db_session, org, "m@acme.test")
    c = create_cycle(db_session, org, created_by=admin)
    create_evaluation(db_session, c, member, member, type="SELF")
    create_evaluation(db_session, c, admin, member, type="MANAGER", status="SUBMITTED", overall_rating=4)

    r = client.get("/evaluation-cycles", headers=auth(member))
    assert r.status_code == 200
    [row] = r.json()
    assert row["evaluation_count"] == 2
    assert row["evaluations_by_status"] == {"DRAFT": 1, "SUBMITTED": 1}

    r = client.get("/evaluation-cycles?include_pagination=true&status=ARCHIVED", headers=auth(member))
    assert r.json()["pagination"]["total"] == 0


def test_transition_endpoints(client: TestClient, admin):
    cycle_id = client.post("/evaluation-cycles", headers=auth(admin), json=H1).json()["id"]

    r = client.post(f"/evaluation-cycles/{cycle_id}/complete", headers=auth(admin))
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "invalid_state"

    for action, expected in (("activate", "ACTIVE"), ("complete", "COMPLETED"), ("archive", "ARCHIVED")):
        r = client.post(f"/evaluation-cycles/{cycle_id}/{action}", headers=auth(admin))
        assert r.status_code == 200
        assert r.json()["status"] == expected

    assert client.get("/evaluation-cycles/not-a-uuid", headers=auth(admin)).status_code == 404


def test_create_cycle_idempotency_key_replays(db_session, client: TestClient, admin):
    headers = {**auth(admin), "Idempotency-Key": "create-h1"}

    first = client.post("/evaluation-cycles", headers=headers, json=H1)
    assert first.status_code == 201
    again = client.post("/evaluation-cycles", headers=headers, json=H1)
    assert again.status_code == 201
    assert again.json()["id"] == first.json()["id"]

    r = client.post("/evaluation-cycles", headers=headers, json={**H1, "name": "Other"})
    assert r.status_code == 409

    row = db_session.query(IdempotencyKey).filter(IdempotencyKey.key == "create-h1").one()
    assert row.status == "COMPLETED"


def test_failed_request_marks_idempotency_key_failed(db_session, client: TestClient, org, admin):
    create_cycle(db_session, org, status="ACTIVE")

    r = client.post("/evaluation-cycles", headers={**auth(admin), "Idempotency-Key": "clash"}, json=H1)
    assert r.status_code == 409

    row = db_session.query(IdempotencyKey).filter(IdempotencyKey.key == "clash").one()
    assert row.status == "FAILED"
