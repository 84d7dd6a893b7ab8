import uuid

import pytest
from fastapi.testclient import TestClient

from perfreview.core.errors import ValidationError
from perfreview.services.aggregator import RatingRecord, aggregate, aggregate_ratings, resolve_type_weights

from tests.helpers import auth, create_competency, create_cycle, create_evaluation, create_org, create_team, create_user, ctx_for

EQUAL = {"SELF": 1.0, "MANAGER": 1.0, "PEER": 1.0, "UPWARD": 1.0, "SKIP_LEVEL": 1.0}


def _records(competency_id, pairs):
    return [RatingRecord(uuid.uuid4(), etype, competency_id, rating) for etype, rating in pairs]


def test_no_data_is_a_valid_result():
    cid = uuid.uuid4()
    result = aggregate_ratings([], EQUAL, competency_ids=[cid])

    assert result.overall.weighted_average is None
    assert result.overall.self_vs_others_gap is None
    assert [(r.competency_id, r.sample_count, r.average_rating) for r in result.per_competency] == [(cid, 0, None)]
    assert result.contributing_evaluations == {}
    assert result.evaluation_count == 0


def test_self_vs_others_gap():
    cid = uuid.uuid4()
    result = aggregate_ratings(
        _records(cid, [("SELF", 3), ("MANAGER", 4), ("PEER", 5), ("PEER", 5)]),
        EQUAL,
    )

    assert result.overall.self_vs_others_gap == pytest.approx(-1.667, abs=0.01)
    [row] = result.per_competency
    assert row.sample_count == 4
    assert row.average_rating == pytest.approx(4.25)
    assert row.by_type == {"MANAGER": 4, "PEER": 5, "SELF": 3}


def test_gap_is_null_without_self_or_without_others():
    cid = uuid.uuid4()
    assert aggregate_ratings(_records(cid, [("PEER", 4)]), EQUAL).overall.self_vs_others_gap is None
    assert aggregate_ratings(_records(cid, [("SELF", 4)]), EQUAL).overall.self_vs_others_gap is None


def test_weights_renormalize_over_present_types():
    cid = uuid.uuid4()
    weights = {"MANAGER": 3.0, "PEER": 2.0, "UPWARD": 2.0, "SKIP_LEVEL": 2.0, "SELF": 1.0}
    result = aggregate_ratings(_records(cid, [("MANAGER", 4), ("SELF", 2)]), weights)

    assert result.overall.weights_applied == pytest.approx({"MANAGER": 0.75, "SELF": 0.25})
    assert result.overall.weighted_average == pytest.approx(4 * 0.75 + 2 * 0.25)


def test_zero_weight_types_never_divide_by_zero():
    cid = uuid.uuid4()
    weights = {**EQUAL, "SELF": 0.0}
    result = aggregate_ratings(_records(cid, [("SELF", 5)]), weights)
    assert result.overall.weighted_average is None
    assert result.overall.average_by_type == {"SELF": 5}


def test_unrated_entries_are_ignored_but_evaluations_counted():
    cid = uuid.uuid4()
    eid = uuid.uuid4()
    records = [RatingRecord(eid, "PEER", cid, None)]
    result = aggregate_ratings(records, EQUAL)
    assert result.per_competency[0].sample_count == 0
    assert result.contributing_evaluations == {"PEER": 1}


def test_aggregation_is_deterministic():
    cid, other = uuid.uuid4(), uuid.uuid4()
    records = _records(cid, [("SELF", 3), ("PEER", 4)]) + _records(other, [("MANAGER", 2)])
    first = aggregate_ratings(records, EQUAL, competency_ids=[other, cid])
    second = aggregate_ratings(list(records), EQUAL, competency_ids=[other, cid])
    assert first == second
    assert [r.competency_id for r in first.per_competency] == [other, cid]


def test_org_weights_override_defaults(db_session):
    org = create_org(db_session, settings={"type_weights": {"PEER": 5}})
    weights = resolve_type_weights(org)
    assert weights["PEER"] == 5.0
    assert weights["MANAGER"] == 3.0

    org.settings = {"type_weights": {"CEO": 1}}
    with pytest.raises(ValidationError):
        resolve_type_weights(org)


@pytest.fixture()
def scenario(db_session):
    org = create_org(db_session)
    admin = create_user(db_session, org, "admin@acme.test", role="ADMIN")
    manager = create_user(db_session, org, "boss@acme.test", role="MANAGER")
    alice = create_user(db_session, org, "alice@acme.test", "Alice")
    bob = create_user(db_session, org, "bob@acme.test", "Bob")
    carol = create_user(db_session, org, "carol@acme.test", "Carol")
    create_team(db_session, org, "Core", manager=manager, members=[alice, bob, carol])
    comm = create_competency(db_session, org, "Communication", order=1)
    cycle = create_cycle(db_session, org)

    create_evaluation(db_session, cycle, alice, alice, "SELF", "SUBMITTED", overall_rating=3, ratings={comm: 3})
    create_evaluation(db_session, cycle, manager, alice, "MANAGER", "APPROVED", overall_rating=4, ratings={comm: 4})
    create_evaluation(db_session, cycle, bob, alice, "PEER", "REVIEWED", overall_rating=5, ratings={comm: 5})
    create_evaluation(db_session, cycle, carol, alice, "PEER", "SHARED", overall_rating=5, ratings={comm: 5})
    # drafts never count
    create_evaluation(db_session, cycle, manager, bob, "MANAGER", "DRAFT", ratings={comm: 1})
    return {"org": org, "admin": admin, "manager": manager, "alice": alice, "bob": bob, "cycle": cycle, "comm": comm}


def test_aggregate_reads_submitted_evaluations_only(db_session, scenario):
    ctx = ctx_for(db_session, scenario["admin"])
    result = aggregate(ctx, scenario["cycle"].id, scenario["alice"].id)

    assert result.contributing_evaluations == {"MANAGER": 1, "PEER": 2, "SELF": 1}
    assert result.overall.self_vs_others_gap == pytest.approx(-1.667, abs=0.01)
    [row] = result.per_competency
    assert row.name == "Communication"
    assert row.sample_count == 4
    assert result.overall.overall_rating_by_type == {"MANAGER": 4, "PEER": 5, "SELF": 3}

    bob_result = aggregate(ctx, scenario["cycle"].id, scenario["bob"].id)
    assert bob_result.overall.weighted_average is None
    assert bob_result.per_competency[0].sample_count == 0


def test_aggregate_does_not_mutate(db_session, scenario):
    from perfreview.models.evaluation import Evaluation

    ctx = ctx_for(db_session, scenario["admin"])
    before = [(e.id, e.status, e.updated_at) for e in db_session.query(Evaluation).order_by(Evaluation.id)]
    aggregate(ctx, scenario["cycle"].id, scenario["alice"].id)
    aggregate(ctx, scenario["cycle"].id, scenario["alice"].id)
    assert not db_session.new and not db_session.dirty
    after = [(e.id, e.status, e.updated_at) for e in db_session.query(Evaluation).order_by(Evaluation.id)]
    assert before == after


def test_results_endpoint_permissions(db_session, client: TestClient, scenario):
    cycle, alice = scenario["cycle"], scenario["alice"]
    url = f"/evaluations/{cycle.id}/results?evaluateeId={alice.id}"

    for viewer in ("admin", "alice", "manager"):
        r = client.get(url, headers=auth(scenario[viewer]))
        assert r.status_code == 200, (viewer, r.text)

    r = client.get(url, headers=auth(scenario["bob"]))
    assert r.status_code == 403

    data = client.get(url, headers=auth(alice)).json()
    assert data["evaluatee"]["full_name"] == "Alice"
    assert data["cycle"]["id"] == str(cycle.id)
    assert data["evaluation_count"] == 4
    assert data["overall"]["self_vs_others_gap"] == pytest.approx(-1.667, abs=0.01)


def test_results_for_other_organization_are_not_found(db_session, client: TestClient, scenario):
    other = create_org(db_session, "Globex")
    outsider = create_user(db_session, other, "admin@globex.test", role="ADMIN")
    url = f"/evaluations/{scenario['cycle'].id}/results?evaluateeId={scenario['alice'].id}"
    assert client.get(url, headers=auth(outsider)).status_code == 404
