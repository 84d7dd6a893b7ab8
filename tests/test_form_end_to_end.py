import pytest
from fastapi.testclient import TestClient

from perfreview.client.form import EvaluationFormSession, FormState
from perfreview.client.gateway import HttpEvaluationGateway
from perfreview.core.errors import ConflictError, NotFoundError
from perfreview.models.evaluation import Evaluation

from tests.helpers import create_competency, create_cycle, create_evaluation, create_org, create_team, create_user


@pytest.fixture()
def world(db_session):
    org = create_org(db_session)
    manager = create_user(db_session, org, "boss@acme.test", "Boss", role="MANAGER")
    alice = create_user(db_session, org, "alice@acme.test", "Alice")
    bob = create_user(db_session, org, "bob@acme.test", "Bob")
    create_team(db_session, org, "Core", manager=manager, members=[alice, bob])
    comm = create_competency(db_session, org, "Communication", order=1)
    cycle = create_cycle(db_session, org)
    evaluation = create_evaluation(db_session, cycle, bob, alice, "PEER")
    return {"bob": bob, "alice": alice, "comm": comm, "cycle": cycle, "evaluation": evaluation}


@pytest.fixture()
def bob_gateway(client: TestClient, world):
    return HttpEvaluationGateway(client, user_email=world["bob"].email)


def fill_in(session, competency_id):
    session.set_competency_rating(competency_id, rating=4, comments="Explains decisions well")
    session.set_field("strengths", "Clear writing")
    session.set_field("improvements", "Delegation")
    session.set_field("overall_rating", 4)
    session.set_field("overall_comments", "Strong half year")
    while session.validate_current_step() and session.next_step():
        pass


def test_fill_save_and_submit_over_http(db_session, world, bob_gateway):
    session = EvaluationFormSession(bob_gateway, user_id=str(world["bob"].id))
    session.load_evaluation(str(world["evaluation"].id))
    comm_id = str(world["comm"].id)
    assert session.steps[0].id == f"competency:{comm_id}"

    fill_in(session, comm_id)
    assert session.save_draft() is True
    assert not session.is_dirty

    db_session.expire_all()
    stored = db_session.get(Evaluation, world["evaluation"].id)
    assert stored.strengths == "Clear writing"
    assert [cr.rating for cr in stored.competency_ratings] == [4]

    assert session.can_submit()
    result = session.submit_evaluation()
    assert result.ok, result.reasons
    assert session.state is FormState.SUBMITTED

    db_session.expire_all()
    stored = db_session.get(Evaluation, world["evaluation"].id)
    assert stored.status == "SUBMITTED"
    assert stored.overall_comments == "Strong half year"


def test_reopening_a_submitted_evaluation_is_read_only(world, bob_gateway):
    first = EvaluationFormSession(bob_gateway, user_id=str(world["bob"].id))
    first.load_evaluation(str(world["evaluation"].id))
    fill_in(first, str(world["comm"].id))
    assert first.submit_evaluation().ok

    again = EvaluationFormSession(bob_gateway, user_id=str(world["bob"].id))
    again.load_evaluation(str(world["evaluation"].id))
    assert not again.can_submit()
    assert "Evaluation is SUBMITTED, not DRAFT" in again.submit_blockers()

    # the server refuses too, with the same error class
    with pytest.raises(ConflictError):
        bob_gateway.save_draft(str(world["evaluation"].id), {"strengths": "late edit"})


def test_server_refusal_on_closed_cycle_is_reported(db_session, world, bob_gateway):
    session = EvaluationFormSession(bob_gateway, user_id=str(world["bob"].id))
    session.load_evaluation(str(world["evaluation"].id))
    fill_in(session, str(world["comm"].id))
    session.save_draft()

    # the cycle closes while the form is open
    world["cycle"].status = "COMPLETED"
    db_session.commit()

    result = session.submit_evaluation()
    assert result.ok is False
    assert isinstance(result.error, ConflictError)
    assert session.state is FormState.READY
    assert session.submit_error == "Evaluation cycle is not active"


def test_missing_evaluation_maps_to_not_found(world, bob_gateway):
    with pytest.raises(NotFoundError):
        bob_gateway.fetch_evaluation("7f1d7b1e-0000-4000-8000-000000000000")


def test_other_peoples_evaluations_cannot_be_opened(client: TestClient, world):
    gateway = HttpEvaluationGateway(client, user_email=world["alice"].email)
    session = EvaluationFormSession(gateway, user_id=str(world["alice"].id))
    with pytest.raises(NotFoundError):
        session.load_evaluation(str(world["evaluation"].id))
