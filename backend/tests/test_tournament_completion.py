"""Tournament completion cascade: COMPLETED only once every bracket is COMPLETED."""

import random

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from app.models.bracket import Bracket
from app.models.tournament import TOURNAMENT_COMPLETED, TOURNAMENT_ONGOING, TOURNAMENT_UPCOMING, Tournament
from app.services.bracket_builder import TournamentClosedError, generate_brackets
from app.services.broadcast import TournamentCompleted, broadcaster
from app.services.result_resolver import check_tournament_completion


def _brackets(session: Session, tournament_id: int):
    return session.exec(
        select(Bracket).where(Bracket.tournament_id == tournament_id).order_by(Bracket.category_key)
    ).all()


def test_no_brackets_never_completes(session: Session, tournament):
    assert check_tournament_completion(session, tournament.id) is False
    session.refresh(tournament)
    assert tournament.status == TOURNAMENT_UPCOMING
    assert tournament.completed_at is None


def test_only_skipped_categories_never_completes(session: Session, tournament, register):
    register(tournament.id, [1], belt="Black")
    register(tournament.id, [2], belt="Brown")

    report = generate_brackets(session, tournament.id, rng=random.Random(0))

    assert report.brackets_created == 0
    assert check_tournament_completion(session, tournament.id) is False


def test_completes_after_last_bracket(session: Session, tournament, register, play_bracket):
    register(tournament.id, [1, 2, 3, 4], belt="Black")
    register(tournament.id, [5, 6], belt="Brown")
    generate_brackets(session, tournament.id, rng=random.Random(0))
    black, brown = _brackets(session, tournament.id)

    first = play_bracket(black.id)
    assert first[-1].completion.tournament_completed is False
    session.refresh(tournament)
    assert tournament.status == TOURNAMENT_ONGOING

    second = play_bracket(brown.id)
    assert second[-1].completion.tournament_completed is True
    session.refresh(tournament)
    assert tournament.status == TOURNAMENT_COMPLETED
    assert tournament.completed_at is not None


def test_completion_is_reported_once(session: Session, tournament, register, play_bracket):
    register(tournament.id, [1, 2])
    generate_brackets(session, tournament.id, rng=random.Random(0))
    (bracket,) = _brackets(session, tournament.id)
    events = []
    unsubscribe = broadcaster.subscribe(events.append)
    try:
        play_bracket(bracket.id)
        again = check_tournament_completion(session, tournament.id)
    finally:
        unsubscribe()

    assert again is False
    completed = [e for e in events if isinstance(e, TournamentCompleted)]
    assert len(completed) == 1
    assert completed[0].bracket_count == 1


def test_partial_play_leaves_tournament_open(session: Session, tournament, register, play_bracket):
    register(tournament.id, [1, 2, 3, 4])
    generate_brackets(session, tournament.id, rng=random.Random(0))
    (bracket,) = _brackets(session, tournament.id)

    play_bracket(bracket.id, stop_before_final=True)

    assert check_tournament_completion(session, tournament.id) is False
    session.refresh(tournament)
    assert tournament.status != TOURNAMENT_COMPLETED


def test_full_flow_through_api(client: TestClient, tournament, register):
    register(tournament.id, [1, 2, 3, 4])
    client.post(f"/api/tournaments/{tournament.id}/brackets/generate")
    bracket = client.get(f"/api/tournaments/{tournament.id}/brackets").json()[0]

    last = None
    for round_number in (1, 2):
        current = client.get(f"/api/brackets/{bracket['id']}").json()
        for match in [m for m in current["matches"] if m["round_number"] == round_number]:
            winner = min(match["fighter_a_id"], match["fighter_b_id"])
            last = client.post(f"/api/matches/{match['id']}/end", json={"winner_id": winner})
            assert last.status_code == 200

    data = last.json()
    assert data["bracket_outcome"] == "finalized"
    assert data["tournament_completed"] is True
    assert client.get(f"/api/tournaments/{tournament.id}").json()["status"] == TOURNAMENT_COMPLETED
    assert client.get(f"/api/brackets/{bracket['id']}").json()["status"] == "COMPLETED"


@pytest.fixture
def completed_tournament(session: Session, tournament, register, play_bracket):
    """Tournament whose only bracket has been played out, so it is COMPLETED."""
    register(tournament.id, [1, 2])
    generate_brackets(session, tournament.id, rng=random.Random(0))
    (bracket,) = _brackets(session, tournament.id)
    play_bracket(bracket.id)
    session.refresh(tournament)
    assert tournament.status == TOURNAMENT_COMPLETED
    return tournament


def test_completed_tournament_refuses_new_brackets(session: Session, completed_tournament, register):
    register(completed_tournament.id, [3, 4], belt="Black")

    with pytest.raises(TournamentClosedError):
        generate_brackets(session, completed_tournament.id, rng=random.Random(0))

    session.expire_all()
    assert [b.status for b in _brackets(session, completed_tournament.id)] == ["COMPLETED"]
    assert session.get(Tournament, completed_tournament.id).status == TOURNAMENT_COMPLETED


def test_completed_tournament_generate_endpoints_conflict(client: TestClient, completed_tournament, register):
    register(completed_tournament.id, [3, 4], belt="Black")

    assert client.post(f"/api/tournaments/{completed_tournament.id}/brackets/generate").status_code == 409
    assert client.get(f"/api/tournaments/{completed_tournament.id}/brackets/generate/stream").status_code == 409

    brackets = client.get(f"/api/tournaments/{completed_tournament.id}/brackets").json()
    assert [b["status"] for b in brackets] == ["COMPLETED"]


def test_completed_tournament_closes_registration(client: TestClient, completed_tournament):
    response = client.post(
        f"/api/tournaments/{completed_tournament.id}/registrations",
        json={"participant_id": 3, "participant_name": "Late Entry", "category_belt": "Black"},
    )

    assert response.status_code == 409
    registrations = client.get(f"/api/tournaments/{completed_tournament.id}/registrations").json()
    assert [r["participant_id"] for r in registrations] == [1, 2]
