"""
Placement calculation and bracket finalization.

Gold/silver from the final, bronze for every semifinal loser, everyone else
by elimination round desc then wins desc. Finalization is idempotent.
"""

import logging
import random

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from app.models.bracket import BRACKET_COMPLETED, Bracket
from app.models.match import MATCH_COMPLETED, Match
from app.models.tournament_result import TournamentResult
from app.services import result_resolver
from app.services.bracket_builder import generate_brackets
from app.services.broadcast import BracketCompleted, broadcaster
from app.services.match_runtime import end_match
from app.services.result_resolver import (
    ALREADY_FINALIZED,
    FINALIZED,
    INCOMPLETE,
    INCONSISTENT,
    NOT_FOUND,
    BracketInconsistencyError,
    compute_placements,
    on_match_completed,
    try_finalize_bracket,
)


def _final(winner_id=1, **overrides):
    fields = dict(
        id=1,
        bracket_id=1,
        tournament_id=1,
        round_number=1,
        round_name="Final",
        match_number=1,
        position_in_round=1,
        fighter_a_id=1,
        fighter_a_name="Aiko",
        fighter_b_id=2,
        fighter_b_name="Ben",
        status=MATCH_COMPLETED,
        winner_id=winner_id,
    )
    fields.update(overrides)
    return Match(**fields)


def _generate_one(session: Session, tournament_id: int) -> Bracket:
    generate_brackets(session, tournament_id, rng=random.Random(11))
    return session.exec(select(Bracket).where(Bracket.tournament_id == tournament_id)).one()


def _results(session: Session, bracket_id: int):
    return session.exec(
        select(TournamentResult).where(TournamentResult.bracket_id == bracket_id).order_by(TournamentResult.final_rank)
    ).all()


class TestComputePlacements:
    def test_two_participants(self):
        placements = compute_placements([_final(winner_id=2)])

        gold, silver = placements
        assert (gold.participant_id, gold.final_rank, gold.medal) == (2, 1, "GOLD")
        assert gold.eliminated_in_round == "Champion"
        assert gold.eliminated_by_id is None
        assert (silver.participant_id, silver.final_rank, silver.medal) == (1, 2, "SILVER")
        assert silver.eliminated_in_round == "Final"
        assert silver.eliminated_by_id == 2
        assert (silver.total_matches, silver.matches_won, silver.matches_lost) == (1, 0, 1)

    def test_final_without_winner(self):
        with pytest.raises(BracketInconsistencyError):
            compute_placements([_final(winner_id=None)])

    def test_winner_not_a_fighter(self):
        with pytest.raises(BracketInconsistencyError):
            compute_placements([_final(winner_id=99)])

    def test_no_matches(self):
        with pytest.raises(BracketInconsistencyError):
            compute_placements([])


def test_eight_seeded_placements(session: Session, tournament, register, play_bracket):
    ids = list(range(101, 109))
    register(tournament.id, ids, seed_ranks={pid: pid - 100 for pid in ids})
    bracket = _generate_one(session, tournament.id)

    # Better seed always wins
    played = play_bracket(bracket.id)

    assert played[-1].completion.bracket_outcome == FINALIZED
    results = _results(session, bracket.id)
    assert [(r.participant_id, r.final_rank, r.medal) for r in results] == [
        (101, 1, "GOLD"),
        (102, 2, "SILVER"),
        (104, 3, "BRONZE"),
        (103, 4, "BRONZE"),
        (105, 5, None),
        (106, 6, None),
        (107, 7, None),
        (108, 8, None),
    ]

    champion = results[0]
    assert (champion.total_matches, champion.matches_won, champion.matches_lost) == (3, 3, 0)
    assert champion.eliminated_in_round == "Champion"
    assert results[2].eliminated_in_round == "Semifinal"
    assert results[2].eliminated_by_id == 101
    assert results[7].eliminated_in_round == "Quarterfinal"
    assert results[7].eliminated_by_id == 101
    assert all(r.category_name == bracket.category_name for r in results)

    session.refresh(bracket)
    assert bracket.status == BRACKET_COMPLETED
    assert bracket.completed_at is not None


def test_unseeded_placement_invariants(session: Session, tournament, register, play_bracket):
    register(tournament.id, list(range(1, 9)))
    bracket = _generate_one(session, tournament.id)

    play_bracket(bracket.id, pick=lambda m: max(m.fighter_a_id, m.fighter_b_id))

    results = _results(session, bracket.id)
    matches = session.exec(select(Match).where(Match.bracket_id == bracket.id)).all()
    final = next(m for m in matches if m.round_name == "Final")
    semis = [m for m in matches if m.round_name == "Semifinal"]

    assert [r.final_rank for r in results] == list(range(1, 9))
    assert [r.medal for r in results].count("GOLD") == 1
    assert [r.medal for r in results].count("SILVER") == 1
    assert [r.medal for r in results].count("BRONZE") == len(semis)
    assert results[0].participant_id == final.winner_id == 8
    assert results[1].participant_id == final.loser_id()
    assert {r.participant_id for r in results if r.medal == "BRONZE"} == {m.loser_id() for m in semis}
    # Quarterfinal losers all have zero wins, so participant_id breaks the tie
    assert [r.participant_id for r in results[4:]] == sorted(r.participant_id for r in results[4:])


def test_byes_not_counted_as_bouts(session: Session, tournament, register, play_bracket):
    ids = [1, 2, 3, 4, 5]
    register(tournament.id, ids, seed_ranks={pid: pid for pid in ids})
    bracket = _generate_one(session, tournament.id)

    play_bracket(bracket.id)

    results = _results(session, bracket.id)
    assert [(r.participant_id, r.medal) for r in results] == [
        (1, "GOLD"),
        (2, "SILVER"),
        (4, "BRONZE"),
        (3, "BRONZE"),
        (5, None),
    ]
    champion = results[0]
    assert (champion.total_matches, champion.matches_won) == (2, 2)
    fifth = results[4]
    assert (fifth.total_matches, fifth.matches_lost, fifth.eliminated_in_round, fifth.eliminated_by_id) == (
        1,
        1,
        "Quarterfinal",
        4,
    )


def test_three_participants_single_bronze(session: Session, tournament, register, play_bracket):
    register(tournament.id, [1, 2, 3], seed_ranks={1: 1, 2: 2, 3: 3})
    bracket = _generate_one(session, tournament.id)

    play_bracket(bracket.id)

    results = _results(session, bracket.id)
    assert [(r.participant_id, r.final_rank, r.medal) for r in results] == [
        (1, 1, "GOLD"),
        (2, 2, "SILVER"),
        (3, 3, "BRONZE"),
    ]


def test_incomplete_bracket_is_not_finalized(session: Session, tournament, register):
    register(tournament.id, [1, 2, 3, 4])
    bracket = _generate_one(session, tournament.id)

    outcome = try_finalize_bracket(session, bracket.id)

    assert outcome.status == INCOMPLETE
    assert _results(session, bracket.id) == []


def test_non_final_completion_is_noop(session: Session, tournament, register):
    register(tournament.id, [1, 2, 3, 4])
    bracket = _generate_one(session, tournament.id)
    first = session.exec(
        select(Match).where(Match.bracket_id == bracket.id, Match.round_number == 1).order_by(Match.position_in_round)
    ).first()

    result = end_match(session, first.id, winner_id=first.fighter_a_id)

    assert result.completion.bracket_outcome == INCOMPLETE
    assert result.completion.tournament_completed is False
    assert _results(session, bracket.id) == []


def test_finalize_twice_is_idempotent(session: Session, tournament, register, play_bracket):
    register(tournament.id, [1, 2, 3, 4])
    bracket = _generate_one(session, tournament.id)
    play_bracket(bracket.id)
    final = session.exec(select(Match).where(Match.bracket_id == bracket.id, Match.round_name == "Final")).one()
    before = [(r.id, r.participant_id, r.final_rank) for r in _results(session, bracket.id)]

    again = try_finalize_bracket(session, bracket.id)
    report = on_match_completed(session, final.id)

    assert again.status == ALREADY_FINALIZED
    assert report.bracket_outcome == ALREADY_FINALIZED
    assert [(r.id, r.participant_id, r.final_rank) for r in _results(session, bracket.id)] == before


def test_inconsistent_final_is_logged_not_raised(session: Session, tournament, register, caplog):
    register(tournament.id, [1, 2])
    bracket = _generate_one(session, tournament.id)
    final = session.exec(select(Match).where(Match.bracket_id == bracket.id)).one()
    final.status = MATCH_COMPLETED
    final.winner_id = None
    session.add(final)
    session.commit()

    with caplog.at_level(logging.ERROR, logger="app.services.result_resolver"):
        outcome = try_finalize_bracket(session, bracket.id)

    assert outcome.status == INCONSISTENT
    assert "not finalized" in caplog.text
    assert _results(session, bracket.id) == []
    session.refresh(bracket)
    assert bracket.status != BRACKET_COMPLETED


def test_unknown_bracket(session: Session):
    assert try_finalize_bracket(session, 4242).status == NOT_FOUND


def test_bracket_completed_event_published_once(session: Session, tournament, register, play_bracket):
    register(tournament.id, [1, 2, 3, 4])
    bracket = _generate_one(session, tournament.id)
    events = []
    unsubscribe = broadcaster.subscribe(events.append)
    try:
        play_bracket(bracket.id)
        try_finalize_bracket(session, bracket.id)
    finally:
        unsubscribe()

    completed = [e for e in events if isinstance(e, BracketCompleted)]
    assert len(completed) == 1
    assert completed[0].bracket_id == bracket.id
    assert completed[0].champion_id == 1


def test_finalize_endpoint(client: TestClient, session: Session, tournament, register, play_bracket):
    register(tournament.id, [1, 2, 3, 4])
    bracket = _generate_one(session, tournament.id)

    early = client.post(f"/api/brackets/{bracket.id}/finalize")
    assert early.status_code == 409

    play_bracket(bracket.id)

    response = client.post(f"/api/brackets/{bracket.id}/finalize")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == ALREADY_FINALIZED
    assert [p["final_rank"] for p in data["placements"]] == [1, 2, 3, 4]
    assert data["placements"][0]["medal"] == "GOLD"

    assert client.post("/api/brackets/9999/finalize").status_code == 404


def test_results_endpoint(client: TestClient, session: Session, tournament, register, play_bracket):
    register(tournament.id, [1, 2], belt="Black")
    register(tournament.id, [3, 4], belt="Brown")
    generate_brackets(session, tournament.id, rng=random.Random(2))
    brackets = session.exec(select(Bracket).where(Bracket.tournament_id == tournament.id)).all()
    for b in brackets:
        play_bracket(b.id)

    all_results = client.get(f"/api/tournaments/{tournament.id}/results").json()
    assert len(all_results) == 4

    one = client.get(f"/api/tournaments/{tournament.id}/results", params={"bracket_id": brackets[0].id}).json()
    assert [r["final_rank"] for r in one] == [1, 2]

    assert client.get("/api/tournaments/9999/results").status_code == 404


def test_wins_break_ties_within_elimination_round(session: Session, tournament, register, play_bracket):
    # 12 seeds in a 16-slot draw: seeds 1-4 receive byes into the quarterfinals
    ids = list(range(101, 113))
    register(tournament.id, ids, seed_ranks={pid: pid - 100 for pid in ids})
    bracket = _generate_one(session, tournament.id)

    # Seeds 5 and 7 knock out bye receivers 4 and 2 in the quarterfinals
    def pick(match):
        if match.round_name == "Quarterfinal":
            for upset in (105, 107):
                if upset in (match.fighter_a_id, match.fighter_b_id):
                    return upset
        return min(match.fighter_a_id, match.fighter_b_id)

    play_bracket(bracket.id, pick=pick)

    results = _results(session, bracket.id)
    assert [(r.participant_id, r.final_rank, r.medal) for r in results] == [
        (101, 1, "GOLD"),
        (103, 2, "SILVER"),
        (105, 3, "BRONZE"),
        (107, 4, "BRONZE"),
        # Quarterfinal losers: one round-1 win beats a bye, whatever the id
        (106, 5, None),
        (108, 6, None),
        (102, 7, None),
        (104, 8, None),
        # Round of 16 losers: no wins, participant_id ascending
        (109, 9, None),
        (110, 10, None),
        (111, 11, None),
        (112, 12, None),
    ]
    by_id = {r.participant_id: r for r in results}
    assert (by_id[106].matches_won, by_id[106].eliminated_in_round) == (1, "Quarterfinal")
    assert (by_id[102].matches_won, by_id[102].total_matches, by_id[102].eliminated_by_id) == (0, 1, 107)


def test_concurrent_finalizer_loses_cleanly(session: Session, tournament, register, play_bracket, monkeypatch):
    register(tournament.id, [1, 2, 3, 4])
    bracket = _generate_one(session, tournament.id)
    play_bracket(bracket.id, stop_before_final=True)

    # Final decided without running the completion pipeline
    final = session.exec(select(Match).where(Match.bracket_id == bracket.id, Match.round_name == "Final")).one()
    final.status = MATCH_COMPLETED
    final.winner_id = final.fighter_a_id
    session.add(final)
    session.commit()

    real_compute = result_resolver.compute_placements
    bracket_id, tournament_id, category = bracket.id, bracket.tournament_id, bracket.category_name

    def compute_while_another_writer_commits(matches):
        placements = real_compute(matches)
        # Another worker passes the existence check too and commits first
        with Session(session.get_bind()) as other:
            for p in placements:
                other.add(
                    TournamentResult(
                        tournament_id=tournament_id,
                        bracket_id=bracket_id,
                        participant_id=p.participant_id,
                        participant_name=p.participant_name,
                        category_name=category,
                        final_rank=p.final_rank,
                        medal=p.medal,
                    )
                )
            other.commit()
        return placements

    monkeypatch.setattr(result_resolver, "compute_placements", compute_while_another_writer_commits)
    events = []
    unsubscribe = broadcaster.subscribe(events.append)
    try:
        outcome = try_finalize_bracket(session, bracket_id)
    finally:
        unsubscribe()

    assert outcome.status == ALREADY_FINALIZED
    session.expire_all()
    assert len(_results(session, bracket_id)) == 4
    assert not any(isinstance(e, BracketCompleted) for e in events)
