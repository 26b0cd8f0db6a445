"""
Match runtime: SCHEDULED -> LIVE -> COMPLETED.

COMPLETED is terminal. Ending a match advances the winner downstream and
then hands the match to the result resolver.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlmodel import Session

from app.models.bracket import BRACKET_DRAFT, BRACKET_IN_PROGRESS, BRACKET_LOCKED, Bracket
from app.models.match import MATCH_COMPLETED, MATCH_LIVE, MATCH_SCHEDULED, Match
from app.models.tournament import TOURNAMENT_ONGOING, TOURNAMENT_UPCOMING, Tournament
from app.services.advancement_service import apply_advancement_for_completed_match
from app.services.broadcast import MatchEnded, MatchScoreUpdated, MatchStarted, broadcaster
from app.services.result_resolver import CompletionReport, on_match_completed

logger = logging.getLogger(__name__)


class MatchNotFoundError(Exception):
    """Raised when a match id does not exist"""

    pass


class MatchStateError(Exception):
    """Raised when a transition is not allowed from the match's current state"""

    pass


@dataclass
class EndMatchResult:
    match: Match
    advanced_count: int
    completion: CompletionReport


def _load(session: Session, match_id: int) -> Match:
    match = session.get(Match, match_id)
    if match is None:
        raise MatchNotFoundError(f"Match {match_id} not found")
    if match.status == MATCH_COMPLETED:
        raise MatchStateError(f"Match {match_id} is {MATCH_COMPLETED}; no further changes allowed")
    return match


def _require_fighters(match: Match) -> None:
    if match.fighter_a_id is None or match.fighter_b_id is None:
        raise MatchStateError(f"Match {match.id} is waiting for both fighters")


def _validate_scores(*scores: Optional[int]) -> None:
    for score in scores:
        if score is not None and score < 0:
            raise MatchStateError("Scores cannot be negative")


def _mark_in_progress(session: Session, match: Match) -> None:
    bracket = session.get(Bracket, match.bracket_id)
    if bracket is not None and bracket.status in (BRACKET_DRAFT, BRACKET_LOCKED):
        bracket.status = BRACKET_IN_PROGRESS
        session.add(bracket)
    tournament = session.get(Tournament, match.tournament_id)
    if tournament is not None and tournament.status == TOURNAMENT_UPCOMING:
        tournament.status = TOURNAMENT_ONGOING
        session.add(tournament)


def start_match(session: Session, match_id: int) -> Match:
    match = _load(session, match_id)
    if match.status != MATCH_SCHEDULED:
        raise MatchStateError(f"Match {match_id} is already {match.status}")
    _require_fighters(match)

    match.status = MATCH_LIVE
    match.started_at = datetime.utcnow()
    session.add(match)
    _mark_in_progress(session, match)
    session.commit()
    session.refresh(match)

    broadcaster.publish(
        MatchStarted(
            match_id=match.id,
            bracket_id=match.bracket_id,
            round_name=match.round_name,
            fighter_a_name=match.fighter_a_name,
            fighter_b_name=match.fighter_b_name,
        )
    )
    return match


def update_score(
    session: Session,
    match_id: int,
    fighter_a_score: Optional[int] = None,
    fighter_b_score: Optional[int] = None,
    notes: Optional[str] = None,
) -> Match:
    match = _load(session, match_id)
    _validate_scores(fighter_a_score, fighter_b_score)

    if fighter_a_score is not None:
        match.fighter_a_score = fighter_a_score
    if fighter_b_score is not None:
        match.fighter_b_score = fighter_b_score
    if notes is not None:
        match.notes = notes
    session.add(match)
    session.commit()
    session.refresh(match)

    broadcaster.publish(
        MatchScoreUpdated(
            match_id=match.id,
            bracket_id=match.bracket_id,
            fighter_a_score=match.fighter_a_score,
            fighter_b_score=match.fighter_b_score,
            notes=match.notes,
        )
    )
    return match


def end_match(
    session: Session,
    match_id: int,
    winner_id: int,
    fighter_a_score: Optional[int] = None,
    fighter_b_score: Optional[int] = None,
    notes: Optional[str] = None,
) -> EndMatchResult:
    """Complete a match, advance the winner, then run the completion pipeline."""
    match = _load(session, match_id)
    _require_fighters(match)
    if winner_id not in (match.fighter_a_id, match.fighter_b_id):
        raise MatchStateError(f"Winner {winner_id} is not a fighter in match {match_id}")
    _validate_scores(fighter_a_score, fighter_b_score)

    now = datetime.utcnow()
    match.status = MATCH_COMPLETED
    match.winner_id = winner_id
    match.completed_at = now
    if match.started_at is None:
        match.started_at = now
    if fighter_a_score is not None:
        match.fighter_a_score = fighter_a_score
    if fighter_b_score is not None:
        match.fighter_b_score = fighter_b_score
    if notes is not None:
        match.notes = notes
    session.add(match)
    _mark_in_progress(session, match)
    session.flush()

    advanced_count = apply_advancement_for_completed_match(session, match_id)
    session.commit()
    session.refresh(match)
    logger.info("Match %d (%s) completed; winner %d", match.id, match.round_name, winner_id)

    broadcaster.publish(MatchEnded(match_id=match.id, bracket_id=match.bracket_id, winner_id=winner_id))

    completion = on_match_completed(session, match_id)
    session.refresh(match)
    return EndMatchResult(match=match, advanced_count=advanced_count, completion=completion)
