"""
Result Resolver: placements once every match of a bracket is complete.

Pipeline on each match completion (on_match_completed):
  1. try_finalize_bracket   - all matches COMPLETED and no results yet ->
                              write placements, mark bracket COMPLETED
  2. check_tournament_completion - every bracket COMPLETED -> tournament COMPLETED

Both steps are no-ops when their precondition is not met, so duplicate or
concurrent completion events are harmless. The unique constraints on
TournamentResult make the check-then-write atomic: a second finalizer that
races past the existence check fails on insert and is rolled back.

Placement order:
  rank 1 GOLD    final winner
  rank 2 SILVER  final loser
  rank 3.. BRONZE  every loser at round max_round - 1 (one per semifinal)
  rest           sorted by elimination round desc, then wins desc,
                 then participant_id asc
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.models.bracket import BRACKET_COMPLETED, Bracket
from app.models.match import MATCH_COMPLETED, Match
from app.models.tournament import TOURNAMENT_COMPLETED, Tournament
from app.models.tournament_result import (
    CHAMPION_MARKER,
    MEDAL_BRONZE,
    MEDAL_GOLD,
    MEDAL_SILVER,
    TournamentResult,
)
from app.services.broadcast import BracketCompleted, TournamentCompleted, broadcaster

logger = logging.getLogger(__name__)

FINALIZED = "finalized"
INCOMPLETE = "incomplete"
ALREADY_FINALIZED = "already_finalized"
INCONSISTENT = "inconsistent"
NOT_FOUND = "not_found"


class BracketInconsistencyError(Exception):
    """Raised when a bracket's match graph cannot produce placements"""

    pass


@dataclass
class ParticipantStats:
    participant_id: int
    name: Optional[str] = None
    total_matches: int = 0
    matches_won: int = 0
    matches_lost: int = 0
    eliminated_in_round: Optional[str] = None
    eliminated_round_number: int = 0  # 0 = never lost
    eliminated_by_id: Optional[int] = None


@dataclass
class Placement:
    participant_id: int
    participant_name: Optional[str]
    final_rank: int
    medal: Optional[str]
    total_matches: int
    matches_won: int
    matches_lost: int
    eliminated_in_round: Optional[str]
    eliminated_by_id: Optional[int]


@dataclass
class FinalizeOutcome:
    bracket_id: int
    status: str  # finalized | incomplete | already_finalized | inconsistent | not_found
    placements: List[Placement] = field(default_factory=list)
    detail: Optional[str] = None

    @property
    def bracket_complete(self) -> bool:
        return self.status in (FINALIZED, ALREADY_FINALIZED)


@dataclass
class CompletionReport:
    match_id: int
    bracket_id: Optional[int] = None
    bracket_outcome: Optional[str] = None
    tournament_completed: bool = False


def _validate(match: Match) -> None:
    if match.status != MATCH_COMPLETED:
        raise BracketInconsistencyError(f"Match {match.id} is {match.status}, expected {MATCH_COMPLETED}")
    if match.is_bye:
        present = [f for f in (match.fighter_a_id, match.fighter_b_id) if f is not None]
        if len(present) != 1 or match.winner_id != present[0]:
            raise BracketInconsistencyError(f"Bye match {match.id} must advance its single fighter")
        return
    if match.fighter_a_id is None or match.fighter_b_id is None:
        raise BracketInconsistencyError(f"Match {match.id} completed without two fighters")
    if match.winner_id not in (match.fighter_a_id, match.fighter_b_id):
        raise BracketInconsistencyError(
            f"Match {match.id} winner {match.winner_id} is not one of its fighters"
        )


def collect_stats(matches: Sequence[Match]) -> Dict[int, ParticipantStats]:
    """One pass over the bracket's matches, earliest round first. Byes are not bouts."""
    stats: Dict[int, ParticipantStats] = {}
    for match in sorted(matches, key=lambda m: (m.round_number, m.position_in_round)):
        for fighter_id, fighter_name in (
            (match.fighter_a_id, match.fighter_a_name),
            (match.fighter_b_id, match.fighter_b_name),
        ):
            if fighter_id is None:
                continue
            entry = stats.setdefault(fighter_id, ParticipantStats(participant_id=fighter_id))
            if entry.name is None:
                entry.name = fighter_name
            if match.is_bye:
                continue
            entry.total_matches += 1
            if match.winner_id == fighter_id:
                entry.matches_won += 1
            else:
                entry.matches_lost += 1
                entry.eliminated_in_round = match.round_name
                entry.eliminated_round_number = match.round_number
                entry.eliminated_by_id = match.winner_id
    return stats


def _placement(entry: ParticipantStats, rank: int, medal: Optional[str]) -> Placement:
    return Placement(
        participant_id=entry.participant_id,
        participant_name=entry.name,
        final_rank=rank,
        medal=medal,
        total_matches=entry.total_matches,
        matches_won=entry.matches_won,
        matches_lost=entry.matches_lost,
        eliminated_in_round=entry.eliminated_in_round,
        eliminated_by_id=entry.eliminated_by_id,
    )


def compute_placements(matches: Sequence[Match]) -> List[Placement]:
    """
    Full placement list for a bracket whose matches are all COMPLETED.

    Raises BracketInconsistencyError if the final has no winner or any
    completed match's winner is not one of its fighters.
    """
    if not matches:
        raise BracketInconsistencyError("Bracket has no matches")
    for match in matches:
        _validate(match)

    max_round = max(m.round_number for m in matches)
    finals = [m for m in matches if m.round_number == max_round]
    if len(finals) != 1:
        raise BracketInconsistencyError(f"Expected exactly one final match, found {len(finals)}")
    final = finals[0]
    if final.winner_id is None:
        raise BracketInconsistencyError(f"Final match {final.id} has no winner")

    stats = collect_stats(matches)
    placements: List[Placement] = []
    ranked = set()

    gold = _placement(stats[final.winner_id], 1, MEDAL_GOLD)
    gold.eliminated_in_round = CHAMPION_MARKER
    gold.eliminated_by_id = None
    placements.append(gold)
    ranked.add(final.winner_id)

    runner_up_id = final.loser_id()
    if runner_up_id is not None:
        placements.append(_placement(stats[runner_up_id], 2, MEDAL_SILVER))
        ranked.add(runner_up_id)

    next_rank = len(placements) + 1
    semifinals = sorted(
        (m for m in matches if m.round_number == max_round - 1),
        key=lambda m: m.position_in_round,
    )
    for semi in semifinals:
        if semi.is_bye:
            continue
        loser_id = semi.loser_id()
        if loser_id is None or loser_id not in stats:
            raise BracketInconsistencyError(f"Semifinal {semi.id} has no resolvable loser")
        placements.append(_placement(stats[loser_id], next_rank, MEDAL_BRONZE))
        ranked.add(loser_id)
        next_rank += 1

    # Stable sort on an id-ordered list: elimination round desc, then wins desc
    remaining = sorted((s for pid, s in stats.items() if pid not in ranked), key=lambda s: s.participant_id)
    remaining.sort(key=lambda s: (-s.eliminated_round_number, -s.matches_won))
    for entry in remaining:
        placements.append(_placement(entry, next_rank, None))
        next_rank += 1

    return placements


def try_finalize_bracket(session: Session, bracket_id: int) -> FinalizeOutcome:
    """
    Write placements and mark the bracket COMPLETED if every match is done.

    Never raises for expected conditions; the outcome status says what happened.
    """
    bracket = session.get(Bracket, bracket_id)
    if bracket is None:
        return FinalizeOutcome(bracket_id=bracket_id, status=NOT_FOUND, detail="Bracket not found")

    matches = session.exec(select(Match).where(Match.bracket_id == bracket_id)).all()
    if not matches or any(m.status != MATCH_COMPLETED for m in matches):
        return FinalizeOutcome(bracket_id=bracket_id, status=INCOMPLETE)

    existing = session.exec(select(TournamentResult).where(TournamentResult.bracket_id == bracket_id)).first()
    if existing is not None:
        logger.debug("Results already exist for bracket %d", bracket_id)
        return FinalizeOutcome(bracket_id=bracket_id, status=ALREADY_FINALIZED)

    try:
        placements = compute_placements(matches)
    except BracketInconsistencyError as exc:
        logger.error("Bracket %d (%s) not finalized: %s", bracket_id, bracket.category_name, exc)
        return FinalizeOutcome(bracket_id=bracket_id, status=INCONSISTENT, detail=str(exc))

    for p in placements:
        session.add(
            TournamentResult(
                tournament_id=bracket.tournament_id,
                bracket_id=bracket.id,
                participant_id=p.participant_id,
                participant_name=p.participant_name,
                category_name=bracket.category_name,
                final_rank=p.final_rank,
                medal=p.medal,
                total_matches=p.total_matches,
                matches_won=p.matches_won,
                matches_lost=p.matches_lost,
                eliminated_in_round=p.eliminated_in_round,
                eliminated_by_id=p.eliminated_by_id,
            )
        )
    bracket.status = BRACKET_COMPLETED
    bracket.completed_at = datetime.utcnow()
    session.add(bracket)

    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.info("Bracket %d finalized concurrently; discarding duplicate placements", bracket_id)
        return FinalizeOutcome(bracket_id=bracket_id, status=ALREADY_FINALIZED)

    logger.info(
        "Bracket %d (%s) completed with %d placements", bracket_id, bracket.category_name, len(placements)
    )
    broadcaster.publish(
        BracketCompleted(
            bracket_id=bracket.id,
            tournament_id=bracket.tournament_id,
            category_name=bracket.category_name,
            champion_id=placements[0].participant_id,
        )
    )
    return FinalizeOutcome(bracket_id=bracket_id, status=FINALIZED, placements=placements)


def check_tournament_completion(session: Session, tournament_id: int) -> bool:
    """Mark the tournament COMPLETED iff it has brackets and all are COMPLETED.

    Returns True only when this call made the transition.
    """
    tournament = session.get(Tournament, tournament_id)
    if tournament is None or tournament.status == TOURNAMENT_COMPLETED:
        return False

    brackets = session.exec(select(Bracket).where(Bracket.tournament_id == tournament_id)).all()
    if not brackets or any(b.status != BRACKET_COMPLETED for b in brackets):
        return False

    tournament.status = TOURNAMENT_COMPLETED
    tournament.completed_at = datetime.utcnow()
    session.add(tournament)
    session.commit()

    logger.info("Tournament %d marked COMPLETED (%d brackets)", tournament_id, len(brackets))
    broadcaster.publish(TournamentCompleted(tournament_id=tournament_id, bracket_count=len(brackets)))
    return True


def on_match_completed(session: Session, match_id: int) -> CompletionReport:
    """Entry point for the match-scoring side: finalize the bracket, then cascade."""
    report = CompletionReport(match_id=match_id)
    match = session.get(Match, match_id)
    if match is None or match.status != MATCH_COMPLETED:
        return report

    report.bracket_id = match.bracket_id
    outcome = try_finalize_bracket(session, match.bracket_id)
    report.bracket_outcome = outcome.status
    if outcome.bracket_complete:
        report.tournament_completed = check_tournament_completion(session, match.tournament_id)
    return report
