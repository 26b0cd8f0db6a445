"""
Bracket Builder: single-elimination trees per category.

Approved registrations are grouped by (age, weight, belt) band. Each category
with at least two entrants gets a seeded bracket padded to the next power of
two. Seeds follow standard bracket-fold order, so seed 1 and seed 2 can only
meet in the final and byes fall to the top seeds. A bye is materialized as a
completed round-1 match whose only fighter is already placed in round 2.

Planning (seed order, slot layout, round names) is pure; generate_brackets()
persists one Bracket + full Match tree per category, one transaction each.
"""

from __future__ import annotations

import logging
import os
import random
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.models.bracket import BRACKET_DRAFT, Bracket
from app.models.match import MATCH_COMPLETED, MATCH_SCHEDULED, Match
from app.models.registration import APPROVAL_APPROVED, OPEN_BAND, Registration
from app.models.tournament import TOURNAMENT_COMPLETED, Tournament

logger = logging.getLogger(__name__)

MIN_BRACKET_PARTICIPANTS = 2

OUTCOME_CREATED = "created"
OUTCOME_SKIPPED = "skipped"
OUTCOME_LOCKED = "locked"
OUTCOME_FAILED = "failed"


class TournamentClosedError(Exception):
    """Raised when brackets are requested for a tournament that is already COMPLETED"""

    pass


@dataclass
class Entrant:
    """One approved participant as seen by the builder."""

    participant_id: int
    name: str
    seed_rank: Optional[int] = None


@dataclass
class PlannedMatch:
    round_number: int
    round_name: str
    position_in_round: int
    match_number: int = 0
    fighter_a: Optional[Entrant] = None
    fighter_b: Optional[Entrant] = None
    is_bye: bool = False
    winner: Optional[Entrant] = None

    @property
    def key(self) -> Tuple[int, int]:
        return (self.round_number, self.position_in_round)

    def source_keys(self) -> Tuple[Optional[Tuple[int, int]], Optional[Tuple[int, int]]]:
        """Upstream (round, position) feeding slot A and slot B; none for round 1."""
        if self.round_number == 1:
            return (None, None)
        prev = self.round_number - 1
        return ((prev, 2 * self.position_in_round - 1), (prev, 2 * self.position_in_round))


@dataclass
class BracketPlan:
    size: int
    total_rounds: int
    seeded: List[Entrant]
    matches: List[PlannedMatch] = field(default_factory=list)

    def round_matches(self, round_number: int) -> List[PlannedMatch]:
        return [m for m in self.matches if m.round_number == round_number]

    @property
    def bye_count(self) -> int:
        return self.size - len(self.seeded)


@dataclass
class CategoryOutcome:
    category_key: str
    category_name: str
    participant_count: int
    outcome: str  # created | skipped | locked | failed
    bracket_id: Optional[int] = None
    detail: Optional[str] = None


@dataclass
class BuildProgress:
    """Emitted once per category while generating."""

    index: int
    total: int
    category_name: str
    outcome: str
    brackets_created: int


@dataclass
class GenerationReport:
    tournament_id: int
    brackets_created: int = 0
    categories_skipped: int = 0
    categories_locked: int = 0
    categories_failed: int = 0
    brackets_removed: int = 0
    categories: List[CategoryOutcome] = field(default_factory=list)


# ============================================================================
# Pure planning
# ============================================================================


def next_power_of_two(n: int) -> int:
    if n <= 1:
        return 1
    size = 1
    while size < n:
        size *= 2
    return size


def round_name(round_number: int, max_round: int) -> str:
    """Human label counted back from the final."""
    rounds_from_end = max_round - round_number
    if rounds_from_end == 0:
        return "Final"
    if rounds_from_end == 1:
        return "Semifinal"
    if rounds_from_end == 2:
        return "Quarterfinal"
    return f"Round of {2 ** (rounds_from_end + 1)}"


def _band(value: Optional[str]) -> str:
    if value is None or not value.strip():
        return OPEN_BAND
    return value.strip()


def category_key(age: Optional[str], weight: Optional[str], belt: Optional[str]) -> str:
    return f"{_band(age)}|{_band(weight)}|{_band(belt)}"


def category_name(age: Optional[str], weight: Optional[str], belt: Optional[str]) -> str:
    return f"{_band(age)} · {_band(weight)} · {_band(belt)}"


def group_by_category(registrations: Iterable[Registration]) -> "OrderedDict[str, List[Registration]]":
    """Group registrations by category key, keys in sorted order."""
    groups: Dict[str, List[Registration]] = {}
    for reg in registrations:
        key = category_key(reg.category_age, reg.category_weight, reg.category_belt)
        groups.setdefault(key, []).append(reg)
    return OrderedDict((key, groups[key]) for key in sorted(groups))


def seed_entrants(entrants: Sequence[Entrant], rng: random.Random) -> List[Entrant]:
    """
    Return entrants in seed order (index 0 = seed 1).

    Ranked entrants come first by seed_rank ascending (ties by participant_id).
    Unranked entrants are put in participant_id order, then shuffled with rng,
    so the same rng state always produces the same draw.
    """
    ranked = sorted(
        (e for e in entrants if e.seed_rank is not None),
        key=lambda e: (e.seed_rank, e.participant_id),
    )
    unranked = sorted((e for e in entrants if e.seed_rank is None), key=lambda e: e.participant_id)
    rng.shuffle(unranked)
    return ranked + unranked


def bracket_fold_positions(n: int) -> List[int]:
    """Standard bracket-fold positions for *n* entries.

    Returns a flat list of seed numbers in bracket position order.
    Consecutive pairs indicate which seeds meet in the first round:
      4-entry  -> [1, 4, 2, 3]       -> (1v4), (2v3)
      8-entry  -> [1, 8, 4, 5, ...]   -> (1v8), (4v5), ...
      16-entry -> [1, 16, 8, 9, ...]   -> (1v16), (8v9), ...
    """
    if n < 2:
        return [1]
    if n == 2:
        return [1, 2]

    half = bracket_fold_positions(n // 2)

    expanded: List[int] = []
    for s in half:
        expanded.append(s)
        expanded.append(n + 1 - s)

    mid = len(expanded) // 2
    top = expanded[:mid]
    bot = expanded[mid:]
    if len(bot) >= 4:
        bot = bot[:-4] + bot[-2:] + bot[-4:-2]

    return top + bot


def plan_bracket(entrants: Sequence[Entrant], rng: random.Random) -> BracketPlan:
    """Lay out the full elimination tree for one category."""
    if len(entrants) < MIN_BRACKET_PARTICIPANTS:
        raise ValueError(f"plan_bracket needs at least {MIN_BRACKET_PARTICIPANTS} entrants, got {len(entrants)}")

    seeded = seed_entrants(entrants, rng)
    size = next_power_of_two(len(seeded))
    total_rounds = size.bit_length() - 1
    plan = BracketPlan(size=size, total_rounds=total_rounds, seeded=seeded)

    # Seeds beyond the entrant count are byes
    slots: List[Optional[Entrant]] = [
        seeded[seed - 1] if seed <= len(seeded) else None for seed in bracket_fold_positions(size)
    ]

    by_key: Dict[Tuple[int, int], PlannedMatch] = {}
    match_number = 1
    matches_in_round = size // 2
    for rnd in range(1, total_rounds + 1):
        name = round_name(rnd, total_rounds)
        for pos in range(1, matches_in_round + 1):
            pm = PlannedMatch(round_number=rnd, round_name=name, position_in_round=pos, match_number=match_number)
            if rnd == 1:
                pm.fighter_a = slots[2 * (pos - 1)]
                pm.fighter_b = slots[2 * (pos - 1) + 1]
            plan.matches.append(pm)
            by_key[pm.key] = pm
            match_number += 1
        matches_in_round //= 2

    for pm in plan.round_matches(1):
        if pm.fighter_a is not None and pm.fighter_b is not None:
            continue
        pm.is_bye = True
        pm.winner = pm.fighter_a if pm.fighter_a is not None else pm.fighter_b
        if total_rounds > 1:
            downstream = by_key[(2, (pm.position_in_round + 1) // 2)]
            if pm.position_in_round % 2 == 1:
                downstream.fighter_a = pm.winner
            else:
                downstream.fighter_b = pm.winner

    return plan


# ============================================================================
# Persistence
# ============================================================================


def _entrant(reg: Registration) -> Entrant:
    return Entrant(participant_id=reg.participant_id, name=reg.participant_name, seed_rank=reg.seed_rank)


def default_rng() -> random.Random:
    """BRACKET_SHUFFLE_SEED pins the draw (reproducible demos and reruns)."""
    seed = os.getenv("BRACKET_SHUFFLE_SEED")
    return random.Random(int(seed)) if seed else random.Random()


def _persist_plan(session: Session, bracket: Bracket, plan: BracketPlan) -> None:
    """Insert the match tree round by round so upstream ids exist for source links."""
    now = datetime.utcnow()
    rows: Dict[Tuple[int, int], Match] = {}
    for rnd in range(1, plan.total_rounds + 1):
        for pm in plan.round_matches(rnd):
            source_a, source_b = pm.source_keys()
            row = Match(
                bracket_id=bracket.id,
                tournament_id=bracket.tournament_id,
                round_number=pm.round_number,
                round_name=pm.round_name,
                match_number=pm.match_number,
                position_in_round=pm.position_in_round,
                fighter_a_id=pm.fighter_a.participant_id if pm.fighter_a else None,
                fighter_a_name=pm.fighter_a.name if pm.fighter_a else None,
                fighter_b_id=pm.fighter_b.participant_id if pm.fighter_b else None,
                fighter_b_name=pm.fighter_b.name if pm.fighter_b else None,
                source_match_a_id=rows[source_a].id if source_a else None,
                source_match_b_id=rows[source_b].id if source_b else None,
                is_bye=pm.is_bye,
                status=MATCH_COMPLETED if pm.is_bye else MATCH_SCHEDULED,
                winner_id=pm.winner.participant_id if pm.winner else None,
                completed_at=now if pm.is_bye else None,
            )
            session.add(row)
            rows[pm.key] = row
        session.flush()


def _drop_bracket(session: Session, bracket: Bracket) -> None:
    # Single statement per table: source links between sibling matches go away together
    bracket_id = bracket.id
    session.execute(delete(Match).where(Match.bracket_id == bracket_id))
    session.execute(delete(Bracket).where(Bracket.id == bracket_id))


def _build_category(
    session: Session,
    tournament_id: int,
    key: str,
    registrations: List[Registration],
    rng: random.Random,
) -> CategoryOutcome:
    first = registrations[0]
    name = category_name(first.category_age, first.category_weight, first.category_belt)
    outcome = CategoryOutcome(category_key=key, category_name=name, participant_count=len(registrations), outcome="")

    existing = session.exec(
        select(Bracket).where(Bracket.tournament_id == tournament_id, Bracket.category_key == key)
    ).first()
    if existing is not None and existing.status != BRACKET_DRAFT:
        outcome.outcome = OUTCOME_LOCKED
        outcome.bracket_id = existing.id
        outcome.detail = f"Bracket is {existing.status}; regeneration only replaces DRAFT brackets"
        return outcome

    if len(registrations) < MIN_BRACKET_PARTICIPANTS:
        if existing is not None:
            _drop_bracket(session, existing)
            session.commit()
        outcome.outcome = OUTCOME_SKIPPED
        outcome.detail = f"Needs at least {MIN_BRACKET_PARTICIPANTS} participants"
        return outcome

    if existing is not None:
        _drop_bracket(session, existing)

    plan = plan_bracket([_entrant(r) for r in registrations], rng)
    bracket = Bracket(
        tournament_id=tournament_id,
        category_key=key,
        category_name=name,
        category_age=_band(first.category_age),
        category_weight=_band(first.category_weight),
        category_belt=_band(first.category_belt),
        total_participants=len(registrations),
        bracket_size=plan.size,
        total_rounds=plan.total_rounds,
        status=BRACKET_DRAFT,
    )
    session.add(bracket)
    session.flush()
    _persist_plan(session, bracket, plan)
    session.commit()

    outcome.outcome = OUTCOME_CREATED
    outcome.bracket_id = bracket.id
    return outcome


def ensure_tournament_open(session: Session, tournament_id: int) -> None:
    """A COMPLETED tournament takes no new brackets; it would stop being complete."""
    tournament = session.get(Tournament, tournament_id)
    if tournament is not None and tournament.status == TOURNAMENT_COMPLETED:
        raise TournamentClosedError(
            f"Tournament {tournament_id} is {TOURNAMENT_COMPLETED}; brackets can no longer change"
        )


def iter_generate_brackets(
    session: Session,
    tournament_id: int,
    rng: Optional[random.Random] = None,
) -> Iterator[Union[BuildProgress, GenerationReport]]:
    """
    Generate every category bracket for a tournament.

    Yields one BuildProgress per category, then the GenerationReport.
    Each category is its own transaction; a failed category is rolled back,
    reported, and does not stop the rest.
    Raises TournamentClosedError on first iteration if the tournament is COMPLETED.
    """
    ensure_tournament_open(session, tournament_id)
    rng = rng or default_rng()
    report = GenerationReport(tournament_id=tournament_id)

    registrations = session.exec(
        select(Registration)
        .where(
            Registration.tournament_id == tournament_id,
            Registration.approval_status == APPROVAL_APPROVED,
        )
        .order_by(Registration.id)
    ).all()
    groups = group_by_category(registrations)

    # DRAFT brackets whose category has no approved entrants left
    stale = session.exec(
        select(Bracket).where(
            Bracket.tournament_id == tournament_id,
            Bracket.status == BRACKET_DRAFT,
            Bracket.category_key.not_in(list(groups.keys())),
        )
    ).all()
    for bracket in stale:
        _drop_bracket(session, bracket)
        report.brackets_removed += 1
    if stale:
        session.commit()

    total = len(groups)
    logger.info("Generating brackets for tournament %d: %d categories", tournament_id, total)

    for index, (key, regs) in enumerate(groups.items(), start=1):
        try:
            outcome = _build_category(session, tournament_id, key, regs, rng)
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("Bracket generation failed for category %s: %s", key, exc)
            first = regs[0]
            outcome = CategoryOutcome(
                category_key=key,
                category_name=category_name(first.category_age, first.category_weight, first.category_belt),
                participant_count=len(regs),
                outcome=OUTCOME_FAILED,
                detail=str(exc),
            )

        if outcome.outcome == OUTCOME_CREATED:
            report.brackets_created += 1
        elif outcome.outcome == OUTCOME_SKIPPED:
            report.categories_skipped += 1
            logger.info("Skipped category %s: %d participant(s)", outcome.category_name, outcome.participant_count)
        elif outcome.outcome == OUTCOME_LOCKED:
            report.categories_locked += 1
        else:
            report.categories_failed += 1
        report.categories.append(outcome)

        yield BuildProgress(
            index=index,
            total=total,
            category_name=outcome.category_name,
            outcome=outcome.outcome,
            brackets_created=report.brackets_created,
        )

    logger.info(
        "Tournament %d brackets: %d created, %d skipped, %d locked, %d failed",
        tournament_id,
        report.brackets_created,
        report.categories_skipped,
        report.categories_locked,
        report.categories_failed,
    )
    yield report


def generate_brackets(
    session: Session,
    tournament_id: int,
    rng: Optional[random.Random] = None,
    on_progress: Optional[Callable[[BuildProgress], None]] = None,
) -> GenerationReport:
    """Run iter_generate_brackets to completion and return its report."""
    report: Optional[GenerationReport] = None
    for item in iter_generate_brackets(session, tournament_id, rng):
        if isinstance(item, GenerationReport):
            report = item
        elif on_progress is not None:
            on_progress(item)
    assert report is not None
    return report
