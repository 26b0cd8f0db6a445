"""
Tournament statistics built from stored placements and match rows.

Podiums come from TournamentResult, so only finalized brackets report
medalists. Dojo names are looked up from the tournament's registrations.
"""

from collections import defaultdict
from typing import Any, Dict, List, Optional

from sqlmodel import Session, select

from app.models.bracket import Bracket
from app.models.match import MATCH_COMPLETED, Match
from app.models.registration import APPROVAL_APPROVED, Registration
from app.models.tournament_result import MEDAL_BRONZE, MEDAL_GOLD, MEDAL_SILVER, TournamentResult

MEDAL_FIELDS = {MEDAL_GOLD: "gold", MEDAL_SILVER: "silver", MEDAL_BRONZE: "bronze"}


def _medalist(result: TournamentResult, dojo_by_participant: Dict[int, Optional[str]]) -> Dict[str, Any]:
    return {
        "participant_id": result.participant_id,
        "participant_name": result.participant_name,
        "dojo_name": dojo_by_participant.get(result.participant_id),
        "final_rank": result.final_rank,
    }


def dojo_leaderboard(results: List[TournamentResult], dojo_by_participant: Dict[int, Optional[str]]) -> List[Dict]:
    """Medal table per dojo: gold desc, silver desc, bronze desc, total desc, name asc."""
    tally: Dict[str, Dict[str, int]] = defaultdict(lambda: {"gold": 0, "silver": 0, "bronze": 0, "total": 0})
    for result in results:
        if result.medal not in MEDAL_FIELDS:
            continue
        dojo = dojo_by_participant.get(result.participant_id)
        if not dojo:
            continue
        tally[dojo][MEDAL_FIELDS[result.medal]] += 1
        tally[dojo]["total"] += 1

    rows = [{"dojo_name": dojo, **counts} for dojo, counts in tally.items()]
    rows.sort(key=lambda r: (-r["gold"], -r["silver"], -r["bronze"], -r["total"], r["dojo_name"]))
    return rows


def tournament_statistics(session: Session, tournament_id: int) -> Dict[str, Any]:
    brackets = session.exec(
        select(Bracket).where(Bracket.tournament_id == tournament_id).order_by(Bracket.category_key)
    ).all()
    results = session.exec(
        select(TournamentResult)
        .where(TournamentResult.tournament_id == tournament_id)
        .order_by(TournamentResult.bracket_id, TournamentResult.final_rank)
    ).all()
    registrations = session.exec(select(Registration).where(Registration.tournament_id == tournament_id)).all()
    dojo_by_participant = {r.participant_id: r.dojo_name for r in registrations}

    by_bracket: Dict[int, List[TournamentResult]] = defaultdict(list)
    for result in results:
        by_bracket[result.bracket_id].append(result)

    categories = []
    for bracket in brackets:
        podium = by_bracket.get(bracket.id, [])
        gold = next((r for r in podium if r.medal == MEDAL_GOLD), None)
        silver = next((r for r in podium if r.medal == MEDAL_SILVER), None)
        categories.append(
            {
                "bracket_id": bracket.id,
                "category_name": bracket.category_name,
                "status": bracket.status,
                "gold": _medalist(gold, dojo_by_participant) if gold else None,
                "silver": _medalist(silver, dojo_by_participant) if silver else None,
                "bronze": [_medalist(r, dojo_by_participant) for r in podium if r.medal == MEDAL_BRONZE],
            }
        )

    matches = session.exec(select(Match).where(Match.tournament_id == tournament_id)).all()
    contested = [m for m in matches if not m.is_bye]

    return {
        "tournament_id": tournament_id,
        "total_participants": sum(1 for r in registrations if r.approval_status == APPROVAL_APPROVED),
        "total_categories": len(brackets),
        "total_matches": len(contested),
        "completed_matches": sum(1 for m in contested if m.status == MATCH_COMPLETED),
        "categories": categories,
        "dojo_leaderboard": dojo_leaderboard(results, dojo_by_participant),
    }
