"""
Advancement: when a match completes, its winner fills the downstream slot.
Downstream matches name their upstream via source_match_a_id / source_match_b_id.
"""
from typing import Dict

from sqlmodel import Session, select

from app.models.match import MATCH_COMPLETED, Match


def apply_advancement_for_completed_match(session: Session, match_id: int) -> int:
    """
    Given a completed match, advance its winner into downstream matches that list this match
    as source (source_match_a_id or source_match_b_id).
    Returns count of downstream slots updated.
    Idempotent: calling twice produces same DB state (only set if null or already same).
    Does not commit; the caller owns the transaction.
    """
    match = session.get(Match, match_id)
    if not match:
        return 0
    winner_id = match.winner_id
    if winner_id is None or match.status != MATCH_COMPLETED:
        return 0
    winner_name = match.fighter_name(winner_id)

    updated_count = 0

    downstream_a = session.exec(
        select(Match).where(Match.bracket_id == match.bracket_id, Match.source_match_a_id == match_id)
    ).all()
    for down in downstream_a:
        if down.fighter_a_id is None:
            down.fighter_a_id = winner_id
            down.fighter_a_name = winner_name
            session.add(down)
            updated_count += 1

    downstream_b = session.exec(
        select(Match).where(Match.bracket_id == match.bracket_id, Match.source_match_b_id == match_id)
    ).all()
    for down in downstream_b:
        if down.fighter_b_id is None:
            down.fighter_b_id = winner_id
            down.fighter_b_name = winner_name
            session.add(down)
            updated_count += 1

    return updated_count


def resolve_all_dependencies(session: Session, bracket_id: int) -> Dict:
    """
    Re-apply advancement for every completed match in a bracket (repair tool).

    Returns:
        Dict with:
        - matches_processed: number of completed matches processed
        - fighters_advanced: total number of downstream slots filled
        - open_slots_before / open_slots_after: non-bye matches missing a fighter
    """
    all_matches = session.exec(select(Match).where(Match.bracket_id == bracket_id)).all()
    open_before = sum(1 for m in all_matches if not m.is_bye and (m.fighter_a_id is None or m.fighter_b_id is None))

    completed = session.exec(
        select(Match)
        .where(
            Match.bracket_id == bracket_id,
            Match.status == MATCH_COMPLETED,
            Match.winner_id.is_not(None),
        )
        .order_by(Match.round_number, Match.position_in_round)
    ).all()

    fighters_advanced = 0
    for match in completed:
        fighters_advanced += apply_advancement_for_completed_match(session, match.id)
    session.commit()

    session.expire_all()
    all_after = session.exec(select(Match).where(Match.bracket_id == bracket_id)).all()
    open_after = sum(1 for m in all_after if not m.is_bye and (m.fighter_a_id is None or m.fighter_b_id is None))

    return {
        "matches_processed": len(completed),
        "fighters_advanced": fighters_advanced,
        "open_slots_before": open_before,
        "open_slots_after": open_after,
    }
