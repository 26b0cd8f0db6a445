from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from sqlmodel import Session, select

from app.database import get_session
from app.models.tournament import Tournament
from app.models.tournament_result import TournamentResult
from app.services.statistics import tournament_statistics

router = APIRouter()


class TournamentResultResponse(BaseModel):
    id: int
    tournament_id: int
    bracket_id: int
    participant_id: int
    participant_name: Optional[str] = None
    category_name: str
    final_rank: int
    medal: Optional[str] = None
    total_matches: int
    matches_won: int
    matches_lost: int
    eliminated_in_round: Optional[str] = None
    eliminated_by_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


@router.get("/tournaments/{tournament_id}/results", response_model=List[TournamentResultResponse])
def list_results(
    tournament_id: int,
    bracket_id: Optional[int] = Query(default=None),
    session: Session = Depends(get_session),
):
    """Placements for finalized brackets, ordered by bracket then rank"""
    if not session.get(Tournament, tournament_id):
        raise HTTPException(status_code=404, detail="Tournament not found")

    query = select(TournamentResult).where(TournamentResult.tournament_id == tournament_id)
    if bracket_id is not None:
        query = query.where(TournamentResult.bracket_id == bracket_id)
    return session.exec(query.order_by(TournamentResult.bracket_id, TournamentResult.final_rank)).all()


@router.get("/tournaments/{tournament_id}/statistics", response_model=Dict[str, Any])
def get_statistics(tournament_id: int, session: Session = Depends(get_session)):
    """Category podiums, dojo medal table and match progress"""
    if not session.get(Tournament, tournament_id):
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament_statistics(session, tournament_id)
