"""
Match runtime: start, live score, end. COMPLETED is terminal.
Ending a match advances the winner downstream, then runs bracket finalization
and the tournament completion check.
"""
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlmodel import Session

from app.database import get_session
from app.models.match import MATCH_COMPLETED, Match
from app.routes.brackets import MatchResponse
from app.services.advancement_service import apply_advancement_for_completed_match
from app.services.match_runtime import (
    MatchNotFoundError,
    MatchStateError,
    end_match,
    start_match,
    update_score,
)

router = APIRouter()


def _non_negative(v):
    if v is not None and v < 0:
        raise ValueError("score cannot be negative")
    return v


class MatchScoreUpdate(BaseModel):
    fighter_a_score: Optional[int] = None
    fighter_b_score: Optional[int] = None
    notes: Optional[str] = None

    @field_validator("fighter_a_score", "fighter_b_score")
    @classmethod
    def validate_score(cls, v):
        return _non_negative(v)


class MatchEndRequest(BaseModel):
    winner_id: int
    fighter_a_score: Optional[int] = None
    fighter_b_score: Optional[int] = None
    notes: Optional[str] = None

    @field_validator("fighter_a_score", "fighter_b_score")
    @classmethod
    def validate_score(cls, v):
        return _non_negative(v)


class MatchEndResponse(BaseModel):
    match: MatchResponse
    advanced_count: int = 0
    bracket_outcome: Optional[str] = None
    tournament_completed: bool = False


def _raise_for(exc: Exception) -> None:
    if isinstance(exc, MatchNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    raise HTTPException(status_code=422, detail=str(exc))


@router.get("/matches/{match_id}", response_model=MatchResponse)
def get_match(match_id: int, session: Session = Depends(get_session)):
    match = session.get(Match, match_id)
    if not match:
        raise HTTPException(status_code=404, detail="Match not found")
    return match


@router.post("/matches/{match_id}/start", response_model=MatchResponse)
def start(match_id: int, session: Session = Depends(get_session)):
    """SCHEDULED -> LIVE. Both fighters must be known."""
    try:
        return start_match(session, match_id)
    except (MatchNotFoundError, MatchStateError) as exc:
        _raise_for(exc)


@router.patch("/matches/{match_id}/score", response_model=MatchResponse)
def score(match_id: int, payload: MatchScoreUpdate, session: Session = Depends(get_session)):
    """Live score / notes update on a match that is not yet COMPLETED"""
    try:
        return update_score(
            session,
            match_id,
            fighter_a_score=payload.fighter_a_score,
            fighter_b_score=payload.fighter_b_score,
            notes=payload.notes,
        )
    except (MatchNotFoundError, MatchStateError) as exc:
        _raise_for(exc)


@router.post("/matches/{match_id}/end", response_model=MatchEndResponse)
def end(match_id: int, payload: MatchEndRequest, session: Session = Depends(get_session)):
    """Complete a match with a winner; cascades advancement and finalization"""
    try:
        result = end_match(
            session,
            match_id,
            winner_id=payload.winner_id,
            fighter_a_score=payload.fighter_a_score,
            fighter_b_score=payload.fighter_b_score,
            notes=payload.notes,
        )
    except (MatchNotFoundError, MatchStateError) as exc:
        _raise_for(exc)

    return MatchEndResponse(
        match=MatchResponse.model_validate(result.match),
        advanced_count=result.advanced_count,
        bracket_outcome=result.completion.bracket_outcome,
        tournament_completed=result.completion.tournament_completed,
    )


@router.post("/matches/{match_id}/advance", response_model=Dict[str, int])
def advance(match_id: int, session: Session = Depends(get_session)):
    """Manually run advancement for a completed match (repair/testing)."""
    match = session.get(Match, match_id)
    if not match:
        raise HTTPException(status_code=404, detail="Match not found")
    if match.status != MATCH_COMPLETED or match.winner_id is None:
        raise HTTPException(status_code=422, detail="Match must be COMPLETED with a winner to run advancement")

    advanced_count = apply_advancement_for_completed_match(session, match_id)
    session.commit()
    return {"advanced_count": advanced_count}
