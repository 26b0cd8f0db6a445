"""
Bracket generation, viewing, status and finalization.
Generation replaces DRAFT brackets only; anything LOCKED or later is left alone.
"""
import json
from dataclasses import asdict
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict
from sqlmodel import Session, select

from app.database import get_session
from app.models.bracket import (
    BRACKET_COMPLETED,
    BRACKET_DRAFT,
    BRACKET_IN_PROGRESS,
    BRACKET_LOCKED,
    Bracket,
)
from app.models.match import Match
from app.models.registration import APPROVAL_APPROVED, Registration
from app.models.tournament import Tournament
from app.models.tournament_result import TournamentResult
from app.services.advancement_service import resolve_all_dependencies
from app.services.bracket_builder import (
    MIN_BRACKET_PARTICIPANTS,
    BuildProgress,
    GenerationReport,
    TournamentClosedError,
    category_name,
    ensure_tournament_open,
    generate_brackets,
    group_by_category,
    iter_generate_brackets,
)
from app.services.result_resolver import (
    ALREADY_FINALIZED,
    FINALIZED,
    INCOMPLETE,
    INCONSISTENT,
    NOT_FOUND,
    check_tournament_completion,
    try_finalize_bracket,
)

router = APIRouter()

# Manual transitions; COMPLETED is only reached through finalization
ALLOWED_STATUS_TRANSITIONS = {
    BRACKET_DRAFT: {BRACKET_LOCKED, BRACKET_IN_PROGRESS},
    BRACKET_LOCKED: {BRACKET_DRAFT, BRACKET_IN_PROGRESS},
    BRACKET_IN_PROGRESS: set(),
    BRACKET_COMPLETED: set(),
}


class MatchResponse(BaseModel):
    id: int
    bracket_id: int
    tournament_id: int
    round_number: int
    round_name: str
    match_number: int
    position_in_round: int
    fighter_a_id: Optional[int] = None
    fighter_a_name: Optional[str] = None
    fighter_b_id: Optional[int] = None
    fighter_b_name: Optional[str] = None
    source_match_a_id: Optional[int] = None
    source_match_b_id: Optional[int] = None
    is_bye: bool
    status: str
    fighter_a_score: Optional[int] = None
    fighter_b_score: Optional[int] = None
    winner_id: Optional[int] = None
    notes: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class BracketResponse(BaseModel):
    id: int
    tournament_id: int
    category_key: str
    category_name: str
    category_age: str
    category_weight: str
    category_belt: str
    total_participants: int
    bracket_size: int
    total_rounds: int
    status: str
    locked_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    matches: List[MatchResponse] = []


class CategoryPreview(BaseModel):
    category_key: str
    category_name: str
    participant_count: int
    will_be_skipped: bool
    bracket_id: Optional[int] = None
    bracket_status: Optional[str] = None


class CategoryOutcomeResponse(BaseModel):
    category_key: str
    category_name: str
    participant_count: int
    outcome: str
    bracket_id: Optional[int] = None
    detail: Optional[str] = None


class GenerationReportResponse(BaseModel):
    tournament_id: int
    brackets_created: int
    categories_skipped: int
    categories_locked: int
    categories_failed: int
    brackets_removed: int
    categories: List[CategoryOutcomeResponse]


class BracketStatusUpdate(BaseModel):
    status: str


class PlacementResponse(BaseModel):
    participant_id: int
    participant_name: Optional[str] = None
    final_rank: int
    medal: Optional[str] = None
    total_matches: int
    matches_won: int
    matches_lost: int
    eliminated_in_round: Optional[str] = None
    eliminated_by_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class FinalizeResponse(BaseModel):
    bracket_id: int
    status: str
    tournament_completed: bool
    placements: List[PlacementResponse]


def _bracket_response(session: Session, bracket: Bracket) -> BracketResponse:
    matches = session.exec(
        select(Match).where(Match.bracket_id == bracket.id).order_by(Match.match_number)
    ).all()
    return BracketResponse(
        **bracket.model_dump(exclude={"created_at"}),
        matches=[MatchResponse.model_validate(m) for m in matches],
    )


def _require_tournament(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


def _sse(event: str, payload: Dict) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


@router.get("/tournaments/{tournament_id}/categories", response_model=List[CategoryPreview])
def preview_categories(tournament_id: int, session: Session = Depends(get_session)):
    """Approved entrants per category, and whether generation would skip it"""
    _require_tournament(session, tournament_id)

    registrations = session.exec(
        select(Registration).where(
            Registration.tournament_id == tournament_id,
            Registration.approval_status == APPROVAL_APPROVED,
        )
    ).all()
    brackets = {
        b.category_key: b
        for b in session.exec(select(Bracket).where(Bracket.tournament_id == tournament_id)).all()
    }

    previews = []
    for key, regs in group_by_category(registrations).items():
        first = regs[0]
        bracket = brackets.get(key)
        previews.append(
            CategoryPreview(
                category_key=key,
                category_name=category_name(first.category_age, first.category_weight, first.category_belt),
                participant_count=len(regs),
                will_be_skipped=len(regs) < MIN_BRACKET_PARTICIPANTS,
                bracket_id=bracket.id if bracket else None,
                bracket_status=bracket.status if bracket else None,
            )
        )
    return previews


@router.post("/tournaments/{tournament_id}/brackets/generate", response_model=GenerationReportResponse)
def generate_tournament_brackets(tournament_id: int, session: Session = Depends(get_session)):
    """Build (or rebuild DRAFT) brackets for every category with at least two approved entrants"""
    _require_tournament(session, tournament_id)
    try:
        report = generate_brackets(session, tournament_id)
    except TournamentClosedError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return GenerationReportResponse(**asdict(report))


@router.get("/tournaments/{tournament_id}/brackets/generate/stream")
def generate_tournament_brackets_stream(tournament_id: int, session: Session = Depends(get_session)):
    """
    Server-Sent Events variant of generate.

    Emits one `progress` event per category and a final `complete` event
    carrying the generation report.
    """
    _require_tournament(session, tournament_id)
    # Checked up front: once streaming starts the status code is already sent
    try:
        ensure_tournament_open(session, tournament_id)
    except TournamentClosedError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    bind = session.get_bind()

    def event_stream():
        # Own session: the request-scoped one may be closed before streaming ends
        with Session(bind) as stream_session:
            for item in iter_generate_brackets(stream_session, tournament_id):
                if isinstance(item, BuildProgress):
                    yield _sse("progress", asdict(item))
                elif isinstance(item, GenerationReport):
                    yield _sse("complete", asdict(item))

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/tournaments/{tournament_id}/brackets", response_model=List[BracketResponse])
def list_brackets(tournament_id: int, session: Session = Depends(get_session)):
    """Brackets with their match trees, matches in match_number order"""
    _require_tournament(session, tournament_id)
    brackets = session.exec(
        select(Bracket).where(Bracket.tournament_id == tournament_id).order_by(Bracket.category_key)
    ).all()
    return [_bracket_response(session, b) for b in brackets]


@router.get("/brackets/{bracket_id}", response_model=BracketResponse)
def get_bracket(bracket_id: int, session: Session = Depends(get_session)):
    bracket = session.get(Bracket, bracket_id)
    if not bracket:
        raise HTTPException(status_code=404, detail="Bracket not found")
    return _bracket_response(session, bracket)


@router.patch("/brackets/{bracket_id}/status", response_model=BracketResponse)
def update_bracket_status(bracket_id: int, payload: BracketStatusUpdate, session: Session = Depends(get_session)):
    """Lock, unlock or start a bracket. COMPLETED is set by finalization only."""
    bracket = session.get(Bracket, bracket_id)
    if not bracket:
        raise HTTPException(status_code=404, detail="Bracket not found")

    if payload.status not in ALLOWED_STATUS_TRANSITIONS:
        raise HTTPException(status_code=422, detail=f"Invalid bracket status: {payload.status}")
    if payload.status != bracket.status:
        if payload.status not in ALLOWED_STATUS_TRANSITIONS[bracket.status]:
            raise HTTPException(
                status_code=422,
                detail=f"Cannot move bracket from {bracket.status} to {payload.status}",
            )
        bracket.status = payload.status
        if payload.status == BRACKET_LOCKED:
            bracket.locked_at = datetime.utcnow()
        elif payload.status == BRACKET_DRAFT:
            bracket.locked_at = None
        session.add(bracket)
        session.commit()
        session.refresh(bracket)

    return _bracket_response(session, bracket)


@router.post("/brackets/{bracket_id}/finalize", response_model=FinalizeResponse)
def finalize_bracket(bracket_id: int, session: Session = Depends(get_session)):
    """
    Manually trigger placement calculation (normally run on every match completion).
    Safe to repeat: an already finalized bracket returns its stored placements.
    """
    outcome = try_finalize_bracket(session, bracket_id)
    if outcome.status == NOT_FOUND:
        raise HTTPException(status_code=404, detail="Bracket not found")
    if outcome.status == INCOMPLETE:
        raise HTTPException(status_code=409, detail="Cannot calculate results until all matches are completed")
    if outcome.status == INCONSISTENT:
        raise HTTPException(status_code=422, detail=f"Bracket data is inconsistent: {outcome.detail}")

    bracket = session.get(Bracket, bracket_id)
    tournament_completed = check_tournament_completion(session, bracket.tournament_id)

    if outcome.status == FINALIZED:
        placements = [PlacementResponse(**asdict(p)) for p in outcome.placements]
    else:
        stored = session.exec(
            select(TournamentResult)
            .where(TournamentResult.bracket_id == bracket_id)
            .order_by(TournamentResult.final_rank)
        ).all()
        placements = [PlacementResponse.model_validate(r) for r in stored]

    return FinalizeResponse(
        bracket_id=bracket_id,
        status=outcome.status if outcome.status == FINALIZED else ALREADY_FINALIZED,
        tournament_completed=tournament_completed,
        placements=placements,
    )


@router.post("/brackets/{bracket_id}/resolve-dependencies", response_model=Dict[str, int])
def resolve_bracket_dependencies(bracket_id: int, session: Session = Depends(get_session)):
    """Re-run winner advancement for every completed match (repair after interrupted updates)"""
    if not session.get(Bracket, bracket_id):
        raise HTTPException(status_code=404, detail="Bracket not found")
    return resolve_all_dependencies(session, bracket_id)
