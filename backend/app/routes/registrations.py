"""
Registrations: the approved-entrant feed for bracket generation.
Category and seed edits are refused once the category's bracket has left DRAFT.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.database import get_session
from app.models.bracket import BRACKET_DRAFT, Bracket
from app.models.registration import (
    APPROVAL_APPROVED,
    APPROVAL_PENDING,
    APPROVAL_REJECTED,
    OPEN_BAND,
    Registration,
)
from app.models.tournament import TOURNAMENT_COMPLETED, Tournament
from app.services.bracket_builder import category_key

router = APIRouter()

APPROVAL_STATUSES = (APPROVAL_PENDING, APPROVAL_APPROVED, APPROVAL_REJECTED)
REQUIRED_FIELDS = ("participant_name", "category_age", "category_weight", "category_belt", "approval_status")


def _validate_seed_rank(v):
    if v is not None and v < 1:
        raise ValueError("seed_rank must be >= 1")
    return v


def _validate_approval(v):
    if v is not None and v not in APPROVAL_STATUSES:
        raise ValueError(f"approval_status must be one of {', '.join(APPROVAL_STATUSES)}")
    return v


class RegistrationCreate(BaseModel):
    participant_id: int
    participant_name: str
    dojo_name: Optional[str] = None
    category_age: str = OPEN_BAND
    category_weight: str = OPEN_BAND
    category_belt: str = OPEN_BAND
    seed_rank: Optional[int] = None
    approval_status: str = APPROVAL_PENDING

    @field_validator("participant_name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("participant_name cannot be empty")
        return v.strip()

    @field_validator("category_age", "category_weight", "category_belt")
    @classmethod
    def normalize_band(cls, v):
        return v.strip() if v and v.strip() else OPEN_BAND

    @field_validator("seed_rank")
    @classmethod
    def validate_seed_rank(cls, v):
        return _validate_seed_rank(v)

    @field_validator("approval_status")
    @classmethod
    def validate_approval(cls, v):
        return _validate_approval(v)


class RegistrationUpdate(BaseModel):
    participant_name: Optional[str] = None
    dojo_name: Optional[str] = None
    category_age: Optional[str] = None
    category_weight: Optional[str] = None
    category_belt: Optional[str] = None
    seed_rank: Optional[int] = None
    approval_status: Optional[str] = None

    @field_validator("category_age", "category_weight", "category_belt")
    @classmethod
    def normalize_band(cls, v):
        if v is None:
            return v
        return v.strip() if v.strip() else OPEN_BAND

    @field_validator("seed_rank")
    @classmethod
    def validate_seed_rank(cls, v):
        return _validate_seed_rank(v)

    @field_validator("approval_status")
    @classmethod
    def validate_approval(cls, v):
        return _validate_approval(v)


class RegistrationResponse(BaseModel):
    id: int
    tournament_id: int
    participant_id: int
    participant_name: str
    dojo_name: Optional[str] = None
    category_age: str
    category_weight: str
    category_belt: str
    seed_rank: Optional[int] = None
    approval_status: str

    model_config = ConfigDict(from_attributes=True)


def _registration_key(reg: Registration) -> str:
    return category_key(reg.category_age, reg.category_weight, reg.category_belt)


def _ensure_category_editable(session: Session, tournament_id: int, key: str) -> None:
    bracket = session.exec(
        select(Bracket).where(Bracket.tournament_id == tournament_id, Bracket.category_key == key)
    ).first()
    if bracket is not None and bracket.status != BRACKET_DRAFT:
        raise HTTPException(
            status_code=409,
            detail=f"Bracket for category '{bracket.category_name}' is {bracket.status}; entrants are frozen",
        )


@router.get("/tournaments/{tournament_id}/registrations", response_model=List[RegistrationResponse])
def list_registrations(
    tournament_id: int,
    status: Optional[str] = Query(default=None),
    session: Session = Depends(get_session),
):
    """List registrations for a tournament, optionally filtered by approval status"""
    if not session.get(Tournament, tournament_id):
        raise HTTPException(status_code=404, detail="Tournament not found")

    query = select(Registration).where(Registration.tournament_id == tournament_id)
    if status is not None:
        query = query.where(Registration.approval_status == status)
    return session.exec(query.order_by(Registration.id)).all()


@router.post("/tournaments/{tournament_id}/registrations", response_model=RegistrationResponse, status_code=201)
def create_registration(
    tournament_id: int,
    payload: RegistrationCreate,
    session: Session = Depends(get_session),
):
    """Register a participant into one category of a tournament"""
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    if tournament.status == TOURNAMENT_COMPLETED:
        raise HTTPException(status_code=409, detail="Tournament is COMPLETED; registration is closed")

    registration = Registration(tournament_id=tournament_id, **payload.model_dump())
    _ensure_category_editable(session, tournament_id, _registration_key(registration))

    session.add(registration)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=409, detail="Participant is already registered for this tournament")
    session.refresh(registration)
    return registration


@router.patch(
    "/tournaments/{tournament_id}/registrations/{registration_id}",
    response_model=RegistrationResponse,
)
def update_registration(
    tournament_id: int,
    registration_id: int,
    payload: RegistrationUpdate,
    session: Session = Depends(get_session),
):
    """Approve/reject, re-seed, or move a participant to another category"""
    registration = session.get(Registration, registration_id)
    if not registration or registration.tournament_id != tournament_id:
        raise HTTPException(status_code=404, detail="Registration not found")

    # Both the category being left and the one being joined must still be DRAFT (or absent)
    _ensure_category_editable(session, tournament_id, _registration_key(registration))
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is None and field in REQUIRED_FIELDS:
            continue
        setattr(registration, field, value)
    _ensure_category_editable(session, tournament_id, _registration_key(registration))

    session.add(registration)
    session.commit()
    session.refresh(registration)
    return registration
