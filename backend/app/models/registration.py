from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.tournament import Tournament

APPROVAL_PENDING = "PENDING"
APPROVAL_APPROVED = "APPROVED"
APPROVAL_REJECTED = "REJECTED"

OPEN_BAND = "Open"


class Registration(SQLModel, table=True):
    __table_args__ = (
        SAUniqueConstraint("tournament_id", "participant_id", name="uq_registration_participant"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    participant_id: int  # Identity reference owned by the membership service
    participant_name: str
    dojo_name: Optional[str] = Field(default=None)

    # Category bands; blank values are treated as "Open"
    category_age: str = Field(default=OPEN_BAND)
    category_weight: str = Field(default=OPEN_BAND)
    category_belt: str = Field(default=OPEN_BAND)

    seed_rank: Optional[int] = Field(default=None)  # 1-based (1=strongest); null = random placement
    approval_status: str = Field(default=APPROVAL_PENDING)  # PENDING | APPROVED | REJECTED
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationship
    tournament: "Tournament" = Relationship(back_populates="registrations")
