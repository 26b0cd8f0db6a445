from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.match import Match
    from app.models.tournament import Tournament
    from app.models.tournament_result import TournamentResult

BRACKET_DRAFT = "DRAFT"
BRACKET_LOCKED = "LOCKED"
BRACKET_IN_PROGRESS = "IN_PROGRESS"
BRACKET_COMPLETED = "COMPLETED"


class Bracket(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("tournament_id", "category_key", name="uq_bracket_category"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    category_key: str  # "{age}|{weight}|{belt}"
    category_name: str  # Display label, e.g. "Under 12 · 35-45kg · Open"
    category_age: str
    category_weight: str
    category_belt: str
    total_participants: int
    bracket_size: int  # Next power of two >= total_participants
    total_rounds: int  # log2(bracket_size); the final is round total_rounds
    status: str = Field(default=BRACKET_DRAFT)  # DRAFT | LOCKED | IN_PROGRESS | COMPLETED
    locked_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="brackets")
    matches: List["Match"] = Relationship(back_populates="bracket")
    results: List["TournamentResult"] = Relationship(back_populates="bracket")
