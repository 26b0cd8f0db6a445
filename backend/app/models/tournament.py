from datetime import date, datetime
from typing import TYPE_CHECKING, List, Optional

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.bracket import Bracket
    from app.models.registration import Registration
    from app.models.tournament_result import TournamentResult

TOURNAMENT_UPCOMING = "UPCOMING"
TOURNAMENT_ONGOING = "ONGOING"
TOURNAMENT_COMPLETED = "COMPLETED"


class Tournament(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    location: str
    start_date: date
    end_date: date
    notes: Optional[str] = None
    status: str = Field(default=TOURNAMENT_UPCOMING)  # UPCOMING | ONGOING | COMPLETED
    completed_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})

    # Relationships
    registrations: List["Registration"] = Relationship(back_populates="tournament")
    brackets: List["Bracket"] = Relationship(back_populates="tournament")
    results: List["TournamentResult"] = Relationship(back_populates="tournament")
