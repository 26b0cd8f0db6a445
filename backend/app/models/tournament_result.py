from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.bracket import Bracket
    from app.models.tournament import Tournament

MEDAL_GOLD = "GOLD"
MEDAL_SILVER = "SILVER"
MEDAL_BRONZE = "BRONZE"

CHAMPION_MARKER = "Champion"


class TournamentResult(SQLModel, table=True):
    __table_args__ = (
        # One placement per participant per bracket; concurrent finalizers collide here
        SAUniqueConstraint("bracket_id", "participant_id", name="uq_result_bracket_participant"),
        SAUniqueConstraint("bracket_id", "final_rank", name="uq_result_bracket_rank"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    bracket_id: int = Field(foreign_key="bracket.id", index=True)
    participant_id: int
    participant_name: Optional[str] = Field(default=None)
    category_name: str
    final_rank: int  # 1 = champion
    medal: Optional[str] = Field(default=None)  # GOLD | SILVER | BRONZE | null
    total_matches: int = Field(default=0)
    matches_won: int = Field(default=0)
    matches_lost: int = Field(default=0)
    eliminated_in_round: Optional[str] = Field(default=None)  # Round name, or "Champion"
    eliminated_by_id: Optional[int] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="results")
    bracket: "Bracket" = Relationship(back_populates="results")
