from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.bracket import Bracket

MATCH_SCHEDULED = "SCHEDULED"
MATCH_LIVE = "LIVE"
MATCH_COMPLETED = "COMPLETED"


class Match(SQLModel, table=True):
    __table_args__ = (
        SAUniqueConstraint("bracket_id", "match_number", name="uq_match_bracket_number"),
        SAUniqueConstraint("bracket_id", "round_number", "position_in_round", name="uq_match_bracket_position"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    bracket_id: int = Field(foreign_key="bracket.id", index=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    round_number: int  # 1 = earliest round
    round_name: str  # "Round of 16" | "Quarterfinal" | "Semifinal" | "Final"
    match_number: int  # Sequential display index across the bracket
    position_in_round: int  # 1..matches_in_round, top to bottom

    # Fighter slots (nullable - bye or awaiting an upstream winner)
    fighter_a_id: Optional[int] = Field(default=None)
    fighter_a_name: Optional[str] = Field(default=None)
    fighter_b_id: Optional[int] = Field(default=None)
    fighter_b_name: Optional[str] = Field(default=None)

    # Advancement: upstream match whose winner fills each slot
    source_match_a_id: Optional[int] = Field(default=None, foreign_key="match.id")
    source_match_b_id: Optional[int] = Field(default=None, foreign_key="match.id")

    is_bye: bool = Field(default=False)
    status: str = Field(default=MATCH_SCHEDULED)  # SCHEDULED | LIVE | COMPLETED
    fighter_a_score: Optional[int] = Field(default=None)
    fighter_b_score: Optional[int] = Field(default=None)
    winner_id: Optional[int] = Field(default=None)
    notes: Optional[str] = Field(default=None)
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationship
    bracket: "Bracket" = Relationship(back_populates="matches")

    def loser_id(self) -> Optional[int]:
        """The non-winning fighter of a decided match, if any."""
        if self.winner_id is None:
            return None
        if self.winner_id == self.fighter_a_id:
            return self.fighter_b_id
        if self.winner_id == self.fighter_b_id:
            return self.fighter_a_id
        return None

    def fighter_name(self, participant_id: Optional[int]) -> Optional[str]:
        if participant_id is None:
            return None
        if participant_id == self.fighter_a_id:
            return self.fighter_a_name
        if participant_id == self.fighter_b_id:
            return self.fighter_b_name
        return None
