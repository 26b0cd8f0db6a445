from app.models.bracket import Bracket
from app.models.match import Match
from app.models.registration import Registration
from app.models.tournament import Tournament
from app.models.tournament_result import TournamentResult

__all__ = [
    "Tournament",
    "Registration",
    "Bracket",
    "Match",
    "TournamentResult",
]
