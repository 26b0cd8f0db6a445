from datetime import date
from typing import Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from app.database import get_session
from app.main import app

TEST_DATABASE_URL = "sqlite:///:memory:"

# ============================================================================
# CRITICAL: Test Database Setup with StaticPool
# ============================================================================
# 1. Use sqlite:///:memory: with StaticPool so ALL sessions share same DB
# 2. check_same_thread=False required for TestClient/threaded access
# 3. All models MUST be imported before create_all() (see session_fixture)
# 4. App dependency overridden to use test_engine (see client_fixture)
# 5. Tables are created per test and dropped afterwards
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def override_get_session():
    """Override session to use test engine"""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="session", scope="function")
def session_fixture():
    """Provide a test database session on a fresh schema"""
    # Import all models to ensure they're registered BEFORE create_all
    from app.models.bracket import Bracket  # noqa: F401
    from app.models.match import Match  # noqa: F401
    from app.models.registration import Registration  # noqa: F401
    from app.models.tournament import Tournament  # noqa: F401
    from app.models.tournament_result import TournamentResult  # noqa: F401

    SQLModel.metadata.create_all(test_engine)

    with Session(test_engine) as session:
        yield session

    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(name="client")
def client_fixture(session: Session):
    """Provide a test client with overridden database session

    CRITICAL: Override MUST be set BEFORE TestClient() and stay in place
    for the entire duration. This ensures the app never uses its own engine.
    """
    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def tournament(session: Session):
    """A bare tournament with no registrations"""
    from app.models.tournament import Tournament

    t = Tournament(
        name="Kyokushin Open",
        location="Pune",
        start_date=date(2026, 3, 14),
        end_date=date(2026, 3, 15),
    )
    session.add(t)
    session.commit()
    session.refresh(t)
    return t


@pytest.fixture
def register(session: Session) -> Callable:
    """Factory: register(tournament_id, participant_ids, age=..., weight=..., belt=..., ...) -> registrations"""
    from app.models.registration import APPROVAL_APPROVED, Registration

    def _register(
        tournament_id: int,
        participant_ids: List[int],
        age: str = "18-35",
        weight: str = "Under 70kg",
        belt: str = "Open",
        approval_status: str = APPROVAL_APPROVED,
        seed_ranks: Optional[Dict[int, int]] = None,
        dojo: Optional[str] = None,
    ) -> List[Registration]:
        seed_ranks = seed_ranks or {}
        regs = []
        for pid in participant_ids:
            reg = Registration(
                tournament_id=tournament_id,
                participant_id=pid,
                participant_name=f"Fighter {pid}",
                dojo_name=dojo,
                category_age=age,
                category_weight=weight,
                category_belt=belt,
                seed_rank=seed_ranks.get(pid),
                approval_status=approval_status,
            )
            session.add(reg)
            regs.append(reg)
        session.commit()
        return regs

    return _register


@pytest.fixture
def play_bracket(session: Session) -> Callable:
    """Factory: play every open match of a bracket round by round.

    pick(match) returns the winner id; default is the lower participant id.
    Returns the list of EndMatchResult objects in play order.
    """
    from app.models.match import MATCH_COMPLETED, Match
    from app.services.match_runtime import end_match

    def _play(bracket_id: int, pick: Optional[Callable] = None, stop_before_final: bool = False):
        pick = pick or (lambda m: min(m.fighter_a_id, m.fighter_b_id))
        played = []
        rounds = session.exec(select(Match.round_number).where(Match.bracket_id == bracket_id).distinct()).all()
        max_round = max(rounds)
        for rnd in sorted(rounds):
            if stop_before_final and rnd == max_round:
                break
            matches = session.exec(
                select(Match)
                .where(Match.bracket_id == bracket_id, Match.round_number == rnd)
                .order_by(Match.position_in_round)
            ).all()
            for match in matches:
                session.refresh(match)
                if match.status == MATCH_COMPLETED:
                    continue
                played.append(end_match(session, match.id, winner_id=pick(match)))
        return played

    return _play
