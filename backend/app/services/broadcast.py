"""
Completion and live-match events for the notification layer.

Events are frozen dataclasses; dataclasses.asdict() turns them into
JSON-ready dicts for whatever transport fans them out (push channel,
polling cache). The core only publishes; delivery is the subscriber's job.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchStarted:
    match_id: int
    bracket_id: int
    round_name: str
    fighter_a_name: Optional[str]
    fighter_b_name: Optional[str]
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class MatchScoreUpdated:
    match_id: int
    bracket_id: int
    fighter_a_score: Optional[int]
    fighter_b_score: Optional[int]
    notes: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class MatchEnded:
    match_id: int
    bracket_id: int
    winner_id: int
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class BracketCompleted:
    bracket_id: int
    tournament_id: int
    category_name: str
    champion_id: int
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class TournamentCompleted:
    tournament_id: int
    bracket_count: int
    timestamp: datetime = field(default_factory=datetime.utcnow)


TournamentEvent = Union[MatchStarted, MatchScoreUpdated, MatchEnded, BracketCompleted, TournamentCompleted]
Subscriber = Callable[[TournamentEvent], None]


class Broadcaster:
    """In-process fan-out. A failing subscriber is logged and skipped."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            self.unsubscribe(callback)

        return unsubscribe

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, event: TournamentEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        logger.debug("Publishing %s to %d subscriber(s)", type(event).__name__, len(subscribers))
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Subscriber %r failed on %s", callback, type(event).__name__)


broadcaster = Broadcaster()
