"""
SM-2 Spaced Repetition Algorithm (compressed 4-point scale)

Quality ratings:
0 - Again: didn't recall the word
1 - Hard: recalled with serious difficulty
2 - Good: recalled after some hesitation
3 - Easy: perfect, instant recall

Everything in here is a pure function over explicit state. Loading and
saving review progress is the caller's job (see app.py).
"""

import logging
import math
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

EASE_EPSILON = 1e-9
MATURE_INTERVAL = 21  # Days; cards at or above this count as "mature"


class Quality(IntEnum):
    AGAIN = 0
    HARD = 1
    GOOD = 2
    EASY = 3


class InvalidQuality(ValueError):
    """Raised for a rating that can't be turned into a 0-3 quality."""

    def __init__(self, quality: Any):
        self.quality = quality
        super().__init__(f"Invalid quality rating {quality!r}, expected an integer 0-3")


class SchedulerConfig(BaseModel):
    """Tuning knobs for the scheduler."""

    model_config = ConfigDict(frozen=True)

    starting_ease_factor: float = 2.5
    ease_floor: float = 1.3
    lapse_penalty: float = 0.2
    default_session_size: int = 20
    first_interval: int = 1    # Days after the 1st successful repetition
    second_interval: int = 6   # Days after the 2nd successful repetition
    lapse_interval: int = 1    # Days after a failed review
    strict_quality: bool = False  # Reject out-of-range ratings instead of clamping


DEFAULT_CONFIG = SchedulerConfig()


class ReviewState(BaseModel):
    """Scheduling state for one user x item pair."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    item_id: Any
    ease_factor: float = DEFAULT_CONFIG.starting_ease_factor
    interval: int = 0          # Days until next review
    repetitions: int = 0       # Successful reviews in a row
    next_review_at: datetime
    last_reviewed_at: Optional[datetime] = None

    def is_due(self, now: datetime) -> bool:
        return _as_utc(self.next_review_at) <= _as_utc(now)


States = Union[Iterable[ReviewState], Mapping[Any, ReviewState]]


def _as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _round_half_up(value: float) -> int:
    # built-in round() is half-to-even
    return int(math.floor(value + 0.5))


def _floor_ease(ease_factor: float, config: SchedulerConfig) -> float:
    if ease_factor < config.ease_floor + EASE_EPSILON:
        return config.ease_floor
    return ease_factor


def _iter_states(states: States) -> list[ReviewState]:
    if isinstance(states, Mapping):
        return list(states.values())
    return list(states)


def check_quality(quality: Any, config: SchedulerConfig = DEFAULT_CONFIG) -> int:
    """
    Turn a raw rating into a valid 0-3 quality.

    Out-of-range integers are clamped to the nearest bound, unless
    ``config.strict_quality`` is set, in which case they are rejected.
    Anything that isn't an integer is always rejected.

    Raises:
        InvalidQuality: if the rating can't be used
    """
    if isinstance(quality, bool) or not isinstance(quality, int):
        raise InvalidQuality(quality)

    if Quality.AGAIN <= quality <= Quality.EASY:
        return int(quality)

    if config.strict_quality:
        raise InvalidQuality(quality)

    clamped = max(Quality.AGAIN, min(Quality.EASY, quality))
    logger.warning("Clamping quality rating %d to %d", quality, clamped)
    return int(clamped)


def answer_to_quality(knows_it: bool) -> int:
    """Map a binary know-it / don't-know-it answer onto the quality scale."""
    return Quality.GOOD if knows_it else Quality.AGAIN


def new_review_state(
    item_id: Any,
    now: Optional[datetime] = None,
    config: SchedulerConfig = DEFAULT_CONFIG,
) -> ReviewState:
    """Default state for an item that has never been reviewed. Due right away."""
    now = _as_utc(now) if now is not None else _utcnow()
    return ReviewState(
        item_id=item_id,
        ease_factor=config.starting_ease_factor,
        interval=0,
        repetitions=0,
        next_review_at=now,
        last_reviewed_at=None,
    )


def normalize_state(state: ReviewState, config: SchedulerConfig = DEFAULT_CONFIG) -> ReviewState:
    """
    Repair a state read back from storage.

    Ease factor is lifted to the floor, negative interval and repetition
    counts become 0, and naive timestamps are taken as UTC.
    """
    updates = {}

    ease_factor = _floor_ease(state.ease_factor, config)
    if ease_factor != state.ease_factor:
        if state.ease_factor < config.ease_floor - EASE_EPSILON:
            logger.warning(
                "Item %s: ease factor %.4f below floor, raising to %.2f",
                state.item_id, state.ease_factor, config.ease_floor,
            )
        updates["ease_factor"] = ease_factor
    if state.interval < 0:
        logger.warning("Item %s: negative interval %d, treating as 0", state.item_id, state.interval)
        updates["interval"] = 0
    if state.repetitions < 0:
        logger.warning("Item %s: negative repetitions %d, treating as 0", state.item_id, state.repetitions)
        updates["repetitions"] = 0

    if state.next_review_at.tzinfo is None:
        updates["next_review_at"] = _as_utc(state.next_review_at)
    if state.last_reviewed_at is not None and state.last_reviewed_at.tzinfo is None:
        updates["last_reviewed_at"] = _as_utc(state.last_reviewed_at)

    if not updates:
        return state
    return state.model_copy(update=updates)


def compute_next_state(
    quality: Any,
    state: ReviewState,
    now: Optional[datetime] = None,
    config: Optional[SchedulerConfig] = None,
) -> ReviewState:
    """
    Apply SM-2 to produce the state after one review.

    Args:
        quality: Response quality (0-3), see check_quality for out-of-range handling
        state: The item's current scheduling state
        now: Review time, defaults to the current UTC time
        config: Scheduler tuning, defaults to DEFAULT_CONFIG

    Returns:
        A new ReviewState; the input is left untouched
    """
    config = config or DEFAULT_CONFIG
    quality = check_quality(quality, config)
    now = _as_utc(now) if now is not None else _utcnow()
    state = normalize_state(state, config)

    if quality == Quality.AGAIN:
        # Lapse - reset the streak, see it again tomorrow
        repetitions = 0
        interval = config.lapse_interval
        ease_factor = _floor_ease(state.ease_factor - config.lapse_penalty, config)
    else:
        # EF' = EF + (0.1 - (3 - q) * (0.08 + (3 - q) * 0.02))
        distance = Quality.EASY - quality
        ease_factor = _floor_ease(
            state.ease_factor + (0.1 - distance * (0.08 + distance * 0.02)),
            config,
        )
        repetitions = state.repetitions + 1
        if repetitions == 1:
            interval = config.first_interval
        elif repetitions == 2:
            interval = config.second_interval
        else:
            interval = _round_half_up(state.interval * ease_factor)

    interval = max(0, interval)

    logger.debug(
        "Item %s reviewed with quality %d: interval %d -> %d, ease %.3f -> %.3f, reps %d -> %d",
        state.item_id, quality, state.interval, interval,
        state.ease_factor, ease_factor, state.repetitions, repetitions,
    )

    return ReviewState(
        item_id=state.item_id,
        ease_factor=ease_factor,
        interval=interval,
        repetitions=repetitions,
        next_review_at=now + timedelta(days=interval),
        last_reviewed_at=now,
    )


def get_due_states(states: States, now: datetime) -> list[ReviewState]:
    """Items whose next review time has passed."""
    return [state for state in _iter_states(states) if state.is_due(now)]


def _priority_key(state: ReviewState):
    # Earlier next_review_at == more overdue, so ascending on it puts the
    # most overdue first. Then harder, then less consolidated, then id.
    return (
        _as_utc(state.next_review_at),
        state.ease_factor,
        state.repetitions,
        str(state.item_id),
    )


def sort_by_priority(states: States, now: datetime) -> list[ReviewState]:
    """Order due items, most urgent first. Items that aren't due are dropped."""
    return sorted(get_due_states(states, now), key=_priority_key)


def compose_session(
    states: States,
    now: datetime,
    limit: Optional[int] = None,
    config: Optional[SchedulerConfig] = None,
) -> list[Any]:
    """
    Pick the item ids to review in one session.

    Args:
        states: ReviewStates, as an iterable or a mapping of item id -> state
        now: Current time
        limit: Maximum session size, defaults to config.default_session_size.
            Zero or negative gives an empty session.
        config: Scheduler tuning, defaults to DEFAULT_CONFIG

    Returns:
        Item ids in presentation order
    """
    config = config or DEFAULT_CONFIG
    if limit is None:
        limit = config.default_session_size
    if limit <= 0:
        return []

    states = [normalize_state(state, config) for state in _iter_states(states)]
    ordered = sort_by_priority(states, now)
    return [state.item_id for state in ordered[:limit]]


def classify_state(state: ReviewState) -> str:
    """Bucket a state as "new", "learning" or "mature"."""
    if state.repetitions <= 0 and state.interval <= 0:
        return "new"
    if state.interval >= MATURE_INTERVAL:
        return "mature"
    return "learning"


def summarize_states(states: States, now: datetime) -> dict[str, int]:
    """Counts of total, due, new, learning and mature items."""
    states = _iter_states(states)
    summary = {"total": len(states), "due": 0, "new": 0, "learning": 0, "mature": 0}
    for state in states:
        if state.is_due(now):
            summary["due"] += 1
        summary[classify_state(state)] += 1
    return summary
