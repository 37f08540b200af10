"""
FastAPI backend for the vocabulary review service.
Loads per-user review state, runs it through spaced_rep.py and stores the result.
"""

import logging
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends
from sqlalchemy.orm import Session

from config import get_settings
from models import (
    VocabularyDB, ReviewProgressDB, ReviewHistory,
    VocabularyCreate, VocabularyResponse, ReviewStateResponse, SessionItem, SessionResponse,
    ReviewRequest, ReviewResponse, ReviewHistoryResponse, StatsResponse,
    get_engine, init_db, get_session,
)
from spaced_rep import (
    InvalidQuality, ReviewState,
    answer_to_quality, check_quality, compose_session, compute_next_state,
    get_due_states, new_review_state, summarize_states,
)

logger = logging.getLogger(__name__)

settings = get_settings()
scheduler_config = settings.scheduler_config()

# Database setup
engine = get_engine(settings.database_url)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: Initialize logging and database
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db(engine)
    logger.info("✓ Database initialized at %s", settings.database_url)
    yield
    # Shutdown: release pooled connections
    engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Vocabulary review scheduling with SM-2 spaced repetition",
    version="1.0.0",
    lifespan=lifespan,
)


# Dependency to get DB session
def get_db():
    session = get_session(engine)
    try:
        yield session
    finally:
        session.close()


def _get_item_or_404(db: Session, item_id: int) -> VocabularyDB:
    item = db.get(VocabularyDB, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Vocabulary item not found")
    return item


def _load_states(db: Session, user_id: str, items: list[VocabularyDB], now: datetime) -> list[ReviewState]:
    """Merge the user's stored progress with defaults for items never reviewed."""
    rows = (
        db.query(ReviewProgressDB)
        .filter(
            ReviewProgressDB.user_id == user_id,
            ReviewProgressDB.item_id.in_([item.id for item in items]),
        )
        .all()
    )
    progress = {row.item_id: row for row in rows}

    states = []
    for item in items:
        row = progress.get(item.id)
        if row is not None:
            states.append(ReviewState.model_validate(row))
        else:
            states.append(new_review_state(item.id, now, scheduler_config))
    return states


# --- Routes ---

@app.get("/")
async def root():
    return {"message": "Vocabulary Review API - visit /docs for the API."}


@app.get("/api/items", response_model=list[VocabularyResponse])
async def list_items(db: Session = Depends(get_db)):
    """List all vocabulary items."""
    return db.query(VocabularyDB).order_by(VocabularyDB.created_at, VocabularyDB.id).all()


@app.post("/api/items", response_model=VocabularyResponse)
async def create_item(item: VocabularyCreate, db: Session = Depends(get_db)):
    """Create a new vocabulary item."""
    db_item = VocabularyDB(
        word=item.word,
        translation=item.translation,
        phonetic=item.phonetic,
        audio_url=item.audio_url,
    )
    db.add(db_item)
    db.commit()
    db.refresh(db_item)
    return db_item


@app.get("/api/items/{item_id}", response_model=VocabularyResponse)
async def get_item(item_id: int, db: Session = Depends(get_db)):
    return _get_item_or_404(db, item_id)


@app.delete("/api/items/{item_id}")
async def delete_item(item_id: int, db: Session = Depends(get_db)):
    """Delete an item along with everyone's progress and history for it."""
    item = _get_item_or_404(db, item_id)
    db.delete(item)
    db.commit()
    return {"message": "Vocabulary item deleted"}


@app.get("/api/users/{user_id}/session", response_model=SessionResponse)
async def get_session_items(user_id: str, limit: Optional[int] = None, db: Session = Depends(get_db)):
    """Get the items to review now, most urgent first."""
    now = datetime.now(timezone.utc)
    items = db.query(VocabularyDB).order_by(VocabularyDB.created_at, VocabularyDB.id).all()
    if not items:
        return SessionResponse(items=[], count=0, total_due=0)

    states = _load_states(db, user_id, items, now)
    total_due = len(get_due_states(states, now))
    ordered_ids = compose_session(states, now, limit, scheduler_config)

    items_by_id = {item.id: item for item in items}
    states_by_id = {state.item_id: state for state in states}
    session_items = [
        SessionItem(
            id=item_id,
            word=items_by_id[item_id].word,
            translation=items_by_id[item_id].translation,
            phonetic=items_by_id[item_id].phonetic,
            audio_url=items_by_id[item_id].audio_url,
            stats=ReviewStateResponse(**states_by_id[item_id].model_dump()),
        )
        for item_id in ordered_ids
    ]
    logger.debug("User %s: %d of %d due items in session", user_id, len(session_items), total_due)

    return SessionResponse(items=session_items, count=len(session_items), total_due=total_due)


@app.post("/api/users/{user_id}/review/{item_id}", response_model=ReviewResponse)
async def review_item(user_id: str, item_id: int, review: ReviewRequest, db: Session = Depends(get_db)):
    """Submit a review result for an item."""
    _get_item_or_404(db, item_id)

    raw_quality = review.quality if review.quality is not None else answer_to_quality(review.knows_it)
    try:
        quality = check_quality(raw_quality, scheduler_config)
    except InvalidQuality as e:
        raise HTTPException(status_code=422, detail=str(e))

    now = datetime.now(timezone.utc)
    progress = (
        db.query(ReviewProgressDB)
        .filter(ReviewProgressDB.user_id == user_id, ReviewProgressDB.item_id == item_id)
        .first()
    )
    if progress is not None:
        current = ReviewState.model_validate(progress)
    else:
        current = new_review_state(item_id, now, scheduler_config)

    # Apply SM-2 algorithm
    updated = compute_next_state(quality, current, now, scheduler_config)

    if progress is None:
        progress = ReviewProgressDB(user_id=user_id, item_id=item_id)
        db.add(progress)
    progress.ease_factor = updated.ease_factor
    progress.interval = updated.interval
    progress.repetitions = updated.repetitions
    progress.next_review_at = updated.next_review_at
    progress.last_reviewed_at = updated.last_reviewed_at

    # Record history
    db.add(ReviewHistory(
        user_id=user_id,
        item_id=item_id,
        quality=quality,
        interval=updated.interval,
        ease_factor=updated.ease_factor,
        reviewed_at=now,
    ))
    db.commit()

    logger.info(
        "User %s reviewed item %d (quality %d): next review in %d day(s)",
        user_id, item_id, quality, updated.interval,
    )

    return ReviewResponse(quality=quality, **updated.model_dump())


@app.get("/api/users/{user_id}/items/{item_id}/history", response_model=list[ReviewHistoryResponse])
async def get_history(user_id: str, item_id: int, db: Session = Depends(get_db)):
    """Review history for one item, newest first."""
    _get_item_or_404(db, item_id)
    return (
        db.query(ReviewHistory)
        .filter(ReviewHistory.user_id == user_id, ReviewHistory.item_id == item_id)
        .order_by(ReviewHistory.reviewed_at.desc(), ReviewHistory.id.desc())
        .all()
    )


@app.get("/api/users/{user_id}/stats", response_model=StatsResponse)
async def get_stats(user_id: str, db: Session = Depends(get_db)):
    """Get learning statistics."""
    now = datetime.now(timezone.utc)
    items = db.query(VocabularyDB).all()
    states = _load_states(db, user_id, items, now)
    return StatsResponse(**summarize_states(states, now))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
