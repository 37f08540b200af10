"""
Pydantic & SQLAlchemy models for the vocabulary review service.
Stores per-user SM-2 scheduling state; the scheduling math lives in spaced_rep.py.
"""

from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy import (
    Column, Integer, String, Float, DateTime, ForeignKey, UniqueConstraint, create_engine,
)
from sqlalchemy.orm import declarative_base, sessionmaker, relationship
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


# SQLAlchemy ORM Models
class VocabularyDB(Base):
    __tablename__ = "vocabulary"

    id = Column(Integer, primary_key=True, autoincrement=True)
    word = Column(String(255), nullable=False, index=True)
    translation = Column(String(500), nullable=False)
    phonetic = Column(String(255), nullable=True)
    audio_url = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    progress = relationship("ReviewProgressDB", back_populates="item", cascade="all, delete-orphan")
    history = relationship("ReviewHistory", back_populates="item", cascade="all, delete-orphan")


class ReviewProgressDB(Base):
    """One row per user x item, upserted after every review."""
    __tablename__ = "review_progress"
    __table_args__ = (UniqueConstraint("user_id", "item_id", name="uq_progress_user_item"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey("vocabulary.id"), nullable=False)

    # SM-2 Spaced Repetition fields
    ease_factor = Column(Float, nullable=False, default=2.5)  # Starting EF
    interval = Column(Integer, nullable=False, default=0)     # Days until next review
    repetitions = Column(Integer, nullable=False, default=0)  # Successful reviews in a row
    next_review_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_reviewed_at = Column(DateTime(timezone=True), nullable=True)

    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    item = relationship("VocabularyDB", back_populates="progress")


class ReviewHistory(Base):
    __tablename__ = "review_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey("vocabulary.id"), nullable=False)
    quality = Column(Integer, nullable=False)  # 0-3, after clamping
    interval = Column(Integer, nullable=False)
    ease_factor = Column(Float, nullable=False)
    reviewed_at = Column(DateTime(timezone=True), default=utcnow)

    item = relationship("VocabularyDB", back_populates="history")


# Pydantic models for API
class VocabularyCreate(BaseModel):
    word: str
    translation: str
    phonetic: Optional[str] = None
    audio_url: Optional[str] = None


class VocabularyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    word: str
    translation: str
    phonetic: Optional[str] = None
    audio_url: Optional[str] = None


class ReviewStateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    item_id: int
    ease_factor: float
    interval: int
    repetitions: int
    next_review_at: datetime
    last_reviewed_at: Optional[datetime] = None


class SessionItem(VocabularyResponse):
    """A vocabulary entry together with its scheduling state."""
    stats: ReviewStateResponse


class SessionResponse(BaseModel):
    items: list[SessionItem]
    count: int
    total_due: int


class ReviewRequest(BaseModel):
    quality: Optional[int] = Field(None, description="0=again, 1=hard, 2=good, 3=easy")
    knows_it: Optional[bool] = Field(None, description="Binary answer, used when quality is missing")

    @model_validator(mode="after")
    def require_answer(self):
        if self.quality is None and self.knows_it is None:
            raise ValueError("quality (0-3) or knows_it is required")
        return self


class ReviewResponse(ReviewStateResponse):
    quality: int


class ReviewHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    quality: int
    interval: int
    ease_factor: float
    reviewed_at: datetime


class StatsResponse(BaseModel):
    total: int
    due: int
    new: int
    learning: int
    mature: int


# Database setup
def get_engine(database_url: str = "sqlite:///reviews.db"):
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # Share the one in-memory connection across sessions and threads
        return create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        return create_engine(database_url, echo=False, connect_args={"check_same_thread": False})
    return create_engine(database_url, echo=False)


def init_db(engine):
    Base.metadata.create_all(engine)


def get_session(engine):
    Session = sessionmaker(bind=engine)
    return Session()
