import enum
from datetime import datetime, timezone
from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from daily_doodle.db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AttemptStatus(str, enum.Enum):
    PENDING = "pending"
    SCORED = "scored"
    ERROR = "error"


class User(Base):
    """Per-player streak and points record, keyed by auth uid."""

    __tablename__ = "users"

    uid: Mapped[str] = mapped_column(String(128), primary_key=True)
    points_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    streak_current: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    streak_best: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_win_date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Attempt(Base):
    """One player's submission for one day; id is "{uid}_{date}"."""

    __tablename__ = "attempts"

    id: Mapped[str] = mapped_column(String(150), primary_key=True)
    uid: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    word: Mapped[str | None] = mapped_column(String(100), nullable=True)
    date: Mapped[str | None] = mapped_column(String(10), nullable=True, index=True)
    threshold: Mapped[float | None] = mapped_column(Float, nullable=True, default=0.75)
    mode: Mapped[str] = mapped_column(String(20), nullable=False, default="classic")
    storage_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=AttemptStatus.PENDING.value, index=True)
    guess: Mapped[str | None] = mapped_column(String(100), nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_win: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    scored_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw_model_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class DailyWord(Base):
    __tablename__ = "daily_words"

    date: Mapped[str] = mapped_column(String(10), primary_key=True)
    word: Mapped[str] = mapped_column(String(100), nullable=False)
    difficulty: Mapped[str] = mapped_column(String(10), nullable=False)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)
    mode: Mapped[str] = mapped_column(String(20), nullable=False, default="classic")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class WordBank(Base):
    __tablename__ = "word_banks"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    easy: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    medium: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    hard: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
