from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime


class WireModel(BaseModel):
    # Constructed by field name, serialized with the camelCase record names
    model_config = ConfigDict(populate_by_name=True)


# Daily word
class DailyWordResponse(BaseModel):
    date: str
    word: str
    difficulty: str
    threshold: float
    mode: str


# Attempts
class AttemptSubmitRequest(BaseModel):
    image_base64: str  # PNG, optionally as a data: URL
    date: str | None = None  # Honoured only when date overrides are enabled


class AttemptResponse(WireModel):
    id: str
    uid: str | None
    word: str | None
    date: str | None
    threshold: float | None
    mode: str
    storage_path: str | None = Field(alias="storagePath")
    image_url: str | None = Field(alias="imageURL")
    status: str
    guess: str | None = Field(alias="openaiGuess")
    confidence: float | None
    is_win: bool | None = Field(alias="isWin")
    scored_at: datetime | None = Field(alias="scoredAt")
    error: str | None = None
    created_at: datetime | None = Field(default=None, alias="createdAt")


# Progress
class ProgressResponse(WireModel):
    uid: str
    points_total: int = Field(alias="pointsTotal")
    streak_current: int = Field(alias="streakCurrent")
    streak_best: int = Field(alias="streakBest")
    last_win_date: str | None = Field(alias="lastWinDate")


# Canvas
class FillCanvasRequest(BaseModel):
    image_base64: str
    x: int
    y: int
    color: str = "#111111"
    tolerance: int = 35  # Clamped to 0..160
    use_diagonals: bool = True
    erase: bool = False


class FillCanvasResponse(BaseModel):
    image_base64: str
    changed: bool
