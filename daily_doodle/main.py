from contextlib import asynccontextmanager
import asyncio
from functools import lru_cache
import base64
import binascii
import logging
import hashlib
import time

from google.auth import jwt
from fastapi import FastAPI, BackgroundTasks, Depends, HTTPException, Header, Response
from fastapi.middleware.cors import CORSMiddleware
from openai import AsyncOpenAI

from daily_doodle.classifier import Classifier, OpenAIClassifier
from daily_doodle.daily import generate_daily_word
from daily_doodle.dates import is_valid_date_key, utc_date_key
from daily_doodle.db import Settings, get_sessionmaker, get_settings, init_db
from daily_doodle.floodfill import FillRequest, flood_fill
from daily_doodle.models import Attempt, AttemptStatus, DailyWord
from daily_doodle.raster import RasterImage, hex_to_rgb
from daily_doodle.repository import AttemptConflictError, DoodleRepository, attempt_id_for
from daily_doodle.schemas import (
    AttemptResponse,
    AttemptSubmitRequest,
    DailyWordResponse,
    FillCanvasRequest,
    FillCanvasResponse,
    ProgressResponse,
)
from daily_doodle.scoring import score_attempt
from daily_doodle.storage import LocalRasterStore, RasterStore, StorageError, doodle_path

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield


app = FastAPI(title="Daily Doodle API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Collaborators, overridable via app.dependency_overrides
def get_repository() -> DoodleRepository:
    return DoodleRepository(get_sessionmaker())


def get_raster_store(settings: Settings = Depends(get_settings)) -> RasterStore:
    return LocalRasterStore(settings.storage_root)


@lru_cache
def _openai_classifier(api_key: str, model: str) -> OpenAIClassifier:
    return OpenAIClassifier(AsyncOpenAI(api_key=api_key or None), model=model)


def get_classifier(settings: Settings = Depends(get_settings)) -> Classifier:
    return _openai_classifier(settings.openai_api_key, settings.openai_model)


# Cache decoded tokens (token_hash -> (uid, expiry))
_token_cache: dict[str, tuple[str, float]] = {}


def _decode_id_token(token: str, project_id: str) -> str | None:
    """Return the uid from a Firebase ID token (signature checked upstream)."""
    try:
        claims = jwt.decode(token, verify=False)
        if claims.get("aud") != project_id:
            logger.warning(f"Token audience mismatch: got {claims.get('aud')}, expected {project_id}")
            return None
        return claims["sub"] or None
    except Exception as e:
        logger.warning(f"Token decode failed: {e}")
        return None


async def get_current_uid(
    authorization: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> str | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None

    token = authorization.removeprefix("Bearer ")

    token_hash = hashlib.sha256(token.encode()).hexdigest()[:16]
    if token_hash in _token_cache:
        uid, expiry = _token_cache[token_hash]
        if time.time() < expiry:
            return uid
        del _token_cache[token_hash]

    uid = _decode_id_token(token, settings.firebase_project_id)
    if not uid:
        return None

    # Cache for 55 min
    _token_cache[token_hash] = (uid, time.time() + 3300)
    return uid


def require_uid(uid: str | None = Depends(get_current_uid)) -> str:
    if not uid:
        raise HTTPException(status_code=401, detail="Valid Authorization header required")
    return uid


def _decode_image(image_base64: str) -> RasterImage:
    payload = image_base64.split(",", 1)[1] if "," in image_base64 else image_base64
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="image_base64 is not valid base64")
    try:
        return RasterImage.from_png(raw)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _daily_response(daily: DailyWord) -> DailyWordResponse:
    return DailyWordResponse(
        date=daily.date,
        word=daily.word,
        difficulty=daily.difficulty,
        threshold=daily.threshold,
        mode=daily.mode,
    )


def _attempt_response(attempt: Attempt) -> AttemptResponse:
    return AttemptResponse(
        id=attempt.id,
        uid=attempt.uid,
        word=attempt.word,
        date=attempt.date,
        threshold=attempt.threshold,
        mode=attempt.mode,
        storage_path=attempt.storage_path,
        image_url=attempt.image_url,
        status=attempt.status,
        guess=attempt.guess,
        confidence=attempt.confidence,
        is_win=attempt.is_win,
        scored_at=attempt.scored_at,
        error=attempt.error,
        created_at=attempt.created_at,
    )


# Health check
@app.get("/health")
async def health():
    return {"status": "ok"}


# Daily word
@app.get("/daily/today", response_model=DailyWordResponse)
async def get_today_word(repo: DoodleRepository = Depends(get_repository)):
    return await get_daily_word(utc_date_key(), repo)


@app.get("/daily/{date_key}", response_model=DailyWordResponse)
async def get_daily_word(date_key: str, repo: DoodleRepository = Depends(get_repository)):
    if not is_valid_date_key(date_key):
        raise HTTPException(status_code=400, detail=f"Invalid date key: {date_key}")

    daily = await repo.get_daily_word(date_key)
    if not daily:
        raise HTTPException(status_code=404, detail=f"No daily word set for {date_key}")
    return _daily_response(daily)


# Attempts
@app.post("/attempts", response_model=AttemptResponse, status_code=202)
async def submit_attempt(
    request: AttemptSubmitRequest,
    background_tasks: BackgroundTasks,
    uid: str = Depends(require_uid),
    repo: DoodleRepository = Depends(get_repository),
    store: RasterStore = Depends(get_raster_store),
    classifier: Classifier = Depends(get_classifier),
    settings: Settings = Depends(get_settings),
):
    """Upload today's doodle and queue it for scoring.

    The attempt is created as pending; scoring runs after the response as a
    background task. Only an attempt that ended in error can be resubmitted.
    """
    date_key = utc_date_key()
    if request.date and settings.allow_date_override:
        if not is_valid_date_key(request.date):
            raise HTTPException(status_code=400, detail=f"Invalid date key: {request.date}")
        date_key = request.date

    daily = await repo.get_daily_word(date_key)
    if not daily:
        raise HTTPException(status_code=404, detail=f"No daily word set for {date_key}")

    existing = await repo.get_attempt(attempt_id_for(uid, date_key))
    if existing and existing.status != AttemptStatus.ERROR.value:
        raise HTTPException(status_code=409, detail=f"Attempt already {existing.status}")

    raster = await asyncio.to_thread(_decode_image, request.image_base64)
    png = await asyncio.to_thread(raster.to_png)

    try:
        storage_path = await store.upload(doodle_path(uid, date_key), png, "image/png")
    except StorageError as e:
        logger.error(f"Upload failed for {uid} on {date_key}: {e}")
        raise HTTPException(status_code=500, detail="Failed to store doodle")

    try:
        attempt = await repo.save_pending_attempt(
            uid=uid,
            date_key=date_key,
            word=daily.word,
            threshold=daily.threshold,
            storage_path=storage_path,
            image_url=f"/attempts/{date_key}/image",
            mode=daily.mode,
        )
    except AttemptConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    background_tasks.add_task(score_attempt, attempt.id, repo, store, classifier)
    logger.info(f"Queued attempt {attempt.id} for scoring")

    return _attempt_response(attempt)


@app.get("/attempts/{date_key}", response_model=AttemptResponse)
async def get_attempt(
    date_key: str,
    uid: str = Depends(require_uid),
    repo: DoodleRepository = Depends(get_repository),
):
    """Get the caller's attempt for a day."""
    if not is_valid_date_key(date_key):
        raise HTTPException(status_code=400, detail=f"Invalid date key: {date_key}")

    attempt = await repo.get_attempt(attempt_id_for(uid, date_key))
    if not attempt:
        raise HTTPException(status_code=404, detail="Attempt not found")
    return _attempt_response(attempt)


@app.get("/attempts/{date_key}/image")
async def get_attempt_image(
    date_key: str,
    uid: str = Depends(require_uid),
    repo: DoodleRepository = Depends(get_repository),
    store: RasterStore = Depends(get_raster_store),
):
    attempt = await repo.get_attempt(attempt_id_for(uid, date_key))
    if not attempt or not attempt.storage_path:
        raise HTTPException(status_code=404, detail="Attempt not found")
    try:
        data = await store.download(attempt.storage_path)
    except StorageError:
        raise HTTPException(status_code=404, detail="Doodle image not found")
    return Response(content=data, media_type="image/png")


# Progress
@app.get("/progress", response_model=ProgressResponse)
async def get_progress(
    uid: str = Depends(require_uid),
    repo: DoodleRepository = Depends(get_repository),
):
    """Get the caller's points and streaks, creating an empty record on first visit."""
    user = await repo.ensure_user(uid)
    return ProgressResponse(
        uid=user.uid,
        points_total=user.points_total,
        streak_current=user.streak_current,
        streak_best=user.streak_best,
        last_win_date=user.last_win_date,
    )


# Canvas
@app.post("/canvas/fill", response_model=FillCanvasResponse)
def fill_canvas(request: FillCanvasRequest):
    """Apply a bucket fill to a PNG and return the result.

    Plain def so FastAPI runs the decode, fill and encode in its threadpool.
    """
    raster = _decode_image(request.image_base64)
    try:
        color = hex_to_rgb(request.color)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    fill = FillRequest(
        x=request.x,
        y=request.y,
        color=color,
        tolerance=request.tolerance,
        use_diagonals=request.use_diagonals,
        erase=request.erase,
    )
    try:
        changed = flood_fill(raster, fill)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return FillCanvasResponse(
        image_base64=base64.b64encode(raster.to_png()).decode("ascii"),
        changed=changed,
    )


# Same idempotent generation the scheduled job runs
@app.post("/daily/generate", response_model=DailyWordResponse)
async def generate_today_word(
    uid: str = Depends(require_uid),
    repo: DoodleRepository = Depends(get_repository),
):
    daily = await generate_daily_word(repo)
    return _daily_response(daily)
