"""Attempt scoring: pending -> scored | error, exactly once per attempt.

`score_attempt` is trigger-agnostic; the API's background task and the
`score-pending` job both feed it attempt ids. Every validation, collaborator
and parse failure ends as a persisted error state rather than an exception.
"""
import logging
import math
import re
from dataclasses import dataclass

from daily_doodle.classifier import CLASSIFIER_INSTRUCTIONS, Classifier, parse_guess
from daily_doodle.dates import is_valid_date_key
from daily_doodle.models import AttemptStatus
from daily_doodle.progress import ProgressState
from daily_doodle.repository import DoodleRepository
from daily_doodle.storage import RasterStore

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.75

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class ScoreOutcome:
    attempt_id: str
    status: AttemptStatus
    guess: str | None = None
    confidence: float | None = None
    is_win: bool | None = None
    error: str | None = None
    progress: ProgressState | None = None


def normalize_word(value) -> str:
    """Lowercase, trim, and collapse non-alphanumeric runs to single spaces."""
    s = str(value or "").strip().lower()
    return _NON_ALNUM_RE.sub(" ", s).strip()


def _finite_float(value) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def clamp_confidence(value) -> float:
    """Clamp to [0, 1]; anything non-numeric counts as 0."""
    f = _finite_float(value)
    if f is None:
        return 0.0
    return max(0.0, min(1.0, f))


def resolve_threshold(value) -> float:
    f = _finite_float(value)
    return DEFAULT_THRESHOLD if f is None else f


def is_winning_guess(guess: str, target: str, confidence: float, threshold: float) -> bool:
    return normalize_word(guess) == normalize_word(target) and confidence >= threshold


async def score_attempt(
    attempt_id: str,
    repository: DoodleRepository,
    raster_store: RasterStore,
    classifier: Classifier,
) -> ScoreOutcome | None:
    """Score one attempt. Returns None when there was nothing to do."""
    attempt = await repository.get_attempt(attempt_id)
    if attempt is None:
        logger.warning(f"Attempt {attempt_id} not found, nothing to score")
        return None
    if attempt.status != AttemptStatus.PENDING.value or attempt.scored_at is not None:
        logger.info(f"Attempt {attempt_id} is {attempt.status}, skipping")
        return None

    missing = [
        name
        for name, value in (
            ("uid", attempt.uid),
            ("word", attempt.word),
            ("date", attempt.date),
            ("storagePath", attempt.storage_path),
        )
        if not value
    ]
    if missing:
        return await _fail(repository, attempt_id, f"Missing {'/'.join(missing)}")
    if not is_valid_date_key(attempt.date):
        return await _fail(repository, attempt_id, "Invalid date")

    try:
        image_bytes = await raster_store.download(attempt.storage_path)
    except Exception as e:
        logger.error(f"Download failed for {attempt_id}: {e}")
        return await _fail(repository, attempt_id, str(e) or "Failed to download image from storage")

    try:
        model_text = await classifier.complete(CLASSIFIER_INSTRUCTIONS, attempt.word, image_bytes)
    except Exception as e:
        logger.error(f"Classifier failed for {attempt_id}: {e}")
        return await _fail(repository, attempt_id, str(e) or "Classifier call failed")

    model_text = model_text or ""
    parsed = parse_guess(model_text)
    if parsed is None:
        logger.warning(f"Unparseable classifier output for {attempt_id}: {model_text[:200]!r}")
        return await _fail(repository, attempt_id, "Model output was not valid JSON", raw_model_text=model_text)

    guess = normalize_word(parsed.guess)
    confidence = clamp_confidence(parsed.confidence)
    threshold = resolve_threshold(attempt.threshold)
    is_win = is_winning_guess(guess, attempt.word, confidence, threshold)

    progress = await repository.record_score(
        attempt_id,
        uid=attempt.uid,
        date_key=attempt.date,
        guess=guess,
        confidence=confidence,
        is_win=is_win,
    )
    if progress is None:
        logger.warning(f"Attempt {attempt_id} was scored by another delivery")
        return None

    logger.info(
        f"Scored {attempt_id}: guess={guess!r} target={attempt.word!r} "
        f"confidence={confidence:.2f} threshold={threshold} win={is_win} streak={progress.streak_current}"
    )
    return ScoreOutcome(
        attempt_id=attempt_id,
        status=AttemptStatus.SCORED,
        guess=guess,
        confidence=confidence,
        is_win=is_win,
        progress=progress,
    )


async def _fail(
    repository: DoodleRepository, attempt_id: str, message: str, raw_model_text: str | None = None
) -> ScoreOutcome | None:
    if not await repository.mark_error(attempt_id, message, raw_model_text=raw_model_text):
        logger.warning(f"Attempt {attempt_id} left pending before error could be recorded")
        return None
    logger.info(f"Attempt {attempt_id} -> error: {message}")
    return ScoreOutcome(attempt_id=attempt_id, status=AttemptStatus.ERROR, error=message)


async def score_pending(
    repository: DoodleRepository,
    raster_store: RasterStore,
    classifier: Classifier,
) -> list[ScoreOutcome]:
    """Score every attempt still pending. Used by the sweeper job."""
    outcomes = []
    for attempt_id in await repository.list_pending_attempt_ids():
        outcome = await score_attempt(attempt_id, repository, raster_store, classifier)
        if outcome:
            outcomes.append(outcome)
    return outcomes
