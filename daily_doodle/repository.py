"""Persistence for attempts, player progress and daily words.

The repository is handed an async_sessionmaker explicitly; nothing here reaches
for a process-wide database handle.
"""
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from daily_doodle.models import Attempt, AttemptStatus, DailyWord, User, WordBank, utcnow
from daily_doodle.progress import ProgressState, apply_result

logger = logging.getLogger(__name__)

RAW_MODEL_TEXT_LIMIT = 2000


class AttemptConflictError(Exception):
    """The attempt for this player and day is already scored or still being scored."""


def attempt_id_for(uid: str, date_key: str) -> str:
    return f"{uid}_{date_key}"


class DoodleRepository:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    # Attempts

    async def get_attempt(self, attempt_id: str) -> Attempt | None:
        async with self._sessionmaker() as session:
            return await session.get(Attempt, attempt_id)

    async def list_pending_attempt_ids(self) -> list[str]:
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(Attempt.id)
                .where(
                    Attempt.status == AttemptStatus.PENDING.value,
                    Attempt.scored_at.is_(None),
                )
                .order_by(Attempt.created_at.asc())
            )
            return list(result.scalars().all())

    async def save_pending_attempt(
        self,
        *,
        uid: str,
        date_key: str,
        word: str,
        threshold: float,
        storage_path: str,
        image_url: str | None = None,
        mode: str = "classic",
    ) -> Attempt:
        """Create the day's attempt, or reset an errored one back to pending."""
        attempt_id = attempt_id_for(uid, date_key)
        async with self._sessionmaker() as session:
            try:
                async with session.begin():
                    result = await session.execute(
                        select(Attempt).where(Attempt.id == attempt_id).with_for_update()
                    )
                    attempt = result.scalar_one_or_none()

                    if attempt is None:
                        attempt = Attempt(id=attempt_id)
                        session.add(attempt)
                    elif attempt.status != AttemptStatus.ERROR.value or attempt.scored_at is not None:
                        raise AttemptConflictError(f"Attempt {attempt_id} is {attempt.status}")

                    attempt.uid = uid
                    attempt.date = date_key
                    attempt.word = word
                    attempt.threshold = threshold
                    attempt.mode = mode
                    attempt.storage_path = storage_path
                    attempt.image_url = image_url
                    attempt.status = AttemptStatus.PENDING.value
                    attempt.guess = None
                    attempt.confidence = None
                    attempt.is_win = None
                    attempt.scored_at = None
                    attempt.error = None
                    attempt.raw_model_text = None
            except IntegrityError:
                # Another submission for the same day inserted first
                raise AttemptConflictError(f"Attempt {attempt_id} was submitted concurrently") from None

            return attempt

    async def mark_error(self, attempt_id: str, message: str, raw_model_text: str | None = None) -> bool:
        """Move a pending attempt to error. Returns False if it was no longer pending."""
        async with self._sessionmaker() as session:
            async with session.begin():
                result = await session.execute(
                    update(Attempt)
                    .where(
                        Attempt.id == attempt_id,
                        Attempt.status == AttemptStatus.PENDING.value,
                        Attempt.scored_at.is_(None),
                    )
                    .values(
                        status=AttemptStatus.ERROR.value,
                        error=message,
                        raw_model_text=raw_model_text[:RAW_MODEL_TEXT_LIMIT] if raw_model_text else None,
                        updated_at=utcnow(),
                    )
                )
        return result.rowcount == 1

    async def record_score(
        self,
        attempt_id: str,
        *,
        uid: str,
        date_key: str,
        guess: str,
        confidence: float,
        is_win: bool,
    ) -> ProgressState | None:
        """Mark the attempt scored and apply the result to the player, atomically.

        The attempt update is a compare-and-set on (status = pending, scored_at
        IS NULL). When it matches no row the attempt was already handled and
        None is returned without touching the player record.
        """
        for retry in range(2):
            try:
                return await self._record_score_once(
                    attempt_id, uid=uid, date_key=date_key, guess=guess, confidence=confidence, is_win=is_win
                )
            except IntegrityError:
                # Lost the race creating the user row; the row exists now
                if retry:
                    raise
                logger.info(f"User {uid} created concurrently, retrying score for {attempt_id}")
        return None

    async def _record_score_once(
        self,
        attempt_id: str,
        *,
        uid: str,
        date_key: str,
        guess: str,
        confidence: float,
        is_win: bool,
    ) -> ProgressState | None:
        async with self._sessionmaker() as session:
            async with session.begin():
                now = utcnow()
                result = await session.execute(
                    update(Attempt)
                    .where(
                        Attempt.id == attempt_id,
                        Attempt.status == AttemptStatus.PENDING.value,
                        Attempt.scored_at.is_(None),
                    )
                    .values(
                        status=AttemptStatus.SCORED.value,
                        guess=guess,
                        confidence=confidence,
                        is_win=is_win,
                        scored_at=now,
                        updated_at=now,
                    )
                )
                if result.rowcount != 1:
                    return None

                user_result = await session.execute(
                    select(User).where(User.uid == uid).with_for_update()
                )
                user = user_result.scalar_one_or_none()
                if user is None:
                    user = User(uid=uid, points_total=0, streak_current=0, streak_best=0)
                    session.add(user)

                state = apply_result(ProgressState.from_user(user), date_key, is_win)
                state.apply_to(user)
                user.updated_at = now

            return state

    # Users

    async def get_user(self, uid: str) -> User | None:
        async with self._sessionmaker() as session:
            return await session.get(User, uid)

    async def ensure_user(self, uid: str) -> User:
        async with self._sessionmaker() as session:
            user = await session.get(User, uid)
            if user:
                return user
            user = User(uid=uid, points_total=0, streak_current=0, streak_best=0)
            session.add(user)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return await session.get(User, uid)
            logger.info(f"Created progress record for {uid}")
            return user

    # Daily words

    async def get_daily_word(self, date_key: str) -> DailyWord | None:
        async with self._sessionmaker() as session:
            return await session.get(DailyWord, date_key)

    async def insert_daily_word(
        self, *, date_key: str, word: str, difficulty: str, threshold: float, mode: str = "classic"
    ) -> DailyWord:
        """Insert the word for a day; if one already exists it wins and is returned."""
        async with self._sessionmaker() as session:
            existing = await session.get(DailyWord, date_key)
            if existing:
                return existing

            daily = DailyWord(date=date_key, word=word, difficulty=difficulty, threshold=threshold, mode=mode)
            session.add(daily)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(f"Daily word for {date_key} already exists, fetching existing")
                return await session.get(DailyWord, date_key)
            return daily

    async def get_word_bank(self, name: str = "default") -> dict[str, list[str]] | None:
        async with self._sessionmaker() as session:
            bank = await session.get(WordBank, name)
            if not bank:
                return None
            return {"easy": list(bank.easy or []), "medium": list(bank.medium or []), "hard": list(bank.hard or [])}

    async def save_word_bank(self, bank: dict[str, list[str]], name: str = "default") -> None:
        async with self._sessionmaker() as session:
            row = await session.get(WordBank, name)
            if not row:
                row = WordBank(name=name)
                session.add(row)
            row.easy = list(bank.get("easy", []))
            row.medium = list(bank.get("medium", []))
            row.hard = list(bank.get("hard", []))
            await session.commit()
