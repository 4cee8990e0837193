"""Deterministic daily word selection.

The same date key always yields the same word: difficulty and word are picked
with a 32-bit FNV-1a hash of date-derived seed strings, so no random state is
persisted between runs.
"""
import logging
from dataclasses import dataclass

from daily_doodle.dates import parse_date_key, utc_date_key
from daily_doodle.models import DailyWord
from daily_doodle.repository import DoodleRepository

logger = logging.getLogger(__name__)

DIFFICULTIES = ["easy", "medium", "hard"]
THRESHOLD_BY_DIFFICULTY = {"easy": 0.7, "medium": 0.75, "hard": 0.8}
DEFAULT_MODE = "classic"

FNV_OFFSET_BASIS = 2166136261
FNV_PRIME = 16777619

DEFAULT_WORD_BANK = {
    "easy": [
        "cat", "dog", "sun", "tree", "house", "fish", "apple", "star",
        "moon", "flower", "car", "ball", "cup", "hat", "heart", "cloud",
    ],
    "medium": [
        "bicycle", "guitar", "umbrella", "rocket", "snail", "castle", "octopus", "lighthouse",
        "pizza", "butterfly", "train", "anchor", "penguin", "cactus", "kite", "mushroom",
    ],
    "hard": [
        "giraffe", "helicopter", "saxophone", "dragon", "volcano", "windmill", "skateboard", "microscope",
        "kangaroo", "submarine", "tornado", "telescope", "scorpion", "hedgehog", "accordion", "lobster",
    ],
}


class WordBankError(Exception):
    pass


@dataclass(frozen=True)
class DailyWordChoice:
    date: str
    word: str
    difficulty: str
    threshold: float
    mode: str = DEFAULT_MODE


def fnv1a_32(text: str) -> int:
    h = FNV_OFFSET_BASIS
    for byte in text.encode("utf-8"):
        h ^= byte
        h = (h * FNV_PRIME) & 0xFFFFFFFF
    return h


def pick_from(items: list, seed: str):
    return items[fnv1a_32(seed) % len(items)]


def select_daily_word(date_key: str, bank: dict[str, list[str]]) -> DailyWordChoice:
    parse_date_key(date_key)

    difficulty = pick_from(DIFFICULTIES, f"difficulty:{date_key}")
    words = bank.get(difficulty)
    if not isinstance(words, list) or not words:
        raise WordBankError(f"Word bank tier '{difficulty}' is missing or empty")

    word = pick_from(words, f"word:{date_key}:{difficulty}")
    return DailyWordChoice(
        date=date_key,
        word=word,
        difficulty=difficulty,
        threshold=THRESHOLD_BY_DIFFICULTY.get(difficulty, 0.75),
    )


async def load_word_bank(repository: DoodleRepository) -> dict[str, list[str]]:
    """Return the stored default bank, seeding the built-in one on first use."""
    bank = await repository.get_word_bank()
    if bank is None:
        bank = DEFAULT_WORD_BANK
        await repository.save_word_bank(bank)
        logger.info("Seeded default word bank")
    return bank


async def generate_daily_word(repository: DoodleRepository, date_key: str | None = None) -> DailyWord:
    """Create the word for `date_key` (today, UTC, by default) unless it exists."""
    date_key = date_key or utc_date_key()

    existing = await repository.get_daily_word(date_key)
    if existing:
        logger.info(f"Daily word for {date_key} already generated")
        return existing

    choice = select_daily_word(date_key, await load_word_bank(repository))
    daily = await repository.insert_daily_word(
        date_key=choice.date,
        word=choice.word,
        difficulty=choice.difficulty,
        threshold=choice.threshold,
        mode=choice.mode,
    )
    logger.info(f"Generated daily word for {date_key}: {daily.word} ({daily.difficulty})")
    return daily
