"""Shared fixtures: in-memory SQLite repositories and a scripted classifier."""
import asyncio

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from daily_doodle.db import init_db
from daily_doodle.raster import RasterImage
from daily_doodle.repository import DoodleRepository


def make_sqlite_engine():
    return create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


def make_repository(engine) -> DoodleRepository:
    return DoodleRepository(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))


class FakeClassifier:
    """Returns scripted text (or a function of the target word), or raises."""

    def __init__(self, reply=None, error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls: list[str] = []

    async def complete(self, instructions: str, target_word: str, image_bytes: bytes) -> str:
        self.calls.append(target_word)
        if self.error:
            raise self.error
        if callable(self.reply):
            return self.reply(target_word)
        return self.reply


@pytest.fixture
def run_db():
    """Run `scenario(repo)` against a fresh database inside one event loop."""

    def runner(scenario):
        async def main():
            engine = make_sqlite_engine()
            try:
                await init_db(engine)
                return await scenario(make_repository(engine))
            finally:
                await engine.dispose()

        return asyncio.run(main())

    return runner


@pytest.fixture
def png_bytes() -> bytes:
    return RasterImage.blank(4, 4).to_png()
