"""Read-only access to the favourites kept by the user profile service."""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import FavoriteMovie

logger = logging.getLogger(__name__)


class ProfileStore(Protocol):
    """Lookup of a user's favourite genres and the movies to leave out."""

    async def favorite_genres(self, user_id: str) -> list[str]:
        ...

    async def excluded_ids(self, user_id: str) -> set[str]:
        ...


class DatabaseProfileStore:
    """``ProfileStore`` reading the ``favorites`` table; it never writes."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def favorite_genres(self, user_id: str) -> list[str]:
        """Return every genre of every favourite, oldest favourite first.

        Repeated genres are kept so callers can rank them by frequency.
        """

        async with self._session_factory() as session:
            result = await session.execute(
                select(FavoriteMovie.genres)
                .where(FavoriteMovie.user_id == user_id)
                .order_by(FavoriteMovie.created_at, FavoriteMovie.id)
            )
            rows = result.scalars().all()

        genres: list[str] = []
        for entry in rows:
            if not isinstance(entry, list):
                continue
            genres.extend(name for name in entry if isinstance(name, str) and name)
        logger.debug("Loaded %s favourite genre tags for %s", len(genres), user_id)
        return genres

    async def excluded_ids(self, user_id: str) -> set[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(FavoriteMovie.movie_id).where(FavoriteMovie.user_id == user_id)
            )
            return {str(movie_id) for movie_id in result.scalars().all()}
