"""Fixed genre lookup table used to label catalog records."""

from __future__ import annotations

from dataclasses import dataclass


GENRE_TABLE_VERSION = "tmdb-movie-2024.1"


@dataclass(frozen=True)
class GenreDefinition:
    """Maps an upstream genre identifier to its display name."""

    id: int
    name: str


GENRES: tuple[GenreDefinition, ...] = (
    GenreDefinition(id=28, name="Action"),
    GenreDefinition(id=12, name="Adventure"),
    GenreDefinition(id=16, name="Animation"),
    GenreDefinition(id=35, name="Comedy"),
    GenreDefinition(id=80, name="Crime"),
    GenreDefinition(id=99, name="Documentary"),
    GenreDefinition(id=18, name="Drama"),
    GenreDefinition(id=10751, name="Family"),
    GenreDefinition(id=14, name="Fantasy"),
    GenreDefinition(id=36, name="History"),
    GenreDefinition(id=27, name="Horror"),
    GenreDefinition(id=10402, name="Music"),
    GenreDefinition(id=9648, name="Mystery"),
    GenreDefinition(id=10749, name="Romance"),
    GenreDefinition(id=878, name="Science Fiction"),
    GenreDefinition(id=10770, name="TV Movie"),
    GenreDefinition(id=53, name="Thriller"),
    GenreDefinition(id=10752, name="War"),
    GenreDefinition(id=37, name="Western"),
)

GENRE_NAMES: dict[int, str] = {genre.id: genre.name for genre in GENRES}


def genre_id_for(name: str, table: dict[int, str] | None = None) -> int | None:
    """Return the identifier registered for ``name`` (case-insensitive)."""

    lookup = table if table is not None else GENRE_NAMES
    wanted = (name or "").strip().casefold()
    if not wanted:
        return None
    for genre_id, genre_name in lookup.items():
        if genre_name.casefold() == wanted:
            return genre_id
    return None
