"""Pydantic models describing movie payloads."""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class MovieRecord(BaseModel):
    """Normalised view of a single catalog movie."""

    model_config = ConfigDict(populate_by_name=True)

    id: int | str
    title: str
    description: str | None = Field(
        default=None,
        validation_alias=AliasChoices("description", "overview"),
    )
    genres: list[str] = Field(default_factory=list)
    release_year: int | None = Field(default=None, serialization_alias="releaseYear")
    popularity: float = 0.0
    vote_average: float = Field(default=0.0, serialization_alias="voteAverage")
    vote_count: int = Field(default=0, serialization_alias="voteCount")
    poster_url: str = Field(serialization_alias="posterUrl")
    backdrop_url: str = Field(serialization_alias="backdropUrl")

    runtime_minutes: int | None = Field(default=None, serialization_alias="runtimeMinutes")
    tagline: str | None = None
    director: str | None = None
    cast: list[str] = Field(default_factory=list)
    watch_providers: list[str] = Field(
        default_factory=list, serialization_alias="watchProviders"
    )

    def to_payload(self) -> dict[str, object]:
        """Return the camelCase JSON payload sent to clients."""

        return self.model_dump(mode="json", by_alias=True)


class StreamError(BaseModel):
    """Describes why a streaming session stopped early."""

    code: str
    message: str


class StreamMessage(BaseModel):
    """One frame of a progressive catalog stream."""

    batch: list[MovieRecord] = Field(default_factory=list)
    running_total: int = 0
    source_label: str
    page_number: int | None = None
    is_complete: bool = False
    total_available: int | None = None
    timed_out: bool = False
    error: StreamError | None = None

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "batch": [record.to_payload() for record in self.batch],
            "runningTotal": self.running_total,
            "sourceLabel": self.source_label,
            "pageNumber": self.page_number,
            "isComplete": self.is_complete,
        }
        if self.total_available is not None:
            payload["totalAvailable"] = self.total_available
        if self.timed_out:
            payload["timedOut"] = True
        if self.error is not None:
            payload["error"] = self.error.model_dump()
        return payload
