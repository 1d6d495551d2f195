"""Exception types raised while talking to the movie catalog."""

from __future__ import annotations


class CatalogError(Exception):
    """Base class for catalog aggregation failures."""


class CatalogUnavailable(CatalogError):
    """The upstream catalog cannot serve the request."""


class TransientFetchError(CatalogUnavailable):
    """A single upstream call failed; callers may skip it and carry on."""


class MovieNotFound(CatalogError):
    """The upstream catalog has no movie with the requested identifier."""


class MalformedRecord(CatalogError):
    """A raw upstream record could not be normalised."""


class SessionTimeout(CatalogError):
    """The soft time budget of an aggregation run was exhausted."""
