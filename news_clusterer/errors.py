"""Exceptions raised by the clustering engine and its collaborators."""

from __future__ import annotations


class NewsClustererError(Exception):
    """Base class for all news clusterer errors."""


class OracleError(NewsClustererError):
    """An external text-understanding oracle call failed."""

    def __init__(self, message: str, operation: str = ""):
        super().__init__(message)
        self.operation = operation


class OracleUnavailable(OracleError):
    """The oracle could not be reached or refused the request."""


class OracleResponseError(OracleError):
    """The oracle answered with a payload we cannot use."""


class PublishingStoreError(NewsClustererError):
    """Recently published posts could not be listed."""


class InvalidForceMerge(NewsClustererError, ValueError):
    """A force-merge request was rejected before touching any state."""
