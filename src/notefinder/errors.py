"""Exception hierarchy shared across NoteFinder."""

from __future__ import annotations


class NoteFinderError(Exception):
    """Base class for all NoteFinder errors."""


class ProviderError(NoteFinderError):
    """An external provider (embedding or keyword backend) failed or misbehaved."""


class ValidationError(NoteFinderError):
    """A vector or persisted snapshot failed validation and was discarded."""


class CancellationError(NoteFinderError):
    """The running search was cancelled by its caller."""


class ConfigurationError(NoteFinderError):
    """A user-supplied filter or pattern could not be interpreted."""
