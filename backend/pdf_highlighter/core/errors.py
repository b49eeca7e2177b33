"""Typed failures raised by the annotation store."""

from __future__ import annotations


class AnnotationStoreError(Exception):
    """Base class for every failure surfaced by the annotation store."""


class NotFoundError(AnnotationStoreError):
    """A referenced document, highlight or tag does not exist."""


class HighlightNotPersistedError(NotFoundError):
    """Raised when a tag is attached to a highlight that was never saved."""

    def __init__(self, highlight_id: str) -> None:
        self.highlight_id = highlight_id
        super().__init__(
            f'Cannot add tag to highlight: highlight "{highlight_id}" was not found in the database. '
            "This may happen if the highlight failed to save properly."
        )


class ConstraintViolationError(AnnotationStoreError):
    """A uniqueness or foreign key constraint rejected a write."""


class StoreUnavailableError(AnnotationStoreError):
    """The database could not be opened or stopped responding."""
