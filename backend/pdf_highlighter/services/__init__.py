"""Service exports."""

from . import cache, controller, identifiers, reconcile, repository, suggestions

__all__ = ["cache", "controller", "identifiers", "reconcile", "repository", "suggestions"]
