"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Request

from pdf_highlighter.core.config import AppSettings
from pdf_highlighter.services.repository import AnnotationRepository
from pdf_highlighter.services.suggestions import SuggestionRanker


def get_app_settings(request: Request) -> AppSettings:
    """Expose the settings the application was built with."""

    return request.app.state.settings


def get_repository(request: Request) -> AnnotationRepository:
    """Provide the repository bound to the application's engine."""

    return request.app.state.repository


def get_ranker(request: Request) -> SuggestionRanker:
    """Provide the suggestion ranker bound to the application's engine."""

    return request.app.state.ranker
