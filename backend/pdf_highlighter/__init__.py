"""Highlight and tag persistence for the PDF highlighter."""

__version__ = "0.1.0"
