"""Schemas and table definitions."""
