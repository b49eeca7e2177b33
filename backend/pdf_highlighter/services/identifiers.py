"""Client-side identifiers for new highlights."""

from __future__ import annotations

import uuid


def new_highlight_id() -> str:
    """Return an opaque identifier, unique for the lifetime of the process and beyond."""

    return uuid.uuid4().hex
