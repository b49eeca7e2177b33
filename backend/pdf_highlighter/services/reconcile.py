"""Tag-set reconciliation for a single highlight.

The delta between the stored and the desired tag set is applied as a batch of
idempotent adds and removes. A failed batch is retried from a fresh diff, so a
partially applied batch converges on the next attempt.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from pdf_highlighter.core.errors import AnnotationStoreError, NotFoundError
from pdf_highlighter.core.logging import get_logger
from pdf_highlighter.models.annotations import Tag, TagRef, tag_name_key

logger = get_logger(__name__)


class TagLinkStore(Protocol):
    async def get_highlight_tags(self, highlight_id: str) -> list[Tag]: ...

    async def add_highlight_tag(self, highlight_id: str, tag_name: str) -> int: ...

    async def remove_highlight_tag(self, highlight_id: str, tag_id: int) -> None: ...


@dataclass(slots=True)
class TagDelta:
    to_add: list[TagRef] = field(default_factory=list)
    to_remove: list[Tag] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove


def normalize_desired(desired: Iterable[TagRef | Tag | str]) -> list[TagRef]:
    """Turn desired tags into references, dropping blanks and duplicates.

    Plain strings are newly typed names. Duplicates are detected by id, or by
    case-insensitive name for entries without an id; the first one wins.
    """

    refs: list[TagRef] = []
    seen_ids: set[int] = set()
    seen_names: set[str] = set()

    for item in desired:
        if isinstance(item, str):
            ref = TagRef(name=item.strip()) if item.strip() else None
        else:
            ref = TagRef(name=item.name.strip(), id=item.id) if item.name.strip() else None
        if ref is None:
            continue

        key = tag_name_key(ref.name)
        if ref.id is not None:
            if ref.id in seen_ids:
                continue
            seen_ids.add(ref.id)
        elif key in seen_names:
            continue
        seen_names.add(key)
        refs.append(ref)

    return refs


def diff_tag_sets(original: Sequence[Tag], desired: Sequence[TagRef]) -> TagDelta:
    """Compute which desired tags are missing and which stored tags are unwanted.

    A desired entry is already present when its id or its name matches a
    stored tag, so an entry carrying a stale id still keeps the stored tag of
    the same name. Entries that match nothing are added by name.
    """

    original_ids = {tag.id for tag in original}
    original_names = {tag_name_key(tag.name) for tag in original}
    desired_ids = {ref.id for ref in desired if ref.id is not None}
    desired_names = {tag_name_key(ref.name) for ref in desired}

    to_add = [
        ref for ref in desired if ref.id not in original_ids and tag_name_key(ref.name) not in original_names
    ]
    to_remove = [
        tag for tag in original if tag.id not in desired_ids and tag_name_key(tag.name) not in desired_names
    ]
    return TagDelta(to_add=to_add, to_remove=to_remove)


async def apply_tag_delta(store: TagLinkStore, highlight_id: str, delta: TagDelta) -> None:
    """Adds first (by name, so new tags get created), then removals."""

    for ref in delta.to_add:
        await store.add_highlight_tag(highlight_id, ref.name)
    for tag in delta.to_remove:
        await store.remove_highlight_tag(highlight_id, tag.id)


async def reconcile_highlight_tags(
    store: TagLinkStore,
    highlight_id: str,
    desired: Iterable[TagRef | Tag | str],
    *,
    max_attempts: int = 3,
) -> list[Tag]:
    """Make the highlight's tag set equal ``desired`` and return the result.

    Each attempt re-reads the stored tags and applies only the delta. Store
    failures are retried up to ``max_attempts`` times; the last one propagates
    and leaves the tag set somewhere between old and new, which a later call
    repairs. A missing highlight is never retried.
    """

    refs = normalize_desired(desired)
    attempts = max(max_attempts, 1)
    attempt = 0

    while True:
        attempt += 1
        original = await store.get_highlight_tags(highlight_id)
        delta = diff_tag_sets(original, refs)
        if delta.is_empty:
            logger.debug("tags.reconcile.noop", highlight_id=highlight_id, attempt=attempt)
            return original

        logger.info(
            "tags.reconcile.apply",
            highlight_id=highlight_id,
            attempt=attempt,
            add=[ref.name for ref in delta.to_add],
            remove=[tag.id for tag in delta.to_remove],
        )
        try:
            await apply_tag_delta(store, highlight_id, delta)
        except NotFoundError:
            raise
        except AnnotationStoreError as exc:
            if attempt >= attempts:
                logger.error("tags.reconcile.exhausted", highlight_id=highlight_id, attempts=attempt, error=str(exc))
                raise
            logger.warning("tags.reconcile.partial", highlight_id=highlight_id, attempt=attempt, error=str(exc))
            continue

        return await store.get_highlight_tags(highlight_id)
