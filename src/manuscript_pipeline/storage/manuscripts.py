# src/manuscript_pipeline/storage/manuscripts.py — v1
"""Manuscript intake and lookup on top of the object store.

The text is stored at ``manuscripts/{userId}/{manuscriptId}`` and its
metadata in a ``.meta.json`` sidecar. Both are write-once.
"""

from __future__ import annotations

import logging
import uuid

from manuscript_pipeline.core.errors import (
    ManuscriptMissing,
    ManuscriptUnreadable,
    ObjectNotFound,
)
from manuscript_pipeline.core.models import Manuscript, utc_now
from manuscript_pipeline.llm.token_budget import count_words
from manuscript_pipeline.storage import layout
from manuscript_pipeline.storage.base_object_store import BaseObjectStore

logger = logging.getLogger(__name__)


async def put_manuscript(
    store: BaseObjectStore,
    user_id: str,
    text: str,
    title: str = "",
    genre: str = "general",
    manuscript_id: str | None = None,
) -> Manuscript:
    """Store an uploaded manuscript and its metadata.

    Args:
        store: Target object store.
        user_id: Owning user.
        text: Raw or extracted plain text.
        title: Book title.
        genre: Genre used for prompt context.
        manuscript_id: Explicit id (generated when omitted).

    Returns:
        The stored Manuscript metadata.
    """
    manuscript_id = manuscript_id or uuid.uuid4().hex
    raw_key = layout.manuscript_key(user_id, manuscript_id)
    manuscript = Manuscript(
        manuscript_id=manuscript_id,
        owner_id=user_id,
        raw_key=raw_key,
        word_count=count_words(text),
        uploaded_at=utc_now(),
        title=title,
        genre=genre,
    )
    await store.put(raw_key, text)
    await store.put(
        layout.manuscript_meta_key(user_id, manuscript_id), manuscript.to_json_bytes()
    )
    logger.info(
        "Stored manuscript %s for user %s (%d words)",
        manuscript_id, user_id, manuscript.word_count,
    )
    return manuscript


async def manuscript_exists(store: BaseObjectStore, user_id: str, manuscript_id: str) -> bool:
    return await store.exists(layout.manuscript_key(user_id, manuscript_id))


async def load_manuscript(
    store: BaseObjectStore, user_id: str, manuscript_id: str
) -> tuple[Manuscript, str]:
    """Load manuscript metadata and text.

    A manuscript stored without a metadata sidecar gets metadata derived
    from its text.

    Raises:
        ManuscriptMissing: If the text is not in the store.
        ManuscriptUnreadable: If the stored bytes are not valid UTF-8.
    """
    raw_key = layout.manuscript_key(user_id, manuscript_id)
    try:
        raw = await store.get(raw_key)
    except ObjectNotFound as exc:
        raise ManuscriptMissing(f"Manuscript {manuscript_id} not found") from exc
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ManuscriptUnreadable(
            f"Manuscript {manuscript_id} is not UTF-8 text (byte {exc.start})"
        ) from exc

    meta = await store.get_optional(layout.manuscript_meta_key(user_id, manuscript_id))
    if meta is not None:
        manuscript = Manuscript.model_validate_json(meta)
    else:
        manuscript = Manuscript(
            manuscript_id=manuscript_id,
            owner_id=user_id,
            raw_key=raw_key,
            word_count=count_words(text),
            uploaded_at=utc_now(),
        )
    return manuscript, text


async def delete_manuscript(store: BaseObjectStore, user_id: str, manuscript_id: str) -> int:
    """Delete a manuscript's text and metadata (owner action)."""
    removed = 0
    for key in (
        layout.manuscript_key(user_id, manuscript_id),
        layout.manuscript_meta_key(user_id, manuscript_id),
    ):
        removed += int(await store.remove(key))
    return removed
