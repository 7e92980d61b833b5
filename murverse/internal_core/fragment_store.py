from __future__ import annotations

from datetime import datetime, timezone
from threading import RLock
from typing import Any, Dict, Iterable, List, Mapping, Optional
from uuid import uuid4

from murverse.layout.models import Direction, Fragment, Note

_UPDATABLE_FRAGMENT_FIELDS = {"content", "direction", "show_content", "show_note", "show_tags"}
_UPDATABLE_NOTE_FIELDS = {"title", "value"}


def _ts_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_tags(tags: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    normalized: List[str] = []
    for tag in tags:
        text = str(tag or "").strip()
        if not text or text in seen:
            continue
        seen.add(text)
        normalized.append(text)
    return normalized


class InMemoryFragmentStore:
    """Fragment source for layout passes. Reads return copies; callers never
    hold references into the store."""

    def __init__(self, max_tags_count: int = 20):
        self._max_tags_count = max(1, int(max_tags_count))
        self._lock = RLock()
        self._fragments: Dict[str, Fragment] = {}

    def _require(self, fragment_id: str) -> Fragment:
        fragment = self._fragments.get(fragment_id)
        if fragment is None:
            raise KeyError(f"Unknown fragment_id: {fragment_id}")
        return fragment

    def _check_tags(self, tags: List[str]) -> None:
        if len(tags) > self._max_tags_count:
            raise ValueError(f"A fragment can carry at most {self._max_tags_count} tags.")

    def _touch(self, fragment_id: str) -> None:
        fragment = self._fragments[fragment_id]
        self._fragments[fragment_id] = fragment.model_copy(update={"updated_at": _ts_iso()})

    def list_fragments(self) -> List[Fragment]:
        with self._lock:
            return [item.model_copy(deep=True) for item in self._fragments.values()]

    def get_fragment(self, fragment_id: str) -> Fragment:
        with self._lock:
            return self._require(fragment_id).model_copy(deep=True)

    def create_fragment(
        self,
        content: str,
        *,
        tags: Optional[Iterable[str]] = None,
        notes: Optional[Iterable[Note]] = None,
        direction: Optional[Direction] = None,
        fragment_id: Optional[str] = None,
    ) -> Fragment:
        if not str(content or "").strip():
            raise ValueError("Content is required.")
        normalized_tags = _normalize_tags(tags or [])
        self._check_tags(normalized_tags)
        now = _ts_iso()
        fragment = Fragment(
            id=fragment_id or uuid4().hex,
            content=content,
            tags=normalized_tags,
            notes=[note.model_copy() for note in (notes or [])],
            direction=direction,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            if fragment.id in self._fragments:
                raise ValueError(f"Fragment already exists: {fragment.id}")
            self._fragments[fragment.id] = fragment
        return fragment.model_copy(deep=True)

    def update_fragment(self, fragment_id: str, changes: Mapping[str, Any]) -> Fragment:
        unknown = set(changes) - _UPDATABLE_FRAGMENT_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")
        if "content" in changes and not str(changes["content"] or "").strip():
            raise ValueError("Content is required.")
        with self._lock:
            current = self._require(fragment_id)
            merged = current.model_dump()
            merged.update(dict(changes))
            merged["updated_at"] = _ts_iso()
            updated = Fragment.model_validate(merged)
            self._fragments[fragment_id] = updated
            return updated.model_copy(deep=True)

    def delete_fragment(self, fragment_id: str) -> bool:
        with self._lock:
            return self._fragments.pop(fragment_id, None) is not None

    def add_note(
        self,
        fragment_id: str,
        *,
        title: str = "",
        value: str = "",
        note_id: Optional[str] = None,
    ) -> Note:
        with self._lock:
            fragment = self._require(fragment_id)
            if note_id and any(note.id == note_id for note in fragment.notes):
                raise ValueError(f"Note already exists: {note_id}")
            now = _ts_iso()
            note = Note(id=note_id or uuid4().hex, title=title, value=value, created_at=now, updated_at=now)
            self._fragments[fragment_id] = fragment.model_copy(update={"notes": [*fragment.notes, note]})
            self._touch(fragment_id)
            return note.model_copy()

    def update_note(self, fragment_id: str, note_id: str, changes: Mapping[str, Any]) -> Note:
        unknown = set(changes) - _UPDATABLE_NOTE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")
        with self._lock:
            fragment = self._require(fragment_id)
            notes = list(fragment.notes)
            for index, note in enumerate(notes):
                if note.id != note_id:
                    continue
                updated = note.model_copy(update={**dict(changes), "updated_at": _ts_iso()})
                notes[index] = updated
                self._fragments[fragment_id] = fragment.model_copy(update={"notes": notes})
                self._touch(fragment_id)
                return updated.model_copy()
        raise KeyError(f"Unknown note_id: {note_id}")

    def remove_note(self, fragment_id: str, note_id: str) -> bool:
        with self._lock:
            fragment = self._require(fragment_id)
            remaining = [note for note in fragment.notes if note.id != note_id]
            if len(remaining) == len(fragment.notes):
                return False
            self._fragments[fragment_id] = fragment.model_copy(update={"notes": remaining})
            self._touch(fragment_id)
            return True

    def add_tag(self, fragment_id: str, tag: str) -> Fragment:
        with self._lock:
            fragment = self._require(fragment_id)
            tags = _normalize_tags([*fragment.tags, tag])
            if not str(tag or "").strip():
                raise ValueError("Tag is required.")
            self._check_tags(tags)
            self._fragments[fragment_id] = fragment.model_copy(update={"tags": tags})
            self._touch(fragment_id)
            return self._fragments[fragment_id].model_copy(deep=True)

    def remove_tag(self, fragment_id: str, tag: str) -> Fragment:
        with self._lock:
            fragment = self._require(fragment_id)
            tags = [item for item in fragment.tags if item != tag]
            self._fragments[fragment_id] = fragment.model_copy(update={"tags": tags})
            self._touch(fragment_id)
            return self._fragments[fragment_id].model_copy(deep=True)
