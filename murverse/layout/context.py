from __future__ import annotations

"""
Per-canvas layout state, created at mount and closed at unmount.

Design intent:
- Replace module-level fragment/position stores with one explicit object.
- Keep the in-memory position map authoritative for the session; the
  position store is written best-effort and retried on the next pass.
- Serialise relayout and drag resolution per canvas so a test-then-mark
  sequence is never interleaved.
"""

import logging
from threading import RLock
from typing import TYPE_CHECKING, Iterable, Mapping, Sequence

import numpy as np

from murverse.layout.grid import GridSettings, build_occupancy_grid, find_overlapping_pairs
from murverse.layout.models import Direction, Fragment, GridFragment, GridPosition
from murverse.layout.planner import LayoutPass, plan_layout
from murverse.layout.sizing import DEFAULT_MAX_CONTENT_LENGTH, DEFAULT_MAX_NOTE_LENGTH

if TYPE_CHECKING:
    from murverse.internal_core.position_store import PositionStore
    from murverse.layout.drag import DragController

logger = logging.getLogger(__name__)


class CanvasContext:
    def __init__(
        self,
        canvas_id: str,
        position_store: "PositionStore",
        *,
        settings: GridSettings = GridSettings(),
        drag_threshold_px: float = 5.0,
        vertical_cjk: bool = False,
        max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH,
        max_note_length: int = DEFAULT_MAX_NOTE_LENGTH,
    ) -> None:
        self.canvas_id = canvas_id
        self.settings = settings
        self.drag_threshold_px = max(0.0, float(drag_threshold_px))
        self._store = position_store
        self._vertical_cjk = vertical_cjk
        self._max_content_length = max_content_length
        self._max_note_length = max_note_length
        self._lock = RLock()
        self._positions: dict[str, GridPosition] = {}
        self._loaded_ids: set[str] = set()
        self._pending_writes: dict[str, GridPosition] = {}
        self._placements: dict[str, GridFragment] = {}
        self._last_pass: LayoutPass | None = None
        self._drag: "DragController | None" = None
        self._closed = False

    @property
    def lock(self) -> RLock:
        return self._lock

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def drag(self) -> "DragController":
        if self._drag is None:
            from murverse.layout.drag import DragController

            self._drag = DragController(self)
        return self._drag

    @property
    def placements(self) -> list[GridFragment]:
        with self._lock:
            return list(self._placements.values())

    @property
    def positions(self) -> dict[str, GridPosition]:
        with self._lock:
            return dict(self._positions)

    @property
    def pending_writes(self) -> dict[str, GridPosition]:
        with self._lock:
            return dict(self._pending_writes)

    @property
    def last_pass(self) -> LayoutPass | None:
        return self._last_pass

    def placement(self, fragment_id: str) -> GridFragment:
        with self._lock:
            item = self._placements.get(fragment_id)
            if item is None:
                raise KeyError(f"Fragment is not placed on canvas {self.canvas_id}: {fragment_id}")
            return item

    def build_grid(self, exclude_id: str | None = None) -> np.ndarray:
        with self._lock:
            return build_occupancy_grid(
                self._placements.values(),
                rows=self.settings.rows,
                cols=self.settings.cols,
                exclude_id=exclude_id,
            )

    def install_placements(self, placements: Iterable[GridFragment]) -> None:
        with self._lock:
            self._placements = {item.id: item for item in placements}
            for item in self._placements.values():
                self._positions[item.id] = item.position
                self._loaded_ids.add(item.id)

    def _load_persisted(self, fragment_ids: Sequence[str]) -> set[str]:
        """Read stored positions for ids not seen yet. Returns the ids whose
        read failed; those stay unloaded and must not be written this pass."""
        missing = [fragment_id for fragment_id in fragment_ids if fragment_id not in self._loaded_ids]
        if not missing:
            return set()
        try:
            stored = self._store.get(missing)
        except Exception as exc:
            logger.warning("position read failed canvas_id=%s count=%s error=%s", self.canvas_id, len(missing), exc)
            return set(missing)
        for fragment_id in missing:
            # A stored position beats an in-pass one placed while the store was unreadable.
            position = stored.get(fragment_id)
            if position is not None:
                self._positions[fragment_id] = position
            self._loaded_ids.add(fragment_id)
        return set()

    def _persist(self, fragment_id: str, position: GridPosition) -> bool:
        try:
            ok = bool(self._store.set(fragment_id, position))
        except Exception as exc:
            logger.warning(
                "position write raised canvas_id=%s fragment_id=%s error=%s",
                self.canvas_id,
                fragment_id,
                exc,
            )
            ok = False
        if ok:
            self._pending_writes.pop(fragment_id, None)
        else:
            self._pending_writes[fragment_id] = position
            logger.warning(
                "position kept in memory only canvas_id=%s fragment_id=%s row=%s col=%s",
                self.canvas_id,
                fragment_id,
                position.row,
                position.col,
            )
        return ok

    def _retry_pending_writes(self) -> None:
        for fragment_id, position in list(self._pending_writes.items()):
            if self._positions.get(fragment_id) != position:
                self._pending_writes.pop(fragment_id, None)
                continue
            self._persist(fragment_id, position)

    def relayout(
        self,
        fragments: Sequence[Fragment],
        *,
        relevance_map: Mapping[str, float] | None = None,
        direction_map: Mapping[str, Direction] | None = None,
    ) -> LayoutPass:
        with self._lock:
            self._retry_pending_writes()
            unread = self._load_persisted([fragment.id for fragment in fragments])
            before = dict(self._positions)

            layout_pass = plan_layout(
                fragments,
                self._positions,
                relevance_map=relevance_map,
                direction_map=direction_map,
                settings=self.settings,
                vertical_cjk=self._vertical_cjk,
                max_content_length=self._max_content_length,
                max_note_length=self._max_note_length,
            )
            self._positions = dict(layout_pass.positions)
            self.install_placements(layout_pass.placements)
            self._loaded_ids.difference_update(unread)

            for item in layout_pass.placements:
                if item.id in unread:
                    continue
                if before.get(item.id) != item.position:
                    self._persist(item.id, item.position)

            overlaps = find_overlapping_pairs(layout_pass.placements)
            if overlaps:
                logger.error("layout produced overlaps canvas_id=%s pairs=%s", self.canvas_id, overlaps[:3])
            self._last_pass = layout_pass
            logger.info(
                "layout pass canvas_id=%s fragments=%s placed=%s exhausted=%s",
                self.canvas_id,
                layout_pass.debug.get("fragments", 0),
                layout_pass.debug.get("placed", 0),
                layout_pass.debug.get("exhausted", 0),
            )
            return layout_pass

    def commit_position(self, fragment_id: str, position: GridPosition) -> bool:
        """Move a placed fragment and persist the move. Returns the write result;
        the in-memory move stands either way."""
        with self._lock:
            current = self.placement(fragment_id)
            self._placements[fragment_id] = current.moved_to(position)
            self._positions[fragment_id] = position
            self._loaded_ids.add(fragment_id)
            return self._persist(fragment_id, position)

    def restore_position(self, fragment_id: str, position: GridPosition) -> None:
        with self._lock:
            current = self._placements.get(fragment_id)
            if current is not None and current.position != position:
                self._placements[fragment_id] = current.moved_to(position)
            self._positions[fragment_id] = position

    def forget_fragment(self, fragment_id: str) -> None:
        with self._lock:
            if self._drag is not None and self._drag.active_fragment_id == fragment_id:
                self._drag.cancel()
            self._placements.pop(fragment_id, None)
            self._positions.pop(fragment_id, None)
            self._pending_writes.pop(fragment_id, None)
            self._loaded_ids.discard(fragment_id)

    def close(self) -> None:
        with self._lock:
            if self._drag is not None and self._drag.active_fragment_id is not None:
                self._drag.cancel()
            self._placements = {}
            self._positions = {}
            self._pending_writes = {}
            self._loaded_ids = set()
            self._last_pass = None
            self._closed = True
