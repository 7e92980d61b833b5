from __future__ import annotations

"""
Interactive relocation of one fragment as an explicit state machine.

Design intent:
- Idle -> Dragging on press, Dragging -> Resolving -> Idle on release.
- Pixel space is authoritative while dragging; grid checks happen at release.
- Commit is binary: the drop cell is free in the grid without the dragged
  card, or the card goes back to its pre-drag position exactly.
- Validity classes are display hints for the presentation layer only.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Literal

import numpy as np

from murverse.layout.grid import grid_to_pixel, is_occupied, pixel_to_grid
from murverse.layout.models import FragmentFootprint, GridPosition, PixelPosition

if TYPE_CHECKING:
    from murverse.layout.context import CanvasContext

logger = logging.getLogger(__name__)

ValidityClass = Literal["valid", "invalid-but-has-fallback", "completely-invalid"]
DragOutcomeReason = Literal["committed", "invalid_drag_target", "click", "cancelled"]


class DragState(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    RESOLVING = "resolving"


class DragStateError(RuntimeError):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(frozen=True)
class DragFrame:
    fragment_id: str
    pixel_position: PixelPosition
    pixel_width: int
    pixel_height: int
    candidate: GridPosition
    validity: ValidityClass


@dataclass(frozen=True)
class DragOutcome:
    fragment_id: str
    reason: DragOutcomeReason
    committed: bool
    position: GridPosition
    origin: GridPosition
    candidate: GridPosition | None
    persisted: bool = False


@dataclass
class _DragSession:
    fragment_id: str
    size: FragmentFootprint
    origin: GridPosition
    offset_x: float
    offset_y: float
    press_x: float
    press_y: float
    pixel: PixelPosition
    hint_grid: np.ndarray
    moved: bool = False


class DragController:
    """One drag at a time per canvas. A press while a drag is active is a
    caller bug and raises DragStateError."""

    def __init__(self, context: "CanvasContext") -> None:
        self._context = context
        self._state = DragState.IDLE
        self._session: _DragSession | None = None

    @property
    def state(self) -> DragState:
        return self._state

    @property
    def active_fragment_id(self) -> str | None:
        return self._session.fragment_id if self._session is not None else None

    def _require_dragging(self, action: str) -> _DragSession:
        if self._state != DragState.DRAGGING or self._session is None:
            raise DragStateError("not_dragging", f"Cannot {action}: no active drag.")
        return self._session

    def _classify(self, session: _DragSession, candidate: GridPosition) -> ValidityClass:
        if not is_occupied(session.hint_grid, candidate, session.size):
            return "valid"
        if not is_occupied(session.hint_grid, session.origin, session.size):
            return "invalid-but-has-fallback"
        return "completely-invalid"

    def _frame(self, session: _DragSession) -> DragFrame:
        cell = self._context.settings.cell_size
        candidate = pixel_to_grid(session.pixel.top, session.pixel.left, cell)
        return DragFrame(
            fragment_id=session.fragment_id,
            pixel_position=session.pixel,
            pixel_width=session.size.width * cell,
            pixel_height=session.size.height * cell,
            candidate=candidate,
            validity=self._classify(session, candidate),
        )

    def press(self, fragment_id: str, pointer_x: float, pointer_y: float) -> DragFrame:
        if self._state != DragState.IDLE:
            raise DragStateError(
                "drag_in_progress",
                f"Fragment {self.active_fragment_id} is already being dragged.",
            )
        placement = self._context.placement(fragment_id)
        origin_px = grid_to_pixel(placement.position, self._context.settings.cell_size)
        session = _DragSession(
            fragment_id=fragment_id,
            size=placement.size,
            origin=placement.position,
            offset_x=float(pointer_x) - origin_px.left,
            offset_y=float(pointer_y) - origin_px.top,
            press_x=float(pointer_x),
            press_y=float(pointer_y),
            pixel=origin_px,
            # Read-only snapshot for hover hints; release rebuilds its own grid.
            hint_grid=self._context.build_grid(exclude_id=fragment_id),
        )
        self._session = session
        self._state = DragState.DRAGGING
        logger.debug("drag start canvas_id=%s fragment_id=%s", self._context.canvas_id, fragment_id)
        return self._frame(session)

    def move(self, pointer_x: float, pointer_y: float) -> DragFrame:
        session = self._require_dragging("move")
        if not session.moved:
            distance = math.hypot(float(pointer_x) - session.press_x, float(pointer_y) - session.press_y)
            if distance > self._context.drag_threshold_px:
                session.moved = True
        session.pixel = PixelPosition(
            top=float(pointer_y) - session.offset_y,
            left=float(pointer_x) - session.offset_x,
        )
        return self._frame(session)

    def release(self, pointer_x: float | None = None, pointer_y: float | None = None) -> DragOutcome:
        session = self._require_dragging("release")
        if pointer_x is not None and pointer_y is not None:
            self.move(pointer_x, pointer_y)

        self._state = DragState.RESOLVING
        try:
            with self._context.lock:
                return self._resolve(session)
        except Exception:
            # Never leave a half-applied move behind.
            self._context.restore_position(session.fragment_id, session.origin)
            raise
        finally:
            self._session = None
            self._state = DragState.IDLE

    def _resolve(self, session: _DragSession) -> DragOutcome:
        if not session.moved:
            return DragOutcome(
                fragment_id=session.fragment_id,
                reason="click",
                committed=False,
                position=session.origin,
                origin=session.origin,
                candidate=None,
            )

        candidate = pixel_to_grid(session.pixel.top, session.pixel.left, self._context.settings.cell_size)
        grid = self._context.build_grid(exclude_id=session.fragment_id)
        if is_occupied(grid, candidate, session.size):
            self._context.restore_position(session.fragment_id, session.origin)
            logger.info(
                "drag rejected canvas_id=%s fragment_id=%s row=%s col=%s",
                self._context.canvas_id,
                session.fragment_id,
                candidate.row,
                candidate.col,
            )
            return DragOutcome(
                fragment_id=session.fragment_id,
                reason="invalid_drag_target",
                committed=False,
                position=session.origin,
                origin=session.origin,
                candidate=candidate,
            )

        persisted = self._context.commit_position(session.fragment_id, candidate)
        logger.info(
            "drag committed canvas_id=%s fragment_id=%s row=%s col=%s persisted=%s",
            self._context.canvas_id,
            session.fragment_id,
            candidate.row,
            candidate.col,
            persisted,
        )
        return DragOutcome(
            fragment_id=session.fragment_id,
            reason="committed",
            committed=True,
            position=candidate,
            origin=session.origin,
            candidate=candidate,
            persisted=persisted,
        )

    def cancel(self) -> DragOutcome:
        session = self._require_dragging("cancel")
        try:
            self._context.restore_position(session.fragment_id, session.origin)
        finally:
            self._session = None
            self._state = DragState.IDLE
        return DragOutcome(
            fragment_id=session.fragment_id,
            reason="cancelled",
            committed=False,
            position=session.origin,
            origin=session.origin,
            candidate=None,
        )
