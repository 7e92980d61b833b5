from __future__ import annotations

"""
HTTP API surface for the Murverse fragment canvas.

Design intent:
- Keep API orchestration thin and typed.
- Delegate placement and drag logic to the layout package.
- Keep one explicit canvas context per mounted canvas, no hidden singletons
  inside the engine.
"""

import logging
import random
import threading
from typing import Any, Literal
from uuid import uuid4

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from murverse.internal_core.config import AppConfig, load_config
from murverse.internal_core.fragment_store import InMemoryFragmentStore
from murverse.internal_core.logging_config import setup_logging
from murverse.internal_core.position_store import PositionStore, build_position_store
from murverse.layout.context import CanvasContext
from murverse.layout.drag import DragFrame, DragOutcome, DragStateError
from murverse.layout.grid import GridSettings, find_overlapping_pairs, grid_to_pixel
from murverse.layout.models import Direction, Fragment, GridFragment, GridPosition, Note, PixelPosition
from murverse.layout.planner import LayoutPass
from murverse.layout.relevance import build_relevance_map
from murverse.layout.sizing import decide_display_direction


class NoteInput(BaseModel):
    id: str | None = Field(default=None, min_length=1, max_length=128)
    title: str = Field(default="", max_length=256)
    value: str = Field(default="", max_length=8000)


class NoteUpdateRequest(BaseModel):
    title: str | None = Field(default=None, max_length=256)
    value: str | None = Field(default=None, max_length=8000)


class FragmentCreateRequest(BaseModel):
    content: str = Field(min_length=1, max_length=8000)
    tags: list[str] = Field(default_factory=list)
    notes: list[NoteInput] = Field(default_factory=list)
    direction: Direction | None = None


class FragmentUpdateRequest(BaseModel):
    content: str | None = Field(default=None, min_length=1, max_length=8000)
    direction: Direction | None = None
    show_content: bool | None = None
    show_note: bool | None = None
    show_tags: bool | None = None


class TagRequest(BaseModel):
    tag: str = Field(min_length=1, max_length=128)


class FragmentListResponse(BaseModel):
    fragments: list[Fragment] = Field(default_factory=list)


class PositionsResponse(BaseModel):
    positions: dict[str, GridPosition] = Field(default_factory=dict)
    debug: dict[str, Any] = Field(default_factory=dict)


class CanvasResponse(BaseModel):
    canvas_id: str
    cell_size: int
    rows: int
    cols: int
    gap: int


class LayoutRequest(BaseModel):
    selected_tags: list[str] = Field(default_factory=list)
    relevance: dict[str, float] | None = None
    directions: dict[str, Direction] = Field(default_factory=dict)


class PlacementItem(BaseModel):
    fragment_id: str
    position: GridPosition
    pixel_position: PixelPosition
    pixel_width: int
    pixel_height: int
    width: int
    height: int
    font_size: int
    direction: Direction
    display_direction: Direction
    fragment: Fragment


class ExhaustedItem(BaseModel):
    fragment_id: str
    width: int
    height: int
    code: str


class LayoutResponse(BaseModel):
    canvas_id: str
    placements: list[PlacementItem] = Field(default_factory=list)
    exhausted: list[ExhaustedItem] = Field(default_factory=list)
    positions: dict[str, GridPosition] = Field(default_factory=dict)
    debug: dict[str, Any] = Field(default_factory=dict)


class DragStartRequest(BaseModel):
    fragment_id: str = Field(min_length=1, max_length=128)
    pointer_x: float
    pointer_y: float


class DragMoveRequest(BaseModel):
    pointer_x: float
    pointer_y: float


class DragEndRequest(BaseModel):
    pointer_x: float | None = None
    pointer_y: float | None = None


class DragFrameResponse(BaseModel):
    canvas_id: str
    fragment_id: str
    pixel_position: PixelPosition
    pixel_width: int
    pixel_height: int
    candidate: GridPosition
    validity: Literal["valid", "invalid-but-has-fallback", "completely-invalid"]


class DragOutcomeResponse(BaseModel):
    canvas_id: str
    fragment_id: str
    reason: Literal["committed", "invalid_drag_target", "click", "cancelled"]
    committed: bool
    position: GridPosition
    origin: GridPosition
    candidate: GridPosition | None = None
    persisted: bool = False
    debug: dict[str, Any] = Field(default_factory=dict)


app = FastAPI(title="murverse fragment canvas service")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_config() -> AppConfig:
    existing = getattr(app.state, "config", None)
    if isinstance(existing, AppConfig):
        return existing
    created = load_config()
    setattr(app.state, "config", created)
    return created


def _get_fragment_store() -> InMemoryFragmentStore:
    existing = getattr(app.state, "fragment_store", None)
    if isinstance(existing, InMemoryFragmentStore):
        return existing
    created = InMemoryFragmentStore(max_tags_count=_get_config().MURVERSE_MAX_TAGS_COUNT)
    setattr(app.state, "fragment_store", created)
    return created


def _get_position_store() -> PositionStore:
    existing = getattr(app.state, "position_store", None)
    if isinstance(existing, PositionStore):
        return existing
    created = build_position_store(_get_config())
    setattr(app.state, "position_store", created)
    return created


def _get_canvas_store() -> dict[str, CanvasContext]:
    existing = getattr(app.state, "canvases", None)
    if isinstance(existing, dict):
        return existing
    created: dict[str, CanvasContext] = {}
    setattr(app.state, "canvases", created)
    return created


_CANVAS_LOCK = threading.Lock()


def _get_canvas_lock() -> threading.Lock:
    return _CANVAS_LOCK


def _get_display_rng() -> random.Random:
    existing = getattr(app.state, "display_rng", None)
    if isinstance(existing, random.Random):
        return existing
    created = random.Random()
    setattr(app.state, "display_rng", created)
    return created


def _grid_settings(config: AppConfig) -> GridSettings:
    return GridSettings(
        cell_size=config.MURVERSE_CELL_SIZE_PX,
        rows=config.MURVERSE_GRID_ROWS,
        cols=config.MURVERSE_GRID_COLS,
        gap=config.MURVERSE_PLACEMENT_GAP,
    )


def _require_canvas(canvas_id: str) -> CanvasContext:
    normalized = str(canvas_id or "").strip()
    if not normalized:
        raise HTTPException(status_code=400, detail="canvas_id is required.")
    with _get_canvas_lock():
        context = _get_canvas_store().get(normalized)
    if context is None:
        raise HTTPException(status_code=404, detail=f"Canvas not found: {normalized}")
    return context


def _require_fragment(fragment_id: str) -> Fragment:
    try:
        return _get_fragment_store().get_fragment(fragment_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Fragment not found: {fragment_id}") from exc


def _placement_item(placement: GridFragment, cell: int, config: AppConfig) -> PlacementItem:
    fragment = placement.fragment
    return PlacementItem(
        fragment_id=placement.id,
        position=placement.position,
        pixel_position=grid_to_pixel(placement.position, cell),
        pixel_width=placement.size.width * cell,
        pixel_height=placement.size.height * cell,
        width=placement.size.width,
        height=placement.size.height,
        font_size=placement.font_size,
        direction=placement.direction,
        # Display hint only; the stored layout always uses placement.direction.
        display_direction=fragment.direction
        or (placement.direction if placement.direction == "vertical" else None)
        or decide_display_direction(
            fragment.content,
            fragment.first_note_value,
            rng=_get_display_rng(),
            vertical_probability=config.MURVERSE_DISPLAY_VERTICAL_PROBABILITY,
        ),
        fragment=fragment,
    )


def _layout_response(context: CanvasContext, layout_pass: LayoutPass | None) -> LayoutResponse:
    config = _get_config()
    placements = context.placements
    exhausted = list(layout_pass.exhausted) if layout_pass is not None else []
    return LayoutResponse(
        canvas_id=context.canvas_id,
        placements=[_placement_item(item, context.settings.cell_size, config) for item in placements],
        exhausted=[
            ExhaustedItem(
                fragment_id=item.fragment_id,
                width=item.size.width,
                height=item.size.height,
                code=item.code,
            )
            for item in exhausted
        ],
        positions=context.positions,
        debug={
            **(dict(layout_pass.debug) if layout_pass is not None else {}),
            "overlaps": len(find_overlapping_pairs(placements)),
            "pending_writes": len(context.pending_writes),
        },
    )


def _frame_response(context: CanvasContext, frame: DragFrame) -> DragFrameResponse:
    return DragFrameResponse(
        canvas_id=context.canvas_id,
        fragment_id=frame.fragment_id,
        pixel_position=frame.pixel_position,
        pixel_width=frame.pixel_width,
        pixel_height=frame.pixel_height,
        candidate=frame.candidate,
        validity=frame.validity,
    )


def _outcome_response(context: CanvasContext, outcome: DragOutcome) -> DragOutcomeResponse:
    return DragOutcomeResponse(
        canvas_id=context.canvas_id,
        fragment_id=outcome.fragment_id,
        reason=outcome.reason,
        committed=outcome.committed,
        position=outcome.position,
        origin=outcome.origin,
        candidate=outcome.candidate,
        persisted=outcome.persisted,
        debug={"overlaps": len(find_overlapping_pairs(context.placements))},
    )


setup_logging(_get_config().MURVERSE_LOG_LEVEL, _get_config().MURVERSE_LOG_FILE or None)


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/fragments", response_model=FragmentListResponse)
async def list_fragments() -> FragmentListResponse:
    return FragmentListResponse(fragments=_get_fragment_store().list_fragments())


@app.post("/fragments", response_model=Fragment, status_code=201)
async def create_fragment(payload: FragmentCreateRequest) -> Fragment:
    notes = [
        Note(id=item.id or uuid4().hex, title=item.title, value=item.value)
        for item in payload.notes
    ]
    try:
        return _get_fragment_store().create_fragment(
            payload.content,
            tags=payload.tags,
            notes=notes,
            direction=payload.direction,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/fragments/{fragment_id}", response_model=Fragment)
async def get_fragment(fragment_id: str) -> Fragment:
    return _require_fragment(fragment_id)


@app.patch("/fragments/{fragment_id}", response_model=Fragment)
async def update_fragment(fragment_id: str, payload: FragmentUpdateRequest) -> Fragment:
    _require_fragment(fragment_id)
    changes = payload.model_dump(exclude_unset=True)
    try:
        return _get_fragment_store().update_fragment(fragment_id, changes)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/fragments/{fragment_id}")
async def delete_fragment(fragment_id: str) -> dict[str, Any]:
    if not _get_fragment_store().delete_fragment(fragment_id):
        raise HTTPException(status_code=404, detail=f"Fragment not found: {fragment_id}")

    position_pruned = False
    try:
        position_pruned = _get_position_store().delete(fragment_id)
    except Exception as exc:
        logger.warning("position prune failed fragment_id=%s error=%s", fragment_id, exc)

    with _get_canvas_lock():
        canvases = list(_get_canvas_store().values())
    for context in canvases:
        context.forget_fragment(fragment_id)
    return {"deleted": True, "fragment_id": fragment_id, "position_pruned": position_pruned}


@app.post("/fragments/{fragment_id}/notes", response_model=Note, status_code=201)
async def add_note(fragment_id: str, payload: NoteInput) -> Note:
    _require_fragment(fragment_id)
    try:
        return _get_fragment_store().add_note(
            fragment_id,
            title=payload.title,
            value=payload.value,
            note_id=payload.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.patch("/fragments/{fragment_id}/notes/{note_id}", response_model=Note)
async def update_note(fragment_id: str, note_id: str, payload: NoteUpdateRequest) -> Note:
    _require_fragment(fragment_id)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    try:
        return _get_fragment_store().update_note(fragment_id, note_id, changes)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Note not found: {note_id}") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/fragments/{fragment_id}/notes/{note_id}")
async def remove_note(fragment_id: str, note_id: str) -> dict[str, Any]:
    _require_fragment(fragment_id)
    if not _get_fragment_store().remove_note(fragment_id, note_id):
        raise HTTPException(status_code=404, detail=f"Note not found: {note_id}")
    return {"deleted": True, "fragment_id": fragment_id, "note_id": note_id}


@app.post("/fragments/{fragment_id}/tags", response_model=Fragment)
async def add_tag(fragment_id: str, payload: TagRequest) -> Fragment:
    _require_fragment(fragment_id)
    try:
        return _get_fragment_store().add_tag(fragment_id, payload.tag)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/fragments/{fragment_id}/tags/{tag}", response_model=Fragment)
async def remove_tag(fragment_id: str, tag: str) -> Fragment:
    _require_fragment(fragment_id)
    return _get_fragment_store().remove_tag(fragment_id, tag)


@app.get("/positions", response_model=PositionsResponse)
async def list_positions() -> PositionsResponse:
    store = _get_position_store()
    positions = store.all()
    return PositionsResponse(
        positions=positions,
        debug={"backend": store.name(), "count": len(positions)},
    )


@app.post("/canvases", response_model=CanvasResponse, status_code=201)
async def mount_canvas() -> CanvasResponse:
    config = _get_config()
    settings = _grid_settings(config)
    context = CanvasContext(
        uuid4().hex,
        _get_position_store(),
        settings=settings,
        drag_threshold_px=config.MURVERSE_DRAG_THRESHOLD_PX,
        vertical_cjk=config.MURVERSE_VERTICAL_CJK,
        max_content_length=config.MURVERSE_MAX_CONTENT_LENGTH,
        max_note_length=config.MURVERSE_MAX_NOTE_LENGTH,
    )
    with _get_canvas_lock():
        _get_canvas_store()[context.canvas_id] = context
    logger.info("canvas mounted canvas_id=%s", context.canvas_id)
    return CanvasResponse(
        canvas_id=context.canvas_id,
        cell_size=settings.cell_size,
        rows=settings.rows,
        cols=settings.cols,
        gap=settings.gap,
    )


@app.delete("/canvases/{canvas_id}")
async def unmount_canvas(canvas_id: str) -> dict[str, Any]:
    context = _require_canvas(canvas_id)
    with _get_canvas_lock():
        _get_canvas_store().pop(context.canvas_id, None)
    context.close()
    logger.info("canvas unmounted canvas_id=%s", context.canvas_id)
    return {"unmounted": True, "canvas_id": context.canvas_id}


@app.post("/canvases/{canvas_id}/layout", response_model=LayoutResponse)
async def run_layout(canvas_id: str, payload: LayoutRequest) -> LayoutResponse:
    context = _require_canvas(canvas_id)
    fragments = _get_fragment_store().list_fragments()
    if payload.relevance is not None:
        relevance = dict(payload.relevance)
    else:
        relevance = build_relevance_map(fragments, payload.selected_tags)
    if context.drag.active_fragment_id is not None:
        raise HTTPException(status_code=409, detail="Cannot relayout while a drag is active.")
    layout_pass = context.relayout(
        fragments,
        relevance_map=relevance,
        direction_map=payload.directions,
    )
    return _layout_response(context, layout_pass)


@app.get("/canvases/{canvas_id}/layout", response_model=LayoutResponse)
async def get_layout(canvas_id: str) -> LayoutResponse:
    context = _require_canvas(canvas_id)
    return _layout_response(context, context.last_pass)


@app.post("/canvases/{canvas_id}/drag/start", response_model=DragFrameResponse)
async def drag_start(canvas_id: str, payload: DragStartRequest) -> DragFrameResponse:
    context = _require_canvas(canvas_id)
    try:
        frame = context.drag.press(payload.fragment_id, payload.pointer_x, payload.pointer_y)
    except DragStateError as exc:
        raise HTTPException(status_code=409, detail=exc.message) from exc
    except KeyError as exc:
        raise HTTPException(
            status_code=404,
            detail=f"Fragment is not placed on this canvas: {payload.fragment_id}",
        ) from exc
    return _frame_response(context, frame)


@app.post("/canvases/{canvas_id}/drag/move", response_model=DragFrameResponse)
async def drag_move(canvas_id: str, payload: DragMoveRequest) -> DragFrameResponse:
    context = _require_canvas(canvas_id)
    try:
        frame = context.drag.move(payload.pointer_x, payload.pointer_y)
    except DragStateError as exc:
        raise HTTPException(status_code=409, detail=exc.message) from exc
    return _frame_response(context, frame)


@app.post("/canvases/{canvas_id}/drag/end", response_model=DragOutcomeResponse)
async def drag_end(canvas_id: str, payload: DragEndRequest) -> DragOutcomeResponse:
    context = _require_canvas(canvas_id)
    try:
        outcome = context.drag.release(payload.pointer_x, payload.pointer_y)
    except DragStateError as exc:
        raise HTTPException(status_code=409, detail=exc.message) from exc
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _outcome_response(context, outcome)


@app.post("/canvases/{canvas_id}/drag/cancel", response_model=DragOutcomeResponse)
async def drag_cancel(canvas_id: str) -> DragOutcomeResponse:
    context = _require_canvas(canvas_id)
    try:
        outcome = context.drag.cancel()
    except DragStateError as exc:
        raise HTTPException(status_code=409, detail=exc.message) from exc
    return _outcome_response(context, outcome)
