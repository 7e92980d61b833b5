from __future__ import annotations

"""
Assign every fragment a non-overlapping grid position.

Design intent:
- Prefer persisted positions while they are still free.
- Place larger cards first to reduce fragmentation.
- Scan for new slots with a fixed stride ("gap"). The stride is a heuristic:
  it can miss a tighter valid slot, and that is accepted for speed.
- Fail per fragment, never per pass.
"""

import logging
from dataclasses import dataclass, field
from typing import Mapping, Sequence

import numpy as np

from murverse.layout.grid import (
    GridSettings,
    is_rect_blocked,
    is_occupied,
    mark_occupied,
    new_occupancy_grid,
)
from murverse.layout.models import Direction, Fragment, FragmentFootprint, GridFragment, GridPosition
from murverse.layout.sizing import DEFAULT_MAX_CONTENT_LENGTH, DEFAULT_MAX_NOTE_LENGTH, estimate_size

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlacementRequest:
    fragment_id: str
    size: FragmentFootprint


@dataclass(frozen=True)
class PlacementExhausted:
    """No free slot inside the grid bounds for this fragment."""

    fragment_id: str
    size: FragmentFootprint
    code: str = "placement_exhausted"


@dataclass(frozen=True)
class PlacementResult:
    placed: dict[str, GridPosition]
    positions: dict[str, GridPosition]
    exhausted: list[PlacementExhausted]
    kept_persisted: int
    rescanned: int


@dataclass(frozen=True)
class LayoutPass:
    placements: list[GridFragment]
    positions: dict[str, GridPosition]
    exhausted: list[PlacementExhausted]
    debug: dict[str, int] = field(default_factory=dict)


def find_placement_position(
    grid: np.ndarray,
    size: FragmentFootprint,
    *,
    gap: int,
) -> GridPosition | None:
    rows, cols = grid.shape
    step = max(1, int(gap))
    for row in range(0, rows, step):
        if row + size.height > rows:
            break
        for col in range(0, cols, step):
            if col + size.width > cols:
                break
            if not is_rect_blocked(grid, row, col, size.height, size.width):
                return GridPosition(row=row, col=col)
    return None


def place_requests(
    requests: Sequence[PlacementRequest],
    persisted: Mapping[str, GridPosition],
    *,
    settings: GridSettings = GridSettings(),
) -> PlacementResult:
    grid = new_occupancy_grid(settings.rows, settings.cols)
    # sorted() is stable, so equal areas keep input order.
    ordered = sorted(requests, key=lambda item: item.size.area, reverse=True)

    placed: dict[str, GridPosition] = {}
    positions: dict[str, GridPosition] = dict(persisted)
    exhausted: list[PlacementExhausted] = []
    kept = 0
    rescanned = 0

    for request in ordered:
        chosen: GridPosition | None = None
        stored = persisted.get(request.fragment_id)
        if stored is not None and not stored.is_origin and not is_occupied(grid, stored, request.size):
            chosen = stored
            kept += 1
        else:
            if stored is not None:
                logger.debug(
                    "persisted position unusable fragment_id=%s row=%s col=%s",
                    request.fragment_id,
                    stored.row,
                    stored.col,
                )
            chosen = find_placement_position(grid, request.size, gap=settings.gap)
            rescanned += 1

        if chosen is None:
            logger.warning(
                "placement exhausted fragment_id=%s width=%s height=%s grid=%sx%s",
                request.fragment_id,
                request.size.width,
                request.size.height,
                settings.rows,
                settings.cols,
            )
            exhausted.append(PlacementExhausted(fragment_id=request.fragment_id, size=request.size))
            continue

        mark_occupied(grid, chosen, request.size)
        placed[request.fragment_id] = chosen
        positions[request.fragment_id] = chosen

    return PlacementResult(
        placed=placed,
        positions=positions,
        exhausted=exhausted,
        kept_persisted=kept,
        rescanned=rescanned,
    )


def plan_layout(
    fragments: Sequence[Fragment],
    persisted: Mapping[str, GridPosition],
    *,
    relevance_map: Mapping[str, float] | None = None,
    direction_map: Mapping[str, Direction] | None = None,
    settings: GridSettings = GridSettings(),
    vertical_cjk: bool = False,
    max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH,
    max_note_length: int = DEFAULT_MAX_NOTE_LENGTH,
) -> LayoutPass:
    """Run one full placement pass.

    ``direction_map`` must only hold deterministic directions; randomized
    display hints never belong here since the result gets persisted.
    Placements come back in input order; fragments that found no slot are
    listed in ``exhausted`` instead.
    """
    relevance = relevance_map or {}
    directions = direction_map or {}

    sized: dict[str, tuple[Fragment, int, Direction, FragmentFootprint]] = {}
    requests: list[PlacementRequest] = []
    for fragment in fragments:
        if fragment.id in sized:
            logger.warning("duplicate fragment id skipped fragment_id=%s", fragment.id)
            continue
        estimate = estimate_size(
            fragment.content,
            fragment.first_note_value,
            fragment.tags,
            relevance=float(relevance.get(fragment.id, 0.0)),
            direction=fragment.direction or directions.get(fragment.id),
            vertical_cjk=vertical_cjk,
            max_content_length=max_content_length,
            max_note_length=max_note_length,
        )
        sized[fragment.id] = (fragment, estimate.font_size, estimate.direction, estimate.footprint)
        requests.append(PlacementRequest(fragment_id=fragment.id, size=estimate.footprint))

    result = place_requests(requests, persisted, settings=settings)

    placements: list[GridFragment] = []
    for fragment_id, (fragment, font_size, direction, footprint) in sized.items():
        position = result.placed.get(fragment_id)
        if position is None:
            continue
        placements.append(
            GridFragment(
                fragment=fragment,
                position=position,
                size=footprint,
                font_size=font_size,
                direction=direction,
            )
        )

    return LayoutPass(
        placements=placements,
        positions=result.positions,
        exhausted=result.exhausted,
        debug={
            "fragments": len(sized),
            "placed": len(placements),
            "exhausted": len(result.exhausted),
            "kept_persisted": result.kept_persisted,
            "rescanned": result.rescanned,
        },
    )
