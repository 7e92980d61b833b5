from __future__ import annotations

"""
Coordinate transform and occupancy grid for the fragment canvas.

Design intent:
- Keep cell <-> pixel mapping pure and stateless.
- Treat out-of-bounds and overlap identically: both simply block placement.
- Back the grid with a numpy bool matrix so rectangle tests are slice checks.
"""

import math
from dataclasses import dataclass
from itertools import combinations
from typing import Iterable, Sequence

import numpy as np

from murverse.layout.models import FragmentFootprint, GridFragment, GridPosition, PixelPosition

DEFAULT_CELL_SIZE_PX = 20
DEFAULT_GRID_ROWS = 100
DEFAULT_GRID_COLS = 100
DEFAULT_PLACEMENT_GAP = 3


@dataclass(frozen=True)
class GridSettings:
    cell_size: int = DEFAULT_CELL_SIZE_PX
    rows: int = DEFAULT_GRID_ROWS
    cols: int = DEFAULT_GRID_COLS
    gap: int = DEFAULT_PLACEMENT_GAP

    def __post_init__(self) -> None:
        if self.cell_size < 1:
            raise ValueError("GridSettings.cell_size must be >= 1")
        if self.rows < 1 or self.cols < 1:
            raise ValueError("GridSettings.rows and cols must be >= 1")
        if self.gap < 1:
            raise ValueError("GridSettings.gap must be >= 1")


def _round_half_up(value: float) -> int:
    # Math.round semantics; builtin round() is banker's rounding.
    return int(math.floor(value + 0.5))


def grid_to_pixel(position: GridPosition, cell_size: int = DEFAULT_CELL_SIZE_PX) -> PixelPosition:
    return PixelPosition(top=position.row * cell_size, left=position.col * cell_size)


def pixel_to_grid(top: float, left: float, cell_size: int = DEFAULT_CELL_SIZE_PX) -> GridPosition:
    return GridPosition(
        row=_round_half_up(top / cell_size),
        col=_round_half_up(left / cell_size),
    )


def new_occupancy_grid(rows: int = DEFAULT_GRID_ROWS, cols: int = DEFAULT_GRID_COLS) -> np.ndarray:
    return np.zeros((rows, cols), dtype=bool)


def is_rect_blocked(grid: np.ndarray, row: int, col: int, height: int, width: int) -> bool:
    rows, cols = grid.shape
    if row < 0 or col < 0 or row + height > rows or col + width > cols:
        return True
    return bool(grid[row : row + height, col : col + width].any())


def is_occupied(grid: np.ndarray, position: GridPosition, size: FragmentFootprint) -> bool:
    """True when the rectangle [position, position + size) cannot be taken."""
    return is_rect_blocked(grid, position.row, position.col, size.height, size.width)


def mark_occupied(grid: np.ndarray, position: GridPosition, size: FragmentFootprint) -> None:
    # Callers test with is_occupied first; numpy clips slices at the far edge.
    row = max(0, position.row)
    col = max(0, position.col)
    grid[row : position.row + size.height, col : position.col + size.width] = True


def build_occupancy_grid(
    placements: Iterable[GridFragment],
    *,
    rows: int = DEFAULT_GRID_ROWS,
    cols: int = DEFAULT_GRID_COLS,
    exclude_id: str | None = None,
) -> np.ndarray:
    grid = new_occupancy_grid(rows, cols)
    for item in placements:
        if exclude_id is not None and item.id == exclude_id:
            continue
        mark_occupied(grid, item.position, item.size)
    return grid


def rectangles_overlap(
    a_pos: GridPosition, a_size: FragmentFootprint, b_pos: GridPosition, b_size: FragmentFootprint
) -> bool:
    return (
        a_pos.row < b_pos.row + b_size.height
        and b_pos.row < a_pos.row + a_size.height
        and a_pos.col < b_pos.col + b_size.width
        and b_pos.col < a_pos.col + a_size.width
    )


def find_overlapping_pairs(placements: Sequence[GridFragment]) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for first, second in combinations(placements, 2):
        if rectangles_overlap(first.position, first.size, second.position, second.size):
            pairs.append((first.id, second.id))
    return pairs
