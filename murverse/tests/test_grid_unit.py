import pytest

from murverse.layout.grid import (
    GridSettings,
    build_occupancy_grid,
    find_overlapping_pairs,
    grid_to_pixel,
    is_occupied,
    mark_occupied,
    new_occupancy_grid,
    pixel_to_grid,
    rectangles_overlap,
)
from murverse.layout.models import Fragment, FragmentFootprint, GridFragment, GridPosition


def _placed(fragment_id: str, row: int, col: int, width: int, height: int) -> GridFragment:
    return GridFragment(
        fragment=Fragment(id=fragment_id, content=fragment_id),
        position=GridPosition(row=row, col=col),
        size=FragmentFootprint(width=width, height=height),
        font_size=14,
        direction="horizontal",
    )


def test_grid_to_pixel_scales_by_cell_size() -> None:
    pixel = grid_to_pixel(GridPosition(row=3, col=7), 20)
    assert pixel.top == 60
    assert pixel.left == 140


def test_pixel_to_grid_inverts_grid_to_pixel() -> None:
    for row, col in [(0, 0), (1, 2), (42, 99), (99, 0)]:
        pos = GridPosition(row=row, col=col)
        pixel = grid_to_pixel(pos, 20)
        assert pixel_to_grid(pixel.top, pixel.left, 20) == pos


def test_pixel_to_grid_rounds_half_up() -> None:
    assert pixel_to_grid(10, 30, 20) == GridPosition(row=1, col=2)
    assert pixel_to_grid(9.9, 29.9, 20) == GridPosition(row=0, col=1)
    # Negative halves round toward +inf, not away from zero.
    assert pixel_to_grid(-10, -30, 20) == GridPosition(row=0, col=-1)


def test_pixel_to_grid_does_not_clamp() -> None:
    assert pixel_to_grid(-200, 5000, 20) == GridPosition(row=-10, col=250)


def test_is_occupied_treats_out_of_bounds_as_blocked() -> None:
    grid = new_occupancy_grid(10, 10)
    size = FragmentFootprint(width=3, height=2)
    assert not is_occupied(grid, GridPosition(row=8, col=7), size)
    assert is_occupied(grid, GridPosition(row=9, col=7), size)
    assert is_occupied(grid, GridPosition(row=0, col=8), size)
    assert is_occupied(grid, GridPosition(row=-1, col=0), size)
    assert is_occupied(grid, GridPosition(row=0, col=-1), size)


def test_footprint_larger_than_grid_is_always_blocked() -> None:
    grid = new_occupancy_grid(100, 100)
    assert is_occupied(grid, GridPosition(row=0, col=0), FragmentFootprint(width=101, height=101))
    assert not is_occupied(grid, GridPosition(row=0, col=0), FragmentFootprint(width=100, height=100))


def test_mark_occupied_is_idempotent() -> None:
    grid = new_occupancy_grid(10, 10)
    pos = GridPosition(row=2, col=3)
    size = FragmentFootprint(width=4, height=2)
    mark_occupied(grid, pos, size)
    first = grid.copy()
    mark_occupied(grid, pos, size)
    assert (grid == first).all()
    assert int(grid.sum()) == 8
    assert is_occupied(grid, GridPosition(row=3, col=6), FragmentFootprint(width=1, height=1))
    assert not is_occupied(grid, GridPosition(row=4, col=3), FragmentFootprint(width=1, height=1))


def test_build_occupancy_grid_can_exclude_one_fragment() -> None:
    placements = [_placed("a", 0, 0, 5, 3), _placed("b", 0, 5, 5, 3)]
    grid = build_occupancy_grid(placements, rows=20, cols=20, exclude_id="a")
    assert not is_occupied(grid, GridPosition(row=0, col=0), FragmentFootprint(width=5, height=3))
    assert is_occupied(grid, GridPosition(row=0, col=5), FragmentFootprint(width=1, height=1))


def test_rectangles_overlap_is_half_open() -> None:
    size = FragmentFootprint(width=5, height=3)
    assert not rectangles_overlap(GridPosition(row=0, col=0), size, GridPosition(row=0, col=5), size)
    assert not rectangles_overlap(GridPosition(row=0, col=0), size, GridPosition(row=3, col=0), size)
    assert rectangles_overlap(GridPosition(row=0, col=0), size, GridPosition(row=2, col=4), size)


def test_find_overlapping_pairs_reports_ids() -> None:
    placements = [_placed("a", 0, 0, 5, 3), _placed("b", 0, 5, 5, 3), _placed("c", 1, 1, 2, 2)]
    assert find_overlapping_pairs(placements) == [("a", "c")]


def test_grid_settings_rejects_invalid_values() -> None:
    with pytest.raises(ValueError):
        GridSettings(cell_size=0)
    with pytest.raises(ValueError):
        GridSettings(rows=0)
    with pytest.raises(ValueError):
        GridSettings(gap=0)
