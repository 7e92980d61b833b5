from murverse.internal_core.position_store import InMemoryPositionStore
from murverse.layout.context import CanvasContext
from murverse.layout.drag import DragState
from murverse.layout.grid import GridSettings, find_overlapping_pairs
from murverse.layout.models import Fragment, GridPosition


class _ExplodingPositionStore(InMemoryPositionStore):
    def get(self, fragment_ids):
        raise RuntimeError("backend unavailable for test")

    def set(self, fragment_id, position):
        raise RuntimeError("backend unavailable for test")


def _fragments(count: int) -> list[Fragment]:
    return [Fragment(id=f"f{index}", content="abc") for index in range(count)]


def test_relayout_reuses_stored_positions() -> None:
    store = InMemoryPositionStore()
    store.set("f0", GridPosition(row=10, col=10))
    context = CanvasContext("c1", store, settings=GridSettings())

    layout_pass = context.relayout(_fragments(2))
    positions = {item.id: item.position for item in layout_pass.placements}
    assert positions["f0"] == GridPosition(row=10, col=10)
    assert positions["f1"] == GridPosition(row=0, col=0)
    assert layout_pass.debug["kept_persisted"] == 1
    # Origin means unset, so nothing is written for f1.
    assert store.all() == {"f0": GridPosition(row=10, col=10)}


def test_relayout_is_stable_across_passes() -> None:
    store = InMemoryPositionStore()
    context = CanvasContext("c1", store, settings=GridSettings(gap=1))
    first = context.relayout(_fragments(6))
    second = context.relayout(_fragments(6))
    assert [(item.id, item.position) for item in first.placements] == [
        (item.id, item.position) for item in second.placements
    ]
    assert find_overlapping_pairs(second.placements) == []


def test_new_context_picks_up_positions_from_shared_store() -> None:
    store = InMemoryPositionStore()
    first = CanvasContext("c1", store, settings=GridSettings(gap=1))
    first.relayout(_fragments(3))
    first.drag.press("f2", 0, 0)
    first.drag.release(0, 800)

    second = CanvasContext("c2", store, settings=GridSettings(gap=1))
    layout_pass = second.relayout(_fragments(3))
    positions = {item.id: item.position for item in layout_pass.placements}
    assert positions["f2"] == first.placement("f2").position


def test_relevance_changes_font_size() -> None:
    context = CanvasContext("c1", InMemoryPositionStore())
    layout_pass = context.relayout(_fragments(2), relevance_map={"f1": 1.0})
    by_id = {item.id: item for item in layout_pass.placements}
    assert by_id["f0"].font_size == 14
    assert by_id["f1"].font_size == 20


def test_store_failures_do_not_break_layout() -> None:
    context = CanvasContext("c1", _ExplodingPositionStore(), settings=GridSettings(gap=1))
    layout_pass = context.relayout(_fragments(3))
    assert layout_pass.debug["placed"] == 3
    # Nothing could be read, so nothing is written over what may be stored.
    assert context.pending_writes == {}


def test_forget_fragment_cancels_its_drag() -> None:
    context = CanvasContext("c1", InMemoryPositionStore(), settings=GridSettings(gap=1))
    context.relayout(_fragments(2))
    context.drag.press("f0", 0, 0)
    context.forget_fragment("f0")
    assert context.drag.state == DragState.IDLE
    assert "f0" not in context.positions
    assert [item.id for item in context.placements] == ["f1"]


def test_close_clears_state() -> None:
    context = CanvasContext("c1", InMemoryPositionStore())
    context.relayout(_fragments(2))
    context.drag.press("f0", 0, 0)
    context.close()
    assert context.closed is True
    assert context.placements == []
    assert context.positions == {}
    assert context.last_pass is None
    assert context.drag.state == DragState.IDLE


class _FlakyReadPositionStore(InMemoryPositionStore):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    def get(self, fragment_ids):
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("transient read failure for test")
        return super().get(fragment_ids)


def test_failed_read_does_not_overwrite_stored_positions() -> None:
    store = _FlakyReadPositionStore(failures=1)
    store.set("f0", GridPosition(row=30, col=30))
    context = CanvasContext("c1", store, settings=GridSettings())

    first = context.relayout(_fragments(2))
    assert {item.id: item.position for item in first.placements}["f0"] == GridPosition(row=0, col=0)
    assert store.all() == {"f0": GridPosition(row=30, col=30)}
    assert context.pending_writes == {}

    second = context.relayout(_fragments(2))
    positions = {item.id: item.position for item in second.placements}
    assert positions["f0"] == GridPosition(row=30, col=30)
    assert store.all() == {"f0": GridPosition(row=30, col=30)}
    assert find_overlapping_pairs(second.placements) == []

    context.relayout(_fragments(2))
    assert store.get(["f0"]) == {"f0": GridPosition(row=30, col=30)}
