import json
from dataclasses import replace

import pytest

from murverse.internal_core.config import load_config
from murverse.internal_core.position_store import (
    InMemoryPositionStore,
    JsonFilePositionStore,
    build_position_store,
)
from murverse.layout.models import GridPosition


def test_in_memory_store_set_get_delete() -> None:
    store = InMemoryPositionStore()
    assert store.set("a", GridPosition(row=3, col=4)) is True
    assert store.get(["a", "missing"]) == {"a": GridPosition(row=3, col=4)}
    assert store.delete("a") is True
    assert store.delete("a") is False
    assert store.all() == {}


def test_origin_write_clears_entry() -> None:
    store = InMemoryPositionStore()
    store.set("a", GridPosition(row=3, col=4))
    assert store.set("a", GridPosition(row=0, col=0)) is True
    assert store.get(["a"]) == {}


def test_json_store_persists_across_instances(tmp_path) -> None:
    path = tmp_path / "positions.json"
    store = JsonFilePositionStore(path)
    assert store.set("a", GridPosition(row=10, col=20)) is True
    assert store.set("b", GridPosition(row=1, col=2)) is True

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["version"] == 1
    assert payload["positions"]["a"] == {"row": 10, "col": 20}

    reopened = JsonFilePositionStore(path)
    assert reopened.get(["a", "b"]) == {
        "a": GridPosition(row=10, col=20),
        "b": GridPosition(row=1, col=2),
    }
    assert reopened.delete("b") is True
    assert JsonFilePositionStore(path).all() == {"a": GridPosition(row=10, col=20)}


def test_json_store_skips_origin_and_bad_entries(tmp_path) -> None:
    path = tmp_path / "positions.json"
    path.write_text(
        json.dumps(
            {
                "version": 1,
                "positions": {
                    "origin": {"row": 0, "col": 0},
                    "broken": {"row": "x"},
                    "ok": {"row": 5, "col": 6},
                },
            }
        ),
        encoding="utf-8",
    )
    store = JsonFilePositionStore(path)
    assert store.all() == {"ok": GridPosition(row=5, col=6)}


def test_json_store_tolerates_corrupt_file(tmp_path) -> None:
    path = tmp_path / "positions.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFilePositionStore(path)
    assert store.all() == {}
    assert store.set("a", GridPosition(row=2, col=2)) is True
    assert JsonFilePositionStore(path).all() == {"a": GridPosition(row=2, col=2)}


def test_json_store_write_failure_returns_false(tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    store = JsonFilePositionStore(blocker / "positions.json")
    assert store.set("a", GridPosition(row=2, col=2)) is False
    assert store.all() == {}


def test_json_store_cache_matches_disk_after_failed_writes(tmp_path, monkeypatch) -> None:
    path = tmp_path / "positions.json"
    store = JsonFilePositionStore(path)
    assert store.set("a", GridPosition(row=2, col=2)) is True
    on_disk = path.read_text(encoding="utf-8")

    def failing_replace(src, dst):
        raise OSError("disk full for test")

    monkeypatch.setattr("murverse.internal_core.position_store.os.replace", failing_replace)

    assert store.set("a", GridPosition(row=9, col=9)) is False
    assert store.set("b", GridPosition(row=4, col=4)) is False
    assert store.all() == {"a": GridPosition(row=2, col=2)}

    assert store.delete("a") is False
    assert store.all() == {"a": GridPosition(row=2, col=2)}
    assert path.read_text(encoding="utf-8") == on_disk


def test_build_position_store_selects_backend(tmp_path) -> None:
    config = load_config()
    assert build_position_store(replace(config, MURVERSE_POSITION_STORE="memory")).name() == "memory"

    json_config = replace(
        config,
        MURVERSE_POSITION_STORE="json",
        MURVERSE_POSITION_STORE_PATH=str(tmp_path / "p.json"),
    )
    store = build_position_store(json_config)
    assert store.name() == "json"
    assert isinstance(store, JsonFilePositionStore)
    assert store.path == tmp_path / "p.json"

    with pytest.raises(ValueError):
        build_position_store(replace(config, MURVERSE_POSITION_STORE="redis"))


def test_load_config_reads_env_and_preset(monkeypatch) -> None:
    monkeypatch.setenv("MURVERSE_LAYOUT_PRESET", "dense_canvas_v1")
    monkeypatch.setenv("MURVERSE_GRID_COLS", "150")
    monkeypatch.setenv("MURVERSE_VERTICAL_CJK", "yes")
    config = load_config()
    assert config.MURVERSE_GRID_ROWS == 200
    assert config.MURVERSE_GRID_COLS == 150
    assert config.MURVERSE_PLACEMENT_GAP == 1
    assert config.MURVERSE_VERTICAL_CJK is True
    assert config.MURVERSE_CELL_SIZE_PX == 20
