from fastapi.testclient import TestClient

from murverse.api.main import app
from murverse.internal_core.fragment_store import InMemoryFragmentStore
from murverse.internal_core.position_store import InMemoryPositionStore


def _reset_state() -> None:
    app.state.fragment_store = InMemoryFragmentStore(max_tags_count=3)
    app.state.position_store = InMemoryPositionStore()
    app.state.canvases = {}


def _mounted_canvas(client: TestClient) -> tuple[str, str]:
    fragment_id = client.post("/fragments", json={"content": "abc"}).json()["id"]
    canvas_id = client.post("/canvases").json()["canvas_id"]
    client.post(f"/canvases/{canvas_id}/layout", json={})
    return canvas_id, fragment_id


def test_create_fragment_rejects_blank_content() -> None:
    _reset_state()
    client = TestClient(app)
    response = client.post("/fragments", json={"content": "   "})
    assert response.status_code == 400
    assert "Content is required" in response.json()["detail"]


def test_create_fragment_rejects_missing_content() -> None:
    _reset_state()
    client = TestClient(app)
    assert client.post("/fragments", json={"content": ""}).status_code == 422
    assert client.post("/fragments", json={}).status_code == 422


def test_create_fragment_rejects_too_many_tags() -> None:
    _reset_state()
    client = TestClient(app)
    response = client.post("/fragments", json={"content": "x", "tags": ["a", "b", "c", "d"]})
    assert response.status_code == 400
    assert "at most 3 tags" in response.json()["detail"]


def test_add_tag_past_limit_returns_400() -> None:
    _reset_state()
    client = TestClient(app)
    fragment_id = client.post("/fragments", json={"content": "x", "tags": ["a", "b", "c"]}).json()["id"]
    response = client.post(f"/fragments/{fragment_id}/tags", json={"tag": "d"})
    assert response.status_code == 400


def test_patch_with_null_content_returns_400() -> None:
    _reset_state()
    client = TestClient(app)
    fragment_id = client.post("/fragments", json={"content": "x"}).json()["id"]
    response = client.patch(f"/fragments/{fragment_id}", json={"content": None})
    assert response.status_code == 400


def test_unknown_fragment_and_note_return_404() -> None:
    _reset_state()
    client = TestClient(app)
    assert client.get("/fragments/missing").status_code == 404
    assert client.patch("/fragments/missing", json={"content": "x"}).status_code == 404
    assert client.delete("/fragments/missing").status_code == 404
    assert client.post("/fragments/missing/notes", json={"value": "v"}).status_code == 404
    assert client.post("/fragments/missing/tags", json={"tag": "t"}).status_code == 404

    fragment_id = client.post("/fragments", json={"content": "x"}).json()["id"]
    response = client.patch(f"/fragments/{fragment_id}/notes/nope", json={"value": "v"})
    assert response.status_code == 404
    assert "Note not found" in response.json()["detail"]


def test_unknown_canvas_returns_404() -> None:
    _reset_state()
    client = TestClient(app)
    assert client.post("/canvases/missing/layout", json={}).status_code == 404
    assert client.get("/canvases/missing/layout").status_code == 404
    assert client.delete("/canvases/missing").status_code == 404
    response = client.post(
        "/canvases/missing/drag/start",
        json={"fragment_id": "x", "pointer_x": 0, "pointer_y": 0},
    )
    assert response.status_code == 404


def test_drag_start_on_unplaced_fragment_returns_404() -> None:
    _reset_state()
    client = TestClient(app)
    canvas_id, _ = _mounted_canvas(client)
    response = client.post(
        f"/canvases/{canvas_id}/drag/start",
        json={"fragment_id": "not_placed", "pointer_x": 0, "pointer_y": 0},
    )
    assert response.status_code == 404


def test_drag_calls_out_of_order_return_409() -> None:
    _reset_state()
    client = TestClient(app)
    canvas_id, fragment_id = _mounted_canvas(client)

    assert client.post(f"/canvases/{canvas_id}/drag/move", json={"pointer_x": 1, "pointer_y": 1}).status_code == 409
    assert client.post(f"/canvases/{canvas_id}/drag/end", json={}).status_code == 409
    assert client.post(f"/canvases/{canvas_id}/drag/cancel").status_code == 409

    start = {"fragment_id": fragment_id, "pointer_x": 5, "pointer_y": 5}
    assert client.post(f"/canvases/{canvas_id}/drag/start", json=start).status_code == 200
    second = client.post(f"/canvases/{canvas_id}/drag/start", json=start)
    assert second.status_code == 409
    assert "already being dragged" in second.json()["detail"]


def test_layout_during_drag_returns_409() -> None:
    _reset_state()
    client = TestClient(app)
    canvas_id, fragment_id = _mounted_canvas(client)
    client.post(
        f"/canvases/{canvas_id}/drag/start",
        json={"fragment_id": fragment_id, "pointer_x": 5, "pointer_y": 5},
    )
    response = client.post(f"/canvases/{canvas_id}/layout", json={})
    assert response.status_code == 409

    client.post(f"/canvases/{canvas_id}/drag/cancel")
    assert client.post(f"/canvases/{canvas_id}/layout", json={}).status_code == 200


def test_layout_rejects_unknown_direction() -> None:
    _reset_state()
    client = TestClient(app)
    canvas_id, fragment_id = _mounted_canvas(client)
    response = client.post(
        f"/canvases/{canvas_id}/layout",
        json={"directions": {fragment_id: "diagonal"}},
    )
    assert response.status_code == 422
