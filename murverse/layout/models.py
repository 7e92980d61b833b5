from __future__ import annotations

"""
Typed layout data contracts shared by the engine and the API.

Design intent:
- Keep cell coordinates and footprints validated at construction.
- Keep fragment payloads explicit so sizing inputs are traceable.
"""

from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

Direction = Literal["horizontal", "vertical"]
FragmentType = Literal["fragment", "tag", "meta", "system", "group", "template", "collection"]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class GridPosition(BaseModel):
    model_config = ConfigDict(frozen=True)

    row: int
    col: int

    @property
    def is_origin(self) -> bool:
        return self.row == 0 and self.col == 0


class FragmentFootprint(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = Field(ge=1)
    height: int = Field(ge=1)

    @property
    def area(self) -> int:
        return self.width * self.height


class PixelPosition(BaseModel):
    model_config = ConfigDict(frozen=True)

    top: float
    left: float


class Note(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex, min_length=1)
    title: str = ""
    value: str = ""
    created_at: str = Field(default_factory=_utc_now_iso)
    updated_at: str = Field(default_factory=_utc_now_iso)


class Fragment(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex, min_length=1)
    content: str
    type: FragmentType = "fragment"
    tags: list[str] = Field(default_factory=list)
    notes: list[Note] = Field(default_factory=list)
    direction: Direction | None = None
    show_content: bool = True
    show_note: bool = True
    show_tags: bool = True
    created_at: str = Field(default_factory=_utc_now_iso)
    updated_at: str = Field(default_factory=_utc_now_iso)

    @property
    def first_note_value(self) -> str:
        if not self.notes:
            return ""
        return self.notes[0].value or ""


class GridFragment(BaseModel):
    """A fragment as placed by one layout pass."""

    fragment: Fragment
    position: GridPosition
    size: FragmentFootprint
    font_size: int
    direction: Direction

    @property
    def id(self) -> str:
        return self.fragment.id

    def moved_to(self, position: GridPosition) -> "GridFragment":
        return self.model_copy(update={"position": position})
