from __future__ import annotations

from typing import Iterable, Sequence

from murverse.layout.models import Fragment


def build_relevance_map(fragments: Iterable[Fragment], selected_tags: Sequence[str]) -> dict[str, float]:
    # Share of a fragment's tags that are selected; fragments with no hit are absent (read as 0).
    tag_set = {str(tag) for tag in selected_tags if str(tag)}
    relevance: dict[str, float] = {}
    if not tag_set:
        return relevance
    for fragment in fragments:
        if not fragment.tags:
            continue
        hits = sum(1 for tag in fragment.tags if tag in tag_set)
        if hits > 0:
            relevance[fragment.id] = hits / len(fragment.tags)
    return relevance
