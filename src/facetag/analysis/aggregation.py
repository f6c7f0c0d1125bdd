"""Turn per-sample search hits into appearance tags."""

from __future__ import annotations

from pydantic import BaseModel

from ..db_service.schemas import FaceTagSchema, RegisteredChild
from ..providers.schemas import FaceMatch


class SampleHits(BaseModel):
    offset: float
    matches: list[FaceMatch]


class ChildResolver:
    """Maps search hits to registered children.

    The external id (the child id given at indexing time) wins; the provider
    face id is the fallback for faces indexed without one.
    """

    def __init__(self, registered: list[RegisteredChild]):
        self.by_id = {str(child.id): child for child in registered}
        self.by_face = {
            face_id: child for child in registered for face_id in child.face_ids
        }

    def resolve(self, match: FaceMatch) -> RegisteredChild | None:
        if match.external_id and match.external_id in self.by_id:
            return self.by_id[match.external_id]
        return self.by_face.get(match.face_id)

    def __len__(self) -> int:
        return len(self.by_id)


def aggregate(
    video_id: int,
    hits: list[SampleHits],
    resolver: ChildResolver,
    stride: float,
) -> list[FaceTagSchema]:
    """One confirmed tag per (offset, child), ``[offset, offset + stride]``.

    Several hits of the same child in one sample keep the highest similarity.
    Adjacent samples are not merged.
    """
    best: dict[tuple[float, int], tuple[RegisteredChild, float]] = {}
    for sample in hits:
        for match in sample.matches:
            child = resolver.resolve(match)
            if child is None:
                continue
            key = (sample.offset, child.id)
            current = best.get(key)
            if current is None or match.similarity > current[1]:
                best[key] = (child, match.similarity)

    tags = [
        FaceTagSchema(
            video_id=video_id,
            child_id=child.id,
            label=child.name,
            start_time=offset,
            end_time=offset + stride,
            confidence=min(similarity, 100.0),
            is_tentative=False,
        )
        for (offset, _), (child, similarity) in best.items()
    ]
    tags.sort(key=lambda t: (t.start_time, t.child_id or 0))
    return tags
