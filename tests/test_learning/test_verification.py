import pytest
from fakes import NO_FACE

from facetag.learning.exceptions import (
    Forbidden,
    IndexingFailed,
    InvalidAction,
    NoThumbnail,
    NotFound,
)
from facetag.learning.verification import VerificationService
from facetag.providers.exceptions import ProviderError


@pytest.fixture
def service(db_service, recognition, storage):
    return VerificationService(db_service, recognition, storage)


@pytest.fixture
def candidate(seed, storage):
    """A guardian, their registered child and one tentative tag with a stored crop."""
    hana = seed.child("Hana")
    seed.face(hana, "face-hana", created_at=1)
    guardian = seed.guardian(child_ids=[hana])
    video_id = seed.video(title="Sports day")
    storage.objects["candidates/crop-1.jpg"] = b"crop-bytes"
    tag_id = seed.tag(
        video_id,
        hana,
        14,
        label="Hana?",
        confidence=42,
        is_tentative=True,
        thumbnail_key="candidates/crop-1.jpg",
    )
    return guardian, hana, video_id, tag_id


@pytest.mark.asyncio
async def test_confirm_learns_exactly_one_face(db_service, recognition, service, candidate):
    guardian, hana, _, tag_id = candidate
    before = len(db_service.child_face.list_for_child(hana))

    result = await service.resolve(guardian, tag_id, "confirm")

    assert result.success is True
    assert result.message == "Learned and Confirmed"
    faces = db_service.child_face.list_for_child(hana)
    assert len(faces) == before + 1
    assert faces[-1].face_id == result.face_id
    assert faces[-1].image_key == "candidates/crop-1.jpg"
    assert recognition.indexed[result.face_id] == str(hana)
    tag = db_service.tag.get(tag_id)
    assert tag.is_tentative is False
    assert tag.confidence == 100
    assert db_service.child.get(hana).face_id == result.face_id


@pytest.mark.asyncio
async def test_confirm_twice_is_a_no_op(db_service, recognition, service, candidate):
    guardian, hana, _, tag_id = candidate
    await service.resolve(guardian, tag_id, "confirm")

    again = await service.resolve(guardian, tag_id, "confirm")

    assert again.message == "Already confirmed"
    assert len(recognition.indexed) == 1
    assert len(db_service.child_face.list_for_child(hana)) == 2


@pytest.mark.asyncio
async def test_reject_deletes_only_that_tag(db_service, seed, recognition, service, candidate):
    guardian, hana, video_id, tag_id = candidate
    other = seed.tag(video_id, hana, 20, label="Hana")

    result = await service.resolve(guardian, tag_id, "reject")

    assert result.message == "Rejected"
    assert db_service.tag.get(tag_id) is None
    assert db_service.tag.get(other) is not None
    assert len(db_service.child_face.list_for_child(hana)) == 1
    assert recognition.indexed == {}


@pytest.mark.asyncio
async def test_authorization_is_checked_before_action(seed, service, candidate):
    _, _, _, tag_id = candidate
    stranger = seed.guardian("Stranger")

    with pytest.raises(Forbidden):
        await service.resolve(stranger, tag_id, "reject")
    with pytest.raises(Forbidden):
        await service.resolve(stranger, tag_id, "bogus")


@pytest.mark.asyncio
async def test_unknown_tag_and_invalid_action(service, candidate):
    guardian, _, _, tag_id = candidate

    with pytest.raises(NotFound):
        await service.resolve(guardian, tag_id + 100, "confirm")
    with pytest.raises(InvalidAction):
        await service.resolve(guardian, tag_id, "maybe")


@pytest.mark.asyncio
async def test_missing_thumbnail(db_service, storage, service, candidate):
    guardian, _, _, tag_id = candidate
    storage.objects.clear()

    with pytest.raises(NoThumbnail):
        await service.resolve(guardian, tag_id, "confirm")

    assert db_service.tag.get(tag_id).is_tentative is True


@pytest.mark.asyncio
async def test_indexing_failures_leave_tag_tentative(
    db_service, recognition, storage, service, candidate
):
    guardian, hana, _, tag_id = candidate

    storage.objects["candidates/crop-1.jpg"] = NO_FACE
    with pytest.raises(IndexingFailed):
        await service.resolve(guardian, tag_id, "confirm")

    storage.objects["candidates/crop-1.jpg"] = b"crop-bytes"
    recognition.fail_index = ProviderError("ServiceUnavailable")
    with pytest.raises(IndexingFailed):
        await service.resolve(guardian, tag_id, "confirm")

    assert db_service.tag.get(tag_id).is_tentative is True
    assert len(db_service.child_face.list_for_child(hana)) == 1


@pytest.mark.asyncio
async def test_failed_commit_removes_indexed_face(
    db_service, recognition, service, candidate, monkeypatch
):
    guardian, _, _, tag_id = candidate

    def broken_confirm(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(db_service.tag, "confirm", broken_confirm)

    with pytest.raises(RuntimeError):
        await service.resolve(guardian, tag_id, "confirm")

    assert recognition.indexed == {}
    assert len(recognition.removed) == 1


@pytest.mark.asyncio
async def test_legacy_thumbnail_is_copied_to_object_storage(
    db_service, seed, storage, service
):
    hana = seed.child("Hana")
    guardian = seed.guardian(child_ids=[hana])
    video_id = seed.video()
    storage.objects["/uploads/candidates/old.jpg"] = b"legacy-crop"
    tag_id = seed.tag(
        video_id,
        hana,
        0,
        is_tentative=True,
        thumbnail_key="/uploads/candidates/old.jpg",
    )

    await service.resolve(guardian, tag_id, "confirm")

    [face] = db_service.child_face.list_for_child(hana)
    assert face.image_key.startswith("faces/")
    assert storage.objects[face.image_key] == b"legacy-crop"


@pytest.mark.asyncio
async def test_list_candidates(seed, service, candidate):
    guardian, hana, video_id, tag_id = candidate
    outsider = seed.child("Sora")
    seed.tag(video_id, outsider, 3, is_tentative=True, thumbnail_key="candidates/x.jpg")

    candidates = await service.list_candidates(guardian)

    assert [c.id for c in candidates] == [tag_id]
    view = candidates[0]
    assert view.child_name == "Hana"
    assert view.video_title == "Sports day"
    assert view.thumbnail_url == "https://s3.test/candidates/crop-1.jpg"
    assert view.confidence == 42
