import boto3
import pytest
from botocore.stub import ANY, Stubber

from facetag.providers.exceptions import NoFaceDetected, ProviderError
from facetag.providers.recognition import RecognitionClient

COLLECTION = "facetag-test"


@pytest.fixture
def rekognition():
    client = boto3.client(
        "rekognition",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    with Stubber(client) as stubber:
        yield client, stubber
        stubber.assert_no_pending_responses()


def _collection_exists(stubber):
    stubber.add_client_error(
        "create_collection",
        service_error_code="ResourceAlreadyExistsException",
        expected_params={"CollectionId": COLLECTION},
    )


@pytest.mark.asyncio
async def test_collection_is_created_once(rekognition):
    client, stubber = rekognition
    stubber.add_response(
        "create_collection", {"StatusCode": 200}, expected_params={"CollectionId": COLLECTION}
    )
    recognition = RecognitionClient(client, COLLECTION)

    await recognition.ensure_collection()
    await recognition.ensure_collection()


@pytest.mark.asyncio
async def test_existing_collection_is_fine_other_errors_are_not(rekognition):
    client, stubber = rekognition
    _collection_exists(stubber)
    await RecognitionClient(client, COLLECTION).ensure_collection()

    stubber.add_client_error("create_collection", service_error_code="AccessDeniedException")
    with pytest.raises(ProviderError):
        await RecognitionClient(client, COLLECTION).ensure_collection()


@pytest.mark.asyncio
async def test_index_returns_face_id(rekognition):
    client, stubber = rekognition
    _collection_exists(stubber)
    stubber.add_response(
        "index_faces",
        {"FaceRecords": [{"Face": {"FaceId": "face-1", "ExternalImageId": "7"}}]},
        expected_params={
            "CollectionId": COLLECTION,
            "Image": {"Bytes": b"portrait"},
            "ExternalImageId": "7",
            "MaxFaces": 1,
            "QualityFilter": "AUTO",
            "DetectionAttributes": ["DEFAULT"],
        },
    )

    assert await RecognitionClient(client, COLLECTION).index("7", b"portrait") == "face-1"


@pytest.mark.asyncio
async def test_index_without_face(rekognition):
    client, stubber = rekognition
    _collection_exists(stubber)
    stubber.add_response("index_faces", {"FaceRecords": []})
    stubber.add_client_error("index_faces", service_error_code="InvalidParameterException")
    stubber.add_client_error("index_faces", service_error_code="ThrottlingException")
    recognition = RecognitionClient(client, COLLECTION)

    with pytest.raises(NoFaceDetected):
        await recognition.index("7", b"landscape")
    with pytest.raises(NoFaceDetected):
        await recognition.index("7", b"landscape")
    with pytest.raises(ProviderError) as excinfo:
        await recognition.index("7", b"portrait")
    assert not isinstance(excinfo.value, NoFaceDetected)


@pytest.mark.asyncio
async def test_search_sorts_best_first(rekognition):
    client, stubber = rekognition
    _collection_exists(stubber)
    stubber.add_response(
        "search_faces_by_image",
        {
            "FaceMatches": [
                {"Similarity": 81.0, "Face": {"FaceId": "face-2", "ExternalImageId": "8"}},
                {"Similarity": 97.5, "Face": {"FaceId": "face-1", "ExternalImageId": "7"}},
                {"Similarity": 90.0, "Face": {}},
            ]
        },
        expected_params={
            "CollectionId": COLLECTION,
            "Image": {"Bytes": b"frame"},
            "MaxFaces": 10,
            "FaceMatchThreshold": 80,
        },
    )

    matches = await RecognitionClient(client, COLLECTION).search(b"frame", 80)

    assert [(m.face_id, m.external_id, m.similarity) for m in matches] == [
        ("face-1", "7", 97.5),
        ("face-2", "8", 81.0),
    ]


@pytest.mark.asyncio
async def test_search_frame_without_face_is_empty(rekognition):
    client, stubber = rekognition
    _collection_exists(stubber)
    stubber.add_client_error(
        "search_faces_by_image", service_error_code="InvalidParameterException"
    )
    stubber.add_client_error("search_faces_by_image", service_error_code="ThrottlingException")
    recognition = RecognitionClient(client, COLLECTION)

    assert await recognition.search(b"wall", 80) == []
    with pytest.raises(ProviderError):
        await recognition.search(b"frame", 80)


@pytest.mark.asyncio
async def test_remove_is_best_effort(rekognition):
    client, stubber = rekognition
    stubber.add_response(
        "delete_faces",
        {"DeletedFaces": ["face-1"]},
        expected_params={"CollectionId": COLLECTION, "FaceIds": ["face-1"]},
    )
    stubber.add_client_error("delete_faces", service_error_code="ResourceNotFoundException")
    recognition = RecognitionClient(client, COLLECTION)

    assert await recognition.remove("face-1") is True
    assert await recognition.remove("face-2") is False


@pytest.mark.asyncio
async def test_detect_faces(rekognition):
    client, stubber = rekognition
    stubber.add_response(
        "detect_faces",
        {
            "FaceDetails": [
                {
                    "BoundingBox": {"Width": 0.2, "Height": 0.3, "Left": 0.1, "Top": 0.15},
                    "Confidence": 99.1,
                }
            ]
        },
        expected_params={"Image": {"Bytes": ANY}, "Attributes": ["DEFAULT"]},
    )

    [face] = await RecognitionClient(client, COLLECTION).detect_faces(b"frame")

    assert face.bounding_box.left == 0.1
    assert face.confidence == 99.1
