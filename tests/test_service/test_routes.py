import time
from contextlib import asynccontextmanager

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from fakes import NO_FACE, frame, match
from fastapi.testclient import TestClient
from jose import jwt

from facetag.analysis.face_search import OnDemandFaceSearch
from facetag.analysis.orchestrator import AnalysisOrchestrator
from facetag.analysis.rendition import RenditionPoller
from facetag.analysis.runner import AnalysisRunner
from facetag.analysis.sampler import FrameSampler
from facetag.common import auth
from facetag.learning.registration import FaceRegistrationService
from facetag.learning.verification import VerificationService
from facetag.service import ServiceConfig, app


class IdleSweep:
    def __init__(self):
        self.runs = 0

    async def run_all(self):
        self.runs += 1


@asynccontextmanager
async def _prewired(_app):
    yield


@pytest.fixture
def config():
    return ServiceConfig(no_auth=True)


@pytest.fixture
def client(config, db_service, recognition, delivery, storage, monkeypatch):
    sampler = FrameSampler(delivery, window=4, stride=2)
    orchestrator = AnalysisOrchestrator(
        db_service, recognition, RenditionPoller(delivery, max_attempts=2, interval=0), sampler
    )
    app.state.config = config
    app.state.db = db_service
    app.state.broadcaster = None
    app.state.runner = AnalysisRunner(db_service, orchestrator, sweep=IdleSweep())
    app.state.verification = VerificationService(db_service, recognition, storage)
    app.state.registration = FaceRegistrationService(db_service, recognition, storage)
    app.state.face_search = OnDemandFaceSearch(
        db_service, recognition, sampler, storage, threshold=70
    )
    monkeypatch.setattr(app.router, "lifespan_context", _prewired)

    with TestClient(app) as test_client:
        yield test_client


def _token(user_id="1", is_admin=False, permissions=None, key="unused", algorithm="HS256", exp=None):
    claims = {
        "id": user_id,
        "is_admin": is_admin,
        "permissions": permissions if permissions is not None else ["guardian"],
        "exp": exp if exp is not None else int(time.time()) + 3600,
    }
    return jwt.encode(claims, key, algorithm=algorithm)


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _guardian_headers(guardian_id: int) -> dict[str, str]:
    return _bearer(_token(str(guardian_id)))


# ─────────────────────────────────────
# Analysis
# ─────────────────────────────────────


def test_start_analysis_queues_and_status_reflects_the_run(client, seed):
    video_id = seed.video()

    response = client.post(f"/admin/videos/{video_id}/analyze")

    assert response.status_code == 202
    body = response.json()
    assert body["queued"] is True
    assert body["status"] == "queued"
    assert "skipped" not in body

    client.portal.call(app.state.runner.wait_idle)

    status = client.get(f"/videos/{video_id}/analysis")
    assert status.status_code == 200
    assert status.json()["status"] == "complete_no_registered_faces"
    assert status.json()["run_id"] == body["run_id"]


def test_start_analysis_for_disabled_school(client, seed):
    school_id = seed.school(enable_ai_analysis=False)
    video_id = seed.video(class_id=seed.school_class(school_id))

    response = client.post(f"/admin/videos/{video_id}/analyze")

    assert response.status_code == 202
    body = response.json()
    assert body["skipped"] is True
    assert body["reason"] == "AI analysis is disabled in school settings"
    assert body["status"] == "skipped_admin_disabled"


def test_start_analysis_errors(client, seed):
    missing = client.post("/admin/videos/9999/analyze")
    assert missing.status_code == 404
    assert missing.json()["error"] == "NotFound"

    video_id = seed.video(url="https://example.com/clip.mp4")
    unsupported = client.post(f"/admin/videos/{video_id}/analyze")
    assert unsupported.status_code == 400
    assert unsupported.json()["error"] == "UnsupportedVideo"

    status = client.get("/videos/9999/analysis")
    assert status.status_code == 404
    assert status.json() == {"detail": "Video not found", "error": "NotFound"}


def test_start_candidate_sweep(client):
    response = client.post("/admin/videos/analyze-all")

    assert response.status_code == 202
    assert response.json() == {"started": True, "message": "Candidate sweep started"}
    client.portal.call(app.state.runner.wait_idle)
    assert app.state.runner.sweep.runs == 1


def test_run_history(client, seed):
    video_id = seed.video()
    other_video = seed.video()
    first = client.post(f"/admin/videos/{video_id}/analyze").json()["run_id"]
    client.portal.call(app.state.runner.wait_idle)
    second = client.post(f"/admin/videos/{video_id}/analyze").json()["run_id"]
    client.portal.call(app.state.runner.wait_idle)

    runs = client.get(f"/videos/{video_id}/analysis/runs")
    assert runs.status_code == 200
    assert [r["id"] for r in runs.json()] == [second, first]

    run = client.get(f"/videos/{video_id}/analysis/runs/{second}")
    assert run.status_code == 200
    assert run.json()["state"] == "complete_no_registered_faces"
    assert run.json()["finished_at"] is not None

    elsewhere = client.get(f"/videos/{other_video}/analysis/runs/{second}")
    assert elsewhere.status_code == 404
    assert elsewhere.json()["error"] == "NotFound"
    assert client.get("/videos/9999/analysis/runs").status_code == 404


# ─────────────────────────────────────
# Reference faces
# ─────────────────────────────────────


def test_guardian_routes_need_an_identity_even_without_auth(client, seed):
    hana = seed.child("Hana")

    response = client.get(f"/guardian/children/{hana}/face")

    assert response.status_code == 401
    assert response.json()["error"] == "Unauthorized"
    assert client.get("/guardian/face-candidates").status_code == 401


def test_guardian_face_upload_and_delete(client, seed, db_service):
    hana = seed.child("Hana")
    guardian = seed.guardian(child_ids=[hana])
    headers = _guardian_headers(guardian)

    created = client.post(
        f"/guardian/children/{hana}/face",
        files={"image": ("face.jpg", b"portrait", "image/jpeg")},
        headers=headers,
    )

    assert created.status_code == 201
    body = created.json()
    assert body["success"] is True
    assert body["face_id"] == "face-new-1"

    status = client.get(f"/guardian/children/{hana}/face", headers=headers).json()
    assert status["is_registered"] is True
    assert [f["id"] for f in status["faces"]] == [body["child_face_id"]]

    deleted = client.delete(
        f"/guardian/children/{hana}/face",
        params={"face_id": body["child_face_id"]},
        headers=headers,
    )
    assert deleted.status_code == 200
    assert deleted.json()["success"] is True
    assert db_service.child_face.list_for_child(hana) == []


def test_guardian_face_upload_errors(client, seed):
    hana = seed.child("Hana")
    guardian = seed.guardian(child_ids=[hana])
    stranger = seed.guardian("Stranger")

    no_face = client.post(
        f"/guardian/children/{hana}/face",
        files={"image": ("face.jpg", NO_FACE, "image/jpeg")},
        headers=_guardian_headers(guardian),
    )
    assert no_face.status_code == 400
    assert no_face.json()["error"] == "NoFaceDetected"

    empty = client.post(
        f"/guardian/children/{hana}/face",
        files={"image": ("face.jpg", b"", "image/jpeg")},
        headers=_guardian_headers(guardian),
    )
    assert empty.status_code == 400

    forbidden = client.post(
        f"/guardian/children/{hana}/face",
        files={"image": ("face.jpg", b"portrait", "image/jpeg")},
        headers=_guardian_headers(stranger),
    )
    assert forbidden.status_code == 403
    assert forbidden.json()["error"] == "Forbidden"


def test_admin_registration_replaces_faces(client, seed, recognition, db_service):
    hana = seed.child("Hana")
    seed.face(hana, "face-old", created_at=1)

    response = client.post(
        f"/admin/children/{hana}/face",
        files={"image": ("face.jpg", b"portrait", "image/jpeg")},
    )

    assert response.status_code == 201
    assert recognition.removed == ["face-old"]
    [face] = db_service.child_face.list_for_child(hana)
    assert face.face_id == response.json()["face_id"]

    cleared = client.delete(f"/admin/children/{hana}/face")
    assert cleared.status_code == 200
    assert db_service.child_face.list_for_child(hana) == []


# ─────────────────────────────────────
# Candidate review
# ─────────────────────────────────────


@pytest.fixture
def candidate(seed, storage):
    hana = seed.child("Hana")
    guardian = seed.guardian(child_ids=[hana])
    storage.objects["candidates/c1.jpg"] = b"crop"
    tag_id = seed.tag(
        seed.video(), hana, 8, is_tentative=True, thumbnail_key="candidates/c1.jpg", confidence=30
    )
    return guardian, tag_id


def test_list_and_confirm_candidate(client, candidate, db_service):
    guardian, tag_id = candidate
    headers = _guardian_headers(guardian)

    listed = client.get("/guardian/face-candidates", headers=headers)
    assert [c["id"] for c in listed.json()] == [tag_id]

    confirmed = client.post(
        f"/guardian/face-candidates/{tag_id}", json={"action": "confirm"}, headers=headers
    )

    assert confirmed.status_code == 200
    assert confirmed.json() == {"success": True, "message": "Learned and Confirmed"}
    assert db_service.tag.get(tag_id).is_tentative is False
    assert client.get("/guardian/face-candidates", headers=headers).json() == []


def test_candidate_errors_carry_a_code(client, seed, candidate):
    guardian, tag_id = candidate
    stranger = seed.guardian("Stranger")

    forbidden = client.post(
        f"/guardian/face-candidates/{tag_id}",
        json={"action": "reject"},
        headers=_guardian_headers(stranger),
    )
    assert forbidden.status_code == 403
    assert forbidden.json() == {"detail": "This is not your child", "error": "Forbidden"}

    invalid = client.post(
        f"/guardian/face-candidates/{tag_id}",
        json={"action": "maybe"},
        headers=_guardian_headers(guardian),
    )
    assert invalid.status_code == 400
    assert invalid.json()["error"] == "InvalidAction"

    missing = client.post(
        "/guardian/face-candidates/9999",
        json={"action": "confirm"},
        headers=_guardian_headers(guardian),
    )
    assert missing.status_code == 404
    assert missing.json()["error"] == "NotFound"


# ─────────────────────────────────────
# On-demand face search
# ─────────────────────────────────────


def test_face_search_run_and_summary(client, seed, recognition):
    hana = seed.child("Hana")
    seed.face(hana, "face-hana")
    guardian = seed.guardian(child_ids=[hana])
    video_id = seed.video()
    recognition.search_results[frame(2)] = [match("face-hana", 90, external_id=str(hana))]
    headers = _guardian_headers(guardian)

    run = client.post(f"/videos/{video_id}/face-search", headers=headers)

    assert run.status_code == 200
    assert run.json()["created"] == 1
    summary = client.get(f"/videos/{video_id}/face-search", headers=headers).json()
    assert summary["video_id"] == video_id
    assert [d["child_id"] for d in summary["detections"]] == [hana]


def test_face_search_without_registered_faces(client, seed):
    hana = seed.child("Hana")
    guardian = seed.guardian(child_ids=[hana])

    response = client.post(f"/videos/{seed.video()}/face-search", headers=_guardian_headers(guardian))

    assert response.status_code == 400
    assert response.json()["error"] == "NoRegisteredFaces"


# ─────────────────────────────────────
# Signed tokens
# ─────────────────────────────────────


@pytest.fixture
def signing_key(config, tmp_path, monkeypatch):
    key = ec.generate_private_key(ec.SECP256R1())
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
    )
    (tmp_path / "public_key.pem").write_bytes(public_pem)
    config.no_auth = False
    config.public_key_path = tmp_path / "public_key.pem"
    monkeypatch.setattr(auth, "_public_key_cache", None)
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()


def test_signed_tokens_are_verified(client, seed, signing_key):
    video_id = seed.video()

    def signed(**kwargs):
        return _bearer(_token(key=signing_key, algorithm="ES256", **kwargs))

    assert client.post(f"/admin/videos/{video_id}/analyze").status_code == 401
    assert client.get(f"/videos/{video_id}/analysis").status_code == 401

    operator = signed(user_id="ops", permissions=["video_analysis"])
    assert client.post(f"/admin/videos/{video_id}/analyze", headers=operator).status_code == 202
    client.portal.call(app.state.runner.wait_idle)

    guardian = signed(user_id="1")
    forbidden = client.post(f"/admin/videos/{video_id}/analyze", headers=guardian)
    assert forbidden.status_code == 403
    assert client.get(f"/videos/{video_id}/analysis", headers=guardian).status_code == 200
    assert client.delete("/admin/children/1/face", headers=guardian).status_code == 403

    expired = signed(user_id="1", exp=int(time.time()) - 60)
    response = client.get(f"/videos/{video_id}/analysis", headers=expired)
    assert response.status_code == 401
    assert response.json()["detail"] == "JWT token has expired"

    forged = _bearer(_token(user_id="1", is_admin=True))
    assert client.get(f"/videos/{video_id}/analysis", headers=forged).status_code == 401
