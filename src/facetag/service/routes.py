from __future__ import annotations

from fastapi import APIRouter, Depends, File, HTTPException, Path, Query, UploadFile, status

from ..analysis.face_search import OnDemandFaceSearch
from ..analysis.runner import AnalysisRunner, StartResult
from ..common.auth import (
    UserPayload,
    require_admin,
    require_guardian,
    require_permission,
    require_user,
)
from ..db_service import AnalysisRunSchema, DBService
from ..db_service.dependencies import get_db_service
from ..learning.registration import FaceRegistrationService
from ..learning.schemas import CandidateView, RegistrationStatus
from ..learning.verification import VerificationService
from . import schemas
from .dependencies import (
    get_face_search,
    get_registration_service,
    get_runner,
    get_verification_service,
)

router = APIRouter()


async def _read_image(image: UploadFile) -> bytes:
    data = await image.read()
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty image upload")
    return data


# ─────────────────────────────────────
# Analysis
# ─────────────────────────────────────


@router.post(
    "/admin/videos/{video_id}/analyze",
    tags=["analysis"],
    summary="Start Analysis",
    description="Queues a face-recognition analysis run for a video and returns immediately.",
    operation_id="start_analysis",
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_analysis(
    video_id: int = Path(..., title="Video Id"),
    user: UserPayload | None = Depends(require_permission("video_analysis")),
    runner: AnalysisRunner = Depends(get_runner),
) -> dict[str, object]:
    trigger = f"user:{user.id}" if user else "admin"
    result: StartResult = runner.start_analysis(video_id, trigger=trigger)
    return result.model_dump(exclude_defaults=True)


@router.post(
    "/admin/videos/analyze-all",
    tags=["analysis"],
    summary="Start Candidate Sweep",
    description="Starts a low-threshold sweep of every video that records candidate tags.",
    operation_id="start_candidate_sweep",
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_candidate_sweep(
    _user: UserPayload | None = Depends(require_admin),
    runner: AnalysisRunner = Depends(get_runner),
) -> schemas.SweepStartResponse:
    if not runner.start_sweep():
        return schemas.SweepStartResponse(started=False, message="A sweep is already running")
    return schemas.SweepStartResponse(started=True, message="Candidate sweep started")


@router.get(
    "/videos/{video_id}/analysis",
    tags=["analysis"],
    summary="Get Analysis Status",
    operation_id="get_analysis_status",
)
async def get_analysis_status(
    video_id: int = Path(..., title="Video Id"),
    _user: UserPayload | None = Depends(require_user),
    db: DBService = Depends(get_db_service),
) -> schemas.AnalysisStatusResponse:
    video = db.video.get(video_id)
    if video is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Video not found")
    return schemas.AnalysisStatusResponse.from_video(video)


@router.get(
    "/videos/{video_id}/analysis/runs",
    tags=["analysis"],
    summary="List Analysis Runs",
    description="Run history of a video, newest first.",
    operation_id="list_analysis_runs",
)
async def list_analysis_runs(
    video_id: int = Path(..., title="Video Id"),
    _user: UserPayload | None = Depends(require_user),
    db: DBService = Depends(get_db_service),
) -> list[AnalysisRunSchema]:
    if db.video.get(video_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Video not found")
    return db.video.list_runs(video_id)


@router.get(
    "/videos/{video_id}/analysis/runs/{run_id}",
    tags=["analysis"],
    summary="Get Analysis Run",
    operation_id="get_analysis_run",
)
async def get_analysis_run(
    video_id: int = Path(..., title="Video Id"),
    run_id: int = Path(..., title="Run Id"),
    _user: UserPayload | None = Depends(require_user),
    db: DBService = Depends(get_db_service),
) -> AnalysisRunSchema:
    run = db.video.get_run(run_id)
    if run is None or run.video_id != video_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Analysis run not found")
    return run


# ─────────────────────────────────────
# Reference faces
# ─────────────────────────────────────


@router.post(
    "/admin/children/{child_id}/face",
    tags=["faces"],
    summary="Register Child Face (admin)",
    description="Registers a face photo for a child, replacing any earlier reference faces.",
    operation_id="admin_register_face",
    status_code=status.HTTP_201_CREATED,
)
async def admin_register_face(
    child_id: int = Path(..., title="Child Id"),
    image: UploadFile = File(..., title="Image"),
    _user: UserPayload | None = Depends(require_admin),
    service: FaceRegistrationService = Depends(get_registration_service),
) -> schemas.FaceUploadResponse:
    result = await service.register(child_id, await _read_image(image), replace=True)
    return schemas.FaceUploadResponse(
        child_face_id=result.value.child_face_id,
        face_id=result.value.face_id,
        face_image_url=result.value.face_image_url,
        cleanup_failures=result.cleanup_failures,
    )


@router.delete(
    "/admin/children/{child_id}/face",
    tags=["faces"],
    summary="Clear Child Faces (admin)",
    operation_id="admin_clear_faces",
)
async def admin_clear_faces(
    child_id: int = Path(..., title="Child Id"),
    _user: UserPayload | None = Depends(require_admin),
    service: FaceRegistrationService = Depends(get_registration_service),
) -> schemas.FaceDeleteResponse:
    result = await service.clear(child_id)
    return schemas.FaceDeleteResponse(
        tags_deleted=result.value, cleanup_failures=result.cleanup_failures
    )


@router.get(
    "/guardian/children/{child_id}/face",
    tags=["faces"],
    summary="Get Face Registration Status",
    operation_id="get_face_status",
)
async def get_face_status(
    child_id: int = Path(..., title="Child Id"),
    user: UserPayload = Depends(require_guardian),
    service: FaceRegistrationService = Depends(get_registration_service),
) -> RegistrationStatus:
    service.authorize(user.guardian_id, child_id)
    return await service.status(child_id)


@router.post(
    "/guardian/children/{child_id}/face",
    tags=["faces"],
    summary="Add Child Face",
    description="Adds a reference face photo for one of the guardian's children.",
    operation_id="add_face",
    status_code=status.HTTP_201_CREATED,
)
async def add_face(
    child_id: int = Path(..., title="Child Id"),
    image: UploadFile = File(..., title="Image"),
    user: UserPayload = Depends(require_guardian),
    service: FaceRegistrationService = Depends(get_registration_service),
) -> schemas.FaceUploadResponse:
    service.authorize(user.guardian_id, child_id)
    result = await service.register(child_id, await _read_image(image))
    return schemas.FaceUploadResponse(
        child_face_id=result.value.child_face_id,
        face_id=result.value.face_id,
        face_image_url=result.value.face_image_url,
        cleanup_failures=result.cleanup_failures,
    )


@router.delete(
    "/guardian/children/{child_id}/face",
    tags=["faces"],
    summary="Delete Child Face",
    description=(
        "Deletes one reference face when face_id is given, otherwise all of them. "
        "Every tag of the child is deleted either way."
    ),
    operation_id="delete_face",
)
async def delete_face(
    child_id: int = Path(..., title="Child Id"),
    face_id: int | None = Query(None, title="Reference face id"),
    user: UserPayload = Depends(require_guardian),
    service: FaceRegistrationService = Depends(get_registration_service),
) -> schemas.FaceDeleteResponse:
    service.authorize(user.guardian_id, child_id)
    if face_id is None:
        result = await service.clear(child_id)
    else:
        result = await service.remove_face(child_id, face_id)
    return schemas.FaceDeleteResponse(
        tags_deleted=result.value, cleanup_failures=result.cleanup_failures
    )


# ─────────────────────────────────────
# Candidate review
# ─────────────────────────────────────


@router.get(
    "/guardian/face-candidates",
    tags=["candidates"],
    summary="List Face Candidates",
    description="Tentative detections of the guardian's children awaiting review, newest first.",
    operation_id="list_face_candidates",
)
async def list_face_candidates(
    user: UserPayload = Depends(require_guardian),
    service: VerificationService = Depends(get_verification_service),
) -> list[CandidateView]:
    return await service.list_candidates(user.guardian_id)


@router.post(
    "/guardian/face-candidates/{tag_id}",
    tags=["candidates"],
    summary="Resolve Face Candidate",
    description="Confirms (and learns from) or rejects a tentative detection.",
    operation_id="resolve_face_candidate",
)
async def resolve_face_candidate(
    body: schemas.VerifyRequest,
    tag_id: int = Path(..., title="Tag Id"),
    user: UserPayload = Depends(require_guardian),
    service: VerificationService = Depends(get_verification_service),
) -> schemas.VerifyResponse:
    result = await service.resolve(user.guardian_id, tag_id, body.action)
    return schemas.VerifyResponse(success=result.success, message=result.message)


# ─────────────────────────────────────
# On-demand face search
# ─────────────────────────────────────


@router.get(
    "/videos/{video_id}/face-search",
    tags=["face-search"],
    summary="Get Face Search Results",
    operation_id="get_face_search",
)
async def get_face_search_results(
    video_id: int = Path(..., title="Video Id"),
    user: UserPayload = Depends(require_guardian),
    search: OnDemandFaceSearch = Depends(get_face_search),
) -> schemas.FaceSearchSummaryResponse:
    summary = await search.summary(user.guardian_id, video_id)
    return schemas.FaceSearchSummaryResponse(video_id=video_id, detections=summary.detections)


@router.post(
    "/videos/{video_id}/face-search",
    tags=["face-search"],
    summary="Run Face Search",
    description="Searches the video for the guardian's registered children and adds new tags.",
    operation_id="run_face_search",
)
async def run_face_search(
    video_id: int = Path(..., title="Video Id"),
    user: UserPayload = Depends(require_guardian),
    search: OnDemandFaceSearch = Depends(get_face_search),
) -> schemas.FaceSearchResponse:
    result = await search.run(user.guardian_id, video_id)
    return schemas.FaceSearchResponse(
        detections_found=result.detections_found,
        created=result.created,
        message=f"{result.detections_found} appearance(s) found, {result.created} new",
    )
