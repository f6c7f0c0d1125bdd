"""facetag service: face-recognition analysis of class videos."""

from contextlib import asynccontextmanager
from typing import Any, cast

import boto3
import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger

from ..analysis.face_search import CandidateSweep, OnDemandFaceSearch
from ..analysis.orchestrator import AnalysisOrchestrator
from ..analysis.rendition import RenditionPoller
from ..analysis.runner import AnalysisRunner
from ..analysis.sampler import FrameSampler
from ..broadcast_service.broadcaster import AnalysisBroadcaster
from ..common.storage import S3_CLIENT_CONFIG, StorageService
from ..db_service import DBService, ResourceNotFoundError, init_db
from ..db_service.database import close_db
from ..learning.exceptions import FaceTagError
from ..learning.registration import FaceRegistrationService
from ..learning.verification import VerificationService
from ..providers.delivery import StreamDeliveryClient
from ..providers.http_client import close_shared_http_client, get_shared_http_client
from ..providers.recognition import RecognitionClient
from .config import ServiceConfig
from .routes import router

_ERROR_CODES = {401: "Unauthorized", 403: "Forbidden", 404: "NotFound"}


def wire_services(
    app: FastAPI,
    config: ServiceConfig,
    db: DBService,
    rekognition_client: Any,
    s3_client: Any,
    http_client: httpx.AsyncClient,
    broadcaster: AnalysisBroadcaster | None = None,
) -> None:
    """Build the pipeline and learning services and attach them to ``app.state``."""
    storage = StorageService(s3_client, config.s3_bucket, local_media_dir=config.local_media_dir)
    recognition = RecognitionClient(rekognition_client, config.rekognition_collection)
    delivery = StreamDeliveryClient(
        http_client,
        config.cloudflare_account_id,
        config.cloudflare_stream_token,
        config.cloudflare_customer_domain,
    )

    poller = RenditionPoller(
        delivery,
        max_attempts=config.rendition_max_attempts,
        interval=config.rendition_poll_interval,
        backoff=config.rendition_poll_backoff,
        max_interval=config.rendition_poll_max_interval,
    )
    sampler = FrameSampler(
        delivery, window=config.sample_window, stride=config.sample_stride, width=config.sample_width
    )
    sweep_sampler = FrameSampler(
        delivery, window=config.sweep_window, stride=config.sweep_stride, width=config.sweep_width
    )

    orchestrator = AnalysisOrchestrator(
        db,
        recognition,
        poller,
        sampler,
        broadcaster=broadcaster,
        match_threshold=config.match_threshold,
    )
    sweep = CandidateSweep(
        db,
        recognition,
        sweep_sampler,
        storage,
        candidate_threshold=config.candidate_threshold,
        confirm_threshold=config.confirm_threshold,
        tag_duration=config.sweep_tag_duration,
        min_face_px=config.sweep_min_face_px,
        frame_delay=config.sweep_frame_delay,
    )

    app.state.config = config
    app.state.db = db
    app.state.broadcaster = broadcaster
    app.state.runner = AnalysisRunner(db, orchestrator, sweep=sweep, broadcaster=broadcaster)
    app.state.verification = VerificationService(db, recognition, storage)
    app.state.registration = FaceRegistrationService(db, recognition, storage)
    app.state.face_search = OnDemandFaceSearch(
        db, recognition, sampler, storage, threshold=config.on_demand_threshold
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler:
    - Startup: database, provider clients, pipeline services, MQTT
    - Shutdown: cancel running analyses, close connections
    """
    # -------- Startup --------
    config = ServiceConfig.get_config()
    logger.info("Loaded core configuration via ServiceConfig.get_config()")

    init_db(config.database_url)
    db = DBService()

    session = boto3.session.Session(region_name=config.aws_region)
    broadcaster = AnalysisBroadcaster(config.mqtt_url, port=config.port)
    broadcaster.init()

    wire_services(
        app,
        config,
        db,
        rekognition_client=session.client("rekognition"),
        s3_client=session.client("s3", config=S3_CLIENT_CONFIG),
        http_client=get_shared_http_client(config.delivery_timeout),
        broadcaster=broadcaster,
    )
    logger.info("facetag service initialized")

    try:
        yield  # ---- application runs here ----
    finally:
        # -------- Shutdown --------
        runner = cast(AnalysisRunner | None, getattr(app.state, "runner", None))
        if runner:
            await runner.shutdown()
        await close_shared_http_client()
        broadcaster.close()
        close_db()
        logger.info("facetag service shutdown complete")


app = FastAPI(
    title="facetag",
    version="v1",
    lifespan=lifespan,
)

app.include_router(router)


@app.exception_handler(FaceTagError)
async def face_tag_error_handler(_request: Request, exc: FaceTagError):
    """User-facing domain errors carry a stable code next to the detail."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": exc.code},
    )


@app.exception_handler(ResourceNotFoundError)
async def not_found_handler(_request: Request, exc: ResourceNotFoundError):
    return JSONResponse(
        status_code=404,
        content={"detail": str(exc), "error": "NotFound"},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(_request: Request, exc: HTTPException):
    """
    Preserve the default FastAPI HTTPException handling shape so callers
    can rely on the same error response structure.
    """
    content: dict[str, Any] = {"detail": exc.detail}
    if exc.status_code in _ERROR_CODES:
        content["error"] = _ERROR_CODES[exc.status_code]
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=exc.headers,
    )


@app.exception_handler(ValueError)
async def value_error_handler(_request: Request, exc: ValueError):
    """
    Handle ValueError as 422 Unprocessable Entity.
    Commonly used for business logic validation errors in service layer.
    """
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc)},
    )
