from fastapi import Request

from ..analysis.face_search import OnDemandFaceSearch
from ..analysis.runner import AnalysisRunner
from ..learning.registration import FaceRegistrationService
from ..learning.verification import VerificationService
from .config import ServiceConfig


def get_config(request: Request) -> ServiceConfig:
    """Dependency to get ServiceConfig from app state."""
    return request.app.state.config  # pyright: ignore[reportAny]


def get_runner(request: Request) -> AnalysisRunner:
    return request.app.state.runner  # pyright: ignore[reportAny]


def get_verification_service(request: Request) -> VerificationService:
    return request.app.state.verification  # pyright: ignore[reportAny]


def get_registration_service(request: Request) -> FaceRegistrationService:
    return request.app.state.registration  # pyright: ignore[reportAny]


def get_face_search(request: Request) -> OnDemandFaceSearch:
    return request.app.state.face_search  # pyright: ignore[reportAny]
