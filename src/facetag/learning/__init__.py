from .exceptions import FaceTagError
from .registration import FaceRegistrationService
from .schemas import BestEffortResult, VerificationAction
from .verification import VerificationService

__all__ = [
    "FaceTagError",
    "FaceRegistrationService",
    "BestEffortResult",
    "VerificationAction",
    "VerificationService",
]
