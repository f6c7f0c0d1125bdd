from .database import init_db
from .db_service import DBService
from .exceptions import InvalidTransitionError, ResourceNotFoundError, RunSupersededError
from .schemas import (
    AnalysisRunSchema,
    ChildFaceSchema,
    ChildSchema,
    FaceTagSchema,
    GuardianSchema,
    RegisteredChild,
    SchoolClassSchema,
    SchoolSchema,
    VideoSchema,
)

__all__ = [
    "init_db",
    "DBService",
    "InvalidTransitionError",
    "ResourceNotFoundError",
    "RunSupersededError",
    "AnalysisRunSchema",
    "ChildFaceSchema",
    "ChildSchema",
    "FaceTagSchema",
    "GuardianSchema",
    "RegisteredChild",
    "SchoolClassSchema",
    "SchoolSchema",
    "VideoSchema",
]
