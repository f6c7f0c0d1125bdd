from __future__ import annotations

from . import database
from .child import ChildDBService, ChildFaceDBService, GuardianDBService
from .tag import FaceTagDBService
from .video import VideoDBService


class DBService:
    """Facade providing access to all table services.

    Each service manages its own sessions internally.
    """

    def __init__(self):
        if database.SessionLocal is None:
            database.init_db()

        self.video = VideoDBService()
        self.child = ChildDBService()
        self.child_face = ChildFaceDBService()
        self.guardian = GuardianDBService()
        self.tag = FaceTagDBService()
