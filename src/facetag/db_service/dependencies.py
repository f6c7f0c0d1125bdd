from __future__ import annotations

from fastapi import Request

from .db_service import DBService


def get_db_service(request: Request) -> DBService:
    """Dependency returning the DBService created at startup."""
    return request.app.state.db
