from .app import app
from .config import ServiceConfig

__all__ = ["app", "ServiceConfig"]
