from .broadcaster import AnalysisBroadcaster
from .schemas import VideoStatusPayload

__all__ = ["AnalysisBroadcaster", "VideoStatusPayload"]
