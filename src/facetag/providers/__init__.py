from .delivery import StreamDeliveryClient
from .exceptions import NoFaceDetected, ProviderError, ThumbnailNotFound
from .recognition import RecognitionClient
from .schemas import DetectedFace, FaceMatch, RenditionStatus

__all__ = [
    "StreamDeliveryClient",
    "RecognitionClient",
    "ProviderError",
    "NoFaceDetected",
    "ThumbnailNotFound",
    "DetectedFace",
    "FaceMatch",
    "RenditionStatus",
]
