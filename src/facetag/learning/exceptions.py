from __future__ import annotations

from typing import ClassVar


class FaceTagError(Exception):
    """User-facing error of the learning loop and face routes.

    ``code`` is the stable machine-readable name returned to clients next to
    the human-readable detail; ``status_code`` is the HTTP status.
    """

    code: ClassVar[str] = "Error"
    status_code: ClassVar[int] = 400

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class Forbidden(FaceTagError):
    code = "Forbidden"
    status_code = 403


class NotFound(FaceTagError):
    code = "NotFound"
    status_code = 404


class NoThumbnail(FaceTagError):
    code = "NoThumbnail"
    status_code = 400


class IndexingFailed(FaceTagError):
    """The captured frame had no indexable face. Clients may retry later."""

    code = "IndexingFailed"
    status_code = 503


class InvalidAction(FaceTagError):
    code = "InvalidAction"
    status_code = 400


class NoFaceInImage(FaceTagError):
    """An uploaded registration photo contains no detectable face."""

    code = "NoFaceDetected"
    status_code = 400


class NoRegisteredFaces(FaceTagError):
    code = "NoRegisteredFaces"
    status_code = 400


class UnsupportedVideo(FaceTagError):
    """The video is not hosted by the delivery provider."""

    code = "UnsupportedVideo"
    status_code = 400
