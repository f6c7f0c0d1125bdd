class ProviderError(Exception):
    """An external provider call failed. The message is for logs only."""


class NoFaceDetected(ProviderError):
    """The recognition provider found no indexable face in the image."""


class ThumbnailNotFound(ProviderError):
    """The delivery provider has no frame at the requested offset."""
