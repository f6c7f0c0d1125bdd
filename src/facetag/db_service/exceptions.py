class ResourceNotFoundError(Exception):
    """Raised when a requested row does not exist."""


class RunSupersededError(Exception):
    """Raised when an analysis run tries to write after a newer run took over the video."""

    def __init__(self, video_id: int, run_id: int, current_run_id: int | None):
        self.video_id = video_id
        self.run_id = run_id
        self.current_run_id = current_run_id
        super().__init__(
            f"Run {run_id} of video {video_id} superseded by run {current_run_id}"
        )


class InvalidTransitionError(Exception):
    """Raised when a status write violates the analysis state machine."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Transition {current} -> {target} is not allowed")
