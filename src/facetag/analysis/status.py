"""Analysis state machine.

The persisted state is an enum plus separate numeric fields; the compact
display string older polling clients understand (``waiting_mp4_40%``,
``complete_2_children_5_appearances``) is derived from them.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class AnalysisState(StrEnum):
    QUEUED = "queued"
    WAITING_MP4 = "waiting_mp4"
    EXTRACTING_FRAMES = "extracting_frames"
    ANALYZING = "analyzing"
    SAVING = "saving"
    COMPLETE = "complete"
    COMPLETE_NO_REGISTERED_FACES = "complete_no_registered_faces"
    FAILED_MP4_TIMEOUT = "failed_mp4_timeout"
    FAILED_NO_FRAMES = "failed_no_frames"
    FAILED = "failed"
    SKIPPED_ADMIN_DISABLED = "skipped_admin_disabled"

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self]

    @property
    def is_success(self) -> bool:
        return self in (AnalysisState.COMPLETE, AnalysisState.COMPLETE_NO_REGISTERED_FACES)

    @property
    def is_failure(self) -> bool:
        return self.value.startswith("failed")


ALLOWED_TRANSITIONS: dict[AnalysisState, frozenset[AnalysisState]] = {
    AnalysisState.QUEUED: frozenset(
        {
            AnalysisState.WAITING_MP4,
            AnalysisState.COMPLETE_NO_REGISTERED_FACES,
            AnalysisState.FAILED,
        }
    ),
    # waiting_mp4 -> waiting_mp4 carries progress updates
    AnalysisState.WAITING_MP4: frozenset(
        {
            AnalysisState.WAITING_MP4,
            AnalysisState.EXTRACTING_FRAMES,
            AnalysisState.FAILED_MP4_TIMEOUT,
            AnalysisState.FAILED,
        }
    ),
    AnalysisState.EXTRACTING_FRAMES: frozenset(
        {
            AnalysisState.ANALYZING,
            AnalysisState.FAILED_NO_FRAMES,
            AnalysisState.FAILED,
        }
    ),
    AnalysisState.ANALYZING: frozenset(
        {
            AnalysisState.SAVING,
            AnalysisState.COMPLETE_NO_REGISTERED_FACES,
            AnalysisState.FAILED,
        }
    ),
    AnalysisState.SAVING: frozenset({AnalysisState.COMPLETE, AnalysisState.FAILED}),
    AnalysisState.COMPLETE: frozenset(),
    AnalysisState.COMPLETE_NO_REGISTERED_FACES: frozenset(),
    AnalysisState.FAILED_MP4_TIMEOUT: frozenset(),
    AnalysisState.FAILED_NO_FRAMES: frozenset(),
    AnalysisState.FAILED: frozenset(),
    AnalysisState.SKIPPED_ADMIN_DISABLED: frozenset(),
}


def can_transition(current: AnalysisState | None, target: AnalysisState) -> bool:
    """Whether a running pipeline may move ``current`` to ``target``.

    Only a new run (which starts from scratch) can leave a terminal state.
    """
    if current is None:
        return target == AnalysisState.QUEUED
    return target in ALLOWED_TRANSITIONS[current]


class AnalysisStatus(BaseModel):
    """Current analysis status of a video."""

    model_config = ConfigDict(frozen=True)

    state: AnalysisState
    progress: float | None = None
    child_count: int | None = None
    appearance_count: int | None = None

    @property
    def display(self) -> str:
        if self.state == AnalysisState.WAITING_MP4 and self.progress is not None:
            return f"waiting_mp4_{self.progress:g}%"
        if self.state == AnalysisState.COMPLETE:
            return (
                f"complete_{self.child_count or 0}_children_"
                f"{self.appearance_count or 0}_appearances"
            )
        return self.state.value
