from .status import ALLOWED_TRANSITIONS, AnalysisState, AnalysisStatus

__all__ = ["ALLOWED_TRANSITIONS", "AnalysisState", "AnalysisStatus"]
