from .persistence import PersistedState, StateFile
from .selectors import DetectionStats, detection_stats, export_records_csv, query_records
from .state import Committed, Failed, MutationResult, Pending, StateStore

__all__ = [
    "PersistedState",
    "StateFile",
    "DetectionStats",
    "detection_stats",
    "export_records_csv",
    "query_records",
    "Committed",
    "Failed",
    "MutationResult",
    "Pending",
    "StateStore",
]
