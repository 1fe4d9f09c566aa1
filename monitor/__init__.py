from .engine import MonitorEngine, MonitorState, Sample, StopReport

__all__ = ["MonitorEngine", "MonitorState", "Sample", "StopReport"]
