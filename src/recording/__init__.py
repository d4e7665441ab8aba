"""Manual action recording."""

from .manager import RecordingManager, RecordingPreview, RecordingSession, RecordingStatus

__all__ = ["RecordingManager", "RecordingPreview", "RecordingSession", "RecordingStatus"]
