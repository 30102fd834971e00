from app.models.project import MediaCandidate, Project, Segment, StatusChangeEvent

__all__ = ["MediaCandidate", "Project", "Segment", "StatusChangeEvent"]
