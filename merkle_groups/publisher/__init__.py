from .adapter import PublishResult, RecordPublisher, StubPublisher, get_publisher

__all__ = ["PublishResult", "RecordPublisher", "StubPublisher", "get_publisher"]
