"""
Exceptions raised across the feed and search pipeline
"""
from typing import Optional


class ServiceException(Exception):
    """Error rendered to the client with a status, a machine code and a message"""

    def __init__(self, status: int, code: str, message: str):
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message


class InvalidRequestError(ServiceException):
    """Malformed or missing request parameters (400, never retried)"""

    def __init__(self, message: str):
        super().__init__(status=400, code="VALIDATION_ERROR", message=message)


class PipelineError(ServiceException):
    """Unexpected failure inside a handler (500 with a fallback body)"""

    def __init__(self, message: str = "Internal server error"):
        super().__init__(status=500, code="SERVER_ERROR", message=message)


class SourceFetchError(Exception):
    """A single backing-store call failed or timed out"""

    def __init__(self, collection: str, reason: str):
        super().__init__(f"Fetching '{collection}' failed: {reason}")
        self.collection = collection
        self.reason = reason


class NormalizationError(Exception):
    """A single raw record could not be turned into a feed item"""

    def __init__(self, record_type: str, reason: str, record_id: Optional[str] = None):
        super().__init__(f"Cannot normalize {record_type} {record_id or '<no id>'}: {reason}")
        self.record_type = record_type
        self.record_id = record_id
        self.reason = reason
