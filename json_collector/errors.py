"""Collector error taxonomy.

Every error is terminal for its request; the collector maps each one to
the HTTP status carried on the exception.
"""


class CollectorError(Exception):
    """Base exception for request-acceptance failures"""

    status_code = 500

    def __init__(self, message: str = "", status_code: int | None = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class ProtocolError(CollectorError):
    """Raised for a disallowed method or a CORS preflight mismatch"""
    status_code = 405


class UnsupportedMediaError(CollectorError):
    """Raised when the content type is neither JSON nor text"""
    status_code = 415


class BodyReadError(CollectorError):
    """
    Raised when the request body could not be ingested.

    ``type`` is a machine-readable reason such as ``entity.too.large``.
    Readers that cannot name a status fall back to 415.
    """
    status_code = 415

    def __init__(self, message: str, type: str, status_code: int | None = None, **details):
        super().__init__(message, status_code)
        self.type = type
        self.details = details


class ShapeError(CollectorError):
    """Raised when the body is not shaped like a single JSON object"""
    status_code = 422


class JSONSyntaxError(CollectorError):
    """Raised when an object-shaped body fails to parse"""
    status_code = 400
