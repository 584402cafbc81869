# wastelink/core/errors.py
from typing import Optional


class PickupError(Exception):
    """Base class for every error raised by the pickup lifecycle."""

    status_code = 400

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class ValidationError(PickupError):
    status_code = 400


class InvalidTransition(PickupError):
    status_code = 409

    def __init__(self, current: str, requested: str, detail: Optional[str] = None):
        self.current = current
        self.requested = requested
        super().__init__(detail or f"Invalid transition {current} -> {requested}")


class NotFound(PickupError):
    """Missing pickup, or a conditional write whose precondition no longer holds."""

    status_code = 404


class Forbidden(PickupError):
    status_code = 403


class ScoringFailure(PickupError):
    status_code = 502


class UpstreamUnavailable(PickupError):
    """Scoring provider unreachable or timed out. Eligible for one fallback attempt."""

    status_code = 503
