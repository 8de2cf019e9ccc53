from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class RequestError(AppError):
    """A REST call failed. ``status_code`` is None for network-level failures."""

    def __init__(self, detail: str = "", status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(detail)


class TransientRequestError(RequestError):
    """Network error, timeout or 5xx: worth retrying."""


class PermanentRequestError(RequestError):
    """4xx: surfaced to the caller immediately, never retried."""


class NotFoundError(PermanentRequestError):
    pass


class ForbiddenError(PermanentRequestError):
    pass


class ConflictError(PermanentRequestError):
    pass


class ValidationError(PermanentRequestError):
    pass


def error_for_status(status_code: int, detail: str = "") -> RequestError:
    """Map an HTTP error status onto the request error taxonomy."""
    if status_code >= 500:
        return TransientRequestError(detail, status_code)
    if status_code == 404:
        return NotFoundError(detail, status_code)
    if status_code in (401, 403):
        return ForbiddenError(detail, status_code)
    if status_code == 409:
        return ConflictError(detail, status_code)
    if status_code in (400, 422):
        return ValidationError(detail, status_code)
    return PermanentRequestError(detail, status_code)
