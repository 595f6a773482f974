# backend/abby/errors.py
"""
도메인 에러 분류.

Services raise these; the handlers registered in abby.main turn them into
`{"detail": message}` responses with the status code below.
"""
from fastapi import status


class DomainError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_detail = "Request failed"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class InvalidTransitionError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Invalid state transition"

    def __init__(self, detail: str | None = None, *, current: str | None = None, target: str | None = None):
        self.current = current
        self.target = target
        if detail is None and current and target:
            detail = f"Cannot move from '{current}' to '{target}'"
        super().__init__(detail)


class ValidationError(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid request"


class ConflictError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Resource already exists"


class PermissionDeniedError(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Insufficient permissions"
