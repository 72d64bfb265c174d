"""Error taxonomy shared by services and routes.

Every error is an ``HTTPException`` carrying a stable machine-readable
``kind`` next to the human-readable ``detail``. Services raise these
directly; the handlers registered in ``forumfiles.monitoring.setup``
render them as ``{"detail": ..., "kind": ...}``.
"""
from typing import Optional

from fastapi import HTTPException, status


class AppError(HTTPException):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    kind: str = "internal"
    default_detail: str = "Internal server error"

    def __init__(self, detail: Optional[str] = None, *, kind: Optional[str] = None, headers=None):
        super().__init__(status_code=self.status_code, detail=detail or self.default_detail, headers=headers)
        if kind:
            self.kind = kind

    def to_payload(self) -> dict:
        return {"detail": self.detail, "kind": self.kind}


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    kind = "validation_error"
    default_detail = "Invalid request"


class Unauthenticated(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    kind = "unauthenticated"
    default_detail = "Invalid or expired token"

    def __init__(self, detail: Optional[str] = None, **kwargs):
        kwargs.setdefault("headers", {"WWW-Authenticate": "Bearer"})
        super().__init__(detail, **kwargs)


class InvalidCredentials(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    kind = "invalid_credentials"
    default_detail = "Invalid email or password"


class InvalidPassword(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    kind = "invalid_password"
    default_detail = "Invalid password"


class AccountDeactivated(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    kind = "account_deactivated"
    default_detail = "Account is deactivated"


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    kind = "forbidden"
    default_detail = "Access denied"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    kind = "not_found"
    default_detail = "Not found"


class Conflict(AppError):
    status_code = status.HTTP_409_CONFLICT
    kind = "conflict"
    default_detail = "Conflict"


class Gone(AppError):
    status_code = status.HTTP_410_GONE
    kind = "gone"
    default_detail = "Link is no longer available"

    def __init__(self, detail: Optional[str] = None, *, reason: str, **kwargs):
        super().__init__(detail, **kwargs)
        self.reason = reason
        # what the caller may still show about the link, e.g. on the landing page
        self.info = None
        self.metadata: dict = {}

    def to_payload(self) -> dict:
        payload = {**self.metadata, **super().to_payload()}
        payload["reason"] = self.reason
        return payload


class TooLarge(AppError):
    status_code = 413
    kind = "too_large"
    default_detail = "File is too large"


class UnsupportedType(AppError):
    status_code = status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
    kind = "unsupported_type"
    default_detail = "File type is not allowed"


class RateLimited(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    kind = "rate_limited"
    default_detail = "Too many requests, please try again later"


class Internal(AppError):
    pass
