from __future__ import annotations


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str,
        retryable: bool,
        http_status: int,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status


class EntityNotFoundError(LookupError):
    """Raised by stores and repositories when a key has no entity."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class StaleStatusError(RuntimeError):
    """Compare-and-swap on a status field lost against the current value."""

    def __init__(self, *, expected: str, actual: str) -> None:
        super().__init__(f"expected status {expected}, found {actual}")
        self.expected = expected
        self.actual = actual


def unauthenticated(message: str = "user must be authenticated") -> ApiError:
    return ApiError(
        code="AUTH_UNAUTHENTICATED",
        message=message,
        error_class="security_sensitive",
        retryable=False,
        http_status=401,
    )


def permission_denied(message: str) -> ApiError:
    return ApiError(
        code="AUTH_PERMISSION_DENIED",
        message=message,
        error_class="security_sensitive",
        retryable=False,
        http_status=403,
    )


def not_found(*, code: str, message: str) -> ApiError:
    return ApiError(
        code=code,
        message=message,
        error_class="validation",
        retryable=False,
        http_status=404,
    )


def invalid_argument(*, code: str, message: str) -> ApiError:
    return ApiError(
        code=code,
        message=message,
        error_class="business_rule",
        retryable=False,
        http_status=400,
    )


def internal(message: str) -> ApiError:
    return ApiError(
        code="INTERNAL_ERROR",
        message=message,
        error_class="internal",
        retryable=True,
        http_status=500,
    )
