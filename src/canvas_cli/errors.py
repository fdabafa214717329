from __future__ import annotations


class CanvasError(RuntimeError):
    pass


class ConfigurationError(CanvasError):
    def __init__(self, missing: list[str], message: str) -> None:
        super().__init__(message)
        self.missing = list(missing)


class ApiError(CanvasError):
    def __init__(self, message: str, *, status_code: int, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class AuthenticationError(ApiError):
    pass


class AuthorizationError(ApiError):
    pass


class NotFoundError(ApiError):
    pass


class NetworkError(CanvasError):
    pass


class RequestSetupError(CanvasError):
    pass


class SelectionError(CanvasError):
    pass


class UserCancelledError(CanvasError):
    def __init__(self, message: str = "Operation cancelled by user") -> None:
        super().__init__(message)


class ComponentFormatError(CanvasError):
    pass
