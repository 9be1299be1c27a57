from __future__ import annotations


class AppError(Exception):
    """Base error for expected failures."""

    def __init__(self, message: str, *, http_status: int = 400):
        super().__init__(message)
        self.message = message
        self.http_status = http_status


class AuthError(AppError):
    def __init__(self, message: str = "unauthorized"):
        super().__init__(message, http_status=401)


class AuthenticationFailure(AuthError):
    """Bad credentials, bad API key or no usable principal.

    Deliberately undifferentiated so callers cannot enumerate accounts.
    """

    def __init__(self, message: str = "invalid user or password"):
        super().__init__(message)


class TokenExpired(AuthError):
    def __init__(self, message: str = "token has expired"):
        super().__init__(message)


class TokenInvalid(AuthError):
    def __init__(self, message: str = "invalid token"):
        super().__init__(message)


class ConfigurationError(AppError):
    """Application, directory or organization is missing or disabled."""

    def __init__(self, message: str):
        super().__init__(message, http_status=403)


class ValidationError(AppError):
    def __init__(self, message: str):
        super().__init__(message, http_status=400)


class ConflictError(AppError):
    def __init__(self, message: str = "already exists"):
        super().__init__(message, http_status=409)


class NotFoundError(AppError):
    def __init__(self, message: str = "not found"):
        super().__init__(message, http_status=404)
