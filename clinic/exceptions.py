from typing import Optional


class ClinicError(Exception):
    """Base class for everything the directory or the screens raise on purpose."""


class AuthError(ClinicError):
    INVALID_CREDENTIALS = "invalid_credentials"
    UNKNOWN_IDENTIFIER = "unknown_identifier"
    THROTTLED = "throttled"
    IDENTIFIER_IN_USE = "identifier_in_use"
    INVALID_IDENTIFIER = "invalid_identifier"
    WEAK_SECRET = "weak_secret"

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class ValidationError(ClinicError):
    def __init__(self, field: Optional[str], message: str):
        self.field = field
        self.message = message
        super().__init__(message)


class WriteError(ClinicError):
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"write to {path} failed: {reason}")


class SubscriptionError(ClinicError):
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"listener on {path} failed: {reason}")


class ReadError(ClinicError):
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"read of {path} failed: {reason}")
