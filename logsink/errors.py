"""Domain errors raised by the core and mapped to HTTP responses in main."""


class LogsinkError(Exception):
    status_code = 500

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class InvalidCredential(LogsinkError):
    """Unknown, inactive or deleted app API key."""
    status_code = 401


class AccessDenied(LogsinkError):
    status_code = 403


class NotFound(LogsinkError):
    status_code = 404


class InvalidRequest(LogsinkError):
    status_code = 400


class ConfirmationMismatch(InvalidRequest):
    def __init__(self, reason: str = "confirmation mismatch"):
        super().__init__(reason)


class ProcessingFailure(LogsinkError):
    status_code = 500
