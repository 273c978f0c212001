"""Service-level exceptions.

Services raise these; the HTTP layer maps them to responses in one exception
handler (see ``parley.main``), so no service code imports FastAPI.
"""


class ChatServiceError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ChatServiceError):
    status_code = 404
    code = "not_found"

    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(message)


class ValidationFailed(ChatServiceError):
    status_code = 422
    code = "validation_failed"


class ForbiddenError(ChatServiceError):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(message)


class ConflictError(ChatServiceError):
    status_code = 409
    code = "conflict"


class InternalError(ChatServiceError):
    pass


class UploadFailed(InternalError):
    code = "upload_failed"
