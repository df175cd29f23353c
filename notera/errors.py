"""Domain errors raised by the lesson pipeline.

Each error carries the HTTP status the API layer answers with, so routes can
let them propagate and a single exception handler renders them.
"""


class NoteraError(Exception):
    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(NoteraError):
    status_code = 400


class Unauthorized(NoteraError):
    status_code = 401


class Forbidden(NoteraError):
    status_code = 403


class NotFound(NoteraError):
    status_code = 404


class InvalidTransition(NoteraError):
    status_code = 409


class UploadFailed(NoteraError):
    status_code = 502


class DownloadError(NoteraError):
    status_code = 502


class AIEndpointError(NoteraError):
    status_code = 502

    def __init__(self, upstream_status: int, body: str) -> None:
        super().__init__(f"AI endpoint returned {upstream_status}: {body}")
        self.upstream_status = upstream_status
        self.body = body


class EmptyAIResponse(NoteraError):
    status_code = 502


class AIConfigurationError(NoteraError):
    status_code = 500


class ProcessingDispatchError(NoteraError):
    status_code = 503
