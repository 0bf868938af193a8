"""Error taxonomy raised by the stage orchestrator.

None of these are retried by the orchestrator. The API layer maps each
class to an HTTP status and one of the public error codes.
"""


class StoryflowError(Exception):
    """Base class for orchestrator errors."""

    code = "SERVER_ERROR"
    http_status = 500


class ValidationError(StoryflowError):
    """Malformed or missing request fields."""

    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(StoryflowError):
    """Unknown project id (or missing nested resource)."""

    code = "NOT_FOUND"
    http_status = 404


class InvalidTransition(StoryflowError):
    """Command issued in a status that forbids it."""

    code = "VALIDATION_ERROR"
    http_status = 409

    def __init__(self, message: str, status: str | None = None):
        super().__init__(message)
        self.status = status


class Conflict(StoryflowError):
    """A stage command for the same project is already in flight."""

    code = "VALIDATION_ERROR"
    http_status = 409

    def __init__(self, project_id, in_flight: str):
        super().__init__(
            f"Project {project_id} already has '{in_flight}' in flight"
        )
        self.project_id = project_id
        self.in_flight = in_flight


class UnsupportedRevision(StoryflowError):
    """Rejection issued for a stage with no revision channel."""

    code = "VALIDATION_ERROR"
    http_status = 400


class AdapterFailure(StoryflowError):
    """An external generator errored or timed out."""

    code = "SERVER_ERROR"
    http_status = 500

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"{stage} failed: {type(cause).__name__}: {cause}")
        self.stage = stage
        self.cause = cause


class StageNotImplemented(StoryflowError):
    """No generator is configured for the requested stage."""

    code = "NOT_IMPLEMENTED"
    http_status = 501

    def __init__(self, stage: str):
        super().__init__(f"Stage '{stage}' is not implemented")
        self.stage = stage
