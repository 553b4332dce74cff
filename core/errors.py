"""Scheduler error taxonomy."""


class SchedulerError(Exception):
    """Base class for every error the scheduler surfaces to callers."""


class ValidationError(SchedulerError):
    """Malformed schedule expression, bad time of day or missing field."""


class AlreadyExistsError(SchedulerError):
    """A configuration already exists for this tenant / user / environment."""


class NotFoundError(SchedulerError):
    """Configuration or execution record is absent."""


class ExternalServiceError(SchedulerError):
    """Workflow trigger failed: timeout, non-2xx response or network error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
