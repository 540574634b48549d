"""Exceptions raised by the scheduling core.

The HTTP layer maps these onto status codes; the core itself knows nothing
about HTTP.
"""


class SchedulerError(Exception):
    """Base exception for the scheduling core."""

    error_type = "scheduler_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(SchedulerError):
    """A request was rejected before anything was persisted."""

    error_type = "validation_error"


class InvalidCronExpression(ValidationError):
    """Malformed cron expression or a field out of its valid range."""

    error_type = "invalid_cron_expression"

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid cron expression '{expression}': {reason}")


class InvalidTimezone(ValidationError):
    error_type = "invalid_timezone"

    def __init__(self, tz_name: str):
        self.tz_name = tz_name
        super().__init__(f"Unknown timezone '{tz_name}'")


class NotFound(SchedulerError):
    """Unknown schedule or execution id."""

    error_type = "not_found"

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class InvalidTransition(SchedulerError):
    """A state change that the lifecycle does not allow."""

    error_type = "invalid_transition"


class ConcurrentClaimLost(SchedulerError):
    """Another fire of the same schedule already holds the claim."""

    error_type = "concurrent_claim_lost"

    def __init__(self, schedule_id: str, message: str = ""):
        self.schedule_id = schedule_id
        super().__init__(message or f"Schedule {schedule_id} is already running")


class DispatchFailure(SchedulerError):
    """
    The action dispatcher failed or timed out.

    Recorded on the execution; never raised out of the scheduler loop.
    """

    error_type = "dispatch_failure"
