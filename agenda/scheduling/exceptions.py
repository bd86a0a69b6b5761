class SchedulingError(Exception):
    """Base exception for booking and availability failures."""

    def __init__(self, message: str, *, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class SlotConflictError(SchedulingError):
    """Raised when the requested interval overlaps another active appointment of the agent."""

    def __init__(self, message: str = "Slot already occupied.", conflicting_ids: list[int] | None = None, *, cause: Exception | None = None):
        super().__init__(message, cause=cause)
        self.conflicting_ids = conflicting_ids or []


class OutsideBusinessHoursError(SchedulingError):
    """Raised when the location is closed or the interval falls outside its open periods."""

    def __init__(self, message: str, reason: str | None = None):
        super().__init__(message)
        self.reason = reason


class AppointmentNotFoundError(SchedulingError):
    pass


class InvalidAppointmentStateError(SchedulingError):
    pass


class UnknownServiceError(SchedulingError):
    def __init__(self, message: str, missing_ids: list[int] | None = None):
        super().__init__(message)
        self.missing_ids = missing_ids or []
