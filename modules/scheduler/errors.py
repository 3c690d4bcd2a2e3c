"""Errors raised by the reminder scheduler."""


class InvalidScheduleError(ValueError):
    """A reminder definition was rejected before any state changed."""


class ReminderNotFoundError(LookupError):
    def __init__(self, reminder_id: int) -> None:
        super().__init__(f"Reminder {reminder_id} not found")
        self.reminder_id = reminder_id


class ReminderStateError(Exception):
    """The requested transition does not apply to the reminder's current state."""


class StoreError(Exception):
    """The durable store could not be read."""
