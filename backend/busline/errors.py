"""Failure conditions raised by the timetable query layer.

An empty result (no trips, no useful alternatives) is a normal outcome and
is never signalled with an exception.
"""


class TimetableError(Exception):
    """Base class for timetable query failures."""


class StoreUnavailable(TimetableError):
    """The backing timetable dataset could not be opened or read."""


class StopNotFound(TimetableError):
    """A stop used as a suggestion anchor has no resolvable coordinates."""

    def __init__(self, stop_name: str):
        self.stop_name = stop_name
        super().__init__(f"Could not find coordinates for {stop_name}.")
