"""Custom exceptions for MixPlan."""


class InvalidRangeError(ValueError):
    """Raised when a section's end time is not after its start time."""

    def __init__(self, start_time: float, end_time: float):
        super().__init__(f"Invalid section range: {start_time:.3f}s - {end_time:.3f}s")
        self.start_time = start_time
        self.end_time = end_time


class OperationCancelledError(Exception):
    """Raised when a long-running sweep is cancelled by the caller."""

    pass


class AudioLoadError(Exception):
    """Raised when an audio file cannot be loaded or decoded."""

    pass


class LibraryError(Exception):
    """Raised when a library document cannot be read or is malformed."""

    pass
