"""Exception hierarchy for the persona studio."""

from typing import Optional


class PersonaStudioError(Exception):
    """Base class for all application errors."""
    pass


class InputError(PersonaStudioError):
    """Empty or invalid user-supplied data."""
    pass


class ValidationError(InputError):
    """API key rejected locally before any network call."""
    pass


class RequestInProgress(InputError):
    """A submission is already streaming."""
    pass


class StreamError(PersonaStudioError):
    """Base class for failures of the completion stream."""
    pass


class StreamUnavailable(StreamError):
    """The completion stream could not be opened."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StreamInterrupted(StreamError):
    """The completion stream died after it started."""

    def __init__(self, message: str, received: int = 0):
        super().__init__(message)
        self.received = received


class UpstreamRejected(PersonaStudioError):
    """The provider answered with a well-formed error."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class TransportError(PersonaStudioError):
    """No response at all from the upstream provider."""
    pass
