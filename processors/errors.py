class PracticeEngineError(Exception):
    """Base class for every error raised by the practice engine."""


class PermissionDenied(PracticeEngineError):
    """Microphone access was refused. The capture stays idle."""


class CaptureFailed(PracticeEngineError):
    """The microphone stopped producing audio mid-recording."""


class TransportFailure(PracticeEngineError):
    """The evaluation service could not be reached or did not answer in time."""


class ServiceError(PracticeEngineError):
    """The evaluation service answered with an error or a malformed payload."""


class ContractViolation(PracticeEngineError):
    """An operation was called in a state that does not allow it."""


class SessionClosed(PracticeEngineError):
    """The session was torn down while an operation was still in flight."""


class DailyLimitReached(ServiceError):
    """The evaluation service refused the request because today's AI analyses are used up."""
