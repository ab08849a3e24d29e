"""Error types raised by the drip engine."""


class DripError(Exception):
    code: str = "unknown"
    retryable: bool = False

    def __init__(self, message: str = ""):
        super().__init__(message)


class ConfigurationError(DripError):
    """A campaign definition or delivery config is invalid. Fatal at startup."""

    code, retryable = "configuration", False


class NotFoundError(DripError, KeyError):
    """Lookup of an unregistered campaign or action."""

    code, retryable = "not_found", False

    def __str__(self) -> str:
        # KeyError would repr() the message
        return self.args[0] if self.args else ""


class DispatchFailure(DripError):
    """The external action for a step failed. Recovered per subject."""

    code, retryable = "dispatch_failed", True

    def __init__(self, reason: str = ""):
        super().__init__(reason)
        self.reason = reason
