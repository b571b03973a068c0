class UserSenseError(Exception):
    """Base class for errors raised by usersense."""


class SessionError(UserSenseError):
    """The browsing session could not be created or failed beyond recovery."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class VisionError(UserSenseError):
    """The vision model call failed (network, timeout, or provider error)."""


class ModelUnavailable(VisionError):
    """A candidate model is not available to this account; the next one may be."""

    def __init__(self, model: str, detail: str = ""):
        super().__init__(f"model '{model}' unavailable: {detail}".rstrip(": "))
        self.model = model
