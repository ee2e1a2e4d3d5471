class DecodeError(Exception):
    """An uploaded file could not be turned into a source payload."""

    def __init__(self, filename: str, reason: str = ""):
        self.filename = filename
        self.reason = reason
        msg = f"Could not decode {filename}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class GatewayFailure(Exception):
    """Network or provider error from a generation, narration or chat call."""


class MalformedResponse(GatewayFailure):
    """Generation call returned invalid JSON or missed a required field."""


class SessionStateError(Exception):
    """Operation is not legal in the session's current state."""


class SourceMismatchError(SessionStateError):
    """Payload kind does not match the selected source type."""
