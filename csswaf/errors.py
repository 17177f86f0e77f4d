"""Exceptions raised by the challenge core."""


class CSSWAFError(Exception):
    """Base class for all challenge errors."""


class UnregisteredSession(CSSWAFError, KeyError):
    """An event was reported for a session with no live expectation."""

    def __init__(self, session_id: str):
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self):
        return f"session {self.session_id!r} has no registered challenge"


class UnknownToken(CSSWAFError, ValueError):
    """A token that is neither a checkpoint of the session nor a decoy."""

    def __init__(self, session_id: str, token: str):
        super().__init__(session_id, token)
        self.session_id = session_id
        self.token = token

    def __str__(self):
        return f"token {self.token!r} is not part of the challenge for {self.session_id!r}"


class RandomnessFailure(CSSWAFError, RuntimeError):
    """No cryptographically secure random source is available."""
