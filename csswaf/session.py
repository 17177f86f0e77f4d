"""Session identity: issue and recognise the opaque per-client token.

The token itself is carried by an external identity carrier (a cookie by
default). The carrier only has to answer two questions: "is there a value
under this name?" and "please persist this value for N hours".
"""

import base64
import re
import secrets
from typing import Dict, Optional, Tuple

from starlette.requests import Request
from starlette.responses import Response

from .errors import RandomnessFailure
from .logs import get_trace_logger

SESSION_ID_BYTES = 16  # 128 bits
SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{22,128}$")


class CookieCarrier:
    """Identity carrier backed by a plain cookie.

    Reads come from the incoming request; writes are queued and applied to
    the outgoing response with :meth:`apply`, since the response does not
    exist yet when the session is resolved.
    """

    def __init__(self, request: Request):
        self._cookies = request.cookies
        self._pending: Dict[str, Tuple[str, int]] = {}

    def read(self, name: str) -> Optional[str]:
        if name in self._pending:
            return self._pending[name][0]
        return self._cookies.get(name)

    def write(self, name: str, value: str, ttl_hours: float):
        self._pending[name] = (value, int(ttl_hours * 3600))

    def apply(self, response: Response):
        for name, (value, max_age) in self._pending.items():
            response.set_cookie(name, value, max_age=max_age, path="/", httponly=True, samesite="lax")


class SessionCarrier:
    """Identity carrier backed by Starlette's signed session cookie.

    Requires ``SessionMiddleware``; the cookie lifetime is the middleware's
    ``max_age``, so ``ttl_hours`` is only recorded alongside the value.
    """

    def __init__(self, request: Request):
        self._session = request.session

    def read(self, name: str) -> Optional[str]:
        return self._session.get(name)

    def write(self, name: str, value: str, ttl_hours: float):
        self._session[name] = value
        self._session[f"{name}_ttl_hours"] = ttl_hours

    def apply(self, response: Response):
        # SessionMiddleware writes the cookie itself
        pass


class SessionIdentity:
    """Resolve the caller's session id through a carrier, minting one if needed."""

    def __init__(self, cookie_name: str, ttl_hours: float = 1):
        if ttl_hours <= 0:
            raise ValueError("ttl_hours must be positive")
        self.cookie_name = cookie_name
        self.ttl_hours = ttl_hours

    @staticmethod
    def generate() -> str:
        """Return a fresh 128-bit session id, URL-safe base64 without padding.

        Raises:
            RandomnessFailure: the operating system has no secure random source.
        """
        try:
            raw = secrets.token_bytes(SESSION_ID_BYTES)
        except (NotImplementedError, OSError) as e:
            raise RandomnessFailure("no secure random source for session id") from e
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    @staticmethod
    def is_well_formed(value: Optional[str]) -> bool:
        return bool(value) and SESSION_ID_PATTERN.match(value) is not None

    def resolve(self, carrier) -> str:
        """Return the session id held by ``carrier``, creating and persisting one if absent."""
        session_id = carrier.read(self.cookie_name)
        if self.is_well_formed(session_id):
            return session_id

        if session_id is not None:
            get_trace_logger(None, "session").warning("Discarding malformed session token (len=%d)", len(session_id))

        session_id = self.generate()
        carrier.write(self.cookie_name, session_id, self.ttl_hours)
        get_trace_logger(session_id, "session").info("Issued new session ttl_hours=%s", self.ttl_hours)
        return session_id
