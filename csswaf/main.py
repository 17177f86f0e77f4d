"""FastAPI gateway serving the CSS challenge in front of protected routes.

Requests from sessions that have not passed the challenge get the challenge
page; the page's style sheet makes the browser fetch the checkpoint images
under ``CHALLENGE_PREFIX``, and each of those fetches is reported to the
sequence tracker. Once the tracker validates the session, requests pass
through to the application routes.

Run with:

    uvicorn csswaf.main:create_app --factory --host 0.0.0.0 --port 8000
"""

import os
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, Response
from pydantic import BaseModel
from starlette.middleware.sessions import SessionMiddleware

from .challenge import PermutationChallenge
from .config.constants import (AUDIT_LOG_LENGTH, CHALLENGE_PREFIX, CHECKPOINT_ALPHABET,
                               COOKIE_NAME, CSS_ANIMATION_SECONDS, DECOY_TOKENS,
                               IDENTITY_CARRIER, LOG_DIR, LOG_FILE, PAGE_REFRESH_SECONDS,
                               SESSION_SECRET, SESSION_STATUS_SECONDS, SESSION_TTL_HOURS,
                               SWEEP_INTERVAL_SECONDS)
from .errors import RandomnessFailure, UnknownToken, UnregisteredSession
from .logs import get_trace_logger, logger, setup_logging
from .render import PENSIVE_BADGE, render_badge, render_page, render_status_badge
from .session import CookieCarrier, SessionCarrier, SessionIdentity
from .tracker import EventOutcome, SequenceTracker

# 1x1 transparent GIF served for every checkpoint and decoy fetch
PIXEL_GIF = (
    b"GIF89a\x01\x00\x01\x00\x80\x00\x00\x00\x00\x00\xff\xff\xff!\xf9\x04\x01\x00\x00\x00\x00"
    b",\x00\x00\x00\x00\x01\x00\x01\x00\x00\x02\x02D\x01\x00;"
)
NO_STORE = {"Cache-Control": "no-store"}
CARRIERS = {"cookie": CookieCarrier, "session": SessionCarrier}
OPEN_PATHS = ("/api/health", "/api/logs/recent")
MAX_LOG_LINES = 5000
SVG = "image/svg+xml"


class SessionStatusResponse(BaseModel):
    """Verdict for the caller's session."""

    session_id: Optional[str]
    state: str


class HealthResponse(BaseModel):
    status: str
    active_challenges: int


def wants_challenge_page(request: Request) -> bool:
    """Only document navigations get a fresh challenge.

    Sub-resource requests (favicon, images) from the challenge page itself
    must not re-register the session and reset the running sequence.
    """
    accept = request.headers.get("accept", "*/*").strip()
    return "text/html" in accept or accept == "*/*"


def create_app(
    tracker: Optional[SequenceTracker] = None,
    identity: Optional[SessionIdentity] = None,
    challenge: Optional[PermutationChallenge] = None,
    carrier: str = IDENTITY_CARRIER,
    prefix: str = CHALLENGE_PREFIX,
    log_dir: str = LOG_DIR,
) -> FastAPI:
    """Build the gateway application.

    Collaborators default to instances built from ``config.constants``; tests
    pass their own to control randomness and time.
    """
    if carrier not in CARRIERS:
        raise ValueError(f"unknown identity carrier {carrier!r}, expected one of {sorted(CARRIERS)}")

    log_file = setup_logging(log_dir, LOG_FILE)

    if challenge is None:
        challenge = PermutationChallenge(CHECKPOINT_ALPHABET, DECOY_TOKENS)
    if identity is None:
        identity = SessionIdentity(COOKIE_NAME, SESSION_TTL_HOURS)
    # An empty tracker is falsy, so compare against None
    if tracker is None:
        tracker = SequenceTracker(
            challenge.decoys,
            ttl_seconds=identity.ttl_hours * 3600,
            audit_length=AUDIT_LOG_LENGTH,
            sweep_interval=SWEEP_INTERVAL_SECONDS,
        )
    carrier_cls = CARRIERS[carrier]

    app = FastAPI(title="CSSWAF", version="1.0.0")
    app.state.tracker = tracker
    app.state.identity = identity
    app.state.challenge = challenge
    app.state.log_file = log_file

    logger.info("Starting CSSWAF gateway: checkpoints=%d decoys=%d prefix=%s carrier=%s",
                len(challenge.alphabet), len(challenge.decoys), prefix, carrier)

    @app.middleware("http")
    async def challenge_gate(request: Request, call_next):
        path = request.url.path
        if path.startswith(prefix + "/") or path in OPEN_PATHS:
            return await call_next(request)

        session_carrier = carrier_cls(request)
        try:
            session_id = identity.resolve(session_carrier)
        except RandomnessFailure:
            logger.exception("Cannot issue session id")
            return JSONResponse({"detail": "Challenge unavailable"}, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)

        tlog = get_trace_logger(session_id, "gate")
        if tracker.is_validated(session_id):
            response = await call_next(request)
            session_carrier.apply(response)
            return response

        if request.method not in ("GET", "HEAD") or not wants_challenge_page(request):
            tlog.info("Denied %s %s: challenge not passed", request.method, path)
            response = JSONResponse({"detail": "Challenge required"}, status_code=status.HTTP_403_FORBIDDEN)
            session_carrier.apply(response)
            return response

        purged = tracker.sweep()
        if purged:
            logger.info("Purged %d expired challenges", purged)

        previous = tracker.state(session_id)
        try:
            plan = challenge.issue(CSS_ANIMATION_SECONDS)
        except RandomnessFailure:
            tlog.exception("Challenge issuance aborted")
            return JSONResponse({"detail": "Challenge unavailable"}, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
        tracker.register_expected(session_id, plan.permutation)
        tlog.info("Challenge issued for %s previous_state=%s honeypot=%s",
                  path, previous.value if previous else None, plan.honeypot)

        page = render_page(session_id, plan, prefix, PAGE_REFRESH_SECONDS, SESSION_STATUS_SECONDS)
        response = HTMLResponse(page, headers=NO_STORE)
        session_carrier.apply(response)
        return response

    # Must wrap the gate so request.session exists when it runs
    app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET,
                       max_age=int(identity.ttl_hours * 3600), session_cookie=f"{COOKIE_NAME}_signed")

    @app.get(prefix + "/img/{token}")
    async def checkpoint_image(token: str, sid: Optional[str] = None,
                               source: Optional[str] = Query(default=None, alias="from")):
        """Record one checkpoint (or decoy) fetch and serve a transparent pixel."""
        if not sid:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing sid")

        tlog = get_trace_logger(sid, "gate")
        try:
            result = tracker.record_event(sid, token)
        except UnregisteredSession:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown session")
        except UnknownToken:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown resource")

        if result.outcome is EventOutcome.HONEYPOT_TRIGGERED:
            tlog.warning("Decoy fetched token=%s from=%s", token, source)
        return Response(content=PIXEL_GIF, media_type="image/gif", headers=NO_STORE)

    @app.get(prefix + "/res/pensive")
    async def pensive_badge():
        """Waiting badge shown until the verdict badge replaces it."""
        return Response(content=render_badge(*PENSIVE_BADGE), media_type=SVG)

    @app.get(prefix + "/res/sessionstatus")
    async def session_status_badge(request: Request, sid: Optional[str] = None):
        """Verdict badge, fetched by the page's style sheet once the checkpoints ran."""
        session_id = sid or carrier_cls(request).read(identity.cookie_name)
        state = tracker.state(session_id) if session_id else None
        return Response(content=render_status_badge(state.value if state else "unknown"),
                        media_type=SVG, headers=NO_STORE)

    @app.get(prefix + "/status", response_model=SessionStatusResponse)
    async def session_status(request: Request):
        """Report the verdict for the caller's session without issuing one."""
        session_id = carrier_cls(request).read(identity.cookie_name)
        state = tracker.state(session_id) if session_id else None
        return SessionStatusResponse(session_id=session_id, state=state.value if state else "unknown")

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(status="healthy", active_challenges=len(tracker))

    @app.get("/api/logs/recent")
    async def recent_logs(request: Request, lines: int = Query(200, ge=1, le=MAX_LOG_LINES)):
        """Return the last N lines of the gateway log.

        Requires the X-Admin-Token header to match LOG_ACCESS_TOKEN. If
        LOG_ACCESS_TOKEN is not set, access is denied.
        """
        token = os.environ.get("LOG_ACCESS_TOKEN")
        header = request.headers.get("x-admin-token")
        if not token:
            logger.warning("Attempt to access logs but LOG_ACCESS_TOKEN not set, denying")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Log access not configured")

        if token != header:
            logger.warning("Unauthorized log access attempt from %s", request.client.host if request.client else None)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")

        try:
            with open(log_file, "rb") as f:
                f.seek(0, os.SEEK_END)
                filesize = f.tell()
                blocksize = 1024
                data = bytearray()
                blocks = -1
                while len(data.splitlines()) <= lines and abs(blocks * blocksize) < filesize:
                    f.seek(blocks * blocksize, os.SEEK_END)
                    data[0:0] = f.read(blocksize)
                    blocks -= 1
                if len(data.splitlines()) <= lines:
                    f.seek(0)
                    data = bytearray(f.read())
        except FileNotFoundError:
            logger.warning("Log file not found when admin tried to fetch recent logs")
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Log file not found")

        content = data.decode("utf-8", errors="replace").splitlines()[-lines:]
        logger.info("Admin fetched recent %d log lines", lines)
        return {"lines": content}

    @app.get("/", response_class=HTMLResponse)
    async def root():
        """Protected landing page, only reachable once the challenge is passed."""
        return "<!DOCTYPE html><html><body><p>Access granted.</p></body></html>"

    return app


if __name__ == "__main__":
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
