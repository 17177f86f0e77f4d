"""Runtime configuration for the CSSWAF challenge service.

Every value can be overridden through an environment variable, read once at
import time.
"""

import os
import secrets


def _csv(value: str) -> tuple:
    return tuple(item.strip() for item in value.split(",") if item.strip())


# Identity carrier
COOKIE_NAME = os.environ.get("CSSWAF_COOKIE_NAME", "csswaf_session")
SESSION_TTL_HOURS = float(os.environ.get("CSSWAF_SESSION_TTL_HOURS", "1"))
# "cookie" (plain cookie) or "session" (Starlette signed session cookie)
IDENTITY_CARRIER = os.environ.get("CSSWAF_IDENTITY_CARRIER", "cookie")
# SECURITY: set SESSION_SECRET_KEY in production, otherwise signed sessions
# do not survive a restart
SESSION_SECRET = os.environ.get("SESSION_SECRET_KEY", secrets.token_hex(32))

# Challenge construction
CHECKPOINT_ALPHABET = _csv(os.environ.get("CSSWAF_CHECKPOINTS", "A,B,C,D,E,F"))
DECOY_TOKENS = _csv(os.environ.get(
    "CSSWAF_DECOYS",
    "G.html,H.txt,I.sitemap,J.xml,article,content,user,history,O,P,Q",
))
CHALLENGE_PREFIX = os.environ.get("CSSWAF_PREFIX", "/_csswaf").rstrip("/")

# Timing (seconds)
CSS_ANIMATION_SECONDS = 3.5
SESSION_STATUS_SECONDS = 4.0
PAGE_REFRESH_SECONDS = 5.5

# Tracker
AUDIT_LOG_LENGTH = 32
# Minimum gap between full expiry sweeps
SWEEP_INTERVAL_SECONDS = 60.0

# Logging
LOG_DIR = os.environ.get("CSSWAF_LOG_DIR", "logs")
LOG_FILE = "csswaf.log"
