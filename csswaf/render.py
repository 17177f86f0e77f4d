"""Challenge page rendering.

Pure string composition: the session id and a :class:`ChallengePlan` go in,
the style sheet and markup the client receives come out. Nothing here keeps
state or makes validation decisions.
"""

import html
import math
from urllib.parse import quote

from .challenge import ChallengePlan
from .config.constants import SESSION_STATUS_SECONDS

BADGE_WIDTH = 160
BADGE_HEIGHT = 40
PENSIVE_BADGE = ("Checking...", "#8a7f5a")
# tracker state value -> (label, fill)
STATUS_BADGES = {
    "pending": ("Still checking", "#8a7f5a"),
    "validated": ("Verified", "#2e7d32"),
    "failed": ("Not verified", "#c62828"),
    "poisoned": ("Blocked", "#4a148c"),
    "unknown": ("No session", "#616161"),
}

# Presentational rules, not part of the challenge itself
BASE_CSS = """
body {
  display: flex;
  justify-content: center;
  align-items: center;
  height: 100vh;
  margin: 0;
  font-family: Arial, sans-serif;
  background-color: #f9f5d7;
}
.container { text-align: center; }
.message { font-size: 18px; color: #333; margin-top: 10px; }
.lds-ring {
  display: inline-block;
  width: 64px;
  height: 64px;
  border: 6px solid #333;
  border-color: #333 transparent #333 transparent;
  border-radius: 50%;
  animation: lds-ring 1.2s linear infinite;
}
@keyframes lds-ring {
  0% { transform: rotate(0deg); }
  100% { transform: rotate(360deg); }
}
"""


def image_url(prefix: str, token: str, session_id: str) -> str:
    return f"{prefix}/img/{quote(token, safe='')}?sid={quote(session_id, safe='')}"


def status_css(session_id: str, prefix: str, status_seconds: float) -> str:
    """Swap the waiting badge for the verdict badge once ``status_seconds`` pass.

    The verdict image is fetched when the second animation ends, after the
    checkpoint animation has finished, so it reflects the tracker's decision.
    """
    status_url = f"{prefix}/res/sessionstatus?sid={quote(session_id, safe='')}"
    return (
        f".pensive {{\n"
        f"  width: {BADGE_WIDTH}px;\n  height: {BADGE_HEIGHT}px;\n  margin: 0 auto;\n"
        f"  animation: show-pensive {status_seconds}s steps(1, end) forwards;\n"
        f"}}\n"
        f".mysession {{\n"
        f"  width: {BADGE_WIDTH}px;\n  height: {BADGE_HEIGHT}px;\n  margin: 0 auto;\n"
        f"  opacity: 0;\n"
        f"  animation: show-mysession {status_seconds}s steps(1, end) forwards;\n"
        f"}}\n"
        f"@keyframes show-pensive {{\n"
        f"  0% {{ opacity: 1; content: url('{prefix}/res/pensive'); }}\n"
        f"  100% {{ opacity: 0; }}\n"
        f"}}\n"
        f"@keyframes show-mysession {{\n"
        f"  0% {{ opacity: 0; }}\n"
        f"  100% {{ opacity: 1; content: url('{status_url}'); }}\n"
        f"}}\n"
    )


def render_css(session_id: str, plan: ChallengePlan, prefix: str,
               status_seconds: float = SESSION_STATUS_SECONDS) -> str:
    """Style sheet carrying the honeypot rule and the timed checkpoint rules.

    The ``.honeypot`` selector matches nothing in the markup, so a renderer
    never requests its URL; a client that pulls every ``url()`` out of the
    sheet does.
    """
    honeypot = f"{image_url(prefix, plan.honeypot, session_id)}&from=css_content_url"
    keyframes = "\n".join(
        f"  {rule.percent}% {{ content: url('{image_url(prefix, rule.token, session_id)}'); }}"
        for rule in plan.rules
    )
    return (
        f".honeypot {{\n  content: url('{honeypot}');\n}}\n"
        f"@keyframes csswaf-load {{\n{keyframes}\n}}\n"
        f".csswaf-hidden {{\n"
        f"  width: 1px;\n  height: 1px;\n  overflow: hidden;\n"
        f"  animation: csswaf-load {plan.window_seconds}s linear forwards;\n"
        f"}}\n"
        f"{status_css(session_id, prefix, status_seconds)}"
        f"{BASE_CSS}"
    )


def render_html(session_id: str, css: str, refresh_seconds: float) -> str:
    """Full challenge document. Reloads itself through a meta refresh, no script."""
    sid = html.escape(session_id)
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta http-equiv="refresh" content="{math.ceil(refresh_seconds)}">
<title>Checking your browser</title>
<style>
{css}</style>
</head>
<body>
<div class="csswaf-hidden"></div>
<div class="container">
  <div class="pensive"></div>
  <div class="mysession"></div>
  <div class="lds-ring"></div>
  <p class="message">Challenge: please wait for {refresh_seconds} seconds</p>
  <p class="message">This Challenge is NoJS friendly</p>
  <p class="message">Session ID: {sid}</p>
</div>
</body>
</html>
"""


def render_badge(label: str, color: str) -> str:
    """Small SVG badge used for the waiting and verdict images."""
    return (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{BADGE_WIDTH}" height="{BADGE_HEIGHT}">'
        f'<rect width="100%" height="100%" rx="8" fill="{color}"/>'
        f'<text x="50%" y="55%" font-family="Arial, sans-serif" font-size="16" fill="#fff" '
        f'text-anchor="middle" dominant-baseline="middle">{html.escape(label)}</text>'
        f"</svg>"
    )


def render_status_badge(state: str) -> str:
    """Verdict badge for a tracker state value, or ``unknown``."""
    label, color = STATUS_BADGES.get(state, STATUS_BADGES["unknown"])
    return render_badge(label, color)


def render_page(session_id: str, plan: ChallengePlan, prefix: str, refresh_seconds: float,
                status_seconds: float = SESSION_STATUS_SECONDS) -> str:
    return render_html(session_id, render_css(session_id, plan, prefix, status_seconds), refresh_seconds)
