"""CSSWAF: a script-free, CSS-timed anti-scraper challenge."""

from .challenge import ChallengePlan, PermutationChallenge, TimedRule
from .errors import CSSWAFError, RandomnessFailure, UnknownToken, UnregisteredSession
from .session import CookieCarrier, SessionCarrier, SessionIdentity
from .tracker import ChallengeStore, EventOutcome, EventResult, SequenceTracker, ValidationState

__version__ = "1.0.0"
