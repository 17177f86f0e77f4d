"""Per-session sequence validation.

Each registered session holds the expected permutation and the checkpoint
tokens reported so far. The verdict is decided once, when the number of
distinct reported checkpoints reaches the permutation length: an exact
element-wise match validates the session, anything else fails it. Ordering
is not checked per arrival because near-simultaneous fetches around adjacent
keyframes may legitimately reach the server out of order.

A decoy token poisons the session immediately, whatever its current state.

Locking: every session has its own lock; the store-wide guard is only held
for dictionary lookups and never while an event is processed.
"""

import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from .errors import UnknownToken, UnregisteredSession
from .logs import get_trace_logger


class ValidationState(str, Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    FAILED = "failed"
    POISONED = "poisoned"

    @property
    def terminal(self) -> bool:
        return self is not ValidationState.PENDING


class EventOutcome(str, Enum):
    """What a single reported event did to its session."""

    APPENDED = "appended"
    DUPLICATE_TOKEN = "duplicate_token"
    HONEYPOT_TRIGGERED = "honeypot_triggered"
    SEQUENCE_MATCHED = "sequence_matched"
    SEQUENCE_MISMATCH = "sequence_mismatch"
    IGNORED_TERMINAL = "ignored_terminal"


@dataclass(frozen=True)
class EventResult:
    outcome: EventOutcome
    state: ValidationState


@dataclass
class ChallengeRecord:
    expected: Tuple[str, ...]
    expires_at: float
    state: ValidationState = ValidationState.PENDING
    observed: List[str] = field(default_factory=list)
    seen: Set[str] = field(default_factory=set)
    audit: Deque[Tuple[float, str]] = field(default_factory=deque)


class _Slot:
    __slots__ = ("lock", "record", "retired")

    def __init__(self):
        self.lock = threading.Lock()
        self.record: Optional[ChallengeRecord] = None
        self.retired = False


class ChallengeStore:
    """Session id -> record mapping with one lock per session."""

    def __init__(self):
        self._slots: Dict[str, _Slot] = {}
        self._guard = threading.Lock()

    def __len__(self):
        with self._guard:
            return sum(1 for slot in self._slots.values() if slot.record is not None)

    def keys(self) -> List[str]:
        with self._guard:
            return list(self._slots)

    @contextmanager
    def locked(self, session_id: str, create: bool = False):
        """Yield the session's slot with its lock held, or None if untracked.

        A slot retired while we were waiting on its lock is no longer in the
        store; look the session up again.
        """
        while True:
            with self._guard:
                slot = self._slots.get(session_id)
                if slot is None and create:
                    slot = self._slots[session_id] = _Slot()
            if slot is None:
                yield None
                return
            with slot.lock:
                if slot.retired:
                    continue
                yield slot
                return

    def retire(self, session_id: str, slot: _Slot):
        """Drop ``slot`` from the store. Caller must hold ``slot.lock``."""
        slot.retired = True
        slot.record = None
        with self._guard:
            if self._slots.get(session_id) is slot:
                del self._slots[session_id]


class SequenceTracker:
    """Validation state machine for all live challenges.

    Args:
        decoys: honeypot tokens; any report of one poisons the session.
        ttl_seconds: lifetime of a registration. Once elapsed the session is
            treated as never registered.
        clock: monotonic time source, injectable for tests.
        audit_length: how many raw reports to keep per session.
        sweep_interval: minimum seconds between two full sweeps run by
            :meth:`sweep`.
        store: explicit store object; a private one is created by default.
    """

    def __init__(
        self,
        decoys: Iterable[str],
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
        audit_length: int = 32,
        store: Optional[ChallengeStore] = None,
        sweep_interval: float = 60.0,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.decoys: FrozenSet[str] = frozenset(decoys)
        self.ttl_seconds = ttl_seconds
        self.audit_length = audit_length
        self._clock = clock
        self._store = store if store is not None else ChallengeStore()
        self.sweep_interval = sweep_interval
        self._last_sweep: Optional[float] = None
        self._sweep_guard = threading.Lock()

    def __len__(self):
        return len(self._store)

    def _live(self, session_id: str, slot: Optional[_Slot]) -> Optional[ChallengeRecord]:
        # Caller holds slot.lock. Expired records are dropped here.
        if slot is None or slot.record is None:
            return None
        if self._clock() >= slot.record.expires_at:
            get_trace_logger(session_id, "tracker").info("Challenge expired in state=%s", slot.record.state.value)
            self._store.retire(session_id, slot)
            return None
        return slot.record

    def register_expected(self, session_id: str, permutation: Iterable[str]):
        """Start (or restart) a challenge for ``session_id``.

        Any previous observations and verdict for the session are discarded.
        """
        expected = tuple(permutation)
        if not expected:
            raise ValueError("permutation must not be empty")
        if len(set(expected)) != len(expected):
            raise ValueError("permutation contains duplicate tokens")
        if self.decoys.intersection(expected):
            raise ValueError("permutation contains decoy tokens")

        with self._store.locked(session_id, create=True) as slot:
            previous = slot.record.state if slot.record is not None else None
            slot.record = ChallengeRecord(
                expected=expected,
                expires_at=self._clock() + self.ttl_seconds,
                audit=deque(maxlen=self.audit_length),
            )
        get_trace_logger(session_id, "tracker").info(
            "Registered expected sequence=%s previous_state=%s",
            list(expected),
            previous.value if previous else None,
        )

    def record_event(self, session_id: str, token: str) -> EventResult:
        """Apply one reported resource fetch to the session.

        Raises:
            UnregisteredSession: no live expectation for ``session_id``.
            UnknownToken: ``token`` is neither a checkpoint nor a decoy.
        """
        tlog = get_trace_logger(session_id, "tracker")
        with self._store.locked(session_id) as slot:
            record = self._live(session_id, slot)
            if record is None:
                tlog.warning("Event for unregistered session token=%s", token)
                raise UnregisteredSession(session_id)

            is_decoy = token in self.decoys
            if not is_decoy and token not in record.expected:
                tlog.warning("Unknown token=%s", token)
                raise UnknownToken(session_id, token)

            record.audit.append((self._clock(), token))

            if is_decoy:
                record.state = ValidationState.POISONED
                tlog.warning("Honeypot triggered token=%s observed=%s", token, record.observed)
                return EventResult(EventOutcome.HONEYPOT_TRIGGERED, record.state)

            if record.state.terminal:
                tlog.debug("Ignoring token=%s after terminal state=%s", token, record.state.value)
                return EventResult(EventOutcome.IGNORED_TERMINAL, record.state)

            if token in record.seen:
                tlog.debug("Duplicate token=%s suppressed", token)
                return EventResult(EventOutcome.DUPLICATE_TOKEN, record.state)

            record.seen.add(token)
            record.observed.append(token)

            if len(record.observed) < len(record.expected):
                tlog.info("Checkpoint token=%s (%d/%d)", token, len(record.observed), len(record.expected))
                return EventResult(EventOutcome.APPENDED, record.state)

            if all(got == want for got, want in zip(record.observed, record.expected)):
                record.state = ValidationState.VALIDATED
                tlog.info("Session validated sequence=%s", record.observed)
                return EventResult(EventOutcome.SEQUENCE_MATCHED, record.state)

            record.state = ValidationState.FAILED
            tlog.warning("Sequence mismatch expected=%s received=%s", list(record.expected), record.observed)
            return EventResult(EventOutcome.SEQUENCE_MISMATCH, record.state)

    def state(self, session_id: str) -> Optional[ValidationState]:
        """Current state, or None for unknown and expired sessions."""
        with self._store.locked(session_id) as slot:
            record = self._live(session_id, slot)
            return record.state if record is not None else None

    def is_validated(self, session_id: str) -> bool:
        return self.state(session_id) is ValidationState.VALIDATED

    def is_failed(self, session_id: str) -> bool:
        return self.state(session_id) is ValidationState.FAILED

    def is_poisoned(self, session_id: str) -> bool:
        return self.state(session_id) is ValidationState.POISONED

    def observed(self, session_id: str) -> List[str]:
        with self._store.locked(session_id) as slot:
            record = self._live(session_id, slot)
            if record is None:
                raise UnregisteredSession(session_id)
            return list(record.observed)

    def events(self, session_id: str) -> List[Tuple[float, str]]:
        """Raw reports kept for audit, including duplicates and post-verdict ones."""
        with self._store.locked(session_id) as slot:
            record = self._live(session_id, slot)
            if record is None:
                raise UnregisteredSession(session_id)
            return list(record.audit)

    def discard(self, session_id: str) -> bool:
        """Forget the session; returns whether anything was tracked."""
        with self._store.locked(session_id) as slot:
            if slot is None:
                return False
            had_record = slot.record is not None
            self._store.retire(session_id, slot)
        return had_record

    def purge_expired(self) -> int:
        """Drop every expired record. Returns how many were removed."""
        purged = 0
        for session_id in self._store.keys():
            with self._store.locked(session_id) as slot:
                if slot is not None and slot.record is not None and self._live(session_id, slot) is None:
                    purged += 1
        return purged

    def sweep(self) -> int:
        """Run :meth:`purge_expired` at most once per ``sweep_interval``.

        Callers that find a sweep already running, or one that ran recently,
        return 0 immediately. Lookups still expire records lazily in between.
        """
        if not self._sweep_guard.acquire(blocking=False):
            return 0
        try:
            now = self._clock()
            if self._last_sweep is not None and now - self._last_sweep < self.sweep_interval:
                return 0
            self._last_sweep = now
            return self.purge_expired()
        finally:
            self._sweep_guard.release()
