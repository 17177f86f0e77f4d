"""Permutation challenge construction.

A challenge is a uniformly random ordering of the checkpoint alphabet plus one
decoy token. The ordering is encoded as CSS keyframe offsets so that a real
renderer fetches the checkpoints in permutation order while the animation
plays; the decoy is referenced unconditionally, so only a client that
resolves every URL in the style sheet eagerly ever requests it.

The ordering proof is a behavioural signal, not a cryptographic one: a
patient client that fetches all resources and replays them in the right
order still passes.
"""

import secrets
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .errors import RandomnessFailure

# keyframe offsets are whole percentages
MAX_CHECKPOINTS = 100


@dataclass(frozen=True)
class TimedRule:
    """One checkpoint fetch scheduled at a point of the animation."""

    token: str
    position: int
    percent: int
    offset_seconds: float


@dataclass(frozen=True)
class ChallengePlan:
    """Everything needed to render one challenge instance."""

    permutation: Tuple[str, ...]
    honeypot: str
    rules: Tuple[TimedRule, ...]
    window_seconds: float


class PermutationChallenge:
    """Draws permutations and honeypots from a fixed alphabet and decoy set.

    Args:
        alphabet: checkpoint tokens, each one a real sequenced resource.
        decoys: honeypot tokens, disjoint from ``alphabet``.
        rng: object with a ``randrange`` method. Defaults to
            ``secrets.SystemRandom``; tests pass a seeded ``random.Random``.
    """

    def __init__(self, alphabet: Sequence[str], decoys: Sequence[str], rng=None):
        alphabet = tuple(alphabet)
        decoys = tuple(decoys)
        if not alphabet:
            raise ValueError("checkpoint alphabet must not be empty")
        if len(set(alphabet)) != len(alphabet):
            raise ValueError("checkpoint alphabet contains duplicates")
        if len(alphabet) > MAX_CHECKPOINTS:
            raise ValueError(f"at most {MAX_CHECKPOINTS} checkpoints fit in percentage keyframes")
        if not decoys:
            raise ValueError("decoy set must not be empty")
        overlap = set(alphabet) & set(decoys)
        if overlap:
            raise ValueError(f"decoy tokens overlap the checkpoint alphabet: {sorted(overlap)}")

        self.alphabet = alphabet
        self.decoys = tuple(sorted(set(decoys)))
        self._rng = rng if rng is not None else secrets.SystemRandom()

    def _randbelow(self, n: int) -> int:
        try:
            return self._rng.randrange(n)
        except (NotImplementedError, OSError) as e:
            raise RandomnessFailure("no secure random source for challenge") from e

    def derive_permutation(self, alphabet: Optional[Sequence[str]] = None) -> Tuple[str, ...]:
        """Return a uniformly random ordering of ``alphabet`` (Fisher-Yates).

        Walks from the last index down to the second, swapping each element
        with one drawn uniformly from ``[0, i]``.
        """
        items = list(self.alphabet if alphabet is None else alphabet)
        for i in range(len(items) - 1, 0, -1):
            j = self._randbelow(i + 1)
            items[i], items[j] = items[j], items[i]
        return tuple(items)

    def select_honeypot(self, decoys: Optional[Sequence[str]] = None) -> str:
        """Pick one decoy uniformly, independently of the permutation."""
        pool = self.decoys if decoys is None else tuple(decoys)
        if not pool:
            raise ValueError("decoy set must not be empty")
        return pool[self._randbelow(len(pool))]

    @staticmethod
    def encode_timing(permutation: Sequence[str], window_seconds: float) -> Tuple[TimedRule, ...]:
        """Map position ``i`` of ``n`` to ``floor(i/n*100)`` percent of the window.

        Integer arithmetic keeps the floor exact; with ``n <= 100`` the
        percentages are strictly increasing in ``i``.
        """
        n = len(permutation)
        if n == 0:
            raise ValueError("permutation must not be empty")
        if n > MAX_CHECKPOINTS:
            raise ValueError(f"at most {MAX_CHECKPOINTS} checkpoints fit in percentage keyframes")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        return tuple(
            TimedRule(token=token, position=i, percent=i * 100 // n, offset_seconds=window_seconds * i / n)
            for i, token in enumerate(permutation)
        )

    def issue(self, window_seconds: float) -> ChallengePlan:
        """Draw a fresh permutation and honeypot and encode the timing."""
        permutation = self.derive_permutation()
        return ChallengePlan(
            permutation=permutation,
            honeypot=self.select_honeypot(),
            rules=self.encode_timing(permutation, window_seconds),
            window_seconds=window_seconds,
        )
