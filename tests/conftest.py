import random

import pytest

from csswaf.challenge import PermutationChallenge
from csswaf.tracker import SequenceTracker

ALPHABET = ("A", "B", "C", "D", "E", "F")
DECOYS = ("G.html", "H.txt", "I.sitemap", "J.xml", "article", "content", "user", "history", "O", "P", "Q")


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    return SequenceTracker(DECOYS, ttl_seconds=3600, clock=clock)


@pytest.fixture
def challenge():
    return PermutationChallenge(ALPHABET, DECOYS, rng=random.Random(1234))
