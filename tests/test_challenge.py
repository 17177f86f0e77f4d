"""Permutation drawing, honeypot selection and keyframe encoding."""

import random
from collections import Counter

import pytest

from csswaf.challenge import MAX_CHECKPOINTS, PermutationChallenge
from csswaf.errors import RandomnessFailure

ALPHABET = ("A", "B", "C", "D", "E", "F")
DECOYS = ("G.html", "H.txt", "article", "O")


class BrokenRandom:
    def randrange(self, n):
        raise NotImplementedError("no entropy source")


class TestDerivePermutation:

    @pytest.mark.parametrize("alphabet", [("A",), ("A", "B"), ALPHABET, tuple("abcdefghijklmnop")])
    def test_output_is_a_bijection(self, alphabet):
        gen = PermutationChallenge(alphabet, DECOYS, rng=random.Random(7))
        for _ in range(50):
            perm = gen.derive_permutation()
            assert len(perm) == len(alphabet)
            assert sorted(perm) == sorted(alphabet)

    def test_default_source_is_system_random(self):
        gen = PermutationChallenge(ALPHABET, DECOYS)
        assert sorted(gen.derive_permutation()) == sorted(ALPHABET)

    def test_explicit_alphabet(self, challenge):
        assert sorted(challenge.derive_permutation(["x", "y", "z"])) == ["x", "y", "z"]

    def test_positions_are_uniform(self):
        gen = PermutationChallenge(ALPHABET, DECOYS, rng=random.Random(42))
        trials = 30000
        counts = {pos: Counter() for pos in range(len(ALPHABET))}
        for _ in range(trials):
            for pos, token in enumerate(gen.derive_permutation()):
                counts[pos][token] += 1

        expected = trials / len(ALPHABET)
        for pos in counts:
            for token in ALPHABET:
                assert abs(counts[pos][token] - expected) < expected * 0.06

    def test_all_orderings_reachable(self):
        gen = PermutationChallenge(("A", "B", "C"), DECOYS, rng=random.Random(3))
        seen = Counter(gen.derive_permutation() for _ in range(6000))
        assert len(seen) == 6
        assert min(seen.values()) > 850

    def test_randomness_failure_is_fatal(self):
        gen = PermutationChallenge(ALPHABET, DECOYS, rng=BrokenRandom())
        with pytest.raises(RandomnessFailure):
            gen.derive_permutation()
        with pytest.raises(RandomnessFailure):
            gen.issue(3.5)


class TestSelectHoneypot:

    def test_picks_from_decoys(self, challenge):
        assert all(challenge.select_honeypot() in challenge.decoys for _ in range(100))

    def test_every_decoy_is_chosen(self):
        gen = PermutationChallenge(ALPHABET, DECOYS, rng=random.Random(11))
        picks = Counter(gen.select_honeypot() for _ in range(4000))
        assert set(picks) == set(DECOYS)
        assert min(picks.values()) > 850

    def test_empty_pool_rejected(self, challenge):
        with pytest.raises(ValueError):
            challenge.select_honeypot([])


class TestEncodeTiming:

    def test_six_checkpoint_offsets(self):
        rules = PermutationChallenge.encode_timing(("C", "A", "F", "B", "E", "D"), 3.5)
        assert [r.token for r in rules] == ["C", "A", "F", "B", "E", "D"]
        assert [r.percent for r in rules] == [0, 16, 33, 50, 66, 83]
        assert rules[0].offset_seconds == 0
        assert rules[3].offset_seconds == pytest.approx(1.75)

    @pytest.mark.parametrize("n", [1, 2, 7, 29, 99, 100])
    def test_percentages_strictly_increase(self, n):
        rules = PermutationChallenge.encode_timing([f"t{i}" for i in range(n)], 2.0)
        percents = [r.percent for r in rules]
        assert percents == sorted(set(percents))
        assert percents[0] == 0

    def test_floor_is_exact(self):
        rules = PermutationChallenge.encode_timing([f"t{i}" for i in range(100)], 1.0)
        assert rules[29].percent == 29

    def test_rejects_bad_input(self):
        with pytest.raises(ValueError):
            PermutationChallenge.encode_timing([], 3.5)
        with pytest.raises(ValueError):
            PermutationChallenge.encode_timing(["A"], 0)
        with pytest.raises(ValueError):
            PermutationChallenge.encode_timing([str(i) for i in range(MAX_CHECKPOINTS + 1)], 3.5)


class TestConstruction:

    def test_issue(self, challenge):
        plan = challenge.issue(3.5)
        assert sorted(plan.permutation) == sorted(ALPHABET)
        assert plan.honeypot in challenge.decoys
        assert [r.token for r in plan.rules] == list(plan.permutation)
        assert plan.window_seconds == 3.5

    @pytest.mark.parametrize("alphabet, decoys", [
        ((), DECOYS),
        (("A", "A"), DECOYS),
        (ALPHABET, ()),
        (ALPHABET, ("A", "Z")),
    ])
    def test_invalid_configuration(self, alphabet, decoys):
        with pytest.raises(ValueError):
            PermutationChallenge(alphabet, decoys)
