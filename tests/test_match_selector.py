import random

import pytest

from models.face_comparator import FaceRepresentation, SizeRatioComparator
from models.match_selector import MatchSelector, RegistryEntry


def rep(size: int) -> FaceRepresentation:
    return FaceRepresentation.from_bytes(b"\x00" * size)


class CountingComparator:
    """Size-ratio comparator that records how often it was called"""

    def __init__(self):
        self.inner = SizeRatioComparator()
        self.calls = 0

    def compare(self, a, b):
        self.calls += 1
        return self.inner.compare(a, b)


class TestScenarios:
    def test_equal_scores_pick_earlier_identity(self):
        registry = [
            RegistryEntry("S1", rep(1000)),
            RegistryEntry("S2", rep(1000)),
        ]
        result = MatchSelector(SizeRatioComparator()).select(rep(1000), registry, threshold=0.5)

        assert result.identity == "S1"
        assert result.confidence == pytest.approx(0.8)
        assert result.is_match

    def test_empty_registry_is_no_match(self):
        result = MatchSelector(SizeRatioComparator()).select(rep(1000), [])

        assert result.identity is None
        assert result.confidence == 0.0
        assert not result.is_match

    def test_below_threshold_reports_best_score(self):
        registry = [RegistryEntry("S1", rep(1000))]
        result = MatchSelector(SizeRatioComparator()).select(rep(100), registry, threshold=0.5)

        assert result.identity is None
        assert result.confidence == pytest.approx(0.26)

    def test_score_equal_to_threshold_is_accepted(self):
        registry = [RegistryEntry("S1", rep(1000))]
        result = MatchSelector(SizeRatioComparator()).select(rep(500), registry, threshold=0.5)

        assert result.identity == "S1"
        assert result.confidence == pytest.approx(0.5)

    def test_default_threshold(self):
        selector = MatchSelector(SizeRatioComparator())
        assert selector.threshold == 0.5

    def test_best_match_wins_over_first_acceptable(self):
        registry = [
            RegistryEntry("S1", rep(600)),   # 0.2 + 0.6 * 0.6 = 0.56
            RegistryEntry("S2", rep(1000)),  # 0.8
        ]
        result = MatchSelector(SizeRatioComparator()).select(rep(1000), registry, threshold=0.5)
        assert result.identity == "S2"

    def test_every_entry_is_scored(self):
        comparator = CountingComparator()
        registry = [RegistryEntry(f"S{i}", rep(1000)) for i in range(7)]

        MatchSelector(comparator).select(rep(1000), registry)

        assert comparator.calls == 7


class TestProperties:
    """Brute-force checks over random registries"""

    @pytest.mark.parametrize("seed", range(20))
    def test_selected_identity_has_maximum_score(self, seed):
        rng = random.Random(seed)
        comparator = SizeRatioComparator()
        registry = [
            RegistryEntry(f"S{i}", rep(rng.randint(1, 2000)))
            for i in range(rng.randint(1, 15))
        ]
        candidate = rep(rng.randint(1, 2000))
        threshold = rng.choice([0.3, 0.5, 0.7, 0.75])

        result = MatchSelector(comparator).select(candidate, registry, threshold=threshold)

        scores = [comparator.compare(candidate, entry.representation) for entry in registry]
        best = max(scores)
        assert result.confidence == pytest.approx(best)

        if result.identity is None:
            assert best < threshold
        else:
            assert best >= threshold
            # earliest entry reaching the maximum
            assert result.identity == registry[scores.index(best)].identity

    @pytest.mark.parametrize("seed", range(5))
    def test_tie_break_is_deterministic(self, seed):
        rng = random.Random(seed)
        entries = [RegistryEntry(f"S{i}", rep(1000)) for i in range(5)]
        rng.shuffle(entries)
        selector = MatchSelector(SizeRatioComparator())

        first = selector.select(rep(1000), entries)
        second = selector.select(rep(1000), entries)

        assert first.identity == entries[0].identity
        assert second.identity == first.identity
