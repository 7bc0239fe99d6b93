"""Unit tests for SurprisePolicy."""

import random

import pytest

from stitch_engine.models import Stitch, TubeId
from stitch_engine.population import DEFAULT_SURPRISE_CONCEPTS, SurprisePolicy


def ids(n):
    return [f"s{i:02d}" for i in range(1, n + 1)]


@pytest.fixture
def policy():
    return SurprisePolicy(rng=random.Random(11))


def test_ten_percent_surprises(policy):
    seeded = policy.populate(TubeId.TUBE1, ids(30))

    surprises = [s for s in seeded if s.content.get("is_surprise")]
    assert len(seeded) == 33
    assert len(surprises) == 3


def test_surprises_avoid_edges(policy):
    seeded = policy.populate(TubeId.TUBE2, ids(40))

    for index, stitch in enumerate(seeded):
        if stitch.content.get("is_surprise"):
            before = [s for s in seeded[:index] if not s.content.get("is_surprise")]
            after = [s for s in seeded[index + 1:] if not s.content.get("is_surprise")]
            assert len(before) >= 3
            assert len(after) >= 3


def test_regular_order_preserved(policy):
    seeded = policy.populate(TubeId.TUBE1, ids(30))
    regular = [s.stitch_id for s in seeded if not s.content.get("is_surprise")]
    assert regular == ids(30)


def test_concepts_come_from_tube(policy):
    seeded = policy.populate(TubeId.TUBE3, ids(30))
    concepts = {s.content["concept_code"] for s in seeded if s.content.get("is_surprise")}
    assert concepts <= set(DEFAULT_SURPRISE_CONCEPTS[TubeId.TUBE3])


def test_small_seed_unchanged(policy):
    seeded = policy.populate(TubeId.TUBE1, ids(5))
    assert [s.stitch_id for s in seeded] == ids(5)


def test_limited_by_eligible_slots():
    policy = SurprisePolicy(rate=0.5, rng=random.Random(1))
    seeded = policy.populate("tube1", ids(8))
    # slots 3..5 only
    assert len(seeded) == 11


def test_same_seed_same_result():
    first = SurprisePolicy(rng=random.Random(5)).populate(TubeId.TUBE1, ids(50))
    second = SurprisePolicy(rng=random.Random(5)).populate(TubeId.TUBE1, ids(50))
    assert first == second


def test_tube_without_concepts():
    policy = SurprisePolicy(concepts={TubeId.TUBE1: ("x",)})
    seeded = policy.populate(TubeId.TUBE2, [Stitch(i) for i in ids(30)])
    assert len(seeded) == 30
