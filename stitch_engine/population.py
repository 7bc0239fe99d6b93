"""
Surprise stitch policy for seeding tubes.

Roughly one stitch in ten is a "surprise" drawn from a neighbouring strand,
kept away from the first and last few slots of the seeded queue. The policy
only shapes the initial seed; after that the queue orders everything.
"""

from __future__ import annotations

import math
import random
from collections.abc import Mapping, Sequence

from loguru import logger

from stitch_engine.models import Stitch, TubeId

DEFAULT_SURPRISE_CONCEPTS: dict[TubeId, tuple[str, ...]] = {
    TubeId.TUBE1: ("addition_crossing_tens", "subtraction_with_borrowing"),
    TubeId.TUBE2: ("division_related_to_multiplication", "doubling_cross_over"),
    TubeId.TUBE3: ("halving_related_to_division", "multiplication_inverse"),
}


class SurprisePolicy:
    """
    Mixes surprise stitches into a tube's seed list.

    Args:
        rate: Surprises per regular stitch (floored)
        edge_margin: Regular stitches kept before and after every surprise
        concepts: Surprise concept codes per tube, used round-robin
        rng: Random source for slot selection
    """

    def __init__(
        self,
        rate: float = 0.1,
        edge_margin: int = 3,
        concepts: Mapping[TubeId, Sequence[str]] | None = None,
        rng: random.Random | None = None,
    ):
        self.rate = rate
        self.edge_margin = edge_margin
        self.concepts = dict(concepts or DEFAULT_SURPRISE_CONCEPTS)
        self.rng = rng or random.Random()

    def surprise_count(self, stitch_count: int) -> int:
        return math.floor(stitch_count * self.rate)

    def eligible_slots(self, stitch_count: int) -> range:
        """Insertion indices with edge_margin regular stitches on both sides."""
        return range(self.edge_margin, stitch_count - self.edge_margin + 1)

    def populate(self, tube_id: TubeId | str, stitches: Sequence[Stitch | str]) -> list[Stitch]:
        """Return the seed list with surprise stitches inserted."""
        tube = TubeId.parse(tube_id)
        regular = [s if isinstance(s, Stitch) else Stitch(stitch_id=str(s)) for s in stitches]
        concepts = self.concepts.get(tube, ())

        slots = self.eligible_slots(len(regular))
        count = min(self.surprise_count(len(regular)), len(slots))
        if not concepts or count <= 0:
            return regular

        taken = {s.stitch_id for s in regular}
        chosen = sorted(self.rng.sample(list(slots), count), reverse=True)
        result = list(regular)
        for i, slot in enumerate(chosen):
            stitch_id = f"{tube.value}-{slot:04d}-999"
            if stitch_id in taken:
                continue
            result.insert(
                slot,
                Stitch(
                    stitch_id=stitch_id,
                    content={"concept_code": concepts[i % len(concepts)], "is_surprise": True},
                ),
            )
            taken.add(stitch_id)

        logger.debug(f"Seeded {tube.value} with {len(result) - len(regular)} surprise stitches")
        return result
