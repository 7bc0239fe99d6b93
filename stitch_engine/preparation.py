"""
Background stitch preparation.

Turns facts from the fact-lookup collaborator into a ReadyStitch:

1. Fact selection (exactly questions_per_stitch facts for the concept)
2. Question formatting
3. Distractor generation matched to the learner's boundary level
4. Quality shuffle (no near-identical answers back to back where avoidable)
5. Hand-off to the ReadinessCache through a preparation token

Assembly is CPU-only and synchronous; prepare() runs it in a worker thread
so the event loop serving the live tube never blocks.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from loguru import logger

from stitch_engine.cache import (
    CacheWriteResult,
    QuestionMetadata,
    ReadinessCache,
    ReadyQuestion,
    ReadyStitch,
    StitchMetadata,
)
from stitch_engine.errors import PreparationFailed
from stitch_engine.models import TubeId, utc_now
from stitch_engine.skip_number import round_half_up


@dataclass(frozen=True)
class Fact:
    """A single arithmetic fact, e.g. prompt "7 x 8", answer "56"."""

    fact_id: str
    prompt: str
    answer: str
    operation: str = ""
    operands: tuple[int, ...] = ()


@runtime_checkable
class FactLookup(Protocol):
    """Source of facts for a concept."""

    def find_facts(self, concept_code: str, limit: int) -> list[Fact]:
        """Return up to `limit` facts for the concept."""
        ...


def _as_int(value: str) -> int | None:
    try:
        return int(str(value).strip())
    except ValueError:
        return None


class StitchPreparer:
    """
    Assembles ReadyStitch bundles and caches them.

    Args:
        facts: FactLookup collaborator
        cache: ReadinessCache receiving finished stitches
        questions_per_stitch: Questions per bundle
        rng: Random source (seed it for reproducible bundles)
    """

    def __init__(
        self,
        facts: FactLookup,
        cache: ReadinessCache,
        questions_per_stitch: int = 20,
        rng: random.Random | None = None,
    ):
        self.facts = facts
        self.cache = cache
        self.questions_per_stitch = questions_per_stitch
        self.rng = rng or random.Random()
        self._tasks: dict[tuple[str, TubeId], asyncio.Task] = {}

    # =========================================================================
    # Assembly
    # =========================================================================

    def assemble(
        self,
        user_id: str,
        tube_id: TubeId | str,
        stitch_id: str,
        concept_code: str,
        boundary_level: int = 1,
        concept_name: str = "",
        is_surprise: bool = False,
        progress: Callable[[float], object] | None = None,
    ) -> ReadyStitch:
        """
        Build a complete ReadyStitch.

        Raises:
            PreparationFailed: not enough facts, or no usable distractor
        """
        tube = TubeId.parse(tube_id)
        report = progress or (lambda fraction: None)

        facts = list(self.facts.find_facts(concept_code, self.questions_per_stitch))
        if len(facts) < self.questions_per_stitch:
            raise PreparationFailed(
                f"Concept {concept_code} has {len(facts)} facts, "
                f"{self.questions_per_stitch} needed for {stitch_id}"
            )
        facts = facts[: self.questions_per_stitch]
        report(0.25)

        now = utc_now()
        questions = []
        for index, fact in enumerate(facts, start=1):
            questions.append(
                ReadyQuestion(
                    question_id=f"{stitch_id}-q{index:02d}",
                    question_text=fact.prompt,
                    correct_answer=str(fact.answer),
                    distractor=self._distractor_for(fact, facts, boundary_level),
                    metadata=QuestionMetadata(
                        concept_code=concept_code,
                        fact_id=fact.fact_id,
                        boundary_level=boundary_level,
                        question_format=fact.operation or "recall",
                        assembly_timestamp=now,
                    ),
                )
            )
        report(0.5)

        questions = self.quality_shuffle(questions)
        report(0.75)

        return ReadyStitch(
            stitch_id=stitch_id,
            tube_id=tube,
            questions=questions,
            metadata=StitchMetadata(
                user_id=user_id,
                concept_name=concept_name or concept_code,
                boundary_level=boundary_level,
                total_questions=len(questions),
                preparation_timestamp=now,
                is_shuffled=True,
                is_surprise=is_surprise,
            ),
        )

    def _distractor_for(self, fact: Fact, batch: Sequence[Fact], boundary_level: int) -> str:
        correct = _as_int(fact.answer)
        if correct is not None:
            return str(self.make_distractor(correct, boundary_level, fact.operation, fact.operands))

        # Non-numeric answers borrow another fact's answer.
        others = sorted({f.answer for f in batch if f.answer != fact.answer})
        if not others:
            raise PreparationFailed(f"No distractor available for fact {fact.fact_id}")
        return self.rng.choice(others)

    def make_distractor(
        self,
        correct: int,
        boundary_level: int,
        operation: str = "",
        operands: Sequence[int] = (),
    ) -> int:
        """
        Plausible wrong answer, harder to reject at higher boundary levels.

        Level 1: +/-1..3
        Level 2: +/-2..5, or operand sum for multiplication
        Level 3: x1.5 for doubling, or +/-3..8
        Level 4: off-by-one table for multiplication, or +/-5..12
        Level 5: product plus one operand, or +/-10%
        """
        rng = self.rng
        sign = rng.choice((1, -1))
        is_product = operation == "multiplication" and len(operands) >= 2

        if boundary_level <= 1:
            distractor = correct + sign * rng.randint(1, 3)
        elif boundary_level == 2:
            if is_product and rng.random() > 0.7:
                distractor = operands[0] + operands[1]
            else:
                distractor = correct + sign * rng.randint(2, 5)
        elif boundary_level == 3:
            if operation == "doubling" and rng.random() > 0.6:
                distractor = round_half_up(correct * 1.5)
            else:
                distractor = correct + sign * rng.randint(3, 8)
        elif boundary_level == 4:
            if is_product:
                distractor = operands[0] * (operands[1] + 1)
            else:
                distractor = correct + sign * rng.randint(5, 12)
        else:
            if operation == "multiplication" and operands:
                distractor = correct + operands[0]
            else:
                distractor = round_half_up(correct * rng.uniform(0.9, 1.1))

        distractor = max(1, abs(distractor))
        if distractor == correct:
            distractor += max(1, boundary_level)
        return distractor

    def quality_shuffle(self, questions: list[ReadyQuestion]) -> list[ReadyQuestion]:
        """Shuffle, then break up adjacent answers within 2 of each other."""
        shuffled = list(questions)
        self.rng.shuffle(shuffled)

        for i in range(len(shuffled) - 1):
            current = _as_int(shuffled[i].correct_answer)
            following = _as_int(shuffled[i + 1].correct_answer)
            if current is None or following is None:
                continue
            if abs(current - following) <= 2 and i + 3 < len(shuffled):
                shuffled[i + 1], shuffled[i + 3] = shuffled[i + 3], shuffled[i + 1]

        return shuffled

    # =========================================================================
    # Background Preparation
    # =========================================================================

    async def prepare(
        self,
        user_id: str,
        tube_id: TubeId | str,
        stitch_id: str,
        concept_code: str,
        boundary_level: int = 1,
        concept_name: str = "",
        is_surprise: bool = False,
    ) -> CacheWriteResult | None:
        """
        Assemble a stitch off the event loop and cache it.

        Returns:
            The cache write, or None if the tube was invalidated meanwhile

        Raises:
            PreparationFailed: assembly failed (the preparation is abandoned)
            asyncio.CancelledError: cancelled (the preparation is abandoned)
        """
        tube = TubeId.parse(tube_id)
        token = self.cache.begin_preparation(user_id, tube, stitch_id)

        try:
            ready = await asyncio.to_thread(
                self.assemble,
                user_id,
                tube,
                stitch_id,
                concept_code,
                boundary_level,
                concept_name,
                is_surprise,
                lambda fraction: self.cache.update_progress(token, fraction),
            )
        except asyncio.CancelledError:
            self.cache.abandon_preparation(token)
            logger.debug(f"Preparation of {stitch_id} for {user_id}/{tube.value} cancelled")
            raise
        except Exception as e:
            self.cache.abandon_preparation(token)
            logger.error(f"Preparation of {stitch_id} for {user_id}/{tube.value} failed: {e}")
            raise

        return self.cache.complete_preparation(token, ready)

    def schedule(
        self,
        user_id: str,
        tube_id: TubeId | str,
        stitch_id: str,
        concept_code: str,
        boundary_level: int = 1,
        **kwargs,
    ) -> asyncio.Task:
        """
        Start prepare() as a task, replacing any preparation already running
        for the same tube. Must be called from a running event loop.
        """
        tube = TubeId.parse(tube_id)
        key = (user_id, tube)
        self.cancel(user_id, tube)

        task = asyncio.create_task(
            self.prepare(user_id, tube, stitch_id, concept_code, boundary_level, **kwargs),
            name=f"prepare-{user_id}-{tube.value}-{stitch_id}",
        )
        self._tasks[key] = task

        def _forget(done: asyncio.Task) -> None:
            if self._tasks.get(key) is done:
                del self._tasks[key]

        task.add_done_callback(_forget)
        return task

    def cancel(self, user_id: str, tube_id: TubeId | str) -> bool:
        """Cancel the running preparation for a tube. Returns True if one was running."""
        task = self._tasks.pop((user_id, TubeId.parse(tube_id)), None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def pending(self) -> list[asyncio.Task]:
        return [task for task in self._tasks.values() if not task.done()]
