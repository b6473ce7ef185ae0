"""
School Platform Quiz Engine
Presentation-order shuffling for questions and their options
"""

import random
from dataclasses import dataclass
from typing import List, Optional, Sequence, TypeVar

from ..database.models import Question

T = TypeVar("T")

_default_rng = random.SystemRandom()


@dataclass
class PresentedQuestion:
    """A question paired with its options in the order they will be shown"""

    question: Question
    options: List[dict]


def shuffled(items: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    """Return a uniformly random permutation of ``items`` (Fisher-Yates).

    The input sequence is left untouched.
    """
    rng = rng or _default_rng
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randrange(i + 1)
        result[i], result[j] = result[j], result[i]
    return result


def arrange_questions(
    questions: Sequence[Question],
    shuffle_questions: bool = False,
    shuffle_answers: bool = False,
    rng: Optional[random.Random] = None
) -> List[PresentedQuestion]:
    """Lay out a quiz's questions for one view.

    Question order and option order are shuffled independently. Nothing is
    persisted, so every call may produce a different arrangement; grading
    keys on option ids, not positions.
    """
    presented = []
    for question in questions:
        options = [dict(option) for option in (question.options or [])]
        if shuffle_answers and question.is_auto_gradable:
            options = shuffled(options, rng)
        presented.append(PresentedQuestion(question=question, options=options))

    if shuffle_questions:
        presented = shuffled(presented, rng)

    return presented


__all__ = ["PresentedQuestion", "shuffled", "arrange_questions"]
