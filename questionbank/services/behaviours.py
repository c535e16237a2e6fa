"""
Question behaviours and certainty-based marking (CBM).
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from questionbank.core.exceptions import CodingError
from questionbank.services.grading import MARK_TOLERANCE

logger = logging.getLogger(__name__)


class Certainty(enum.IntEnum):
    NO_IDEA = -1
    LOW = 1
    MED = 2
    HIGH = 3


CERTAINTIES = (Certainty.LOW, Certainty.MED, Certainty.HIGH)

RIGHT_SCORE: Dict[Certainty, float] = {Certainty.LOW: 1, Certainty.MED: 2, Certainty.HIGH: 3}
WRONG_SCORE: Dict[Certainty, float] = {Certainty.LOW: 0, Certainty.MED: -2, Certainty.HIGH: -6}

# Probability of being right for which each certainty level is the best bet.
LOW_LIMIT: Dict[Certainty, float] = {Certainty.LOW: 0, Certainty.MED: 0.666666666666667, Certainty.HIGH: 0.8}
HIGH_LIMIT: Dict[Certainty, float] = {Certainty.LOW: 0.666666666666667, Certainty.MED: 0.8, Certainty.HIGH: 1}

_LABELS = {
    Certainty.LOW: "C=1 (Unsure: <67%)",
    Certainty.MED: "C=2 (Mid: >67%)",
    Certainty.HIGH: "C=3 (Quite sure: >80%)",
}


def default_certainty() -> Certainty:
    return Certainty.LOW


def to_certainty(value: int, allowed: Sequence[Certainty] = CERTAINTIES) -> Certainty:
    try:
        certainty = Certainty(value)
    except ValueError:
        certainty = None
    if certainty not in allowed:
        raise CodingError(f"Unknown certainty level {value!r}")
    return certainty


def adjust_fraction(fraction: float, certainty: int) -> float:
    """CBM mark for a graded fraction at the stated certainty."""
    if certainty == Certainty.NO_IDEA:
        return 0
    certainty = to_certainty(certainty)
    if fraction <= MARK_TOLERANCE:
        return WRONG_SCORE[certainty]
    return RIGHT_SCORE[certainty] * fraction


def certainty_label(certainty: int) -> str:
    return _LABELS[to_certainty(certainty)]


def certainty_short_label(certainty: int) -> str:
    return f"C={int(certainty)}"


def summary_with_certainty(summary: Optional[str], certainty: Optional[int]) -> Optional[str]:
    if certainty is None:
        return summary
    return f"{summary} [{certainty_short_label(certainty)}]"


def optimal_probability_low(certainty: int) -> float:
    return LOW_LIMIT[to_certainty(certainty)]


def optimal_probability_high(certainty: int) -> float:
    return HIGH_LIMIT[to_certainty(certainty)]


@dataclass(frozen=True)
class BehaviourType:
    name: str
    archetypal: bool = False
    can_questions_finish_during_the_attempt: bool = False
    allows_multiple_submitted_responses: bool = False
    uses_cbm: bool = False
    unused_display_options: List[str] = field(default_factory=list)

    def is_archetypal(self) -> bool:
        return self.archetypal

    def get_unused_display_options(self) -> List[str]:
        return list(self.unused_display_options)

    def adjust_random_guess_score(self, fraction: float) -> float:
        if self.uses_cbm:
            return adjust_fraction(fraction, default_certainty())
        return fraction


BEHAVIOUR_TYPES: Dict[str, BehaviourType] = {
    b.name: b for b in (
        BehaviourType("deferredfeedback", archetypal=True),
        BehaviourType("deferredcbm", archetypal=True, uses_cbm=True),
        BehaviourType("immediatefeedback", archetypal=True, can_questions_finish_during_the_attempt=True),
        BehaviourType("immediatecbm", archetypal=True, can_questions_finish_during_the_attempt=True, uses_cbm=True),
        BehaviourType("interactive", archetypal=True, can_questions_finish_during_the_attempt=True,
                      allows_multiple_submitted_responses=True),
        BehaviourType("interactivecountback", can_questions_finish_during_the_attempt=True,
                      allows_multiple_submitted_responses=True),
        BehaviourType("adaptive", archetypal=True, allows_multiple_submitted_responses=True),
        BehaviourType("adaptivenopenalty", archetypal=True, allows_multiple_submitted_responses=True),
        BehaviourType("manualgraded"),
        BehaviourType("informationitem",
                      unused_display_options=["correctness", "marks", "specificfeedback", "rightanswer"]),
    )
}


def get_behaviour_type(name: str) -> BehaviourType:
    behaviour = BEHAVIOUR_TYPES.get(name)
    if behaviour is None:
        logger.warning(f"Unknown question behaviour '{name}', using fallback behaviour type")
        return BehaviourType(name)
    return behaviour


def get_archetypal_behaviours() -> List[str]:
    return [name for name, b in BEHAVIOUR_TYPES.items() if b.archetypal]
