"""
Question definitions and response grading.

Question kinds form a closed set. Each kind carries only the data it needs in
a `QuestionDefinition`; the functions below dispatch on `definition.kind`.
Automatically graded kinds share the first-matching-answer strategy and
differ only in how a response is compared with an answer.
"""
import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from questionbank.core.exceptions import CodingError

logger = logging.getLogger(__name__)

# Fractions this close to zero count as wrong.
MARK_TOLERANCE = 0.00000005

Response = Mapping[str, Any]


class QuestionKind(str, enum.Enum):
    DESCRIPTION = "description"
    ESSAY = "essay"
    SHORTANSWER = "shortanswer"
    NUMERICAL = "numerical"
    TRUEFALSE = "truefalse"
    MULTICHOICE = "multichoice"


class QuestionState(str, enum.Enum):
    TODO = "todo"
    INVALID = "invalid"
    COMPLETE = "complete"
    NEEDS_GRADING = "needsgrading"
    GRADED_WRONG = "gradedwrong"
    GRADED_PARTIAL = "gradedpartial"
    GRADED_RIGHT = "gradedright"

    @classmethod
    def graded_state_for_fraction(cls, fraction: float) -> "QuestionState":
        if fraction < 0.000001:
            return cls.GRADED_WRONG
        if fraction > 0.999999:
            return cls.GRADED_RIGHT
        return cls.GRADED_PARTIAL

    @property
    def is_graded(self) -> bool:
        return self in (QuestionState.GRADED_WRONG, QuestionState.GRADED_PARTIAL, QuestionState.GRADED_RIGHT)


@dataclass
class Answer:
    id: int
    answer: str
    fraction: float
    feedback: str = ""
    feedback_format: int = 0
    tolerance: Optional[float] = None


@dataclass
class DisplayOptions:
    feedback: bool = True
    correctness: bool = True
    marks: bool = True
    clear_wrong: bool = False
    num_parts_correct: bool = False


@dataclass
class QuestionHint:
    id: int
    hint: str
    hint_format: int = 1

    def adjust_display_options(self, options: DisplayOptions) -> None:
        pass


@dataclass
class QuestionHintWithParts(QuestionHint):
    show_num_correct: bool = False
    clear_wrong: bool = False

    def adjust_display_options(self, options: DisplayOptions) -> None:
        super().adjust_display_options(options)
        if self.clear_wrong:
            options.clear_wrong = True
        options.num_parts_correct = self.show_num_correct


@dataclass
class ClassifiedResponse:
    response_class_id: Optional[int]
    response: Optional[str]
    fraction: Optional[float]

    @classmethod
    def no_response(cls) -> "ClassifiedResponse":
        return cls(None, "No response", None)


@dataclass
class PossibleResponse:
    response_class: str
    fraction: float

    @classmethod
    def no_response(cls) -> "PossibleResponse":
        return cls("No response", 0)


@dataclass
class QuestionDefinition:
    id: int
    kind: QuestionKind
    name: str = ""
    question_text: str = ""
    general_feedback: str = ""
    default_mark: float = 1.0
    penalty: float = 0.0
    length: int = 1
    parent_id: int = 0
    category_id: Optional[int] = None
    context_id: Optional[int] = None
    idnumber: Optional[str] = None
    version: Optional[int] = None
    status: str = "ready"
    stamp: str = ""
    created_by: Optional[int] = None
    modified_by: Optional[int] = None
    answers: List[Answer] = field(default_factory=list)
    hints: List[QuestionHint] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)


Comparer = Callable[[QuestionDefinition, Response, Answer], bool]


def compare_string_with_wildcard(string: str, pattern: str, ignore_case: bool) -> bool:
    """Match `string` against `pattern` where `*` stands for any run of characters."""
    # Normalise whitespace on both sides.
    string = re.sub(r"\s+", " ", str(string).strip())
    pattern = re.sub(r"\s+", " ", str(pattern).strip())
    regex = "^" + ".*".join(re.escape(part) for part in pattern.split("*")) + "$"
    flags = re.UNICODE | re.DOTALL | (re.IGNORECASE if ignore_case else 0)
    return re.match(regex, string, flags) is not None


def _compare_shortanswer(defn: QuestionDefinition, response: Response, answer: Answer) -> bool:
    value = response.get("answer")
    if value is None or str(value) == "":
        return False
    return compare_string_with_wildcard(value, answer.answer, not defn.options.get("usecase", False))


def _parse_number(value: Any) -> Optional[float]:
    try:
        return float(str(value).strip().replace(",", "."))
    except (TypeError, ValueError):
        return None


def _compare_numerical(defn: QuestionDefinition, response: Response, answer: Answer) -> bool:
    value = _parse_number(response.get("answer"))
    if value is None:
        return False
    if answer.answer.strip() == "*":
        return True
    expected = _parse_number(answer.answer)
    if expected is None:
        return False
    return abs(value - expected) <= (answer.tolerance or 0.0) + MARK_TOLERANCE


def _truefalse_value(answer: Answer) -> str:
    return "1" if answer.answer.strip().lower() in ("true", "1") else "0"


def _compare_truefalse(defn: QuestionDefinition, response: Response, answer: Answer) -> bool:
    value = response.get("answer")
    return value is not None and str(value) == _truefalse_value(answer)


def _compare_multichoice(defn: QuestionDefinition, response: Response, answer: Answer) -> bool:
    value = response.get("answer")
    if value is None or not str(value).lstrip("-").isdigit():
        return False
    index = int(value)
    return 0 <= index < len(defn.answers) and defn.answers[index].id == answer.id


COMPARERS: Dict[QuestionKind, Comparer] = {
    QuestionKind.SHORTANSWER: _compare_shortanswer,
    QuestionKind.NUMERICAL: _compare_numerical,
    QuestionKind.TRUEFALSE: _compare_truefalse,
    QuestionKind.MULTICHOICE: _compare_multichoice,
}

MANUALLY_GRADED_KINDS = frozenset({QuestionKind.ESSAY})
INFORMATION_KINDS = frozenset({QuestionKind.DESCRIPTION})


class FirstMatchingAnswerStrategy:
    """Grades with the first answer the comparer accepts."""

    def __init__(self, definition: QuestionDefinition, comparer: Comparer):
        self.definition = definition
        self.comparer = comparer

    def grade(self, response: Response) -> Optional[Answer]:
        for answer in self.definition.answers:
            if self.comparer(self.definition, response, answer):
                return answer
        return None

    def get_correct_answer(self) -> Optional[Answer]:
        for answer in self.definition.answers:
            if QuestionState.graded_state_for_fraction(answer.fraction) == QuestionState.GRADED_RIGHT:
                return answer
        return None


def grading_strategy(defn: QuestionDefinition) -> FirstMatchingAnswerStrategy:
    comparer = COMPARERS.get(defn.kind)
    if comparer is None:
        raise CodingError(f"Questions of type {defn.kind.value} are not graded automatically.")
    return FirstMatchingAnswerStrategy(defn, comparer)


def is_automatically_graded(defn: QuestionDefinition) -> bool:
    return defn.kind in COMPARERS


def get_matching_answer(defn: QuestionDefinition, response: Response) -> Optional[Answer]:
    return grading_strategy(defn).grade(response)


def get_correct_answer(defn: QuestionDefinition) -> Optional[Answer]:
    return grading_strategy(defn).get_correct_answer()


def grade_response(defn: QuestionDefinition, response: Response) -> Tuple[float, QuestionState]:
    answer = get_matching_answer(defn, response)
    if answer is None:
        return 0.0, QuestionState.GRADED_WRONG
    return answer.fraction, QuestionState.graded_state_for_fraction(answer.fraction)


def classify_response(defn: QuestionDefinition, response: Response) -> Dict[int, ClassifiedResponse]:
    if defn.kind in INFORMATION_KINDS or defn.kind in MANUALLY_GRADED_KINDS:
        return {}
    raw = response.get("answer")
    if raw is None or str(raw) == "":
        return {defn.id: ClassifiedResponse.no_response()}
    summary = summarise_response(defn, response)
    answer = get_matching_answer(defn, response)
    if answer is None:
        return {defn.id: ClassifiedResponse(0, summary, 0)}
    return {defn.id: ClassifiedResponse(answer.id, summary, answer.fraction)}


def get_possible_responses(defn: QuestionDefinition) -> Dict[int, Dict[Optional[int], PossibleResponse]]:
    if not is_automatically_graded(defn):
        return {}
    responses: Dict[Optional[int], PossibleResponse] = {}
    for answer in defn.answers:
        responses[answer.id] = PossibleResponse(answer.answer, answer.fraction)
    responses[None] = PossibleResponse.no_response()
    return {defn.id: responses}


def get_correct_response(defn: QuestionDefinition) -> Dict[str, str]:
    if not is_automatically_graded(defn):
        return {}
    answer = get_correct_answer(defn)
    if answer is None:
        return {}
    if defn.kind == QuestionKind.TRUEFALSE:
        return {"answer": _truefalse_value(answer)}
    if defn.kind == QuestionKind.MULTICHOICE:
        return {"answer": str(defn.answers.index(answer))}
    return {"answer": answer.answer}


def summarise_response(defn: QuestionDefinition, response: Response) -> Optional[str]:
    raw = response.get("answer")
    if raw is None or str(raw) == "":
        return None
    if defn.kind == QuestionKind.TRUEFALSE:
        return "True" if str(raw) == "1" else "False"
    if defn.kind == QuestionKind.MULTICHOICE:
        index = int(raw) if str(raw).lstrip("-").isdigit() else -1
        return defn.answers[index].answer if 0 <= index < len(defn.answers) else None
    return str(raw)


def get_right_answer_summary(defn: QuestionDefinition) -> Optional[str]:
    correct = get_correct_response(defn)
    if not correct:
        return None
    return summarise_response(defn, correct)


def is_complete_response(defn: QuestionDefinition, response: Response) -> bool:
    if defn.kind in INFORMATION_KINDS:
        return True
    raw = response.get("answer")
    if raw is None or str(raw).strip() == "":
        return False
    if defn.kind == QuestionKind.NUMERICAL:
        return _parse_number(raw) is not None
    return True


def is_same_response(defn: QuestionDefinition, previous: Response, current: Response) -> bool:
    return str(previous.get("answer", "")) == str(current.get("answer", ""))


def get_min_fraction(defn: QuestionDefinition) -> float:
    if not is_automatically_graded(defn) or not defn.answers:
        return 0.0
    return min(0.0, min(a.fraction for a in defn.answers))


def get_max_fraction(defn: QuestionDefinition) -> float:
    if defn.kind in INFORMATION_KINDS:
        return 0.0
    return 1.0


def compute_final_grade(defn: QuestionDefinition, responses: Sequence[Response], total_tries: int) -> float:
    """Countback grade: each try after the first costs one penalty."""
    best = 0.0
    for i, response in enumerate(responses[:total_tries]):
        fraction, _ = grade_response(defn, response)
        best = max(best, fraction - i * defn.penalty)
    return max(0.0, best)


def get_hint(defn: QuestionDefinition, hint_number: int) -> Optional[QuestionHint]:
    if 0 <= hint_number < len(defn.hints):
        return defn.hints[hint_number]
    return None
