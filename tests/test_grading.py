import pytest

from questionbank.core.exceptions import CodingError
from questionbank.services.behaviours import (Certainty, adjust_fraction, certainty_label, get_archetypal_behaviours,
                                              get_behaviour_type, optimal_probability_high, optimal_probability_low,
                                              summary_with_certainty)
from questionbank.services.grading import (Answer, ClassifiedResponse, DisplayOptions, PossibleResponse,
                                           QuestionDefinition, QuestionHint, QuestionHintWithParts, QuestionKind,
                                           QuestionState, classify_response, compare_string_with_wildcard,
                                           compute_final_grade, get_correct_response, get_hint, get_max_fraction,
                                           get_min_fraction, get_possible_responses, get_right_answer_summary,
                                           grade_response, is_automatically_graded, is_complete_response,
                                           is_same_response, summarise_response)
from questionbank.services.options import (fraction_options, fraction_options_full, match_grade_options,
                                           question_reorder_qtypes)


def shortanswer(**options):
    return QuestionDefinition(id=10, kind=QuestionKind.SHORTANSWER, penalty=0.3333333, options=options, answers=[
        Answer(1, "Mitochondria", 1.0),
        Answer(2, "mito*", 0.5),
        Answer(3, "*", 0.0),
    ])


def numerical():
    return QuestionDefinition(id=11, kind=QuestionKind.NUMERICAL, answers=[
        Answer(1, "3.14", 1.0, tolerance=0.01),
        Answer(2, "*", 0.0),
    ])


def multichoice():
    return QuestionDefinition(id=12, kind=QuestionKind.MULTICHOICE, answers=[
        Answer(21, "Nucleus", 0.0),
        Answer(22, "Mitochondrion", 1.0),
        Answer(23, "Ribosome", -0.5),
    ])


def truefalse():
    return QuestionDefinition(id=13, kind=QuestionKind.TRUEFALSE, answers=[
        Answer(31, "True", 1.0),
        Answer(32, "False", 0.0),
    ])


class TestCertaintyBasedMarking:
    @pytest.mark.parametrize("fraction, certainty, expected", [
        (1.0, Certainty.HIGH, 3),
        (0.0, Certainty.HIGH, -6),
        (0.5, Certainty.MED, 1.0),
        (0.0, Certainty.LOW, 0),
        (0.0, Certainty.MED, -2),
        (1.0, Certainty.NO_IDEA, 0),
        (0.0, Certainty.NO_IDEA, 0),
    ])
    def test_adjust_fraction(self, fraction, certainty, expected):
        assert adjust_fraction(fraction, certainty) == expected

    def test_tiny_fractions_count_as_wrong(self):
        assert adjust_fraction(0.00000001, Certainty.MED) == -2

    @pytest.mark.parametrize("certainty", [0, 7, -3])
    def test_unknown_certainty(self, certainty):
        with pytest.raises(CodingError):
            adjust_fraction(1.0, certainty)

    def test_no_idea_has_no_label_or_limits(self):
        with pytest.raises(CodingError):
            certainty_label(Certainty.NO_IDEA)
        with pytest.raises(CodingError):
            optimal_probability_low(Certainty.NO_IDEA)

    def test_labels_and_limits(self):
        assert certainty_label(Certainty.HIGH) == "C=3 (Quite sure: >80%)"
        assert summary_with_certainty("Mitochondria", Certainty.MED) == "Mitochondria [C=2]"
        assert summary_with_certainty("Mitochondria", None) == "Mitochondria"
        assert optimal_probability_low(Certainty.HIGH) == 0.8
        assert optimal_probability_high(Certainty.LOW) == pytest.approx(2 / 3)

    def test_behaviour_types(self):
        assert get_behaviour_type("deferredcbm").adjust_random_guess_score(0.0) == 0
        assert get_behaviour_type("deferredfeedback").adjust_random_guess_score(0.25) == 0.25
        assert "interactivecountback" not in get_archetypal_behaviours()
        assert "informationitem" not in get_archetypal_behaviours()
        assert get_behaviour_type("informationitem").get_unused_display_options()[0] == "correctness"

    def test_unknown_behaviour_falls_back(self, caplog):
        behaviour = get_behaviour_type("spaced")
        assert behaviour.name == "spaced"
        assert not behaviour.uses_cbm
        assert "Unknown question behaviour" in caplog.text


class TestShortAnswer:
    def test_first_matching_answer_wins(self):
        assert grade_response(shortanswer(), {"answer": "mitochondria"}) == (1.0, QuestionState.GRADED_RIGHT)
        assert grade_response(shortanswer(), {"answer": "mitosis"}) == (0.5, QuestionState.GRADED_PARTIAL)
        assert grade_response(shortanswer(), {"answer": "nucleus"}) == (0.0, QuestionState.GRADED_WRONG)

    def test_case_sensitivity(self):
        assert grade_response(shortanswer(usecase=True), {"answer": "MITOCHONDRIA"})[0] == 0.0

    def test_empty_response(self):
        assert grade_response(shortanswer(), {"answer": ""}) == (0.0, QuestionState.GRADED_WRONG)
        assert not is_complete_response(shortanswer(), {"answer": "  "})

    def test_wildcard_normalises_whitespace(self):
        assert compare_string_with_wildcard("  cell   wall ", "cell wall", True)
        assert compare_string_with_wildcard("a.b", "a.b", False)
        assert not compare_string_with_wildcard("axb", "a.b", False)


class TestOtherKinds:
    def test_numerical_tolerance_and_decimal_comma(self):
        assert grade_response(numerical(), {"answer": "3,145"})[0] == 1.0
        assert grade_response(numerical(), {"answer": "3.2"})[0] == 0.0
        assert grade_response(numerical(), {"answer": "pi"}) == (0.0, QuestionState.GRADED_WRONG)
        assert not is_complete_response(numerical(), {"answer": "pi"})

    def test_multichoice_by_index(self):
        assert grade_response(multichoice(), {"answer": "1"}) == (1.0, QuestionState.GRADED_RIGHT)
        assert grade_response(multichoice(), {"answer": 2})[0] == -0.5
        assert grade_response(multichoice(), {"answer": "7"})[0] == 0.0
        assert summarise_response(multichoice(), {"answer": "0"}) == "Nucleus"
        assert get_min_fraction(multichoice()) == -0.5

    def test_truefalse(self):
        assert grade_response(truefalse(), {"answer": "1"})[1] == QuestionState.GRADED_RIGHT
        assert grade_response(truefalse(), {"answer": 0})[1] == QuestionState.GRADED_WRONG
        assert summarise_response(truefalse(), {"answer": "1"}) == "True"
        assert get_right_answer_summary(truefalse()) == "True"

    def test_essay_is_not_automatically_graded(self):
        essay = QuestionDefinition(id=14, kind=QuestionKind.ESSAY)
        assert not is_automatically_graded(essay)
        assert classify_response(essay, {"answer": "text"}) == {}
        assert get_possible_responses(essay) == {}
        with pytest.raises(CodingError):
            grade_response(essay, {"answer": "text"})


class TestClassification:
    def test_classify(self):
        defn = shortanswer()
        assert classify_response(defn, {"answer": "MITOCHONDRIA"}) == {10: ClassifiedResponse(1, "MITOCHONDRIA", 1.0)}
        assert classify_response(defn, {}) == {10: ClassifiedResponse(None, "No response", None)}

    def test_unmatched_response_is_class_zero(self):
        defn = QuestionDefinition(id=10, kind=QuestionKind.SHORTANSWER, answers=[Answer(1, "yes", 1.0)])
        assert classify_response(defn, {"answer": "no"}) == {10: ClassifiedResponse(0, "no", 0)}

    def test_possible_responses(self):
        responses = get_possible_responses(truefalse())[13]
        assert responses[31] == PossibleResponse("True", 1.0)
        assert responses[None] == PossibleResponse("No response", 0)

    def test_correct_response(self):
        assert get_correct_response(multichoice()) == {"answer": "1"}
        assert get_correct_response(shortanswer()) == {"answer": "Mitochondria"}


class TestCountback:
    def test_later_tries_lose_a_penalty_each(self):
        grade = compute_final_grade(shortanswer(), [{"answer": "nucleus"}, {"answer": "mitochondria"}], 3)
        assert grade == pytest.approx(0.6666667)

    def test_best_try_counts(self):
        grade = compute_final_grade(shortanswer(), [{"answer": "mitochondria"}, {"answer": "nucleus"}], 3)
        assert grade == 1.0

    def test_never_negative(self):
        grade = compute_final_grade(multichoice(), [{"answer": "2"}], 1)
        assert grade == 0.0


def test_hints_adjust_display_options():
    defn = QuestionDefinition(id=1, kind=QuestionKind.SHORTANSWER, hints=[
        QuestionHint(1, "Think energy"),
        QuestionHintWithParts(2, "Look again", show_num_correct=True, clear_wrong=True),
    ])
    options = DisplayOptions()
    get_hint(defn, 0).adjust_display_options(options)
    assert options == DisplayOptions()
    get_hint(defn, 1).adjust_display_options(options)
    assert options.clear_wrong and options.num_parts_correct
    assert get_hint(defn, 2) is None


class TestGradeOptions:
    def test_match_exact(self):
        assert match_grade_options(fraction_options(), 0.33333) == 0.3333333
        assert match_grade_options(fraction_options(), 0.37) is False

    def test_match_nearest(self):
        assert match_grade_options(fraction_options(), 0.37, "nearest") == 0.4
        assert match_grade_options(fraction_options_full(), -0.98, "nearest") == -1.0

    def test_unknown_mode(self):
        with pytest.raises(CodingError):
            match_grade_options(fraction_options(), 0.5, "round")

    def test_option_labels(self):
        options = fraction_options()
        assert options[1.0] == "100%"
        assert options[0.0] == "None"
        assert options[0.3333333] == "33.33333%"
        assert fraction_options_full()[-0.5] == "-50%"


@pytest.mark.parametrize("to_move, direction, expected", [
    ("numerical", -1, ["numerical", "shortanswer", "truefalse"]),
    ("numerical", 1, ["shortanswer", "truefalse", "numerical"]),
    ("shortanswer", -1, ["shortanswer", "numerical", "truefalse"]),
    ("essay", 1, ["shortanswer", "numerical", "truefalse"]),
])
def test_reorder_qtypes(to_move, direction, expected):
    assert question_reorder_qtypes(["shortanswer", "numerical", "truefalse"], to_move, direction) == expected


def test_fraction_range_and_same_response():
    description = QuestionDefinition(id=15, kind=QuestionKind.DESCRIPTION)
    assert get_max_fraction(description) == 0.0
    assert get_max_fraction(truefalse()) == 1.0
    assert get_min_fraction(shortanswer()) == 0.0
    assert is_complete_response(description, {})
    assert is_same_response(shortanswer(), {"answer": 3}, {"answer": "3"})
    assert not is_same_response(shortanswer(), {"answer": "3"}, {})
