"""
Grade option lists and question type ordering helpers.
"""
from typing import Dict, List, Sequence, Union

from questionbank.core.exceptions import CodingError

_POSITIVE_FRACTIONS = [
    1.0, 0.9, 0.8333333, 0.8, 0.75, 0.7, 0.6666667, 0.6, 0.5, 0.4, 0.3333333, 0.3, 0.25, 0.2,
    0.1666667, 0.1428571, 0.125, 0.1111111, 0.1, 0.05,
]


def _label(fraction: float) -> str:
    return f"{round(fraction * 100, 5):.10g}%"


def fraction_options() -> Dict[float, str]:
    """Grades an answer may carry: 100% down to None (0)."""
    options = {f: _label(f) for f in _POSITIVE_FRACTIONS}
    options[0.0] = "None"
    return options


def fraction_options_full() -> Dict[float, str]:
    """As fraction_options, plus the matching negative grades."""
    options = fraction_options()
    for f in _POSITIVE_FRACTIONS:
        options[-f] = _label(-f)
    return options


def match_grade_options(options: Dict[float, str], grade: float, mode: str = "error") -> Union[float, bool]:
    """Snap an imported grade onto one of `options`.

    'error' accepts only (almost) exact matches and returns False otherwise;
    'nearest' returns the closest option.
    """
    if mode == "error":
        for value in options:
            if abs(grade - value) < 0.00001:
                return value
        return False
    if mode == "nearest":
        best: Union[float, bool] = False
        best_mismatch = 2.0
        for value in options:
            mismatch = abs(grade - value)
            if mismatch < best_mismatch:
                best = value
                best_mismatch = mismatch
        return best
    raise CodingError(f"Unknown matchgrades {mode} passed to match_grade_options")


def question_reorder_qtypes(sorted_qtypes: Sequence[str], to_move: str, direction: int) -> List[str]:
    """Swap `to_move` with its neighbour in `direction` (-1 up, +1 down)."""
    new_order = list(sorted_qtypes)
    if to_move not in new_order:
        return new_order
    key = new_order.index(to_move)
    other = key + direction
    if other < 0 or other >= len(new_order):
        return new_order
    new_order[key], new_order[other] = new_order[other], new_order[key]
    return new_order
