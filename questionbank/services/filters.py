"""
Question bank filter conditions.

A filter arrives per condition key as `{jointype, values, rangetype?}` and is
turned into a WHERE fragment plus bound parameters. The fragments refer to
the aliases used by the question listing query: `q` (questions), `qv`
(question_versions) and `qbe` (question_bank_entries).

Every value is bound as a named parameter; nothing from the filter is
spliced into the SQL text.
"""
import enum
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from questionbank.core.exceptions import InvalidFilterError
from questionbank.models.orm import PREVIEW_COMPONENT, QuestionStatus
from questionbank.services.categories import question_categorylist

Fragment = Tuple[str, Dict[str, Any]]


class JoinType(enum.IntEnum):
    NONE = 0
    ANY = 1
    ALL = 2


JOINTYPE_DEFAULT = JoinType.ANY


class RangeType(str, enum.Enum):
    AFTER = "after"
    BEFORE = "before"
    BETWEEN = "between"


class StatusFilterValue(str, enum.Enum):
    """Wire codes of the status filter. There is no code "1"."""

    READY = "0"
    DRAFT = "2"

    @property
    def status(self) -> QuestionStatus:
        return QuestionStatus.READY if self is StatusFilterValue.READY else QuestionStatus.DRAFT


class Filter(BaseModel):
    jointype: JoinType = JOINTYPE_DEFAULT
    values: List[Any] = Field(default_factory=list)
    rangetype: Optional[RangeType] = None
    filteroptions: Dict[str, Any] = Field(default_factory=dict)


def parse_filters(filters: Mapping[str, Any]) -> Dict[str, Filter]:
    parsed = {}
    for key, value in filters.items():
        try:
            parsed[key] = value if isinstance(value, Filter) else Filter.model_validate(value)
        except PydanticValidationError as e:
            raise InvalidFilterError(f"Invalid filter '{key}': {e.errors()[0]['msg']}")
    return parsed


class Condition(ABC):
    """One filterable column of the question bank listing."""

    key: str = ""
    title: str = ""
    filter_class: Optional[str] = None

    def __init__(self, filters: Optional[Mapping[str, Any]] = None):
        self.filters = parse_filters(filters or {})
        self._where, self._params = self.build_query_from_filters(self.filters)

    def where(self) -> str:
        return self._where

    def params(self) -> Dict[str, Any]:
        return dict(self._params)

    def get_condition_key(self) -> str:
        return self.key

    def get_title(self) -> str:
        return self.title

    def get_filter_class(self) -> Optional[str]:
        return self.filter_class

    def get_join_list(self) -> List[JoinType]:
        return [JoinType.NONE, JoinType.ANY, JoinType.ALL]

    def get_initial_values(self) -> List[Dict[str, Any]]:
        return []

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "key": self.get_condition_key(),
            "title": self.get_title(),
            "filterclass": self.get_filter_class(),
            "joinlist": [int(j) for j in self.get_join_list()],
            "initialvalues": self.get_initial_values(),
        }

    @classmethod
    @abstractmethod
    def build_query_from_filters(cls, filters: Mapping[str, Filter]) -> Fragment:
        ...


class QuestionStatusCondition(Condition):
    key = "qstatus"
    title = "Question status"

    def get_join_list(self) -> List[JoinType]:
        return [JoinType.ALL, JoinType.NONE]

    def get_initial_values(self) -> List[Dict[str, Any]]:
        return [
            {"value": 0, "title": "Ready"},
            {"value": 2, "title": "Draft"},
        ]

    @classmethod
    def build_query_from_filters(cls, filters: Mapping[str, Filter]) -> Fragment:
        flt = filters.get(cls.key)
        if flt is None or not flt.values:
            return "", {}
        statuses = []
        for raw in flt.values:
            try:
                statuses.append(StatusFilterValue(str(raw)).status)
            except ValueError:
                raise InvalidFilterError(f"Unknown question status filter value {raw!r}")

        if flt.jointype == JoinType.NONE:
            glue, operator = " AND ", "!="
        else:
            glue, operator = " OR ", "="
        clauses, params = [], {}
        for i, status in enumerate(statuses):
            name = f"{cls.key}{i}"
            clauses.append(f"qv.status {operator} :{name}")
            params[name] = status.value
        return "(" + glue.join(clauses) + ")", params


def _range_bounds(key: str, flt: Filter) -> Tuple[Optional[int], Optional[int]]:
    if flt.rangetype is None:
        raise InvalidFilterError(f"Filter '{key}' needs a rangetype")
    try:
        values = [int(v) for v in flt.values]
    except (TypeError, ValueError):
        raise InvalidFilterError(f"Filter '{key}' values must be unix timestamps")
    needed = 2 if flt.rangetype == RangeType.BETWEEN else 1
    if len(values) < needed:
        raise InvalidFilterError(f"Filter '{key}' with rangetype {flt.rangetype.value} needs {needed} value(s)")
    if flt.rangetype == RangeType.AFTER:
        return values[0], None
    if flt.rangetype == RangeType.BEFORE:
        return None, values[0]
    return values[0], values[1]


def _range_clause(column: str, key: str, flt: Filter) -> Fragment:
    start, end = _range_bounds(key, flt)
    clauses, params = [], {}
    if start is not None:
        clauses.append(f"{column} >= :{key}_from")
        params[f"{key}_from"] = start
    if end is not None:
        clauses.append(f"{column} <= :{key}_to")
        params[f"{key}_to"] = end
    return " AND ".join(clauses), params


class ModifiedDateCondition(Condition):
    key = "modifieddate"
    title = "Modified"
    filter_class = "core/datafilter/filtertypes/date"

    def get_join_list(self) -> List[JoinType]:
        return [JoinType.NONE, JoinType.ALL]

    @classmethod
    def build_query_from_filters(cls, filters: Mapping[str, Filter]) -> Fragment:
        flt = filters.get(cls.key)
        if flt is None:
            return "", {}
        clause, params = _range_clause("q.time_modified", cls.key, flt)
        where = f"({clause})"
        if flt.jointype == JoinType.NONE:
            where = f"NOT {where}"
        return where, params


class LastUsageCondition(Condition):
    key = "lastuseddate"
    title = "Last used"
    filter_class = "core/datafilter/filtertypes/date"

    @classmethod
    def build_query_from_filters(cls, filters: Mapping[str, Filter]) -> Fragment:
        flt = filters.get(cls.key)
        if flt is None:
            return "", {}
        clause, params = _range_clause("qatt.time_modified", cls.key, flt)
        params[f"{cls.key}_preview"] = PREVIEW_COMPONENT
        where = ("q.id IN (SELECT qatt.question_id"
                 " FROM question_attempts qatt"
                 " JOIN question_usages qu ON qu.id = qatt.question_usage_id"
                 f" WHERE qu.component != :{cls.key}_preview AND {clause})")
        if flt.jointype == JoinType.NONE:
            where = f"NOT ({where})"
        return where, params


class CategoryCondition(Condition):
    """Restricts the listing to a category, optionally with its sub-categories."""

    key = "category"
    title = "Category"

    def __init__(self, filters: Optional[Mapping[str, Any]] = None, db: Optional[Session] = None):
        self.db = db
        super().__init__(filters)

    def get_join_list(self) -> List[JoinType]:
        return [JoinType.ANY]

    def build_query_from_filters(self, filters: Mapping[str, Filter]) -> Fragment:
        flt = filters.get(self.key)
        if flt is None or not flt.values:
            return "", {}
        try:
            ids = [int(v) for v in flt.values]
        except (TypeError, ValueError):
            raise InvalidFilterError("Category filter values must be category ids")
        if flt.filteroptions.get("includesubcategories") and self.db is not None:
            expanded: List[int] = []
            for cat_id in ids:
                expanded.extend(c for c in question_categorylist(self.db, cat_id) if c not in expanded)
            ids = expanded
        names = [f"{self.key}{i}" for i in range(len(ids))]
        placeholders = ", ".join(f":{n}" for n in names)
        return f"qbe.question_category_id IN ({placeholders})", dict(zip(names, ids))


class HiddenCondition(Condition):
    """Hides questions whose current version is hidden unless values ask to show them."""

    key = "hidden"
    title = "Show hidden questions"

    def get_join_list(self) -> List[JoinType]:
        return [JoinType.ANY]

    @classmethod
    def build_query_from_filters(cls, filters: Mapping[str, Filter]) -> Fragment:
        flt = filters.get(cls.key)
        show_hidden = bool(flt and flt.values and str(flt.values[0]) == "1")
        if show_hidden:
            return "", {}
        return f"qv.status <> :{cls.key}_status", {f"{cls.key}_status": QuestionStatus.HIDDEN.value}


CONDITION_CLASSES: Sequence[Type[Condition]] = (
    CategoryCondition,
    HiddenCondition,
    QuestionStatusCondition,
    ModifiedDateCondition,
    LastUsageCondition,
)


def combine_conditions(conditions: Sequence[Condition], jointype: JoinType = JoinType.ALL) -> Fragment:
    """Join the non-empty condition fragments under the filter-set join type."""
    parts = [(c.where(), c.params()) for c in conditions if c.where()]
    if not parts:
        return "", {}
    params: Dict[str, Any] = {}
    for _, p in parts:
        params.update(p)
    if jointype == JoinType.NONE:
        return " AND ".join(f"NOT ({w})" for w, _ in parts), params
    glue = " OR " if jointype == JoinType.ANY else " AND "
    return glue.join(f"({w})" for w, _ in parts), params


def build_filter_query(filters: Mapping[str, Any], db: Optional[Session] = None,
                       jointype: JoinType = JoinType.ALL) -> Fragment:
    parsed = parse_filters(filters)
    known = {cls.key for cls in CONDITION_CLASSES}
    unknown = sorted(set(parsed) - known)
    if unknown:
        raise InvalidFilterError(f"Unknown filter condition(s): {', '.join(unknown)}")
    conditions: List[Condition] = []
    for cls in CONDITION_CLASSES:
        if cls.key not in parsed:
            continue
        if cls is CategoryCondition:
            conditions.append(CategoryCondition(parsed, db=db))
        else:
            conditions.append(cls(parsed))
    return combine_conditions(conditions, jointype)


def condition_metadata() -> List[Dict[str, Any]]:
    return [cls().to_metadata() for cls in CONDITION_CLASSES]
