"""
Question authoring, versioning and loading.

A question bank entry anchors a question across versions; each version points
at its own immutable `questions` row.
"""
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import func, select, text
from sqlalchemy.orm import Session

from questionbank.core.clock import Clock, unix_now
from questionbank.core.events import EventDispatcher
from questionbank.core.exceptions import CodingError, NotFoundError, ValidationError
from questionbank.models.orm import (Comment, Context, Question, QuestionAnswer, QuestionBankEntry, QuestionCategory,
                                     QuestionHint, QuestionStatus, QuestionTypeOptions, QuestionVersion)
from questionbank.services.capabilities import CapabilityChecker, question_require_capability_on
from questionbank.services.categories import get_category, make_stamp, shorten_text
from questionbank.services.filters import HiddenCondition, JoinType, build_filter_query
from questionbank.services.grading import (Answer, QuestionDefinition, QuestionHint as HintDefinition,
                                           QuestionHintWithParts, QuestionKind)
from questionbank.services.tags import get_items_tags, question_sort_tags

logger = logging.getLogger(__name__)

COMMENT_COMPONENT = "qbank_comment"
COMMENT_AREA = "question"


def question_snapshot(question: Question) -> Dict[str, Any]:
    return {
        "id": question.id, "parent_id": question.parent_id, "name": question.name, "qtype": question.qtype,
        "default_mark": question.default_mark, "penalty": question.penalty, "stamp": question.stamp,
        "time_created": question.time_created, "time_modified": question.time_modified,
        "created_by": question.created_by, "modified_by": question.modified_by,
    }


def _validate_fields(name: str, qtype: str, default_mark: float, penalty: float) -> None:
    if not name or not name.strip():
        raise ValidationError("Question name must not be empty")
    try:
        QuestionKind(qtype)
    except ValueError:
        raise ValidationError(f"Unknown question type '{qtype}'")
    if not 0 <= penalty <= 1:
        raise ValidationError("Penalty must be between 0 and 1")
    if default_mark < 0:
        raise ValidationError("Default mark must not be negative")


def _check_idnumber_free(db: Session, category_id: int, idnumber: Optional[str],
                         exclude_entry_id: Optional[int] = None) -> None:
    if idnumber in (None, ""):
        return
    stmt = select(QuestionBankEntry.id).where(QuestionBankEntry.question_category_id == category_id,
                                              QuestionBankEntry.idnumber == idnumber)
    if exclude_entry_id is not None:
        stmt = stmt.where(QuestionBankEntry.id != exclude_entry_id)
    if db.scalar(stmt.limit(1)) is not None:
        raise ValidationError(f"ID number '{idnumber}' is already in use in this category")


def _save_type_data(db: Session, question_id: int, answers: Sequence[Mapping[str, Any]],
                    hints: Sequence[Mapping[str, Any]], options: Mapping[str, Any]) -> None:
    for a in answers:
        db.add(QuestionAnswer(question_id=question_id, answer=str(a["answer"]), fraction=float(a.get("fraction", 0)),
                              feedback=a.get("feedback", ""), answer_format=a.get("answer_format", 0),
                              tolerance=a.get("tolerance")))
    for h in hints:
        db.add(QuestionHint(question_id=question_id, hint=h["hint"], hint_format=h.get("hint_format", 1),
                            show_num_correct=h.get("show_num_correct"), clear_wrong=h.get("clear_wrong")))
    db.add(QuestionTypeOptions(question_id=question_id, options=dict(options)))


def create_question(db: Session, events: EventDispatcher, category_id: int, name: str, qtype: str,
                    question_text: str = "", created_by: Optional[int] = None, idnumber: Optional[str] = None,
                    default_mark: float = 1.0, penalty: float = 0.3333333, general_feedback: str = "",
                    answers: Sequence[Mapping[str, Any]] = (), hints: Sequence[Mapping[str, Any]] = (),
                    options: Optional[Mapping[str, Any]] = None, status: QuestionStatus = QuestionStatus.READY,
                    parent_id: int = 0, clock: Clock = unix_now) -> Question:
    """Create a question together with its bank entry and first version."""
    _validate_fields(name, qtype, default_mark, penalty)
    category = get_category(db, category_id)
    _check_idnumber_free(db, category.id, idnumber)

    now = clock()
    question = Question(name=shorten_text(name.strip()), qtype=qtype, question_text=question_text,
                        general_feedback=general_feedback, default_mark=default_mark, penalty=penalty,
                        parent_id=parent_id, stamp=make_stamp(), time_created=now, time_modified=now,
                        created_by=created_by, modified_by=created_by)
    db.add(question)
    db.flush()
    entry = QuestionBankEntry(question_category_id=category.id, idnumber=idnumber or None, owner_id=created_by)
    db.add(entry)
    db.flush()
    db.add(QuestionVersion(question_bank_entry_id=entry.id, version=1, question_id=question.id,
                           status=QuestionStatus(status).value))
    _save_type_data(db, question.id, answers, hints, options or {})
    db.flush()
    events.trigger("question_created", question_snapshot(question), entity_type="question",
                   entity_id=question.id, context_id=category.context_id)
    return question


def create_question_version(db: Session, events: EventDispatcher, question_id: int,
                            modified_by: Optional[int] = None, status: Optional[QuestionStatus] = None,
                            answers: Optional[Sequence[Mapping[str, Any]]] = None,
                            hints: Optional[Sequence[Mapping[str, Any]]] = None,
                            options: Optional[Mapping[str, Any]] = None, clock: Clock = unix_now,
                            **changes: Any) -> Question:
    """Save an edit as a new version of the question's bank entry."""
    old = db.get(Question, question_id)
    if old is None:
        raise NotFoundError("question", question_id)
    entry = get_question_bank_entry(db, question_id)
    old_version = db.scalar(select(QuestionVersion).where(QuestionVersion.question_id == question_id))

    allowed = {"name", "question_text", "general_feedback", "default_mark", "penalty"}
    unknown = set(changes) - allowed
    if unknown:
        raise CodingError(f"Unexpected question fields: {', '.join(sorted(unknown))}")
    values = {f: getattr(old, f) for f in allowed}
    values.update({k: v for k, v in changes.items() if v is not None})
    _validate_fields(values["name"], old.qtype, values["default_mark"], values["penalty"])

    if answers is None:
        answers = [{"answer": a.answer, "fraction": a.fraction, "feedback": a.feedback,
                    "answer_format": a.answer_format, "tolerance": a.tolerance}
                   for a in db.scalars(select(QuestionAnswer).where(QuestionAnswer.question_id == old.id)
                                       .order_by(QuestionAnswer.id))]
    if hints is None:
        hints = [{"hint": h.hint, "hint_format": h.hint_format, "show_num_correct": h.show_num_correct,
                  "clear_wrong": h.clear_wrong}
                 for h in db.scalars(select(QuestionHint).where(QuestionHint.question_id == old.id)
                                     .order_by(QuestionHint.id))]
    if options is None:
        existing = db.scalar(select(QuestionTypeOptions).where(QuestionTypeOptions.question_id == old.id))
        options = dict(existing.options) if existing else {}

    now = clock()
    question = Question(qtype=old.qtype, parent_id=old.parent_id, length=old.length, stamp=make_stamp(),
                        time_created=now, time_modified=now, created_by=old.created_by,
                        modified_by=modified_by, name=shorten_text(values["name"].strip()),
                        question_text=values["question_text"], general_feedback=values["general_feedback"],
                        default_mark=values["default_mark"], penalty=values["penalty"])
    db.add(question)
    db.flush()
    new_status = QuestionStatus(status).value if status is not None else old_version.status
    db.add(QuestionVersion(question_bank_entry_id=entry.id, version=get_next_version(db, entry.id),
                           question_id=question.id, status=new_status))
    _save_type_data(db, question.id, answers, hints, options)
    db.flush()
    category = db.get(QuestionCategory, entry.question_category_id)
    events.trigger("question_updated", question_snapshot(question), entity_type="question",
                   entity_id=question.id, context_id=category.context_id)
    return question


def set_version_status(db: Session, question_id: int, status: QuestionStatus) -> QuestionVersion:
    version = db.scalar(select(QuestionVersion).where(QuestionVersion.question_id == question_id))
    if version is None:
        raise NotFoundError("question", question_id)
    version.status = QuestionStatus(status).value
    db.flush()
    return version


def rename_question(db: Session, checker: CapabilityChecker, events: EventDispatcher, question_id: int,
                    new_name: str, clock: Clock = unix_now) -> Question:
    question = db.get(Question, question_id)
    if question is None:
        raise NotFoundError("question", question_id)
    question_require_capability_on(db, checker, question_id, "edit")
    if not new_name or not new_name.strip():
        raise ValidationError("Question name must not be empty")
    question.name = shorten_text(new_name.strip())
    question.time_modified = clock()
    question.modified_by = checker.principal.id
    db.flush()
    events.trigger("question_updated", question_snapshot(question), entity_type="question", entity_id=question.id)
    return question


def add_question_comment(db: Session, checker: CapabilityChecker, events: EventDispatcher, question_id: int,
                         content: str, clock: Clock = unix_now) -> Comment:
    question_require_capability_on(db, checker, question_id, "comment")
    if not content or not content.strip():
        raise ValidationError("Comment must not be empty")
    context_id = question_context_id(db, question_id)
    comment = Comment(context_id=context_id, component=COMMENT_COMPONENT, comment_area=COMMENT_AREA,
                      item_id=question_id, content=content.strip(), user_id=checker.principal.id,
                      time_created=clock())
    db.add(comment)
    db.flush()
    events.trigger("comment_created", {"question_id": question_id, "comment_id": comment.id},
                   entity_type="comment", entity_id=comment.id, context_id=context_id)
    return comment


def question_context_id(db: Session, question_id: int) -> int:
    context_id = db.scalar(
        select(QuestionCategory.context_id)
        .join(QuestionBankEntry, QuestionBankEntry.question_category_id == QuestionCategory.id)
        .join(QuestionVersion, QuestionVersion.question_bank_entry_id == QuestionBankEntry.id)
        .where(QuestionVersion.question_id == question_id)
    )
    if context_id is None:
        raise NotFoundError("question", question_id)
    return context_id


def get_question_bank_entry(db: Session, question_id: int) -> QuestionBankEntry:
    entry = db.scalar(select(QuestionBankEntry)
                      .join(QuestionVersion, QuestionVersion.question_bank_entry_id == QuestionBankEntry.id)
                      .where(QuestionVersion.question_id == question_id))
    if entry is None:
        raise NotFoundError("question", question_id)
    return entry


def get_question_versions(db: Session, question_id: int) -> List[QuestionVersion]:
    """Version rows of a question, newest id first."""
    return list(db.scalars(select(QuestionVersion).where(QuestionVersion.question_id == question_id)
                           .order_by(QuestionVersion.id.desc())))


def get_entry_versions(db: Session, entry_id: int) -> List[QuestionVersion]:
    return list(db.scalars(select(QuestionVersion).where(QuestionVersion.question_bank_entry_id == entry_id)
                           .order_by(QuestionVersion.version.desc())))


def get_next_version(db: Session, entry_id: int) -> int:
    latest = db.scalar(select(func.max(QuestionVersion.version))
                       .where(QuestionVersion.question_bank_entry_id == entry_id))
    return int(latest) + 1 if latest else 1


def is_latest(db: Session, version: int, entry_id: int) -> bool:
    latest = db.scalar(select(func.max(QuestionVersion.version))
                       .where(QuestionVersion.question_bank_entry_id == entry_id))
    if latest is None:
        return False
    return int(version) == int(latest)


_TRAILING_DIGITS = re.compile(r"\d+$")
_ALL_NINES = re.compile(r"^9+$")


def core_question_find_next_unused_idnumber(db: Session, old_idnumber: Optional[str],
                                            category_id: int) -> Optional[str]:
    """Increment the trailing number of an idnumber until it is unused in the category.

    id9 -> id10, id009 -> id010, id999 -> id1000; None when there is no
    trailing number.
    """
    if old_idnumber is None:
        return None
    match = _TRAILING_DIGITS.search(old_idnumber)
    if match is None:
        return None

    used = set(db.scalars(select(QuestionBankEntry.idnumber).where(
        QuestionBankEntry.question_category_id == category_id, QuestionBankEntry.idnumber.is_not(None))))

    number_bit = match.group(0)
    stem = old_idnumber[:match.start()]
    while True:
        if _ALL_NINES.match(number_bit):
            number_bit = "0" + number_bit
        number_bit = str(int(number_bit) + 1).zfill(len(number_bit))
        candidate = stem + number_bit
        if candidate not in used:
            return candidate


def question_context_has_any_questions(db: Session, context) -> bool:
    if isinstance(context, Context):
        context_id = context.id
    elif isinstance(context, int) and not isinstance(context, bool):
        context_id = context
    elif isinstance(context, str) and context.isdigit():
        context_id = int(context)
    else:
        raise CodingError("Invalid context passed to question_context_has_any_questions.")
    found = db.scalar(select(QuestionBankEntry.id)
                      .join(QuestionCategory, QuestionCategory.id == QuestionBankEntry.question_category_id)
                      .where(QuestionCategory.context_id == context_id).limit(1))
    return found is not None


def question_preload_questions(db: Session, question_ids: Optional[Sequence[int]] = None) -> List[Dict[str, Any]]:
    """Question rows joined with their version, entry and category."""
    if question_ids is not None and not question_ids:
        return []
    stmt = (select(Question, QuestionCategory.id.label("category_id"), QuestionVersion.status,
                   QuestionVersion.id.label("version_id"), QuestionVersion.version,
                   QuestionBankEntry.id.label("entry_id"), QuestionBankEntry.idnumber,
                   QuestionCategory.context_id)
            .join(QuestionVersion, QuestionVersion.question_id == Question.id)
            .join(QuestionBankEntry, QuestionBankEntry.id == QuestionVersion.question_bank_entry_id)
            .join(QuestionCategory, QuestionCategory.id == QuestionBankEntry.question_category_id)
            .order_by(Question.id))
    if question_ids is not None:
        stmt = stmt.where(Question.id.in_(list(question_ids)))
    loaded = []
    for row in db.execute(stmt):
        record = question_snapshot(row.Question)
        record.update(question_text=row.Question.question_text, general_feedback=row.Question.general_feedback,
                      category_id=row.category_id, status=row.status, version_id=row.version_id,
                      version=row.version, entry_id=row.entry_id, idnumber=row.idnumber,
                      context_id=row.context_id)
        loaded.append(record)
    return loaded


def get_question_options(db: Session, questions: List[Dict[str, Any]], load_tags: bool = False,
                         filter_course_context_ids: Optional[Sequence[int]] = None) -> bool:
    """Attach answers, hints, type options (and optionally sorted tags) to preloaded questions."""
    if not questions:
        return True
    ids = [q["id"] for q in questions]
    answers: Dict[int, List[QuestionAnswer]] = {}
    for a in db.scalars(select(QuestionAnswer).where(QuestionAnswer.question_id.in_(ids)).order_by(QuestionAnswer.id)):
        answers.setdefault(a.question_id, []).append(a)
    hints: Dict[int, List[QuestionHint]] = {}
    for h in db.scalars(select(QuestionHint).where(QuestionHint.question_id.in_(ids)).order_by(QuestionHint.id)):
        hints.setdefault(h.question_id, []).append(h)
    options = {o.question_id: o.options for o in
               db.scalars(select(QuestionTypeOptions).where(QuestionTypeOptions.question_id.in_(ids)))}
    tags = get_items_tags(db, ids) if load_tags else None

    for q in questions:
        if "category_id" not in q:
            q["category_id"] = get_question_bank_entry(db, q["id"]).question_category_id
        category = db.get(QuestionCategory, q["category_id"])
        q["default_mark"] = float(q.get("default_mark", 1))
        q["penalty"] = float(q.get("penalty", 0))
        q["answers"] = [{"id": a.id, "answer": a.answer, "fraction": a.fraction, "feedback": a.feedback,
                         "tolerance": a.tolerance} for a in answers.get(q["id"], [])]
        q["hints"] = [{"id": h.id, "hint": h.hint, "hint_format": h.hint_format,
                       "show_num_correct": h.show_num_correct, "clear_wrong": h.clear_wrong}
                      for h in hints.get(q["id"], [])]
        q["options"] = dict(options.get(q["id"], {}))
        if tags is not None:
            sorted_tags = question_sort_tags(db, tags.get(q["id"], []), db.get(Context, category.context_id),
                                             filter_course_context_ids)
            q["course_tags"] = sorted_tags.course_tags
            q["tags"] = sorted_tags.tags
    return True


def load_question_definition(db: Session, question_id: int) -> QuestionDefinition:
    records = question_preload_questions(db, [question_id])
    if not records:
        raise NotFoundError("question", question_id)
    get_question_options(db, records)
    q = records[0]
    try:
        kind = QuestionKind(q["qtype"])
    except ValueError:
        raise CodingError(f"Question {question_id} has unknown type '{q['qtype']}'")
    hints: List[HintDefinition] = []
    for h in q["hints"]:
        if h["show_num_correct"] is None and h["clear_wrong"] is None:
            hints.append(HintDefinition(h["id"], h["hint"], h["hint_format"]))
        else:
            hints.append(QuestionHintWithParts(h["id"], h["hint"], h["hint_format"],
                                               bool(h["show_num_correct"]), bool(h["clear_wrong"])))
    return QuestionDefinition(
        id=q["id"], kind=kind, name=q["name"], question_text=q["question_text"],
        general_feedback=q["general_feedback"], default_mark=q["default_mark"], penalty=q["penalty"],
        parent_id=q["parent_id"], category_id=q["category_id"], context_id=q["context_id"],
        idnumber=q["idnumber"], version=q["version"], status=q["status"], stamp=q["stamp"],
        created_by=q["created_by"], modified_by=q["modified_by"],
        answers=[Answer(a["id"], a["answer"], a["fraction"], a["feedback"], tolerance=a["tolerance"])
                 for a in q["answers"]],
        hints=hints, options=q["options"],
    )


_LIST_SQL = """
SELECT q.id, q.name, q.qtype, q.time_created, q.time_modified, q.created_by,
       qv.status, qv.version, qbe.id AS entry_id, qbe.idnumber, qbe.question_category_id AS category_id
  FROM questions q
  JOIN question_versions qv ON qv.question_id = q.id
  JOIN question_bank_entries qbe ON qbe.id = qv.question_bank_entry_id
 WHERE q.parent_id = 0
   AND qv.version = (SELECT MAX(v.version) FROM question_versions v WHERE v.question_bank_entry_id = qbe.id)
   {conditions}
 ORDER BY q.qtype, q.name, q.id
 LIMIT :limit OFFSET :offset
"""


def list_questions(db: Session, category_id: int, filters: Optional[Mapping[str, Any]] = None,
                   jointype: JoinType = JoinType.ALL, include_subcategories: bool = False,
                   limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
    """Latest version of each question in a category, narrowed by filter conditions."""
    get_category(db, category_id)
    category_filter = {"category": {"jointype": JoinType.ANY, "values": [category_id],
                                    "filteroptions": {"includesubcategories": include_subcategories}}}
    category_where, params = build_filter_query(category_filter, db=db)
    # The category is fixed by the caller; a category filter in `filters` is ignored.
    user_filters = {k: v for k, v in (filters or {}).items() if k not in ("category", "hidden")}
    where, filter_params = build_filter_query(user_filters, db=db, jointype=jointype)
    params.update(filter_params)
    # Hidden versions stay out of the listing unless the hidden filter asks for them.
    hidden = HiddenCondition({k: v for k, v in (filters or {}).items() if k == "hidden"})
    params.update(hidden.params())
    conditions = f"AND {category_where}"
    if hidden.where():
        conditions += f" AND {hidden.where()}"
    if where:
        conditions += f" AND ({where})"
    params.update(limit=limit, offset=offset)
    rows = db.execute(text(_LIST_SQL.format(conditions=conditions)), params).mappings().all()
    return [dict(r) for r in rows]
