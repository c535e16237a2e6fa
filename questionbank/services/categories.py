"""
Question category tree management.

Each context owns exactly one top category (parent 0); every other category
hangs below a category of the same context.
"""
import logging
import uuid
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from questionbank.core.config import settings
from questionbank.core.events import EventDispatcher
from questionbank.core.exceptions import CodingError, NotFoundError, ValidationError
from questionbank.models.orm import (Context, ContextLevel, Question, QuestionBankEntry, QuestionCategory,
                                     QuestionVersion)
from questionbank.services.capabilities import CapabilityChecker
from questionbank.services.contexts import context_name
from questionbank.services.tags import MovedQuestion, question_move_question_tags_to_new_context
from questionbank.services.usage import UsageChecker, questions_in_use

logger = logging.getLogger(__name__)

TOP_CATEGORY_NAME = "top"
DEFAULT_SORT_ORDER = 999
MAX_NAME_LENGTH = 255

PREFERRED_LEVELS: Dict[int, int] = {
    ContextLevel.COURSE: 4,
    ContextLevel.MODULE: 3,
    ContextLevel.COURSECAT: 2,
    ContextLevel.SYSTEM: 1,
}


class CategoryLike(Protocol):
    id: int
    parent_id: int
    context_id: int


def make_stamp() -> str:
    return f"{settings.STAMP_HOST}+{uuid.uuid4().hex}"


def shorten_text(text: str, length: int = MAX_NAME_LENGTH) -> str:
    if len(text) <= length:
        return text
    return text[:length - 3].rstrip() + "..."


def sort_categories_by_tree(categories: Sequence[CategoryLike], root_id: int = 0) -> List[CategoryLike]:
    """Order categories so every parent precedes its children.

    Pre-order walk from `root_id`, siblings in input order. Categories whose
    parent is not among the input categories of the same context are then
    treated as roots. Anything still unvisited sits on a parent cycle.
    """
    cats = list(categories)
    children: Dict[int, List[CategoryLike]] = {}
    for cat in cats:
        children.setdefault(cat.parent_id, []).append(cat)
    visited = set()
    ordered: List[CategoryLike] = []

    def walk(parent_id: int) -> None:
        stack = [iter(children.get(parent_id, ()))]
        while stack:
            for cat in stack[-1]:
                if cat.id not in visited:
                    visited.add(cat.id)
                    ordered.append(cat)
                    stack.append(iter(children.get(cat.id, ())))
                    break
            else:
                stack.pop()

    walk(root_id)

    present = {(cat.id, cat.context_id) for cat in cats}
    for cat in cats:
        if cat.id not in visited and (cat.parent_id, cat.context_id) not in present:
            visited.add(cat.id)
            ordered.append(cat)
            walk(cat.id)

    leftover = [cat.id for cat in cats if cat.id not in visited]
    if leftover:
        raise CodingError(f"Categories {leftover} form a loop of categories.")
    return ordered


def get_category(db: Session, category_id: int) -> QuestionCategory:
    category = db.get(QuestionCategory, category_id)
    if category is None:
        raise NotFoundError("question category", category_id)
    return category


def question_get_top_category(db: Session, context_id: int, create: bool = False) -> Optional[QuestionCategory]:
    category = db.scalar(select(QuestionCategory).where(
        QuestionCategory.context_id == context_id, QuestionCategory.parent_id == 0))
    if category is None and create:
        category = QuestionCategory(name=TOP_CATEGORY_NAME, info="", context_id=context_id, parent_id=0,
                                    sort_order=0, stamp=make_stamp())
        db.add(category)
        db.flush()
        logger.info(f"Created top category {category.id} for context {context_id}")
    return category


def question_get_default_category(db: Session, context_id: int) -> Optional[QuestionCategory]:
    return db.scalar(select(QuestionCategory)
                     .where(QuestionCategory.context_id == context_id, QuestionCategory.parent_id != 0)
                     .order_by(QuestionCategory.id).limit(1))


def question_get_top_categories_for_contexts(db: Session, context_ids: Sequence[int]) -> List[str]:
    """`"categoryid,contextid"` for the top category of each context."""
    rows = db.execute(select(QuestionCategory.id, QuestionCategory.context_id)
                      .where(QuestionCategory.context_id.in_(list(context_ids)), QuestionCategory.parent_id == 0)
                      .order_by(QuestionCategory.id)).all()
    return [f"{cat_id},{ctx_id}" for cat_id, ctx_id in rows]


def question_make_default_categories(db: Session, checker: CapabilityChecker,
                                     contexts: Sequence[Context]) -> Optional[QuestionCategory]:
    """Make sure each context has a top and a default category.

    Returns the default category of the most preferred context: course over
    module over course category over system, boosted where the principal may
    use questions.
    """
    to_return = None
    preferredness = 0
    for context in contexts:
        top = question_get_top_category(db, context.id, create=True)
        exists = db.scalar(select(QuestionCategory.id).where(
            QuestionCategory.context_id == context.id, QuestionCategory.parent_id == top.id).limit(1))
        if exists is None:
            name = context_name(db, context)
            category = QuestionCategory(
                name=shorten_text(f"Default for {name}"),
                info=f"The default category for questions shared in context '{name}'.",
                context_id=context.id, parent_id=top.id, sort_order=DEFAULT_SORT_ORDER, stamp=make_stamp())
            db.add(category)
            db.flush()
        else:
            category = question_get_default_category(db, context.id)
        this_preferredness = PREFERRED_LEVELS.get(context.context_level, 0)
        if checker.has_any_capability(["question:usemine", "question:useall"], context):
            this_preferredness += 10
        if this_preferredness > preferredness:
            to_return = category
            preferredness = this_preferredness
    return to_return


def question_categorylist(db: Session, category_id: int) -> List[int]:
    """Breadth-first ids of the category and all its descendants."""
    category_list: List[int] = []
    seen = set()
    subcategories = [category_id]
    while subcategories:
        for sub_id in subcategories:
            if sub_id in seen:
                raise CodingError(f"Category id={sub_id} is already on the list - loop of categories detected.")
            seen.add(sub_id)
            category_list.append(sub_id)
        subcategories = list(db.scalars(select(QuestionCategory.id)
                                        .where(QuestionCategory.parent_id.in_(subcategories))
                                        .order_by(QuestionCategory.id)))
    return category_list


def question_categorylist_parents(db: Session, category_id: int) -> List[int]:
    """Ancestor ids, top category first."""
    parents: List[int] = []
    current = db.scalar(select(QuestionCategory.parent_id).where(QuestionCategory.id == category_id))
    while current:
        if current in parents or current == category_id:
            raise CodingError(f"Category id={current} is already on the list - loop of categories detected.")
        parents.append(current)
        current = db.scalar(select(QuestionCategory.parent_id).where(QuestionCategory.id == current))
    return list(reversed(parents))


def get_questions_from_categories(db: Session, category_ids: Sequence[int]) -> List[int]:
    """Ids of every question version filed under the given categories."""
    return list(db.scalars(
        select(QuestionVersion.question_id)
        .join(QuestionBankEntry, QuestionBankEntry.id == QuestionVersion.question_bank_entry_id)
        .where(QuestionBankEntry.question_category_id.in_(list(category_ids)))
        .order_by(QuestionVersion.question_id)
    ))


def question_category_in_use(db: Session, category_id: int, recursive: bool = False,
                             usage_checkers: Optional[Sequence[UsageChecker]] = None) -> bool:
    question_ids = get_questions_from_categories(db, [category_id])
    if question_ids and questions_in_use(db, question_ids, usage_checkers):
        return True
    if not recursive:
        return False
    # question_categorylist raises on loops before any recursion happens.
    for child_id in question_categorylist(db, category_id)[1:]:
        if question_category_in_use(db, child_id, False, usage_checkers):
            return True
    return False


def create_category(db: Session, context_id: int, name: str, parent_id: Optional[int] = None, info: str = "",
                    idnumber: Optional[str] = None, sort_order: int = DEFAULT_SORT_ORDER) -> QuestionCategory:
    if not name or not name.strip():
        raise ValidationError("Category name must not be empty")
    if parent_id is None or parent_id == 0:
        parent = question_get_top_category(db, context_id, create=True)
    else:
        parent = get_category(db, parent_id)
        if parent.context_id != context_id:
            raise ValidationError("Parent category must be in the same context")
    if idnumber not in (None, ""):
        clash = db.scalar(select(QuestionCategory.id).where(
            QuestionCategory.context_id == context_id, QuestionCategory.idnumber == idnumber))
        if clash is not None:
            raise ValidationError(f"ID number '{idnumber}' is already used by another category in this context")
    category = QuestionCategory(name=shorten_text(name.strip()), info=info, context_id=context_id,
                                parent_id=parent.id, sort_order=sort_order, stamp=make_stamp(),
                                idnumber=idnumber or None)
    db.add(category)
    db.flush()
    return category


def update_category(db: Session, category_id: int, name: Optional[str] = None, info: Optional[str] = None,
                    parent_id: Optional[int] = None) -> QuestionCategory:
    """Rename and/or re-parent a category, moving its subtree when the context changes."""
    category = get_category(db, category_id)
    if category.parent_id == 0:
        raise ValidationError("The top category cannot be edited")
    if name is not None:
        if not name.strip():
            raise ValidationError("Category name must not be empty")
        category.name = shorten_text(name.strip())
    if info is not None:
        category.info = info
    if parent_id is not None and parent_id != category.parent_id:
        new_parent = get_category(db, parent_id)
        if new_parent.id in question_categorylist(db, category.id):
            raise ValidationError("Cannot move a category into its own subtree")
        old_context_id = category.context_id
        category.parent_id = new_parent.id
        if new_parent.context_id != old_context_id:
            category.context_id = new_parent.context_id
            db.flush()
            question_move_category_to_context(db, category.id, old_context_id, new_parent.context_id)
    db.flush()
    return category


def question_move_category_to_context(db: Session, category_id: int, old_context_id: int,
                                      new_context_id: int) -> None:
    """Carry question tags and sub-categories of a category into a new context."""
    new_context = db.get(Context, new_context_id)
    if new_context is None:
        raise NotFoundError("context", new_context_id)

    seen = set()
    pending = [category_id]
    while pending:
        current_id = pending.pop()
        if current_id in seen:
            raise CodingError(f"Category id={current_id} is already on the list - loop of categories detected.")
        seen.add(current_id)

        questions = [MovedQuestion(id=qid, context_id=old_context_id)
                     for qid in get_questions_from_categories(db, [current_id])]
        question_move_question_tags_to_new_context(db, questions, new_context)

        sub_ids = list(db.scalars(select(QuestionCategory.id).where(QuestionCategory.parent_id == current_id)
                                  .order_by(QuestionCategory.id)))
        for sub_id in sub_ids:
            db.get(QuestionCategory, sub_id).context_id = new_context_id
        db.flush()
        pending.extend(reversed(sub_ids))


def _suffix_number(idnumber: str, base: str) -> Optional[int]:
    suffix = idnumber[len(base) + 1:]
    return int(suffix) if suffix.isdigit() else None


def idnumber_exist_in_question_category(db: Session, idnumber: Optional[str],
                                        category_id: int) -> Tuple[bool, List[str]]:
    """Whether `idnumber` is taken in the category, plus the highest `<idnumber>_N` already there."""
    if idnumber is None or str(idnumber) == "":
        return False, []
    taken = db.scalar(select(QuestionBankEntry.id).where(
        QuestionBankEntry.question_category_id == category_id, QuestionBankEntry.idnumber == idnumber).limit(1))
    if taken is None:
        return False, []
    candidates = db.scalars(select(QuestionBankEntry.idnumber).where(
        QuestionBankEntry.question_category_id == category_id,
        QuestionBankEntry.idnumber.startswith(f"{idnumber}_", autoescape=True))).all()
    numbered = [(n, c) for c in candidates if (n := _suffix_number(c, idnumber)) is not None]
    if numbered:
        return True, [max(numbered)[1]]
    return True, sorted(candidates, reverse=True)[:1]


def question_move_questions_to_category(db: Session, question_ids: Sequence[int], new_category_id: int,
                                        events: EventDispatcher) -> bool:
    """Move questions (and their child questions) into another category."""
    new_category = db.get(QuestionCategory, new_category_id)
    if new_category is None:
        return False
    ids = list(question_ids)
    if not ids:
        return True

    rows = db.execute(
        select(Question.id, Question.qtype, QuestionBankEntry.id.label("entry_id"), QuestionBankEntry.idnumber,
               QuestionCategory.id.label("category_id"), QuestionCategory.context_id)
        .join(QuestionVersion, QuestionVersion.question_id == Question.id)
        .join(QuestionBankEntry, QuestionBankEntry.id == QuestionVersion.question_bank_entry_id)
        .join(QuestionCategory, QuestionCategory.id == QuestionBankEntry.question_category_id)
        .where(Question.id.in_(ids) | ((Question.parent_id != 0) & Question.parent_id.in_(ids)))
        .order_by(Question.id)
    ).all()

    moved: List[MovedQuestion] = []
    done_entries = set()
    for row in rows:
        moved.append(MovedQuestion(id=row.id, context_id=row.context_id))
        if row.entry_id in done_entries:
            continue
        done_entries.add(row.entry_id)
        entry = db.get(QuestionBankEntry, row.entry_id)
        if row.category_id != new_category.id:
            clash, latest = idnumber_exist_in_question_category(db, row.idnumber, new_category.id)
            if clash:
                unique = 1
                if latest:
                    number = _suffix_number(latest[0], row.idnumber)
                    if number is not None:
                        unique = number + 1
                entry.idnumber = f"{row.idnumber}_{unique}"
        entry.question_category_id = new_category.id
        db.flush()
        events.trigger("question_moved", {"question_id": row.id, "old_category_id": row.category_id,
                                          "new_category_id": new_category.id, "idnumber": entry.idnumber},
                       entity_type="question", entity_id=row.id, context_id=row.context_id)

    new_context = db.get(Context, new_category.context_id)
    question_move_question_tags_to_new_context(db, moved, new_context)
    db.flush()
    return True
