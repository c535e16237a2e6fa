"""
Question and category deletion.

Deleting never removes a question that is still in use. Questions that
survive a category deletion are rescued into a holding category in the
parent context.
"""
import logging
from typing import Dict, List, Optional, Sequence, Union

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from questionbank.core.events import EventDispatcher
from questionbank.core.exceptions import CodingError, QBankError, ValidationError
from questionbank.models.orm import (PREVIEW_COMPONENT, Comment, Context, CustomFieldData, Question, QuestionAnswer,
                                     QuestionAttempt, QuestionBankEntry, QuestionCategory, QuestionHint,
                                     QuestionReference, QuestionTypeOptions, QuestionUsage, QuestionVersion)
from questionbank.services.categories import (DEFAULT_SORT_ORDER, get_category, make_stamp,
                                              question_categorylist, question_get_top_category,
                                              question_move_questions_to_category, shorten_text,
                                              sort_categories_by_tree)
from questionbank.services.contexts import context_name, get_parent_context, module_context, system_context
from questionbank.services.questions import COMMENT_AREA, COMMENT_COMPONENT, question_snapshot
from questionbank.services.references import delete_references_for_version
from questionbank.services.tags import delete_question_tags
from questionbank.services.usage import UsageChecker, questions_in_use

logger = logging.getLogger(__name__)


def delete_question_bank_entry(db: Session, entry_id: int) -> None:
    """Drop the entry once no versions point at it."""
    remaining = db.scalar(select(QuestionVersion.id).where(QuestionVersion.question_bank_entry_id == entry_id).limit(1))
    if remaining is None:
        db.execute(delete(QuestionReference).where(QuestionReference.question_bank_entry_id == entry_id))
        db.execute(delete(QuestionBankEntry).where(QuestionBankEntry.id == entry_id))


def _delete_previews(db: Session, question_id: int) -> None:
    usage_ids = list(db.scalars(
        select(QuestionUsage.id).join(QuestionAttempt, QuestionAttempt.question_usage_id == QuestionUsage.id)
        .where(QuestionAttempt.question_id == question_id, QuestionUsage.component == PREVIEW_COMPONENT)))
    if usage_ids:
        db.execute(delete(QuestionAttempt).where(QuestionAttempt.question_usage_id.in_(usage_ids)))
        db.execute(delete(QuestionUsage).where(QuestionUsage.id.in_(usage_ids)))


def _delete_type_data(db: Session, question_id: int) -> None:
    db.execute(delete(QuestionAnswer).where(QuestionAnswer.question_id == question_id))
    db.execute(delete(QuestionHint).where(QuestionHint.question_id == question_id))
    db.execute(delete(QuestionTypeOptions).where(QuestionTypeOptions.question_id == question_id))


def _version_info(db: Session, question_id: int):
    return db.execute(
        select(QuestionVersion.id.label("version_id"), QuestionVersion.version,
               QuestionBankEntry.id.label("entry_id"), QuestionCategory.id.label("category_id"),
               QuestionCategory.context_id)
        .select_from(Question)
        .outerjoin(QuestionVersion, QuestionVersion.question_id == Question.id)
        .outerjoin(QuestionBankEntry, QuestionBankEntry.id == QuestionVersion.question_bank_entry_id)
        .outerjoin(QuestionCategory, QuestionCategory.id == QuestionBankEntry.question_category_id)
        .where(Question.id == question_id)
    ).first()


def question_delete_question(db: Session, question: Question, context_id: int, events: EventDispatcher) -> None:
    """Remove a question row and everything hanging off it."""
    info = _version_info(db, question.id)
    snapshot = question_snapshot(question)

    _delete_previews(db, question.id)
    _delete_type_data(db, question.id)
    delete_question_tags(db, [question.id])
    db.execute(delete(CustomFieldData).where(CustomFieldData.instance_id == question.id))

    children = db.scalars(select(Question).where(Question.parent_id == question.id, Question.id != question.id)).all()
    for child in children:
        question_delete_question(db, child, context_id, events)

    db.execute(delete(Comment).where(Comment.item_id == question.id, Comment.component == COMMENT_COMPONENT,
                                     Comment.comment_area == COMMENT_AREA))
    if info is not None and info.version_id is not None:
        db.execute(delete(QuestionVersion).where(QuestionVersion.id == info.version_id))
    db.execute(delete(Question).where(Question.id == question.id))
    if info is not None and info.entry_id is not None:
        delete_references_for_version(db, info.entry_id, info.version)
        delete_question_bank_entry(db, info.entry_id)
    db.flush()

    events.trigger("question_deleted", snapshot, entity_type="question", entity_id=snapshot["id"],
                   context_id=context_id)


def delete_question(db: Session, question_id: int, events: EventDispatcher,
                    usage_checkers: Optional[Sequence[UsageChecker]] = None) -> bool:
    """Delete a question unless it, or its parent, is in use.

    Returns False, changing nothing, when the question is missing or in use.
    """
    question = db.get(Question, question_id)
    if question is None:
        return False

    to_check = [question.id]
    if question.parent_id:
        to_check.append(question.parent_id)
    if questions_in_use(db, to_check, usage_checkers):
        logger.info(f"Question {question_id} is in use; not deleting")
        return False

    info = _version_info(db, question.id)
    if info is None or info.context_id is None:
        logger.warning(f"Deleting question {question.id} which is no longer linked to a context. "
                       f"Assuming system context; some related data may not be cleaned up.")
        context_id = system_context(db).id
    else:
        context_id = info.context_id

    question_delete_question(db, question, context_id, events)
    return True


def question_save_from_deletion(db: Session, question_ids: Sequence[int], new_context_id: int, old_place: str,
                                events: EventDispatcher,
                                new_category: Optional[QuestionCategory] = None) -> Union[QuestionCategory, bool]:
    """Move questions into a holding category in `new_context_id`, creating it when not given."""
    if new_category is None:
        top = question_get_top_category(db, new_context_id, create=True)
        new_category = QuestionCategory(
            parent_id=top.id, context_id=new_context_id,
            name=shorten_text(f"Questions saved from context {old_place}"),
            info=(f"This category was created to hold questions that were still in use when "
                  f"'{old_place}' was deleted."),
            sort_order=DEFAULT_SORT_ORDER, stamp=make_stamp())
        db.add(new_category)
        db.flush()
        logger.info(f"Created rescue category {new_category.id} in context {new_context_id}")

    if not question_move_questions_to_category(db, question_ids, new_category.id, events):
        return False
    return new_category


def question_category_delete_safe(db: Session, category: QuestionCategory, events: EventDispatcher,
                                  usage_checkers: Optional[Sequence[UsageChecker]] = None) -> None:
    """Delete a category, deleting its unused questions and rescuing the rest."""
    context = db.get(Context, category.context_id)
    rescue: Optional[QuestionCategory] = None

    entry_ids = list(db.scalars(select(QuestionBankEntry.id)
                                .where(QuestionBankEntry.question_category_id == category.id)
                                .order_by(QuestionBankEntry.id)))
    for entry_id in entry_ids:
        question_ids = list(db.scalars(select(QuestionVersion.question_id)
                                       .where(QuestionVersion.question_bank_entry_id == entry_id)))
        for question_id in question_ids:
            delete_question(db, question_id, events, usage_checkers)

        remaining = list(db.scalars(select(QuestionVersion.question_id)
                                    .where(QuestionVersion.question_bank_entry_id == entry_id)))
        if remaining:
            if context is None:
                name = "Unknown"
                parent_context_id = system_context(db).id
            else:
                name = context_name(db, context)
                parent = get_parent_context(db, context)
                if parent is None:
                    raise CodingError(f"Cannot rescue questions in use from category {category.id}: "
                                      f"context {context.id} has no parent context")
                parent_context_id = parent.id
            if parent_context_id == category.context_id:
                raise CodingError(f"Cannot rescue questions in use from category {category.id} "
                                  f"into its own context")
            result = question_save_from_deletion(db, remaining, parent_context_id, name, events, rescue)
            if result is False:
                raise QBankError(f"Error while saving questions in use from category {category.id}")
            rescue = result

    db.execute(delete(QuestionCategory).where(QuestionCategory.id == category.id))
    db.flush()
    events.trigger("question_category_deleted", {"id": category.id, "name": category.name,
                                                 "rescue_category_id": rescue.id if rescue else None},
                   entity_type="question_category", entity_id=category.id, context_id=category.context_id)


def question_delete_context(db: Session, context_id: int, events: EventDispatcher,
                            usage_checkers: Optional[Sequence[UsageChecker]] = None) -> List[Dict[str, object]]:
    """Delete every question category of a context, parents first."""
    categories = list(db.scalars(select(QuestionCategory).where(QuestionCategory.context_id == context_id)
                                 .order_by(QuestionCategory.parent_id, QuestionCategory.id)))
    feedback = []
    for category in sort_categories_by_tree(categories):
        question_category_delete_safe(db, category, events, usage_checkers)
        feedback.append({"category_id": category.id, "name": category.name})
    return feedback


def question_delete_activity(db: Session, course_module_id: int, events: EventDispatcher,
                             usage_checkers: Optional[Sequence[UsageChecker]] = None) -> bool:
    question_delete_context(db, module_context(db, course_module_id).id, events, usage_checkers)
    return True


def delete_category(db: Session, category_id: int, events: EventDispatcher,
                    move_to_category_id: Optional[int] = None,
                    usage_checkers: Optional[Sequence[UsageChecker]] = None) -> List[int]:
    """Delete a category and its sub-categories.

    With `move_to_category_id` the subtree's questions are moved there first;
    otherwise unused questions are deleted and the rest rescued.
    """
    category = get_category(db, category_id)
    if category.parent_id == 0:
        raise ValidationError("The top category of a context cannot be deleted")
    subtree_ids = question_categorylist(db, category.id)
    if move_to_category_id is not None:
        if move_to_category_id in subtree_ids:
            raise ValidationError("Cannot move questions into a category that is being deleted")
        get_category(db, move_to_category_id)
        question_ids = list(db.scalars(
            select(QuestionVersion.question_id)
            .join(QuestionBankEntry, QuestionBankEntry.id == QuestionVersion.question_bank_entry_id)
            .where(QuestionBankEntry.question_category_id.in_(subtree_ids))))
        question_move_questions_to_category(db, question_ids, move_to_category_id, events)

    subtree = list(db.scalars(select(QuestionCategory).where(QuestionCategory.id.in_(subtree_ids))))
    ordered = sort_categories_by_tree(subtree, root_id=category.parent_id)
    for cat in ordered:
        question_category_delete_safe(db, cat, events, usage_checkers)
    return [cat.id for cat in ordered]
