from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.orm import Session

from questionbank.api.deps import get_checker, get_events, load_context, require_capability
from questionbank.core.config import settings
from questionbank.core.database import get_db
from questionbank.core.events import EventDispatcher
from questionbank.jobs.context_cleanup import enqueue_context_cleanup
from questionbank.models.orm import QuestionCategory
from questionbank.services.capabilities import CAP_MANAGE_CATEGORY, CapabilityChecker, QuestionEditContexts
from questionbank.services.categories import question_get_top_category, sort_categories_by_tree
from questionbank.services.deletion import question_delete_context
from questionbank.services.modules import question_edit_tabs
from questionbank.services.questions import question_context_has_any_questions

router = APIRouter()


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    context_id: int
    parent_id: int
    info: str
    sort_order: int
    idnumber: Optional[str] = None
    stamp: str


class ContextSummary(BaseModel):
    context_id: int
    has_questions: bool
    top_category_id: Optional[int] = None


@router.get("/{context_id}", response_model=ContextSummary)
def context_summary(context_id: int, db: Session = Depends(get_db)):
    context = load_context(db, context_id)
    top = question_get_top_category(db, context.id)
    return ContextSummary(context_id=context.id, has_questions=question_context_has_any_questions(db, context),
                          top_category_id=top.id if top else None)


@router.get("/{context_id}/categories", response_model=List[CategoryOut])
def context_categories(context_id: int, db: Session = Depends(get_db)):
    """Categories of a context in tree order, parents first."""
    context = load_context(db, context_id)
    categories = db.scalars(select(QuestionCategory).where(QuestionCategory.context_id == context.id)
                            .order_by(QuestionCategory.parent_id, QuestionCategory.sort_order,
                                      QuestionCategory.id)).all()
    return sort_categories_by_tree(categories)


@router.get("/{context_id}/edit-tabs", response_model=Dict[str, bool])
def edit_tabs(context_id: int, course_id: Optional[int] = None, db: Session = Depends(get_db),
              checker: CapabilityChecker = Depends(get_checker)):
    context = load_context(db, context_id)
    return question_edit_tabs(QuestionEditContexts(db, checker, context, course_id))


@router.delete("/{context_id}/questions")
def delete_context_questions(context_id: int, db: Session = Depends(get_db),
                             checker: CapabilityChecker = Depends(get_checker),
                             events: EventDispatcher = Depends(get_events)):
    """Delete the question bank of a context, rescuing questions still in use."""
    context = load_context(db, context_id)
    require_capability(checker, CAP_MANAGE_CATEGORY, context)
    if settings.ASYNC_CONTEXT_CLEANUP:
        return {"context_id": context.id, "job_id": enqueue_context_cleanup(context.id, checker.principal.id)}
    feedback = question_delete_context(db, context.id, events)
    db.commit()
    return {"context_id": context.id, "categories": feedback}
