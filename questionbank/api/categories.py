from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from questionbank.api.contexts import CategoryOut
from questionbank.api.deps import get_checker, get_events, load_context, require_capability
from questionbank.core.database import get_db
from questionbank.core.events import EventDispatcher
from questionbank.models.orm import QuestionCategory
from questionbank.services.capabilities import CAP_MANAGE_CATEGORY, CapabilityChecker, question_require_capability_on
from questionbank.services.categories import (create_category, get_category, idnumber_exist_in_question_category,
                                              question_categorylist, question_categorylist_parents,
                                              question_category_in_use, question_move_questions_to_category,
                                              sort_categories_by_tree, update_category)
from questionbank.services.deletion import delete_category
from questionbank.services.questions import core_question_find_next_unused_idnumber

router = APIRouter()


class CategoryCreate(BaseModel):
    context_id: int
    name: str = Field(min_length=1, max_length=255)
    parent_id: Optional[int] = None
    info: str = ""
    idnumber: Optional[str] = Field(default=None, max_length=100)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    info: Optional[str] = None
    parent_id: Optional[int] = None


class MoveQuestions(BaseModel):
    question_ids: List[int]


@router.post("", response_model=CategoryOut)
def create(payload: CategoryCreate, db: Session = Depends(get_db), checker: CapabilityChecker = Depends(get_checker),
           events: EventDispatcher = Depends(get_events)):
    context = load_context(db, payload.context_id)
    require_capability(checker, CAP_MANAGE_CATEGORY, context)
    category = create_category(db, context.id, payload.name, payload.parent_id, payload.info, payload.idnumber)
    events.trigger("question_category_created", {"id": category.id, "name": category.name},
                   entity_type="question_category", entity_id=category.id, context_id=context.id)
    db.commit()
    return category


@router.get("/{category_id}", response_model=CategoryOut)
def get(category_id: int, db: Session = Depends(get_db)):
    return get_category(db, category_id)


@router.patch("/{category_id}", response_model=CategoryOut)
def update(category_id: int, payload: CategoryUpdate, db: Session = Depends(get_db),
           checker: CapabilityChecker = Depends(get_checker), events: EventDispatcher = Depends(get_events)):
    category = get_category(db, category_id)
    require_capability(checker, CAP_MANAGE_CATEGORY, load_context(db, category.context_id))
    if payload.parent_id is not None:
        target = get_category(db, payload.parent_id)
        require_capability(checker, CAP_MANAGE_CATEGORY, load_context(db, target.context_id))
    category = update_category(db, category_id, payload.name, payload.info, payload.parent_id)
    events.trigger("question_category_updated", {"id": category.id, "name": category.name,
                                                 "parent_id": category.parent_id},
                   entity_type="question_category", entity_id=category.id, context_id=category.context_id)
    db.commit()
    return category


@router.delete("/{category_id}")
def delete(category_id: int, move_to: Optional[int] = None, db: Session = Depends(get_db),
           checker: CapabilityChecker = Depends(get_checker), events: EventDispatcher = Depends(get_events)):
    category = get_category(db, category_id)
    require_capability(checker, CAP_MANAGE_CATEGORY, load_context(db, category.context_id))
    deleted = delete_category(db, category_id, events, move_to_category_id=move_to)
    db.commit()
    return {"deleted": deleted}


@router.get("/{category_id}/subtree", response_model=List[CategoryOut])
def subtree(category_id: int, db: Session = Depends(get_db)):
    category = get_category(db, category_id)
    ids = question_categorylist(db, category.id)
    rows = db.scalars(select(QuestionCategory).where(QuestionCategory.id.in_(ids))
                      .order_by(QuestionCategory.sort_order, QuestionCategory.id)).all()
    return sort_categories_by_tree(rows, root_id=category.parent_id)


@router.get("/{category_id}/parents")
def parents(category_id: int, db: Session = Depends(get_db)):
    get_category(db, category_id)
    return {"parents": question_categorylist_parents(db, category_id)}


@router.get("/{category_id}/in-use")
def in_use(category_id: int, recursive: bool = False, db: Session = Depends(get_db)):
    get_category(db, category_id)
    return {"in_use": question_category_in_use(db, category_id, recursive)}


@router.post("/{category_id}/questions")
def move_questions(category_id: int, payload: MoveQuestions, db: Session = Depends(get_db),
                   checker: CapabilityChecker = Depends(get_checker), events: EventDispatcher = Depends(get_events)):
    """Move questions into this category."""
    category = get_category(db, category_id)
    require_capability(checker, CAP_MANAGE_CATEGORY, load_context(db, category.context_id))
    for question_id in payload.question_ids:
        question_require_capability_on(db, checker, question_id, "move")
    moved = question_move_questions_to_category(db, payload.question_ids, category.id, events)
    db.commit()
    return {"moved": moved}


@router.get("/{category_id}/idnumbers/next")
def next_idnumber(category_id: int, idnumber: str, db: Session = Depends(get_db)):
    """Suggest an unused idnumber in the category following `idnumber`."""
    get_category(db, category_id)
    exists, latest = idnumber_exist_in_question_category(db, idnumber, category_id)
    return {"exists": exists, "latest": latest,
            "next": core_question_find_next_unused_idnumber(db, idnumber, category_id)}
