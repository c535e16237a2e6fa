from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from questionbank.api.deps import get_checker, get_events
from questionbank.core.database import get_db
from questionbank.core.events import EventDispatcher
from questionbank.core.exceptions import NotFoundError, PermissionDenied
from questionbank.models.orm import Course, CourseModule, Qbank
from questionbank.services.capabilities import CAP_MANAGE_CATEGORY, CapabilityChecker
from questionbank.services.contexts import course_context, module_context
from questionbank.services.modules import (MODULE_NAME, create_qbank_module, delete_qbank_module, qbank_supports,
                                           qbank_update_instance)

router = APIRouter()


class QbankCreate(BaseModel):
    course_id: int
    name: str = Field(min_length=1, max_length=255)
    intro: Optional[str] = None


class QbankUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    intro: Optional[str] = None
    show_description: Optional[bool] = None


def _load_module(db: Session, course_module_id: int) -> CourseModule:
    cm = db.get(CourseModule, course_module_id)
    if cm is None or cm.module_name != MODULE_NAME:
        raise NotFoundError("course module", course_module_id)
    return cm


@router.get("/supports/{feature}")
def supports(feature: str):
    return {"feature": feature, "supported": qbank_supports(feature)}


@router.post("")
def create(payload: QbankCreate, db: Session = Depends(get_db), checker: CapabilityChecker = Depends(get_checker),
           events: EventDispatcher = Depends(get_events)):
    if db.get(Course, payload.course_id) is None:
        raise NotFoundError("course", payload.course_id)
    if not checker.has_capability(CAP_MANAGE_CATEGORY, course_context(db, payload.course_id)):
        raise PermissionDenied(CAP_MANAGE_CATEGORY)
    cm = create_qbank_module(db, checker, events, payload.course_id, payload.name, payload.intro)
    db.commit()
    return {"course_module_id": cm.id, "instance_id": cm.instance_id, "context_id": module_context(db, cm.id).id}


@router.get("/{course_module_id}")
def get(course_module_id: int, db: Session = Depends(get_db)):
    cm = _load_module(db, course_module_id)
    instance = db.get(Qbank, cm.instance_id)
    return {"course_module_id": cm.id, "course_id": cm.course_id, "instance_id": cm.instance_id,
            "name": instance.name if instance else None, "deletion_in_progress": cm.deletion_in_progress,
            "context_id": module_context(db, cm.id).id}


@router.patch("/{course_module_id}")
def update(course_module_id: int, payload: QbankUpdate, db: Session = Depends(get_db),
           checker: CapabilityChecker = Depends(get_checker)):
    cm = _load_module(db, course_module_id)
    if not checker.has_capability(CAP_MANAGE_CATEGORY, module_context(db, cm.id)):
        raise PermissionDenied(CAP_MANAGE_CATEGORY)
    updated = qbank_update_instance(db, cm.instance_id, payload.model_dump(exclude_none=True))
    db.commit()
    return {"course_module_id": cm.id, "updated": updated}


@router.delete("/{course_module_id}")
def delete(course_module_id: int, db: Session = Depends(get_db), checker: CapabilityChecker = Depends(get_checker),
           events: EventDispatcher = Depends(get_events)):
    cm = _load_module(db, course_module_id)
    if not checker.has_capability(CAP_MANAGE_CATEGORY, module_context(db, cm.id)):
        raise PermissionDenied(CAP_MANAGE_CATEGORY)
    result = delete_qbank_module(db, course_module_id, events)
    db.commit()
    return result
