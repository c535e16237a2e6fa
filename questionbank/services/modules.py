"""
The qbank activity module: a course module whose only job is to own a
question bank context.
"""
import enum
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from sqlalchemy import delete
from sqlalchemy.orm import Session

from questionbank.core.clock import Clock, unix_now
from questionbank.core.config import settings
from questionbank.core.events import EventDispatcher
from questionbank.core.exceptions import NotFoundError, ValidationError
from questionbank.models.orm import Context, Course, CourseModule, Qbank, RoleCapability
from questionbank.services.capabilities import EDIT_TAB_CAPS, CapabilityChecker, QuestionEditContexts
from questionbank.services.categories import question_make_default_categories, shorten_text
from questionbank.services.contexts import module_context
from questionbank.services.deletion import question_delete_context
from questionbank.services.usage import UsageChecker

logger = logging.getLogger(__name__)

MODULE_NAME = "qbank"


class Feature(str, enum.Enum):
    MOD_INTRO = "mod_intro"
    USES_QUESTIONS = "uses_questions"
    BACKUP = "backup_moodle2"
    GRADE_HAS_GRADE = "grade_has_grade"
    MOD_PURPOSE = "mod_purpose"


MOD_PURPOSE_CONTENT = "content"


def qbank_supports(feature: str) -> Union[bool, str, None]:
    """What the qbank module supports; None for features it does not know about."""
    try:
        feature = Feature(feature)
    except ValueError:
        return None
    if feature in (Feature.MOD_INTRO, Feature.USES_QUESTIONS, Feature.BACKUP):
        return True
    if feature == Feature.GRADE_HAS_GRADE:
        return False
    return MOD_PURPOSE_CONTENT


def qbank_add_instance(db: Session, course_id: int, name: str, intro: Optional[str] = None,
                       intro_format: int = 1, show_description: bool = False, clock: Clock = unix_now) -> Qbank:
    if not name or not name.strip():
        raise ValidationError("Question bank name must not be empty")
    now = clock()
    instance = Qbank(course_id=course_id, name=shorten_text(name.strip()), intro=intro, intro_format=intro_format,
                     show_description=show_description, time_created=now, time_modified=now)
    db.add(instance)
    db.flush()
    return instance


def qbank_update_instance(db: Session, instance_id: int, changes: Mapping[str, Any],
                          clock: Clock = unix_now) -> bool:
    instance = db.get(Qbank, instance_id)
    if instance is None:
        return False
    for field in ("name", "intro", "intro_format", "show_description"):
        if changes.get(field) is not None:
            setattr(instance, field, changes[field])
    instance.time_modified = clock()
    db.flush()
    return True


def qbank_delete_instance(db: Session, instance_id: int) -> bool:
    instance = db.get(Qbank, instance_id)
    if instance is None:
        return False
    db.delete(instance)
    db.flush()
    return True


def create_qbank_module(db: Session, checker: CapabilityChecker, events: EventDispatcher, course_id: int, name: str,
                        intro: Optional[str] = None, clock: Clock = unix_now) -> CourseModule:
    """Add a qbank to a course, with its module context and default categories."""
    if db.get(Course, course_id) is None:
        raise NotFoundError("course", course_id)
    instance = qbank_add_instance(db, course_id, name, intro=intro, clock=clock)
    cm = CourseModule(course_id=course_id, module_name=MODULE_NAME, instance_id=instance.id)
    db.add(cm)
    db.flush()
    context = module_context(db, cm.id)
    question_make_default_categories(db, checker, [context])
    events.trigger("course_module_created", {"id": cm.id, "instance_id": instance.id, "name": instance.name},
                   entity_type="course_module", entity_id=cm.id, context_id=context.id)
    logger.info(f"Created qbank module {cm.id} in course {course_id}")
    return cm


def finish_qbank_module_deletion(db: Session, course_module_id: int, events: EventDispatcher,
                                 usage_checkers: Optional[Sequence[UsageChecker]] = None) -> List[Dict[str, object]]:
    """Delete the module's question bank, then the module itself."""
    cm = db.get(CourseModule, course_module_id)
    if cm is None:
        raise NotFoundError("course module", course_module_id)
    context = module_context(db, cm.id)
    feedback = question_delete_context(db, context.id, events, usage_checkers)
    qbank_delete_instance(db, cm.instance_id)
    db.execute(delete(RoleCapability).where(RoleCapability.context_id == context.id))
    db.execute(delete(Context).where(Context.id == context.id))
    db.delete(cm)
    db.flush()
    events.trigger("course_module_deleted", {"id": course_module_id, "categories": feedback},
                   entity_type="course_module", entity_id=course_module_id)
    logger.info(f"Deleted qbank module {course_module_id} ({len(feedback)} categories)")
    return feedback


def delete_qbank_module(db: Session, course_module_id: int, events: EventDispatcher,
                        usage_checkers: Optional[Sequence[UsageChecker]] = None) -> Optional[Dict[str, Any]]:
    """Remove a qbank module. None when the module does not exist.

    With ASYNC_CONTEXT_CLEANUP the module is flagged, the session committed
    and the cleanup handed to the job queue.
    """
    cm = db.get(CourseModule, course_module_id)
    if cm is None or cm.module_name != MODULE_NAME:
        return None
    cm.deletion_in_progress = True
    db.flush()

    if settings.ASYNC_CONTEXT_CLEANUP:
        from questionbank.jobs.context_cleanup import enqueue_module_cleanup

        db.commit()
        job_id = enqueue_module_cleanup(course_module_id, events.user_id)
        return {"course_module_id": course_module_id, "deleted": False, "job_id": job_id}

    feedback = finish_qbank_module_deletion(db, course_module_id, events, usage_checkers)
    return {"course_module_id": course_module_id, "deleted": True, "job_id": None, "categories": feedback}


def question_edit_tabs(edit_contexts: QuestionEditContexts) -> Dict[str, bool]:
    """Edit tabs the principal may open from these contexts."""
    return {tab: edit_contexts.have_one_edit_tab_cap(tab) for tab in EDIT_TAB_CAPS}
