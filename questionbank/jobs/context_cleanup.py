"""
Background cleanup of question bank contexts.

Jobs open their own session and report progress through `job.meta`
(`state`: running, done, failed).
"""
import logging
from typing import Optional

from rq import get_current_job

from questionbank.core.database import SessionLocal
from questionbank.core.events import make_dispatcher
from questionbank.services.deletion import question_delete_context
from questionbank.services.modules import finish_qbank_module_deletion

logger = logging.getLogger(__name__)


def _update_meta(**values) -> None:
    job = get_current_job()
    if job is not None:
        job.meta.update(values)
        job.save_meta()


def delete_context_job(context_id: int, user_id: Optional[int] = None) -> dict:
    _update_meta(state="running", context_id=context_id)
    db = SessionLocal()
    try:
        feedback = question_delete_context(db, context_id, make_dispatcher(db, user_id))
        db.commit()
        _update_meta(state="done", categories=len(feedback))
        return {"context_id": context_id, "categories": feedback}
    except Exception:
        db.rollback()
        logger.exception(f"Cleanup of context {context_id} failed")
        _update_meta(state="failed")
        raise
    finally:
        db.close()


def delete_module_job(course_module_id: int, user_id: Optional[int] = None) -> dict:
    _update_meta(state="running", course_module_id=course_module_id)
    db = SessionLocal()
    try:
        feedback = finish_qbank_module_deletion(db, course_module_id, make_dispatcher(db, user_id))
        db.commit()
        _update_meta(state="done", categories=len(feedback))
        return {"course_module_id": course_module_id, "categories": feedback}
    except Exception:
        db.rollback()
        logger.exception(f"Deletion of qbank module {course_module_id} failed")
        _update_meta(state="failed")
        raise
    finally:
        db.close()


def enqueue_context_cleanup(context_id: int, user_id: Optional[int] = None) -> str:
    from questionbank.jobs.queue import queue

    job = queue.enqueue(delete_context_job, context_id, user_id)
    logger.info(f"Queued cleanup of context {context_id} as job {job.id}")
    return job.id


def enqueue_module_cleanup(course_module_id: int, user_id: Optional[int] = None) -> str:
    from questionbank.jobs.queue import queue

    job = queue.enqueue(delete_module_job, course_module_id, user_id)
    logger.info(f"Queued deletion of qbank module {course_module_id} as job {job.id}")
    return job.id
