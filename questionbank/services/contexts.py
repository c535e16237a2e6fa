"""
Context hierarchy helpers.

A context's `path` holds its whole ancestor chain (`/1/5/12`), so parent
lookups read a list rather than following single parent pointers.
"""
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from questionbank.core.exceptions import CodingError
from questionbank.models.orm import Context, ContextLevel, Course, CourseCategory, CourseModule, Qbank


def get_context(db: Session, context_id: int) -> Optional[Context]:
    return db.get(Context, context_id)


def path_ids(context: Context) -> List[int]:
    """Ids on the context path, outermost first, including the context itself."""
    if not context.path:
        return [context.id]
    return [int(part) for part in context.path.strip("/").split("/") if part]


def parent_context_ids(context: Context) -> List[int]:
    """Ancestor ids, nearest first."""
    return list(reversed(path_ids(context)[:-1]))


def get_parent_context(db: Session, context: Context) -> Optional[Context]:
    parents = parent_context_ids(context)
    return db.get(Context, parents[0]) if parents else None


def create_context(db: Session, level: ContextLevel, instance_id: int, parent: Optional[Context] = None) -> Context:
    if level != ContextLevel.SYSTEM and parent is None:
        raise CodingError(f"Context level {int(level)} needs a parent context")
    ctx = Context(context_level=int(level), instance_id=instance_id)
    db.add(ctx)
    db.flush()
    if parent is None:
        ctx.path, ctx.depth = f"/{ctx.id}", 1
    else:
        ctx.path, ctx.depth = f"{parent.path}/{ctx.id}", parent.depth + 1
    db.flush()
    return ctx


def _find(db: Session, level: ContextLevel, instance_id: int) -> Optional[Context]:
    return db.scalar(select(Context).where(Context.context_level == int(level), Context.instance_id == instance_id))


def system_context(db: Session) -> Context:
    ctx = _find(db, ContextLevel.SYSTEM, 0)
    if ctx is None:
        ctx = create_context(db, ContextLevel.SYSTEM, 0)
    return ctx


def coursecat_context(db: Session, category_id: int) -> Context:
    ctx = _find(db, ContextLevel.COURSECAT, category_id)
    if ctx is None:
        cat = db.get(CourseCategory, category_id)
        if cat is None:
            raise CodingError(f"Unknown course category {category_id}")
        parent = coursecat_context(db, cat.parent_id) if cat.parent_id else system_context(db)
        ctx = create_context(db, ContextLevel.COURSECAT, category_id, parent)
    return ctx


def course_context(db: Session, course_id: int) -> Context:
    ctx = _find(db, ContextLevel.COURSE, course_id)
    if ctx is None:
        course = db.get(Course, course_id)
        if course is None:
            raise CodingError(f"Unknown course {course_id}")
        parent = coursecat_context(db, course.category_id) if course.category_id else system_context(db)
        ctx = create_context(db, ContextLevel.COURSE, course_id, parent)
    return ctx


def module_context(db: Session, course_module_id: int) -> Context:
    ctx = _find(db, ContextLevel.MODULE, course_module_id)
    if ctx is None:
        cm = db.get(CourseModule, course_module_id)
        if cm is None:
            raise CodingError(f"Unknown course module {course_module_id}")
        ctx = create_context(db, ContextLevel.MODULE, course_module_id, course_context(db, cm.course_id))
    return ctx


def get_course_context(db: Session, context: Context) -> Optional[Context]:
    """The course context at or above `context`, if any."""
    if context.context_level == ContextLevel.COURSE:
        return context
    for ctx_id in parent_context_ids(context):
        ctx = db.get(Context, ctx_id)
        if ctx is not None and ctx.context_level == ContextLevel.COURSE:
            return ctx
    return None


def context_name(db: Session, context: Context) -> str:
    level = context.context_level
    if level == ContextLevel.SYSTEM:
        return "System"
    if level == ContextLevel.COURSECAT:
        cat = db.get(CourseCategory, context.instance_id)
        return f"Category: {cat.name if cat else context.instance_id}"
    if level == ContextLevel.COURSE:
        course = db.get(Course, context.instance_id)
        return f"Course: {course.shortname if course else context.instance_id}"
    if level == ContextLevel.MODULE:
        cm = db.get(CourseModule, context.instance_id)
        if cm is not None and cm.module_name == "qbank":
            bank = db.get(Qbank, cm.instance_id)
            if bank is not None:
                return f"Qbank: {bank.name}"
        return f"Module: {context.instance_id}"
    return f"Context {context.id}"
