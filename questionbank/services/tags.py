"""
Question tagging.

A question carries two sets of tag instances: course tags (instance context is
a course context other than the question's own) and its own tags.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from questionbank.models.orm import Context, Tag, TagInstance
from questionbank.services.contexts import get_course_context, parent_context_ids

TAG_COMPONENT = "core_question"
TAG_ITEM_TYPE = "question"


@dataclass
class ItemTag:
    tag_id: int
    name: str
    instance_id: int
    instance_context_id: int


@dataclass
class SortedTags:
    course_tags: Dict[int, str] = field(default_factory=dict)
    course_tag_objects: List[ItemTag] = field(default_factory=list)
    tags: Dict[int, str] = field(default_factory=dict)
    tag_objects: List[ItemTag] = field(default_factory=list)


@dataclass
class MovedQuestion:
    id: int
    context_id: int


def get_or_create_tag(db: Session, name: str) -> Tag:
    normalised = name.strip().lower()
    tag = db.scalar(select(Tag).where(Tag.name == normalised))
    if tag is None:
        tag = Tag(name=normalised, raw_name=name.strip())
        db.add(tag)
        db.flush()
    return tag


def add_question_tag(db: Session, question_id: int, context_id: int, name: str) -> TagInstance:
    tag = get_or_create_tag(db, name)
    existing = db.scalar(select(TagInstance).where(
        TagInstance.tag_id == tag.id, TagInstance.component == TAG_COMPONENT,
        TagInstance.item_type == TAG_ITEM_TYPE, TagInstance.item_id == question_id,
        TagInstance.context_id == context_id))
    if existing is not None:
        return existing
    ordering = len(get_items_tags(db, [question_id]).get(question_id, []))
    instance = TagInstance(tag_id=tag.id, component=TAG_COMPONENT, item_type=TAG_ITEM_TYPE,
                           item_id=question_id, context_id=context_id, ordering=ordering)
    db.add(instance)
    db.flush()
    return instance


def get_items_tags(db: Session, question_ids: Iterable[int]) -> Dict[int, List[ItemTag]]:
    ids = list(question_ids)
    if not ids:
        return {}
    rows = db.execute(
        select(TagInstance.item_id, TagInstance.id, TagInstance.context_id, Tag.id, Tag.raw_name)
        .join(Tag, Tag.id == TagInstance.tag_id)
        .where(TagInstance.component == TAG_COMPONENT, TagInstance.item_type == TAG_ITEM_TYPE,
               TagInstance.item_id.in_(ids))
        .order_by(TagInstance.ordering, TagInstance.id)
    ).all()
    result: Dict[int, List[ItemTag]] = {}
    for item_id, instance_id, context_id, tag_id, raw_name in rows:
        result.setdefault(item_id, []).append(
            ItemTag(tag_id=tag_id, name=raw_name, instance_id=instance_id, instance_context_id=context_id))
    return result


def delete_question_tags(db: Session, question_ids: Sequence[int]) -> None:
    if question_ids:
        db.execute(delete(TagInstance).where(
            TagInstance.component == TAG_COMPONENT, TagInstance.item_type == TAG_ITEM_TYPE,
            TagInstance.item_id.in_(list(question_ids))))


def change_instances_context(db: Session, instance_ids: Sequence[int], context_id: int) -> None:
    if instance_ids:
        db.execute(update(TagInstance).where(TagInstance.id.in_(list(instance_ids))).values(context_id=context_id))


def _is_course_context(db: Session, context: Optional[Context]) -> bool:
    if context is None:
        return False
    course_ctx = get_course_context(db, context)
    return course_ctx is not None and course_ctx.id == context.id


def question_sort_tags(db: Session, tag_objects: Sequence[ItemTag], category_context: Context,
                       filter_course_context_ids: Optional[Sequence[int]] = None) -> SortedTags:
    """Split a question's tags into course tags and its own tags.

    Own tags recorded against a stray context are normalised to the category
    context.
    """
    sorted_tags = SortedTags()
    to_normalise = []
    for tag in tag_objects:
        tag_context = db.get(Context, tag.instance_context_id)
        is_course_tag = _is_course_context(db, tag_context) and tag.instance_context_id != category_context.id
        if is_course_tag:
            if not filter_course_context_ids or tag.instance_context_id in filter_course_context_ids:
                sorted_tags.course_tag_objects.append(tag)
                sorted_tags.course_tags[tag.tag_id] = tag.name
        else:
            sorted_tags.tag_objects.append(tag)
            sorted_tags.tags[tag.tag_id] = tag.name
            if tag.instance_context_id != category_context.id:
                to_normalise.append(tag.instance_id)
                tag.instance_context_id = category_context.id
    change_instances_context(db, to_normalise, category_context.id)
    return sorted_tags


def question_move_question_tags_to_new_context(db: Session, questions: Sequence[MovedQuestion],
                                               new_context: Context) -> None:
    """Re-home tag instances when questions change context.

    Tags in the question's old context move with it; course tags stay while
    their course is still an ancestor of the new context, move down when the
    new context sits inside that course, and are dropped otherwise.
    """
    to_delete: List[int] = []
    to_move: List[int] = []
    new_parent_ids = parent_context_ids(new_context)
    items_tags = get_items_tags(db, [q.id for q in questions])

    for question in questions:
        for tag in items_tags.get(question.id, []):
            tag_ctx_id = tag.instance_context_id
            if tag_ctx_id == new_context.id:
                continue
            if tag_ctx_id == question.context_id:
                to_move.append(tag.instance_id)
                continue
            tag_context = db.get(Context, tag_ctx_id)
            if _is_course_context(db, tag_context):
                if new_context.id in parent_context_ids(tag_context):
                    continue
                elif tag_context.id in new_parent_ids:
                    to_move.append(tag.instance_id)
                else:
                    to_delete.append(tag.instance_id)
            else:
                to_move.append(tag.instance_id)

    if to_delete:
        db.execute(delete(TagInstance).where(TagInstance.id.in_(to_delete)))
    change_instances_context(db, to_move, new_context.id)
