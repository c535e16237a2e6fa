from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from questionbank.core.exceptions import NotFoundError
from questionbank.models.orm import QuestionReference, QuestionVersion


@dataclass(frozen=True)
class ReferenceLocation:
    """Where a question is used: context, component, area and item."""

    using_context_id: int
    component: str
    question_area: str
    item_id: int


def find_reference(db: Session, location: ReferenceLocation, entry_id: int) -> Optional[QuestionReference]:
    return db.scalar(select(QuestionReference).where(
        QuestionReference.using_context_id == location.using_context_id,
        QuestionReference.component == location.component,
        QuestionReference.question_area == location.question_area,
        QuestionReference.item_id == location.item_id,
        QuestionReference.question_bank_entry_id == entry_id,
    ))


def save_reference(db: Session, location: ReferenceLocation, entry_id: int,
                   version: Optional[int] = None) -> QuestionReference:
    """Insert or update the reference; version None follows the latest version."""
    ref = find_reference(db, location, entry_id)
    if ref is None:
        ref = QuestionReference(using_context_id=location.using_context_id, component=location.component,
                                question_area=location.question_area, item_id=location.item_id,
                                question_bank_entry_id=entry_id)
        db.add(ref)
    ref.version = version
    db.flush()
    return ref


def save_reference_for_question(db: Session, location: ReferenceLocation, question_id: int,
                                pin_version: bool = False) -> QuestionReference:
    qv = db.scalar(select(QuestionVersion).where(QuestionVersion.question_id == question_id))
    if qv is None:
        raise NotFoundError("question", question_id)
    return save_reference(db, location, qv.question_bank_entry_id, qv.version if pin_version else None)


def delete_reference(db: Session, location: ReferenceLocation, entry_id: int) -> None:
    ref = find_reference(db, location, entry_id)
    if ref is None:
        raise NotFoundError("question reference", entry_id)
    db.delete(ref)
    db.flush()


def references_for_entry(db: Session, entry_id: int) -> List[QuestionReference]:
    return list(db.scalars(select(QuestionReference)
                           .where(QuestionReference.question_bank_entry_id == entry_id)
                           .order_by(QuestionReference.id)))


def delete_references_for_version(db: Session, entry_id: int, version: int) -> None:
    db.execute(delete(QuestionReference).where(
        QuestionReference.question_bank_entry_id == entry_id, QuestionReference.version == version))
