"""
In-use detection for questions.

Consumers register checkers; a question is in use when any checker says so.
"""
from typing import Callable, Iterable, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from questionbank.models.orm import (PREVIEW_COMPONENT, Context, QuestionAttempt, QuestionReference, QuestionUsage,
                                     QuestionVersion)

UsageChecker = Callable[[Session, List[int]], bool]


def used_in_attempts(db: Session, question_ids: List[int]) -> bool:
    """Non-preview attempts keep a question alive."""
    found = db.scalar(
        select(QuestionAttempt.id)
        .join(QuestionUsage, QuestionUsage.id == QuestionAttempt.question_usage_id)
        .where(QuestionAttempt.question_id.in_(question_ids), QuestionUsage.component != PREVIEW_COMPONENT)
        .limit(1)
    )
    return found is not None


def used_in_references(db: Session, question_ids: List[int]) -> bool:
    """Referenced by a live consumer, either pinned to this version or following the latest one."""
    versions = db.execute(
        select(QuestionVersion.question_bank_entry_id, QuestionVersion.version)
        .where(QuestionVersion.question_id.in_(question_ids))
    ).all()
    for entry_id, version in versions:
        latest = db.scalar(select(func.max(QuestionVersion.version))
                           .where(QuestionVersion.question_bank_entry_id == entry_id))
        refs = db.execute(
            select(QuestionReference.version)
            .join(Context, Context.id == QuestionReference.using_context_id)
            .where(QuestionReference.question_bank_entry_id == entry_id)
        ).scalars().all()
        for ref_version in refs:
            if ref_version == version or (ref_version is None and version == latest):
                return True
    return False


DEFAULT_USAGE_CHECKERS: Sequence[UsageChecker] = (used_in_attempts, used_in_references)


def questions_in_use(db: Session, question_ids: Iterable[int],
                     usage_checkers: Optional[Sequence[UsageChecker]] = None) -> bool:
    ids = [int(qid) for qid in question_ids]
    if not ids:
        return False
    checkers = DEFAULT_USAGE_CHECKERS if usage_checkers is None else usage_checkers
    return any(checker(db, ids) for checker in checkers)
