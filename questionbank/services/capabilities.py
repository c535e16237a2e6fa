"""
Capability resolution across nested contexts.

Permissions are stored per (user, context, capability). A check walks the
context path: any PROHIBIT on the path denies outright, otherwise the
definition nearest to the checked context decides. Admin principals hold
every capability.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from questionbank.core.auth import Principal
from questionbank.core.config import settings
from questionbank.core.exceptions import CodingError, NotFoundError, PermissionDenied
from questionbank.models.orm import (Context, CourseModule, Permission, Question, QuestionBankEntry,
                                     QuestionCategory, QuestionVersion, RoleCapability)
from questionbank.services.contexts import module_context, path_ids


CAP_PREFIX = "question:"

CAP_ADD = "question:add"
CAP_MANAGE_CATEGORY = "question:managecategory"
CAP_FLAG = "question:flag"

EDIT_TAB_CAPS: Dict[str, List[str]] = {
    "editq": [
        "question:add",
        "question:editmine",
        "question:editall",
        "question:viewmine",
        "question:viewall",
        "question:usemine",
        "question:useall",
        "question:movemine",
        "question:moveall",
    ],
    "questions": [
        "question:add",
        "question:editmine",
        "question:editall",
        "question:viewmine",
        "question:viewall",
        "question:movemine",
        "question:moveall",
    ],
    "categories": ["question:managecategory"],
    "import": ["question:add"],
    "export": ["question:viewall", "question:viewmine"],
}

# Capabilities that come as a `<cap>mine` / `<cap>all` pair.
CAPS_WITH_ALL_AND_MINE = frozenset({"edit", "view", "use", "move", "tag", "comment"})


def question_get_question_capabilities() -> List[str]:
    caps = [CAP_ADD]
    for cap in ("edit", "view", "use", "move", "tag", "comment"):
        caps.append(f"{CAP_PREFIX}{cap}mine")
        caps.append(f"{CAP_PREFIX}{cap}all")
    return caps


def question_get_all_capabilities() -> List[str]:
    return question_get_question_capabilities() + [CAP_MANAGE_CATEGORY, CAP_FLAG]


class CapabilityChecker:
    """has_capability / has_any_capability for one principal."""

    def __init__(self, db: Session, principal: Principal):
        self.db = db
        self.principal = principal

    def has_capability(self, capability: str, context: Context) -> bool:
        if self.principal.is_admin:
            return True
        ids = path_ids(context)
        rows = self.db.execute(
            select(RoleCapability.context_id, RoleCapability.permission).where(
                RoleCapability.user_id == self.principal.id,
                RoleCapability.capability == capability,
                RoleCapability.context_id.in_(ids),
            )
        ).all()
        defined = {ctx_id: perm for ctx_id, perm in rows if perm != Permission.INHERIT}
        if any(perm == Permission.PROHIBIT for perm in defined.values()):
            return False
        for ctx_id in reversed(ids):
            if ctx_id in defined:
                return defined[ctx_id] == Permission.ALLOW
        return False

    def has_any_capability(self, capabilities: Iterable[str], context: Context) -> bool:
        return any(self.has_capability(cap, context) for cap in capabilities)


def assign_capability(db: Session, user_id: int, context_id: int, capability: str,
                      permission: Permission = Permission.ALLOW) -> RoleCapability:
    row = db.scalar(select(RoleCapability).where(
        RoleCapability.user_id == user_id, RoleCapability.context_id == context_id,
        RoleCapability.capability == capability))
    if row is None:
        row = RoleCapability(user_id=user_id, context_id=context_id, capability=capability)
        db.add(row)
    row.permission = int(permission)
    db.flush()
    return row


def qbank_module_contexts(db: Session, course_id: int) -> List[Context]:
    cm_ids = db.scalars(
        select(CourseModule.id)
        .where(CourseModule.course_id == course_id, CourseModule.module_name == "qbank",
               CourseModule.deletion_in_progress.is_(False))
        .order_by(CourseModule.id)
    ).all()
    return [module_context(db, cm_id) for cm_id in cm_ids]


class QuestionEditContexts:
    """The contexts a question editing page may draw from.

    [this context] + the qbank modules of `course_id` + the qbank modules of
    the site course, each context listed once.
    """

    caps = EDIT_TAB_CAPS

    def __init__(self, db: Session, checker: CapabilityChecker, this_context: Context,
                 course_id: Optional[int] = None):
        self.checker = checker
        contexts = [this_context]
        if course_id:
            contexts.extend(qbank_module_contexts(db, course_id))
        contexts.extend(qbank_module_contexts(db, settings.SITE_COURSE_ID))
        seen = set()
        self._all: List[Context] = []
        for ctx in contexts:
            if ctx.id not in seen:
                seen.add(ctx.id)
                self._all.append(ctx)

    def all(self) -> List[Context]:
        return list(self._all)

    def lowest(self) -> Context:
        return self._all[0]

    def having_cap(self, cap: str) -> List[Context]:
        return [ctx for ctx in self._all if self.checker.has_capability(cap, ctx)]

    def having_one_cap(self, caps: Sequence[str]) -> List[Context]:
        result = []
        for ctx in self._all:
            for cap in caps:
                if self.checker.has_capability(cap, ctx):
                    result.append(ctx)
                    break
        return result

    def having_one_edit_tab_cap(self, tabname: str) -> List[Context]:
        return self.having_one_cap(self._tab_caps(tabname))

    def having_add_and_use(self) -> List[Context]:
        return [ctx for ctx in self._all
                if self.checker.has_capability(CAP_ADD, ctx)
                and self.checker.has_any_capability(["question:useall", "question:usemine"], ctx)]

    def have_cap(self, cap: str) -> bool:
        return len(self.having_cap(cap)) > 0

    def have_one_cap(self, caps: Sequence[str]) -> bool:
        return any(self.have_cap(cap) for cap in caps)

    def have_one_edit_tab_cap(self, tabname: str) -> bool:
        return self.have_one_cap(self._tab_caps(tabname))

    def require_cap(self, cap: str) -> None:
        if not self.have_cap(cap):
            raise PermissionDenied(cap)

    def require_one_cap(self, caps: Sequence[str]) -> None:
        if not self.have_one_cap(caps):
            raise PermissionDenied(list(caps))

    def require_one_edit_tab_cap(self, tabname: str) -> None:
        if not self.have_one_edit_tab_cap(tabname):
            raise PermissionDenied(f"access question edit tab {tabname}")

    def _tab_caps(self, tabname: str) -> List[str]:
        try:
            return self.caps[tabname]
        except KeyError:
            raise CodingError(f"Unknown question edit tab '{tabname}'")


@dataclass(frozen=True)
class QuestionById:
    question_id: int


@dataclass(frozen=True)
class QuestionByRecord:
    context_id: int
    created_by: Optional[int]


QuestionRef = Union[QuestionById, QuestionByRecord]


def to_question_ref(value) -> QuestionRef:
    """Resolve the loosely-typed question argument accepted at the API boundary."""
    if isinstance(value, (QuestionById, QuestionByRecord)):
        return value
    if isinstance(value, bool):
        raise CodingError("question parameter needs to be an integer or a question record.")
    if isinstance(value, int):
        return QuestionById(value)
    if isinstance(value, str) and value.strip().isdigit():
        return QuestionById(int(value))
    context_id = getattr(value, "context_id", None)
    if context_id is not None and hasattr(value, "created_by"):
        return QuestionByRecord(context_id=context_id, created_by=value.created_by)
    if isinstance(value, Question) or getattr(value, "id", None):
        return QuestionById(int(value.id))
    raise CodingError("question parameter needs to be an integer or a question record.")


def _load_question_record(db: Session, question_id: int) -> QuestionByRecord:
    row = db.execute(
        select(Question.created_by, QuestionCategory.context_id)
        .join(QuestionVersion, QuestionVersion.question_id == Question.id)
        .join(QuestionBankEntry, QuestionBankEntry.id == QuestionVersion.question_bank_entry_id)
        .join(QuestionCategory, QuestionCategory.id == QuestionBankEntry.question_category_id)
        .where(Question.id == question_id)
    ).first()
    if row is None:
        if db.get(Question, question_id) is None:
            raise NotFoundError("question", question_id)
        raise CodingError(f"Question {question_id} has no category; cannot resolve its context.")
    return QuestionByRecord(context_id=row.context_id, created_by=row.created_by)


def question_has_capability_on(db: Session, checker: CapabilityChecker, question, cap: str) -> bool:
    ref = to_question_ref(question)
    if isinstance(ref, QuestionById):
        ref = _load_question_record(db, ref.question_id)
    context = db.get(Context, ref.context_id)
    if context is None:
        raise CodingError(f"Context {ref.context_id} does not exist.")

    if cap not in CAPS_WITH_ALL_AND_MINE:
        return checker.has_capability(f"{CAP_PREFIX}{cap}", context)

    return (checker.has_capability(f"{CAP_PREFIX}{cap}all", context)
            or (ref.created_by == checker.principal.id
                and checker.has_capability(f"{CAP_PREFIX}{cap}mine", context)))


def question_require_capability_on(db: Session, checker: CapabilityChecker, question, cap: str) -> bool:
    if not question_has_capability_on(db, checker, question, cap):
        raise PermissionDenied(cap)
    return True
