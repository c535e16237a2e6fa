from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from questionbank.api.deps import get_checker, get_events, load_context
from questionbank.core.database import get_db
from questionbank.core.events import EventDispatcher
from questionbank.core.exceptions import NotFoundError, PermissionDenied
from questionbank.models.orm import Question, QuestionStatus
from questionbank.services.behaviours import Certainty, adjust_fraction, get_behaviour_type, summary_with_certainty
from questionbank.services.capabilities import CAP_ADD, CapabilityChecker, question_require_capability_on
from questionbank.services.categories import get_category
from questionbank.services.deletion import delete_question
from questionbank.services.filters import JoinType
from questionbank.services.grading import (classify_response, get_right_answer_summary, grade_response,
                                           is_automatically_graded, summarise_response)
from questionbank.services.questions import (add_question_comment, create_question, create_question_version,
                                             get_entry_versions, get_question_bank_entry, get_question_options,
                                             list_questions, load_question_definition, question_context_id,
                                             question_preload_questions, rename_question, set_version_status)
from questionbank.services.tags import add_question_tag

router = APIRouter()


class AnswerIn(BaseModel):
    answer: str
    fraction: float = Field(0.0, ge=-1, le=1)
    feedback: str = ""
    tolerance: Optional[float] = None


class HintIn(BaseModel):
    hint: str
    show_num_correct: Optional[bool] = None
    clear_wrong: Optional[bool] = None


class QuestionCreate(BaseModel):
    category_id: int
    name: str
    qtype: str
    question_text: str = ""
    general_feedback: str = ""
    idnumber: Optional[str] = Field(default=None, max_length=100)
    default_mark: float = 1.0
    penalty: float = 0.3333333
    status: QuestionStatus = QuestionStatus.READY
    answers: List[AnswerIn] = []
    hints: List[HintIn] = []
    options: Dict[str, Any] = {}


class QuestionEdit(BaseModel):
    name: Optional[str] = None
    question_text: Optional[str] = None
    general_feedback: Optional[str] = None
    default_mark: Optional[float] = None
    penalty: Optional[float] = None
    status: Optional[QuestionStatus] = None
    answers: Optional[List[AnswerIn]] = None
    hints: Optional[List[HintIn]] = None
    options: Optional[Dict[str, Any]] = None


class QuestionSearch(BaseModel):
    category_id: int
    filters: Dict[str, Any] = {}
    jointype: JoinType = JoinType.ALL
    include_subcategories: bool = False
    limit: int = Field(100, ge=1, le=1000)
    offset: int = Field(0, ge=0)


class Rename(BaseModel):
    name: str


class StatusChange(BaseModel):
    status: QuestionStatus


class CommentIn(BaseModel):
    content: str


class TagIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class GradeRequest(BaseModel):
    response: Dict[str, Any]
    behaviour: str = "deferredfeedback"
    certainty: Optional[Certainty] = None


def _dump_list(items: Optional[List[BaseModel]]):
    return None if items is None else [i.model_dump() for i in items]


@router.post("")
def create(payload: QuestionCreate, db: Session = Depends(get_db), checker: CapabilityChecker = Depends(get_checker),
           events: EventDispatcher = Depends(get_events)):
    category = get_category(db, payload.category_id)
    if not checker.has_capability(CAP_ADD, load_context(db, category.context_id)):
        raise PermissionDenied(CAP_ADD)
    question = create_question(
        db, events, category.id, payload.name, payload.qtype, question_text=payload.question_text,
        created_by=checker.principal.id, idnumber=payload.idnumber, default_mark=payload.default_mark,
        penalty=payload.penalty, general_feedback=payload.general_feedback, answers=_dump_list(payload.answers),
        hints=_dump_list(payload.hints), options=payload.options, status=payload.status)
    db.commit()
    entry = get_question_bank_entry(db, question.id)
    return {"question_id": question.id, "entry_id": entry.id, "version": 1}


@router.post("/search")
def search(payload: QuestionSearch, db: Session = Depends(get_db), checker: CapabilityChecker = Depends(get_checker)):
    """Latest versions in a category narrowed by filter conditions."""
    category = get_category(db, payload.category_id)
    view_caps = ["question:viewall", "question:viewmine"]
    if not checker.has_any_capability(view_caps, load_context(db, category.context_id)):
        raise PermissionDenied(view_caps)
    rows = list_questions(db, category.id, payload.filters, payload.jointype, payload.include_subcategories,
                          payload.limit, payload.offset)
    return {"questions": rows, "count": len(rows)}


@router.get("/{question_id}")
def get(question_id: int, db: Session = Depends(get_db), checker: CapabilityChecker = Depends(get_checker)):
    records = question_preload_questions(db, [question_id])
    if not records:
        raise NotFoundError("question", question_id)
    question_require_capability_on(db, checker, question_id, "view")
    get_question_options(db, records, load_tags=True)
    return records[0]


@router.patch("/{question_id}")
def rename(question_id: int, payload: Rename, db: Session = Depends(get_db),
           checker: CapabilityChecker = Depends(get_checker), events: EventDispatcher = Depends(get_events)):
    question = rename_question(db, checker, events, question_id, payload.name)
    db.commit()
    return {"question_id": question.id, "name": question.name}


@router.put("/{question_id}/status")
def change_status(question_id: int, payload: StatusChange, db: Session = Depends(get_db),
                  checker: CapabilityChecker = Depends(get_checker)):
    question_require_capability_on(db, checker, question_id, "edit")
    version = set_version_status(db, question_id, payload.status)
    db.commit()
    return {"question_id": question_id, "status": version.status}


@router.post("/{question_id}/versions")
def new_version(question_id: int, payload: QuestionEdit, db: Session = Depends(get_db),
                checker: CapabilityChecker = Depends(get_checker), events: EventDispatcher = Depends(get_events)):
    """Save an edit as a new version; unchanged fields carry over."""
    question_require_capability_on(db, checker, question_id, "edit")
    question = create_question_version(
        db, events, question_id, modified_by=checker.principal.id, status=payload.status,
        answers=_dump_list(payload.answers), hints=_dump_list(payload.hints), options=payload.options,
        name=payload.name, question_text=payload.question_text, general_feedback=payload.general_feedback,
        default_mark=payload.default_mark, penalty=payload.penalty)
    db.commit()
    records = question_preload_questions(db, [question.id])
    return {"question_id": question.id, "version": records[0]["version"]}


@router.get("/{question_id}/versions")
def versions(question_id: int, db: Session = Depends(get_db), checker: CapabilityChecker = Depends(get_checker)):
    question_require_capability_on(db, checker, question_id, "view")
    entry = get_question_bank_entry(db, question_id)
    return [{"question_id": v.question_id, "version": v.version, "status": v.status}
            for v in get_entry_versions(db, entry.id)]


@router.delete("/{question_id}")
def delete(question_id: int, db: Session = Depends(get_db), checker: CapabilityChecker = Depends(get_checker),
           events: EventDispatcher = Depends(get_events)):
    """Delete a question; questions still in use are left alone."""
    if db.get(Question, question_id) is None:
        return {"question_id": question_id, "deleted": False}
    question_require_capability_on(db, checker, question_id, "edit")
    deleted = delete_question(db, question_id, events)
    db.commit()
    return {"question_id": question_id, "deleted": deleted}


@router.post("/{question_id}/grade")
def grade(question_id: int, payload: GradeRequest, db: Session = Depends(get_db),
          checker: CapabilityChecker = Depends(get_checker)):
    question_require_capability_on(db, checker, question_id, "use")
    definition = load_question_definition(db, question_id)
    if not is_automatically_graded(definition):
        return {"question_id": question_id, "state": "needsgrading", "fraction": None}
    fraction, state = grade_response(definition, payload.response)
    behaviour = get_behaviour_type(payload.behaviour)
    result = {
        "question_id": question_id,
        "fraction": fraction,
        "state": state.value,
        "mark": fraction * definition.default_mark,
        "summary": summarise_response(definition, payload.response),
        "right_answer": get_right_answer_summary(definition),
        "classified": {k: vars(v) for k, v in classify_response(definition, payload.response).items()},
    }
    if behaviour.uses_cbm and payload.certainty is not None:
        result["cbm_fraction"] = adjust_fraction(fraction, payload.certainty)
        result["summary"] = summary_with_certainty(result["summary"], payload.certainty)
    return result


@router.post("/{question_id}/comments")
def comment(question_id: int, payload: CommentIn, db: Session = Depends(get_db),
            checker: CapabilityChecker = Depends(get_checker), events: EventDispatcher = Depends(get_events)):
    created = add_question_comment(db, checker, events, question_id, payload.content)
    db.commit()
    return {"comment_id": created.id, "question_id": question_id}


@router.post("/{question_id}/tags")
def tag(question_id: int, payload: TagIn, db: Session = Depends(get_db),
        checker: CapabilityChecker = Depends(get_checker)):
    question_require_capability_on(db, checker, question_id, "tag")
    instance = add_question_tag(db, question_id, question_context_id(db, question_id), payload.name)
    db.commit()
    return {"tag_id": instance.tag_id, "question_id": question_id}
