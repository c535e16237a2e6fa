import pytest
from sqlalchemy import func, select

from questionbank.core.config import settings
from questionbank.core.exceptions import NotFoundError, ValidationError
from questionbank.jobs import context_cleanup
from questionbank.models.orm import (Context, CourseModule, Qbank, QuestionAttempt, QuestionCategory,
                                     QuestionUsage, RoleCapability)
from questionbank.services.capabilities import assign_capability, qbank_module_contexts
from questionbank.services.contexts import get_parent_context, module_context
from questionbank.services.modules import (create_qbank_module, delete_qbank_module, qbank_add_instance,
                                           qbank_supports, qbank_update_instance)
from questionbank.services.questions import get_question_bank_entry

from conftest import EDITOR_ID


def in_use(db, question_id, context_id):
    usage = QuestionUsage(context_id=context_id, component="mod_quiz")
    db.add(usage)
    db.flush()
    db.add(QuestionAttempt(question_usage_id=usage.id, question_id=question_id))
    db.flush()


def category_count(db, context_id):
    return db.scalar(select(func.count()).select_from(QuestionCategory)
                     .where(QuestionCategory.context_id == context_id))


@pytest.mark.parametrize("feature, expected", [
    ("mod_intro", True),
    ("uses_questions", True),
    ("backup_moodle2", True),
    ("grade_has_grade", False),
    ("mod_purpose", "content"),
    ("completion_tracks_views", None),
])
def test_supports(feature, expected):
    assert qbank_supports(feature) == expected


class TestInstances:
    def test_create_module_sets_up_context_and_categories(self, db, course, coursectx, bank, events):
        cm = db.get(CourseModule, bank.instance_id)
        assert cm.module_name == "qbank"
        assert get_parent_context(db, bank).id == coursectx.id
        assert db.get(Qbank, cm.instance_id).name == "Biology bank"
        assert category_count(db, bank.id) == 2
        assert "course_module_created" in [e.name for e in events.triggered]

    def test_unknown_course(self, db, admin_checker, events):
        with pytest.raises(NotFoundError):
            create_qbank_module(db, admin_checker, events, 999, "Nowhere")

    def test_name_required(self, db, course):
        with pytest.raises(ValidationError):
            qbank_add_instance(db, course.id, " ")

    def test_update(self, db, course):
        instance = qbank_add_instance(db, course.id, "Old", clock=lambda: 10)
        assert qbank_update_instance(db, instance.id, {"name": "New", "intro": None}, clock=lambda: 20)
        assert instance.name == "New"
        assert instance.time_modified == 20
        assert qbank_update_instance(db, 999, {"name": "x"}) is False


class TestDeleteModule:
    def test_inline_delete_rescues_questions_to_course(self, db, bank, coursectx, events, make_question):
        cm_id = bank.instance_id
        instance_id = db.get(CourseModule, cm_id).instance_id
        bank_id = bank.id
        assign_capability(db, EDITOR_ID, bank_id, "question:viewall")
        used = make_question("Used")
        in_use(db, used.id, bank_id)
        make_question("Unused")

        result = delete_qbank_module(db, cm_id, events)

        assert result["deleted"] is True
        assert result["job_id"] is None
        assert len(result["categories"]) == 3
        assert db.get(CourseModule, cm_id) is None
        assert db.get(Qbank, instance_id) is None
        assert db.get(Context, bank_id) is None
        assert category_count(db, bank_id) == 0
        assert db.scalar(select(func.count()).select_from(RoleCapability)
                         .where(RoleCapability.context_id == bank_id)) == 0
        rescue = db.get(QuestionCategory, get_question_bank_entry(db, used.id).question_category_id)
        assert rescue.context_id == coursectx.id
        assert events.triggered[-1].name == "course_module_deleted"

    def test_missing_module(self, db, events):
        assert delete_qbank_module(db, 4242, events) is None

    def test_async_delete_flags_and_enqueues(self, db, bank, course, events, monkeypatch):
        cm_id = bank.instance_id
        queued = []

        def fake_enqueue(course_module_id, user_id=None):
            queued.append((course_module_id, user_id))
            return "job-1"

        monkeypatch.setattr(settings, "ASYNC_CONTEXT_CLEANUP", True)
        monkeypatch.setattr(context_cleanup, "enqueue_module_cleanup", fake_enqueue)

        result = delete_qbank_module(db, cm_id, events)

        assert result == {"course_module_id": cm_id, "deleted": False, "job_id": "job-1"}
        assert queued == [(cm_id, events.user_id)]
        assert db.get(CourseModule, cm_id).deletion_in_progress is True
        assert qbank_module_contexts(db, course.id) == []

        monkeypatch.setattr(context_cleanup, "SessionLocal", lambda: db)
        outcome = context_cleanup.delete_module_job(cm_id, user_id=events.user_id)

        assert outcome["course_module_id"] == cm_id
        assert db.get(CourseModule, cm_id) is None


def test_context_cleanup_job(db, bank, monkeypatch, make_question):
    make_question()
    bank_id = bank.id
    db.commit()
    monkeypatch.setattr(context_cleanup, "SessionLocal", lambda: db)

    outcome = context_cleanup.delete_context_job(bank_id)

    assert [c["name"] for c in outcome["categories"]] == ["top", "Default for Qbank: Biology bank", "Cells"]
    assert category_count(db, bank_id) == 0


def test_context_cleanup_job_failure_rolls_back(db, monkeypatch):
    monkeypatch.setattr(context_cleanup, "SessionLocal", lambda: db)

    def boom(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(context_cleanup, "question_delete_context", boom)
    with pytest.raises(RuntimeError):
        context_cleanup.delete_context_job(1)


def test_module_context_lookup(db, bank):
    assert module_context(db, bank.instance_id).id == bank.id
