from types import SimpleNamespace

import pytest

from questionbank.core.auth import Principal
from questionbank.core.exceptions import CodingError, NotFoundError, PermissionDenied
from questionbank.models.orm import Permission, Question
from questionbank.services.capabilities import (CapabilityChecker, QuestionById, QuestionByRecord,
                                                QuestionEditContexts, assign_capability, question_get_all_capabilities,
                                                question_has_capability_on, question_require_capability_on,
                                                to_question_ref)
from questionbank.services.contexts import (context_name, get_context, get_course_context, module_context,
                                            parent_context_ids)
from questionbank.services.modules import create_qbank_module, question_edit_tabs

from conftest import EDITOR_ID

CAP = "question:viewall"


class TestInheritance:
    def test_allow_on_ancestor_applies_below(self, db, editor_checker, coursectx, bank):
        assert not editor_checker.has_capability(CAP, bank)
        assign_capability(db, EDITOR_ID, coursectx.id, CAP)
        assert editor_checker.has_capability(CAP, bank)
        assert editor_checker.has_capability(CAP, coursectx)

    def test_nearest_definition_wins(self, db, editor_checker, coursectx, bank):
        assign_capability(db, EDITOR_ID, coursectx.id, CAP)
        assign_capability(db, EDITOR_ID, bank.id, CAP, Permission.PREVENT)
        assert not editor_checker.has_capability(CAP, bank)
        assert editor_checker.has_capability(CAP, coursectx)

    def test_prohibit_anywhere_on_path_denies(self, db, editor_checker, sysctx, bank):
        assign_capability(db, EDITOR_ID, sysctx.id, CAP, Permission.PROHIBIT)
        assign_capability(db, EDITOR_ID, bank.id, CAP)
        assert not editor_checker.has_capability(CAP, bank)

    def test_inherit_is_not_a_definition(self, db, editor_checker, coursectx, bank):
        assign_capability(db, EDITOR_ID, coursectx.id, CAP)
        assign_capability(db, EDITOR_ID, bank.id, CAP, Permission.INHERIT)
        assert editor_checker.has_capability(CAP, bank)

    def test_other_users_grants_do_not_leak(self, db, editor_checker, bank):
        assign_capability(db, 99, bank.id, CAP)
        assert not editor_checker.has_capability(CAP, bank)

    def test_admin_holds_everything(self, admin_checker, bank):
        assert admin_checker.has_capability("question:anything", bank)

    def test_assign_updates_existing_row(self, db, bank):
        first = assign_capability(db, EDITOR_ID, bank.id, CAP)
        second = assign_capability(db, EDITOR_ID, bank.id, CAP, Permission.PREVENT)
        assert first.id == second.id
        assert second.permission == Permission.PREVENT


def test_capability_list():
    caps = question_get_all_capabilities()
    assert len(caps) == 15
    assert len(set(caps)) == 15
    assert "question:add" in caps
    assert "question:commentmine" in caps
    assert caps[-2:] == ["question:managecategory", "question:flag"]


class TestQuestionCapabilities:
    @pytest.mark.parametrize("granted, owner, expected", [
        ("question:editall", EDITOR_ID, True),
        ("question:editall", 99, True),
        ("question:editmine", EDITOR_ID, True),
        ("question:editmine", 99, False),
        (None, EDITOR_ID, False),
    ])
    def test_mine_and_all(self, db, bank, editor_checker, make_question, granted, owner, expected):
        q = make_question(created_by=owner)
        if granted:
            assign_capability(db, EDITOR_ID, bank.id, granted)
        assert question_has_capability_on(db, editor_checker, q.id, "edit") is expected

    def test_plain_capability_has_no_mine_variant(self, db, bank, editor_checker, make_question):
        q = make_question()
        assert not question_has_capability_on(db, editor_checker, q.id, "flag")
        assign_capability(db, EDITOR_ID, bank.id, "question:flag")
        assert question_has_capability_on(db, editor_checker, q.id, "flag")

    def test_accepts_record_without_lookup(self, db, bank, editor_checker):
        assign_capability(db, EDITOR_ID, bank.id, "question:usemine")
        record = SimpleNamespace(id=555, context_id=bank.id, created_by=EDITOR_ID)
        assert question_has_capability_on(db, editor_checker, record, "use")

    def test_require_raises(self, db, editor_checker, make_question):
        q = make_question()
        with pytest.raises(PermissionDenied) as excinfo:
            question_require_capability_on(db, editor_checker, q.id, "view")
        assert excinfo.value.status_code == 403

    def test_missing_question(self, db, editor_checker):
        with pytest.raises(NotFoundError):
            question_has_capability_on(db, editor_checker, 4242, "view")

    def test_question_without_category_is_a_coding_error(self, db, editor_checker):
        loose = Question(name="loose", qtype="essay", stamp="x", time_created=0, time_modified=0)
        db.add(loose)
        db.flush()
        with pytest.raises(CodingError):
            question_has_capability_on(db, editor_checker, loose.id, "view")


class TestToQuestionRef:
    def test_integers_and_digit_strings(self):
        assert to_question_ref(7) == QuestionById(7)
        assert to_question_ref(" 12 ") == QuestionById(12)

    def test_records(self):
        assert to_question_ref(SimpleNamespace(context_id=3, created_by=5)) == QuestionByRecord(3, 5)
        assert to_question_ref(SimpleNamespace(id=9)) == QuestionById(9)
        ref = QuestionById(1)
        assert to_question_ref(ref) is ref

    @pytest.mark.parametrize("value", [True, "abc", 1.5, None, SimpleNamespace(name="x")])
    def test_rejects_everything_else(self, value):
        with pytest.raises(CodingError):
            to_question_ref(value)


class TestQuestionEditContexts:
    def test_lists_course_and_site_banks_once(self, db, admin_checker, events, course, site_course, bank):
        other_cm = create_qbank_module(db, admin_checker, events, course.id, "Chemistry bank")
        site_cm = create_qbank_module(db, admin_checker, events, site_course.id, "Shared bank")
        other, shared = module_context(db, other_cm.id), module_context(db, site_cm.id)

        contexts = QuestionEditContexts(db, admin_checker, bank, course_id=course.id)

        assert [c.id for c in contexts.all()] == [bank.id, other.id, shared.id]
        assert contexts.lowest().id == bank.id

    def test_without_course_only_site_banks_are_added(self, db, admin_checker, events, site_course, coursectx):
        site_cm = create_qbank_module(db, admin_checker, events, site_course.id, "Shared bank")
        contexts = QuestionEditContexts(db, admin_checker, coursectx)
        assert [c.id for c in contexts.all()] == [coursectx.id, module_context(db, site_cm.id).id]

    def test_having_caps(self, db, editor_checker, course, bank):
        assign_capability(db, EDITOR_ID, bank.id, "question:add")
        contexts = QuestionEditContexts(db, editor_checker, bank, course_id=course.id)
        assert contexts.having_cap("question:add") == [bank]
        assert contexts.having_add_and_use() == []
        assign_capability(db, EDITOR_ID, bank.id, "question:usemine")
        assert contexts.having_add_and_use() == [bank]
        assert contexts.have_one_edit_tab_cap("import")
        assert not contexts.have_one_edit_tab_cap("categories")

    def test_require(self, db, editor_checker, bank):
        contexts = QuestionEditContexts(db, editor_checker, bank)
        with pytest.raises(PermissionDenied):
            contexts.require_cap("question:add")
        with pytest.raises(PermissionDenied):
            contexts.require_one_cap(["question:add", "question:editall"])
        with pytest.raises(PermissionDenied):
            contexts.require_one_edit_tab_cap("export")

    def test_unknown_tab(self, db, admin_checker, bank):
        contexts = QuestionEditContexts(db, admin_checker, bank)
        with pytest.raises(CodingError):
            contexts.have_one_edit_tab_cap("quiz")

    def test_edit_tabs(self, db, bank):
        checker = CapabilityChecker(db, Principal(id=EDITOR_ID, roles=[]))
        assign_capability(db, EDITOR_ID, bank.id, "question:managecategory")
        tabs = question_edit_tabs(QuestionEditContexts(db, checker, bank))
        assert tabs == {"editq": False, "questions": False, "categories": True, "import": False, "export": False}


def test_context_path_helpers(db, sysctx, coursectx, bank):
    assert get_context(db, bank.id) is bank
    assert get_context(db, 987654) is None
    assert parent_context_ids(bank) == [coursectx.id, parent_context_ids(coursectx)[0], sysctx.id]
    assert get_course_context(db, bank).id == coursectx.id
    assert get_course_context(db, sysctx) is None
    assert context_name(db, bank) == "Qbank: Biology bank"
    assert context_name(db, coursectx) == "Course: BIO101"
