import pytest

from questionbank.core.exceptions import InvalidFilterError
from questionbank.services.filters import (CategoryCondition, HiddenCondition, JoinType, LastUsageCondition,
                                           ModifiedDateCondition, QuestionStatusCondition, build_filter_query,
                                           combine_conditions, condition_metadata)


class TestQuestionStatusCondition:
    def test_any_of_statuses(self):
        cond = QuestionStatusCondition({"qstatus": {"jointype": JoinType.ALL, "values": ["0", "2"]}})
        assert cond.where() == "(qv.status = :qstatus0 OR qv.status = :qstatus1)"
        assert cond.params() == {"qstatus0": "ready", "qstatus1": "draft"}

    def test_none_of_statuses(self):
        cond = QuestionStatusCondition({"qstatus": {"jointype": JoinType.NONE, "values": [0, 2]}})
        assert cond.where() == "(qv.status != :qstatus0 AND qv.status != :qstatus1)"

    def test_there_is_no_code_one(self):
        with pytest.raises(InvalidFilterError):
            QuestionStatusCondition({"qstatus": {"values": ["1"]}})

    def test_empty_values_add_nothing(self):
        assert QuestionStatusCondition({"qstatus": {"values": []}}).where() == ""
        assert QuestionStatusCondition({}).where() == ""

    def test_metadata(self):
        meta = QuestionStatusCondition().to_metadata()
        assert meta["key"] == "qstatus"
        assert meta["joinlist"] == [2, 0]
        assert [v["value"] for v in meta["initialvalues"]] == [0, 2]


class TestDateConditions:
    def test_between(self):
        cond = ModifiedDateCondition({"modifieddate": {"jointype": 2, "values": [100, 200],
                                                       "rangetype": "between"}})
        assert cond.where() == "(q.time_modified >= :modifieddate_from AND q.time_modified <= :modifieddate_to)"
        assert cond.params() == {"modifieddate_from": 100, "modifieddate_to": 200}

    def test_before_negated(self):
        cond = ModifiedDateCondition({"modifieddate": {"jointype": 0, "values": ["300"], "rangetype": "before"}})
        assert cond.where() == "NOT (q.time_modified <= :modifieddate_to)"
        assert cond.params() == {"modifieddate_to": 300}

    @pytest.mark.parametrize("flt", [
        {"values": [100]},
        {"values": [100], "rangetype": "between"},
        {"values": ["yesterday"], "rangetype": "after"},
        {"values": [100], "rangetype": "sideways"},
    ])
    def test_malformed(self, flt):
        with pytest.raises(InvalidFilterError):
            ModifiedDateCondition({"modifieddate": flt})

    def test_last_used_excludes_previews(self):
        cond = LastUsageCondition({"lastuseddate": {"values": [50], "rangetype": "after"}})
        assert cond.where().startswith("q.id IN (SELECT qatt.question_id")
        assert "qu.component != :lastuseddate_preview" in cond.where()
        assert cond.params()["lastuseddate_preview"] == "core_question_preview"

    def test_last_used_none_wraps_in_not(self):
        cond = LastUsageCondition({"lastuseddate": {"jointype": 0, "values": [50], "rangetype": "after"}})
        assert cond.where().startswith("NOT (q.id IN (")


class TestOtherConditions:
    def test_hidden_excluded_unless_requested(self):
        assert HiddenCondition({"hidden": {"values": ["0"]}}).where() == "qv.status <> :hidden_status"
        assert HiddenCondition({"hidden": {"values": ["1"]}}).where() == ""

    def test_category_without_session(self):
        cond = CategoryCondition({"category": {"values": [4, "5"]}})
        assert cond.where() == "qbe.question_category_id IN (:category0, :category1)"
        assert cond.params() == {"category0": 4, "category1": 5}

    def test_category_rejects_non_ids(self):
        with pytest.raises(InvalidFilterError):
            CategoryCondition({"category": {"values": ["cells"]}})


class TestBuildFilterQuery:
    def test_combines_under_filter_set_jointype(self):
        filters = {
            "qstatus": {"jointype": 2, "values": ["2"]},
            "hidden": {"values": ["0"]},
        }
        where, params = build_filter_query(filters)
        assert where == "(qv.status <> :hidden_status) AND ((qv.status = :qstatus0))"
        assert params == {"hidden_status": "hidden", "qstatus0": "draft"}

        where, _ = build_filter_query(filters, jointype=JoinType.ANY)
        assert " OR " in where

        where, _ = build_filter_query(filters, jointype=JoinType.NONE)
        assert where == "NOT (qv.status <> :hidden_status) AND NOT ((qv.status = :qstatus0))"

    def test_empty(self):
        assert build_filter_query({}) == ("", {})
        assert combine_conditions([]) == ("", {})

    def test_unknown_key(self):
        with pytest.raises(InvalidFilterError):
            build_filter_query({"author": {"values": [1]}})

    def test_bad_jointype(self):
        with pytest.raises(InvalidFilterError):
            build_filter_query({"qstatus": {"jointype": 7, "values": ["0"]}})

    def test_values_are_never_spliced(self):
        where, params = build_filter_query({"category": {"values": ["1"]},
                                            "modifieddate": {"values": [1], "rangetype": "after"}})
        assert "1" not in where.replace(":category0", "")
        assert params["category0"] == 1


def test_condition_metadata():
    meta = {m["key"]: m for m in condition_metadata()}
    assert list(meta) == ["category", "hidden", "qstatus", "modifieddate", "lastuseddate"]
    assert meta["modifieddate"]["joinlist"] == [0, 2]
    assert meta["lastuseddate"]["joinlist"] == [0, 1, 2]
    assert meta["modifieddate"]["filterclass"] == "core/datafilter/filtertypes/date"
