from questionbank.core.auth import get_current_principal
from questionbank.main import app

from conftest import ADMIN_ID

API = "/v1"


def create_question(client, category_id, name="Powerhouse", **extra):
    body = {
        "category_id": category_id,
        "name": name,
        "qtype": "shortanswer",
        "question_text": "Which organelle makes ATP?",
        "answers": [{"answer": "mitochondria", "fraction": 1.0}, {"answer": "*", "fraction": 0.0}],
    }
    body.update(extra)
    return client.post(f"{API}/questions", json=body)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_mock_login_token_authenticates(client, bank):
    token = client.post(f"{API}/auth/mock-login", json={"user_id": ADMIN_ID, "roles": ["admin"]}).json()
    assert token["token_type"] == "bearer"

    app.dependency_overrides.pop(get_current_principal)
    response = client.get(f"{API}/contexts/{bank.id}/edit-tabs",
                          headers={"Authorization": f"Bearer {token['access_token']}"})
    assert response.status_code == 200
    assert response.json()["categories"] is True

    bad = client.get(f"{API}/contexts/{bank.id}/edit-tabs", headers={"Authorization": "Bearer nonsense"})
    assert bad.status_code == 401


def test_context_summary_and_categories(client, bank, top):
    summary = client.get(f"{API}/contexts/{bank.id}").json()
    assert summary == {"context_id": bank.id, "has_questions": False, "top_category_id": top.id}

    created = client.post(f"{API}/categories", json={"context_id": bank.id, "name": "Genetics"})
    assert created.status_code == 200
    assert created.json()["parent_id"] == top.id

    names = [c["name"] for c in client.get(f"{API}/contexts/{bank.id}/categories").json()]
    assert names == ["top", "Default for Qbank: Biology bank", "Genetics"]


def test_question_lifecycle(client, category):
    created = create_question(client, category.id, idnumber="atp-1")
    assert created.status_code == 200
    qid = created.json()["question_id"]
    assert created.json()["version"] == 1

    fetched = client.get(f"{API}/questions/{qid}").json()
    assert fetched["idnumber"] == "atp-1"
    assert [a["answer"] for a in fetched["answers"]] == ["mitochondria", "*"]

    tagged = client.post(f"{API}/questions/{qid}/tags", json={"name": "Energy"})
    assert tagged.status_code == 200
    assert list(client.get(f"{API}/questions/{qid}").json()["tags"].values()) == ["Energy"]

    edited = client.post(f"{API}/questions/{qid}/versions", json={"name": "Powerhouse v2"}).json()
    assert edited["version"] == 2
    versions = client.get(f"{API}/questions/{edited['question_id']}/versions").json()
    assert [v["version"] for v in versions] == [2, 1]

    drafted = client.put(f"{API}/questions/{edited['question_id']}/status", json={"status": "draft"})
    assert drafted.json()["status"] == "draft"

    search = client.post(f"{API}/questions/search", json={
        "category_id": category.id, "filters": {"qstatus": {"jointype": 2, "values": ["2"]}}}).json()
    assert search["count"] == 1
    assert search["questions"][0]["name"] == "Powerhouse v2"

    assert client.delete(f"{API}/questions/{qid}").json() == {"question_id": qid, "deleted": True}
    assert client.delete(f"{API}/questions/{qid}").json() == {"question_id": qid, "deleted": False}


def test_grade(client, category):
    qid = create_question(client, category.id).json()["question_id"]

    right = client.post(f"{API}/questions/{qid}/grade", json={"response": {"answer": "Mitochondria"}}).json()
    assert right["fraction"] == 1.0
    assert right["state"] == "gradedright"
    assert right["right_answer"] == "mitochondria"
    assert "cbm_fraction" not in right

    cbm = client.post(f"{API}/questions/{qid}/grade", json={
        "response": {"answer": "nucleus"}, "behaviour": "deferredcbm", "certainty": 3}).json()
    assert cbm["cbm_fraction"] == -6
    assert cbm["summary"] == "nucleus [C=3]"

    essay = client.post(f"{API}/questions", json={"category_id": category.id, "name": "Discuss", "qtype": "essay"})
    graded = client.post(f"{API}/questions/{essay.json()['question_id']}/grade", json={"response": {"answer": "x"}})
    assert graded.json()["state"] == "needsgrading"


def test_errors(client, acting, editor, category):
    bad_type = create_question(client, category.id, qtype="hotspot")
    assert bad_type.status_code == 400
    assert bad_type.json()["error"]["type"] == "validation_error"

    missing = client.get(f"{API}/categories/9999")
    assert missing.status_code == 404
    assert missing.json()["error"]["details"] == {"entity": "question category", "id": 9999}

    invalid = client.post(f"{API}/filters/preview", json={"filters": {"qstatus": {"values": ["1"]}}})
    assert invalid.status_code == 400
    assert invalid.json()["error"]["type"] == "invalid_filter"

    malformed = client.post(f"{API}/questions/search", json={"category_id": category.id, "limit": 0})
    assert malformed.status_code == 422

    acting["principal"] = editor
    denied = create_question(client, category.id)
    assert denied.status_code == 403
    assert denied.json()["error"]["details"] == {"capability": "question:add"}


def test_filter_endpoints(client):
    meta = client.get(f"{API}/filters/conditions").json()
    assert meta["jointype_default"] == 1
    assert {c["key"] for c in meta["conditions"]} == {"category", "hidden", "qstatus", "modifieddate", "lastuseddate"}

    preview = client.post(f"{API}/filters/preview", json={
        "filters": {"qstatus": {"jointype": 0, "values": ["0"]}}}).json()
    assert preview == {"where": "((qv.status != :qstatus0))", "params": {"qstatus0": "ready"}}


def test_module_endpoints(client, course):
    assert client.get(f"{API}/modules/supports/mod_purpose").json() == {"feature": "mod_purpose",
                                                                        "supported": "content"}
    created = client.post(f"{API}/modules", json={"course_id": course.id, "name": "Physics bank"})
    assert created.status_code == 200
    cm_id = created.json()["course_module_id"]
    assert client.get(f"{API}/modules/{cm_id}").json()["name"] == "Physics bank"

    deleted = client.delete(f"{API}/modules/{cm_id}").json()
    assert deleted["deleted"] is True
    assert client.get(f"{API}/modules/{cm_id}").status_code == 404
    assert client.post(f"{API}/modules", json={"course_id": 999, "name": "x"}).status_code == 404
