"""
anonqa/tests/test_mutations_api.py
Question/answer routes: ownership, public projections, accept-answer rules.
"""

import pytest
from fastapi.testclient import TestClient

PASSWORD = "correct-horse"
ANSWER_PASSWORD = "answer-secret"


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def question(client):
    res = client.post(
        "/v1/questions",
        json={
            "groupId": "g1",
            "title": "What is React?",
            "content": "Trying to understand what React actually is.",
            "authorNickname": "asker",
            "password": PASSWORD,
            "tags": ["react", "js"],
        },
    )
    assert res.status_code == 201
    return res.json()


def _answer(client, question_id, content="It is a UI library."):
    res = client.post(
        "/v1/answers",
        json={"questionId": question_id, "content": content, "authorNickname": "helper", "password": ANSWER_PASSWORD},
    )
    assert res.status_code == 201
    return res.json()


def test_create_question_returns_public_projection(question):
    assert question["groupId"] == "g1"
    assert question["tags"] == ["react", "js"]
    assert question["answerCount"] == 0
    assert not any("password" in key.lower() for key in question)


def test_create_question_validation(client):
    res = client.post("/v1/questions", json={"groupId": "g1", "content": "short", "authorNickname": "a", "password": "x"})
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "validation_error"


def test_update_question_with_wrong_password_is_forbidden(client, question):
    res = client.patch(f"/v1/questions/{question['id']}", json={"password": "nope", "title": "Hijacked title"})
    assert res.status_code == 403
    assert res.json()["error"]["code"] == "forbidden"


def test_update_question(client, question):
    res = client.patch(f"/v1/questions/{question['id']}", json={"password": PASSWORD, "tags": ["react"]})
    assert res.status_code == 200
    assert res.json()["tags"] == ["react"]
    assert res.json()["title"] == "What is React?"


def test_update_question_with_null_tags_clears_them(client, question):
    res = client.patch(f"/v1/questions/{question['id']}", json={"password": PASSWORD, "tags": None})
    assert res.status_code == 200
    assert res.json()["tags"] == []

    assert client.get(f"/v1/questions/{question['id']}").json()["tags"] == []
    listed = client.get("/v1/questions/group/g1").json()["questions"]
    assert [q["tags"] for q in listed] == [[]]


def test_update_question_without_fields_is_rejected(client, question):
    res = client.patch(f"/v1/questions/{question['id']}", json={"password": PASSWORD})
    assert res.status_code == 400


def test_unknown_question_is_404(client):
    res = client.patch("/v1/questions/missing", json={"password": PASSWORD, "title": "Whatever title"})
    assert res.status_code == 404
    assert res.json()["error"]["code"] == "not_found"


def test_delete_question(client, question):
    res = client.request("DELETE", f"/v1/questions/{question['id']}", json={"password": PASSWORD})
    assert res.status_code == 200
    assert client.get(f"/v1/questions/{question['id']}").status_code == 404


def test_answer_lifecycle(client, question):
    answer = _answer(client, question["id"])
    assert client.get(f"/v1/questions/{question['id']}").json()["answerCount"] == 1

    res = client.patch(f"/v1/answers/{answer['id']}", json={"password": ANSWER_PASSWORD, "content": "A JavaScript UI library."})
    assert res.status_code == 200
    assert res.json()["content"] == "A JavaScript UI library."

    res = client.post(f"/v1/answers/{answer['id']}/vote", json={"voteType": "upvote"})
    assert res.json()["upvotes"] == 1

    res = client.request("DELETE", f"/v1/answers/{answer['id']}", json={"password": ANSWER_PASSWORD})
    assert res.status_code == 200
    assert client.get(f"/v1/answers/question/{question['id']}").json()["answers"] == []


def test_vote_type_must_be_upvote(client, question):
    answer = _answer(client, question["id"])
    res = client.post(f"/v1/answers/{answer['id']}/vote", json={"voteType": "downvote"})
    assert res.status_code == 400


def test_accept_answer_flow(client, question):
    first = _answer(client, question["id"], "First answer here.")
    second = _answer(client, question["id"], "Second answer here.")
    url = f"/v1/questions/{question['id']}/accept-answer"

    # Answer author cannot accept; question author can
    assert client.post(url, json={"answerId": first["id"], "password": ANSWER_PASSWORD}).status_code == 403
    assert client.post(url, json={"answerId": first["id"], "password": PASSWORD}).status_code == 200
    assert client.post(url, json={"answerId": first["id"], "password": PASSWORD}).status_code == 409

    res = client.post(url, json={"answerId": second["id"], "password": PASSWORD})
    assert res.status_code == 200
    assert res.json()["isAccepted"] is True

    answers = client.get(f"/v1/answers/question/{question['id']}").json()["answers"]
    assert [a["id"] for a in answers if a["isAccepted"]] == [second["id"]]
    assert client.get(f"/v1/questions/{question['id']}").json()["isAnswered"] is True


def test_accept_answer_of_other_question_is_404(client, question):
    other = client.post(
        "/v1/questions",
        json={"groupId": "g1", "content": "A different question body.", "authorNickname": "other", "password": PASSWORD},
    ).json()
    foreign = _answer(client, other["id"])

    res = client.post(f"/v1/questions/{question['id']}/accept-answer", json={"answerId": foreign["id"], "password": PASSWORD})
    assert res.status_code == 404


def test_mutation_succeeds_when_broadcast_fails(client, app, question):
    class Exploding:
        def broadcast(self, group_id, event):
            raise RuntimeError("socket layer down")

    app.state.broadcaster = Exploding()
    res = client.post(f"/v1/questions/{question['id']}/upvote")
    assert res.status_code == 200
    assert res.json()["upvotes"] == 1


def test_mutation_succeeds_without_live_transport(client, app, question):
    app.state.broadcaster = None
    res = client.post(f"/v1/questions/{question['id']}/upvote")
    assert res.status_code == 200


def test_healthz_and_metrics(client, question):
    assert client.get("/healthz").json()["status"] == "ok"
    body = client.get("/metrics").text
    assert "http_requests_total" in body
    assert 'path="/v1/questions"' in body


def test_readyz_with_in_memory_ledger(client):
    res = client.get("/readyz")
    assert res.status_code == 200
    assert res.json() == {"status": "ok", "usageStore": "memory"}
