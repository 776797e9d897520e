"""
anonqa/tests/test_ai_api.py
AI endpoints end to end with a fake Groq client.
"""

import math

import pytest
from httpx import ASGITransport, AsyncClient

from anonqa.features.ai.client import CompletionClient
from anonqa.models.usage_record import UsageAction

PASSWORD = "correct-horse"


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def question(content_store):
    return await content_store.create_question(
        group_id="g1",
        title="What is React?",
        content="Trying to understand what React actually is.",
        author_nickname="asker",
        password=PASSWORD,
    )


@pytest.mark.asyncio
async def test_generate_answer_streams_and_records_usage(client, question, fake_groq, usage_store):
    res = await client.post("/v1/ai/generate-answer", json={"questionId": question.id})

    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/plain")
    assert res.text == "Hello World!\n"

    call = fake_groq.calls[0]
    assert call["stream"] is True
    assert "Trying to understand what React actually is." in call["messages"][-1]["content"]

    [record] = usage_store.records
    assert record.action == UsageAction.GENERATE_ANSWER
    assert record.question_id == question.id
    assert record.group_id == "g1"
    assert record.tokens_used == math.ceil(len("Hello World!\n") / 4)


@pytest.mark.asyncio
async def test_fourth_answer_for_same_question_is_rejected(client, question, fake_groq, usage_store):
    for _ in range(3):
        res = await client.post("/v1/ai/generate-answer", json={"questionId": question.id})
        assert res.status_code == 200

    res = await client.post("/v1/ai/generate-answer", json={"questionId": question.id})

    assert res.status_code == 429
    assert res.json()["error"]["code"] == "quota_exceeded"
    assert len(fake_groq.calls) == 3
    assert len(usage_store.records) == 3


@pytest.mark.asyncio
async def test_quota_is_keyed_by_forwarded_for(client, question, usage_store):
    for _ in range(3):
        await client.post("/v1/ai/generate-answer", json={"questionId": question.id}, headers={"X-Forwarded-For": "9.9.9.9, 10.0.0.1"})

    blocked = await client.post("/v1/ai/generate-answer", json={"questionId": question.id}, headers={"X-Forwarded-For": "9.9.9.9"})
    other = await client.post("/v1/ai/generate-answer", json={"questionId": question.id}, headers={"X-Forwarded-For": "8.8.8.8"})

    assert blocked.status_code == 429
    assert other.status_code == 200
    assert {r.actor_id for r in usage_store.records} == {"9.9.9.9", "8.8.8.8"}


@pytest.mark.asyncio
async def test_missing_credentials_is_503_before_streaming(app, client, question, usage_store):
    app.state.ai_service.client = CompletionClient(api_key="")

    res = await client.post("/v1/ai/generate-answer", json={"questionId": question.id})

    assert res.status_code == 503
    assert res.json()["error"]["code"] == "ai_not_configured"
    assert usage_store.records == []


@pytest.mark.asyncio
async def test_unknown_question_is_404(client, fake_groq):
    res = await client.post("/v1/ai/generate-answer", json={"questionId": "missing"})
    assert res.status_code == 404
    assert fake_groq.calls == []


@pytest.mark.asyncio
async def test_upstream_error_mid_stream_appends_marker(client, question, fake_groq, usage_store):
    fake_groq.completions.fail_after = 1

    res = await client.post("/v1/ai/generate-answer", json={"questionId": question.id})

    assert res.status_code == 200
    assert res.text == "Hello \n[[ERROR: upstream exploded]]\n"
    assert usage_store.records == []


@pytest.mark.asyncio
async def test_generate_question_streams(client, fake_groq, usage_store):
    res = await client.post(
        "/v1/ai/generate-question",
        json={"groupId": "g1", "topic": "React hooks", "context": "useEffect cleanup", "count": 2},
    )

    assert res.status_code == 200
    assert res.text == "Hello World!\n"
    prompt = fake_groq.calls[0]["messages"][-1]["content"]
    assert "React hooks" in prompt
    assert "Generate 2 concise" in prompt

    [record] = usage_store.records
    assert record.action == UsageAction.GENERATE_QUESTION
    assert record.group_id == "g1"
    assert record.question_id is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"groupId": "g1", "topic": "x", "count": 6},
        {"groupId": "g1", "topic": "x", "count": 0},
        {"groupId": "g1", "topic": "t" * 201},
        {"groupId": "g1"},
    ],
)
async def test_generate_question_validation(client, fake_groq, payload):
    res = await client.post("/v1/ai/generate-question", json=payload)
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "validation_error"
    assert fake_groq.calls == []


@pytest.mark.asyncio
async def test_similar_questions_returns_matches_in_candidate_order(client, content_store, fake_groq, usage_store):
    react = await content_store.create_question(group_id="g1", title="What is React?", content="Explain React please.", author_nickname="a", password=PASSWORD)
    nextjs = await content_store.create_question(group_id="g1", title="What is Next.js?", content="Explain Next.js please.", author_nickname="b", password=PASSWORD)
    await content_store.create_question(group_id="g2", title="What is React?", content="Other group.", author_nickname="c", password=PASSWORD)
    fake_groq.completions.reply = "What is React?\nWhat is Next.js?"

    res = await client.post("/v1/ai/similar-questions", json={"groupId": "g1", "questionText": "Tell me about React"})

    assert res.status_code == 200
    body = res.json()
    candidate_order = [q.id for q in await content_store.list_group_questions("g1")]
    assert [q["id"] for q in body["similarQuestions"]] == candidate_order
    assert {q["id"] for q in body["similarQuestions"]} == {react.id, nextjs.id}
    assert set(body["similarQuestions"][0]) == {"id", "title", "content", "tags", "answerCount", "upvotes", "createdAt"}
    assert body["usage"]["tokensUsed"] == math.ceil(len(fake_groq.completions.reply) / 4)

    [record] = usage_store.records
    assert record.action == UsageAction.SIMILAR_QUESTIONS
    assert record.group_id == "g1"


@pytest.mark.asyncio
async def test_similar_questions_without_matches_is_empty(client, content_store, fake_groq):
    await content_store.create_question(group_id="g1", title="What is React?", content="Explain React please.", author_nickname="a", password=PASSWORD)
    fake_groq.completions.reply = "Nothing relevant here"

    res = await client.post("/v1/ai/similar-questions", json={"groupId": "g1", "questionText": "Tell me about Vue"})

    assert res.status_code == 200
    assert res.json()["similarQuestions"] == []


@pytest.mark.asyncio
async def test_similar_questions_only_prompts_first_twenty_candidates(client, content_store, fake_groq):
    for i in range(25):
        await content_store.create_question(group_id="g1", title=f"Candidate question {i:02d}", content="Body text here.", author_nickname="a", password=PASSWORD)

    await client.post("/v1/ai/similar-questions", json={"groupId": "g1", "questionText": "anything", "limit": 3})

    prompt = fake_groq.calls[0]["messages"][-1]["content"]
    assert prompt.count("- Candidate question") == 20


@pytest.mark.asyncio
async def test_group_usage_stats(client, question):
    await client.post("/v1/ai/generate-answer", json={"questionId": question.id})
    await client.post("/v1/ai/generate-question", json={"groupId": "g1", "topic": "React"})

    res = await client.get("/v1/ai/usage/g1")

    assert res.status_code == 200
    body = res.json()
    assert body["totalUsage"] == 2
    assert body["byType"] == {"generate_answer": 1, "generate_question": 1}
    assert body["totalCost"] > 0
