"""
Integration tests for the clarifying question flow over HTTP.
"""
import pytest

from diagnostic_kb.guardrails import MAX_KEYWORDS
from diagnostic_kb.services.analytics import SearchAnalyticsRecorder
from diagnostic_kb.services.error_handler import QUESTION_FETCH_FAILED, QuotaExceededError, RateLimitError
from diagnostic_kb.services.keyword_translator import translate


async def open_session(client, query):
    response = await client.post("/questions", json={"query": query})
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
async def test_answer_and_proceed(client, fake_generator):
    session = await open_session(client, "mobil susah hidup")
    assert session["state"] == "awaiting_answers"
    assert session["questions"][0]["id"] == "q1"
    assert fake_generator.calls == ["mobil susah hidup"]

    response = await client.put(
        f"/questions/{session['session_id']}/answers",
        json={"question_id": "q1", "value": "opt1"},
    )
    assert response.status_code == 200
    assert response.json()["answers"] == {"q1": "opt1"}

    response = await client.post(f"/questions/{session['session_id']}/proceed")
    assert response.status_code == 200
    data = response.json()
    assert "matic" in data["keywords"]
    assert "mobil" in data["keywords"]
    assert data["keywords"].count("mobil") == 1

    state = (await client.get(f"/questions/{session['session_id']}")).json()
    assert state["state"] == "resolved"

    row = await SearchAnalyticsRecorder().get_by_query("mobil susah hidup")
    assert row["search_count"] == 1
    assert "matic" in row["translated_keywords"]


@pytest.mark.asyncio
async def test_skip_searches_with_query_keywords(client):
    session = await open_session(client, "AC tidak dingin")

    response = await client.post(f"/questions/{session['session_id']}/skip")
    assert response.status_code == 200
    data = response.json()
    assert "tidak" in data["keywords"]
    assert "dingin" in data["keywords"]
    assert "matic" not in data["keywords"]
    assert data["keywords"] == translate("AC tidak dingin").preview(MAX_KEYWORDS)
    # "dingin" matches the seeded cold-engine symptom
    assert [row["symptom_id"] for row in data["results"]["symptoms"]] == ["sym-idle"]


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [RateLimitError(), QuotaExceededError()])
async def test_generator_failure_still_allows_search(client, fake_generator, error):
    fake_generator.error = error
    session = await open_session(client, "P0171")

    assert session["state"] == "idle"
    assert session["questions"] == []
    assert session["notifications"] == [{"level": "error", "message": QUESTION_FETCH_FAILED}]

    response = await client.post(f"/questions/{session['session_id']}/skip")
    assert response.status_code == 200
    assert response.json()["has_results"] is True


@pytest.mark.asyncio
async def test_no_questions_needed(client, fake_generator):
    fake_generator.questions = []
    session = await open_session(client, "P0171")
    assert session["state"] == "idle"
    assert session["notifications"] == []


@pytest.mark.asyncio
async def test_proceed_requires_questions(client, fake_generator):
    fake_generator.questions = []
    session = await open_session(client, "P0171")

    response = await client.post(f"/questions/{session['session_id']}/proceed")
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_unknown_session(client):
    response = await client.get("/questions/does-not-exist")
    assert response.status_code == 404
    response = await client.post("/questions/does-not-exist/skip")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_reset_discards_session(client):
    session = await open_session(client, "rem bunyi")

    response = await client.delete(f"/questions/{session['session_id']}")
    assert response.status_code == 200
    assert response.json() == {"deleted": True, "id": session["session_id"]}

    response = await client.get(f"/questions/{session['session_id']}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_empty_query_is_rejected(client):
    response = await client.post("/questions", json={"query": "  "})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_generator_contract(client):
    response = await client.post("/diagnostic-questions", json={"userQuery": "mobil susah hidup"})
    assert response.status_code == 200
    questions = response.json()["questions"]
    assert questions[0]["options"][0] == {"value": "opt1", "label": "Mobil Matic"}


@pytest.mark.asyncio
@pytest.mark.parametrize("error,status_code", [
    (RateLimitError(), 429),
    (QuotaExceededError(), 402),
])
async def test_generator_contract_errors(client, fake_generator, error, status_code):
    fake_generator.error = error
    response = await client.post("/diagnostic-questions", json={"userQuery": "rem bunyi"})
    assert response.status_code == status_code
    assert response.json() == {"error": error.message}
