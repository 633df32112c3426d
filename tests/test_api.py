"""
API tests -- FastAPI TestClient against an app wired with fakes.

No provider is ever called: models are FakeLLMs, the augmenter LLM and the
speech synthesizer are AsyncMocks, and storage lives under tmp_path.
"""

import json
import time
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from ai_roundtable.api.gateway import create_app
from ai_roundtable.api.middleware import rate_limit
from ai_roundtable.augmenter import Augmenter
from ai_roundtable.config import Settings
from ai_roundtable.llm.client import LLMResponse
from ai_roundtable.speech import AudioCache, TextToSpeech
from ai_roundtable.storage import ConversationResponse

from conftest import FakeClientFactory


@pytest.fixture(autouse=True)
def open_gate(monkeypatch):
    """Route tests run with the access gate opted out; TestAccessGate turns it back on."""
    monkeypatch.setenv("AUTH_DISABLED", "true")


@pytest.fixture
def synthesizer():
    synth = AsyncMock()
    synth.synthesize.return_value = b"ID3-fake-mp3"
    return synth


@pytest.fixture
def factory():
    return FakeClientFactory(failing=("grok",))


@pytest.fixture
def app(tmp_path, store, factory, mock_llm, synthesizer):
    return create_app(
        settings=Settings(data_dir=tmp_path, rate_limit_per_minute=1000),
        store=store,
        client_factory=factory,
        augmenter=Augmenter(mock_llm),
        tts=TextToSpeech(synthesizer, AudioCache(tmp_path / "audio")),
    )


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def _create(client, **overrides) -> str:
    body = {
        "raw_input": "Fusion by 2040?",
        "augmented_prompt": "Will fusion be commercial by 2040?",
        "topic_type": "prediction",
        "framework": "scenario analysis",
        "models": ["claude", "gpt", "grok"],
    }
    body.update(overrides)
    response = client.post("/api/conversation", json=body)
    assert response.status_code == 200, response.text
    return response.json()["conversation_id"]


def _sse_events(text: str) -> list[tuple[str, dict]]:
    events = []
    for frame in text.strip().split("\n\n"):
        name_line, data_line = frame.split("\n", 1)
        events.append((name_line[len("event: "):], json.loads(data_line[len("data: "):])))
    return events


class TestHealth:
    def test_liveness(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["models"] == ["claude", "gpt", "gemini", "grok"]


class TestAugment:
    def test_single(self, client, mock_llm):
        response = client.post("/api/augment", json={"raw_input": "  Fusion by 2040?  "})
        assert response.status_code == 200
        body = response.json()
        assert body["raw_input"] == "Fusion by 2040?"
        assert body["topic_type"] == "prediction"
        assert body["augmented_prompt"].startswith("Will fusion")

    def test_all_types(self, client, mock_llm):
        mock_llm.call.return_value = LLMResponse(content=json.dumps({
            "recommended": "prediction",
            "augmentations": {
                t: {"framework": t, "augmented_prompt": f"As {t}"}
                for t in ("prediction", "opinion", "comparison", "trend_analysis", "open_question")
            },
        }))
        response = client.post("/api/augment", json={"raw_input": "Fusion", "all_types": True})
        assert response.status_code == 200
        assert response.json()["recommended"] == "prediction"
        assert len(response.json()["augmentations"]) == 5

    def test_empty_input(self, client, mock_llm):
        assert client.post("/api/augment", json={"raw_input": "   "}).status_code == 400
        assert client.post("/api/augment", json={}).status_code == 400
        mock_llm.call.assert_not_awaited()

    def test_unparseable_reply(self, client, mock_llm):
        mock_llm.call.return_value = LLMResponse(content="I'd rather not.")
        response = client.post("/api/augment", json={"raw_input": "Fusion"})
        assert response.status_code == 500


class TestCreateConversation:
    def test_create(self, client, store):
        conversation_id = _create(client)
        assert store.get_conversation(conversation_id).models == ["claude", "gpt", "grok"]

    def test_gpt4_alias_stored_as_gpt(self, client, store):
        conversation_id = _create(client, models=["claude", "gpt4"])
        assert store.get_conversation(conversation_id).models == ["claude", "gpt"]

    @pytest.mark.parametrize("overrides", [
        {"augmented_prompt": ""},
        {"models": []},
        {"models": ["claude", "llama"]},
        {"models": ["claude", "claude"]},
        {"models": ["gpt", "gpt4"]},
        {"topic_type": "rant"},
    ])
    def test_rejected(self, client, overrides):
        body = {"augmented_prompt": "Prompt", "models": ["claude"], **overrides}
        assert client.post("/api/conversation", json=body).status_code == 400

    def test_wrong_type_is_400(self, client):
        response = client.post("/api/conversation", json={"augmented_prompt": "p", "models": "claude"})
        assert response.status_code == 400


class TestRespond:
    def test_round1(self, client, factory):
        conversation_id = _create(client)
        response = client.post("/api/conversation/respond", json={
            "conversation_id": conversation_id, "model": "claude", "round": 1,
        })
        assert response.status_code == 200
        body = response.json()
        assert body["model_name"] == "Claude"
        assert body["provider"] == "anthropic"
        assert body["content"].startswith("claude thinks")

    def test_repeat_is_not_recalled(self, client, factory):
        conversation_id = _create(client)
        body = {"conversation_id": conversation_id, "model": "gpt", "round": 1}
        first = client.post("/api/conversation/respond", json=body).json()
        second = client.post("/api/conversation/respond", json=body).json()
        assert first["content"] == second["content"]
        assert len(factory.clients["gpt"].calls) == 1

    def test_round2_before_round1(self, client):
        conversation_id = _create(client)
        response = client.post("/api/conversation/respond", json={
            "conversation_id": conversation_id, "model": "claude", "round": 2,
        })
        assert response.status_code == 400

    def test_invalid_round(self, client):
        conversation_id = _create(client)
        response = client.post("/api/conversation/respond", json={
            "conversation_id": conversation_id, "model": "claude", "round": 3,
        })
        assert response.status_code == 400

    def test_missing_round(self, client):
        conversation_id = _create(client)
        response = client.post("/api/conversation/respond", json={
            "conversation_id": conversation_id, "model": "claude",
        })
        assert response.status_code == 400

    def test_unknown_conversation(self, client):
        response = client.post("/api/conversation/respond", json={
            "conversation_id": "missing", "model": "claude", "round": 1,
        })
        assert response.status_code == 404

    def test_provider_failure(self, client):
        conversation_id = _create(client)
        response = client.post("/api/conversation/respond", json={
            "conversation_id": conversation_id, "model": "grok", "round": 1,
        })
        assert response.status_code == 502

    def test_essay_mode_off(self, client, factory):
        conversation_id = _create(client)
        client.post("/api/conversation/respond", json={
            "conversation_id": conversation_id, "model": "claude", "round": 1, "essay_mode": False,
        })
        assert factory.clients["claude"].calls[0][1]["system"] is None


class TestRound:
    def test_partial_failure_reported_per_model(self, client):
        conversation_id = _create(client)
        response = client.post("/api/conversation/round", json={
            "conversation_id": conversation_id, "round": 1,
        })
        assert response.status_code == 200
        results = {r["model"]: r for r in response.json()["results"]}
        assert set(results) == {"claude", "gpt", "grok"}
        assert results["grok"]["error"]
        assert results["claude"]["error"] is None

    def test_round2_after_round1(self, client, factory):
        conversation_id = _create(client)
        client.post("/api/conversation/round", json={"conversation_id": conversation_id, "round": 1})
        response = client.post("/api/conversation/round", json={
            "conversation_id": conversation_id, "round": 2, "models": ["claude", "gpt"],
        })
        assert response.status_code == 200
        assert [r["model"] for r in response.json()["results"]] == ["claude", "gpt"]
        gpt_prompt = factory.clients["gpt"].calls[-1][0]
        assert "### Claude" in gpt_prompt
        assert "### GPT-4" not in gpt_prompt


class TestStream:
    def test_both_rounds(self, client, store):
        conversation_id = _create(client, models=["claude", "gpt"])
        response = client.post("/api/conversation/stream", json={"conversation_id": conversation_id})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")

        events = _sse_events(response.text)
        names = [name for name, _ in events]
        assert names[0] == "round_start"
        assert names[-1] == "done"
        assert names.count("response") == 4
        assert len(store.get_conversation(conversation_id).responses) == 4

    def test_round2_only_without_round1(self, client):
        conversation_id = _create(client)
        response = client.post("/api/conversation/stream", json={
            "conversation_id": conversation_id, "rounds": [2],
        })
        assert response.status_code == 400

    def test_failing_model_error_event(self, client):
        conversation_id = _create(client, models=["claude", "grok"])
        response = client.post("/api/conversation/stream", json={
            "conversation_id": conversation_id, "rounds": [1],
        })
        errors = [data for name, data in _sse_events(response.text) if name == "error"]
        assert [e["model"] for e in errors] == ["grok"]


class TestHistory:
    def test_list_get_delete(self, client):
        first = _create(client, raw_input="First")
        second = _create(client, raw_input="Second")

        listed = client.get("/api/conversations").json()
        assert {c["id"] for c in listed} == {first, second}

        detail = client.get(f"/api/conversations/{first}").json()
        assert detail["raw_input"] == "First"
        assert detail["responses"] == []

        assert client.delete(f"/api/conversations/{first}").status_code == 204
        assert client.get(f"/api/conversations/{first}").status_code == 404
        assert client.delete(f"/api/conversations/{first}").status_code == 404


class TestExport:
    @pytest.fixture
    def finished_id(self, client):
        conversation_id = _create(client, models=["claude", "gpt"])
        client.post("/api/conversation/round", json={"conversation_id": conversation_id, "round": 1})
        client.post("/api/conversation/round", json={"conversation_id": conversation_id, "round": 2})
        return conversation_id

    def test_markdown(self, client, finished_id):
        response = client.get(f"/api/conversations/{finished_id}/export")
        assert response.status_code == 200
        assert response.text.startswith("# Fusion by 2040?")
        assert "## Round 2" in response.text

    def test_text(self, client, finished_id):
        response = client.get(f"/api/conversations/{finished_id}/export", params={"format": "text"})
        assert "--- Round 1 ---" in response.text

    def test_thread(self, client, finished_id):
        posts = client.get(f"/api/conversations/{finished_id}/export", params={"format": "thread"}).json()["posts"]
        assert posts[0].startswith("Fusion by 2040?")
        assert all(len(p) <= 280 for p in posts)

    def test_unknown_format(self, client, finished_id):
        response = client.get(f"/api/conversations/{finished_id}/export", params={"format": "pdf"})
        assert response.status_code == 400


class TestTTS:
    def test_audio(self, client, synthesizer):
        response = client.post("/api/tts", json={"text": "**Hello** there.", "model": "claude"})
        assert response.status_code == 200
        assert response.headers["content-type"] == "audio/mpeg"
        assert response.content == b"ID3-fake-mp3"
        synthesizer.synthesize.assert_awaited_once_with("Hello there.", "coral")

    def test_cached_by_conversation_and_round(self, client, synthesizer, store, conversation):
        store.add_response(ConversationResponse(
            conversation_id=conversation.id, round=1, model="gpt", content="**Stored** answer."
        ))
        body = {"text": "Whatever the caller sent.", "model": "gpt", "conversation_id": conversation.id, "round": 1}
        assert client.post("/api/tts", json=body).status_code == 200
        synthesizer.synthesize.assert_awaited_once_with("Stored answer.", "nova")

        path = client.app.state.tts.cache.path_for(conversation.id, 1, "gpt")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"ID3-fake-mp3")
        client.post("/api/tts", json={**body, "model": "gpt4"})
        assert synthesizer.synthesize.await_count == 1

    def test_unknown_response_not_cached(self, client, synthesizer, conversation):
        for conversation_id in ("c1", conversation.id):
            body = {"text": "Hello.", "model": "gpt", "conversation_id": conversation_id, "round": 1}
            assert client.post("/api/tts", json=body).status_code == 404
        synthesizer.synthesize.assert_not_awaited()
        assert not client.app.state.tts.cache.path_for("c1", 1, "gpt").exists()

    def test_missing_fields(self, client):
        assert client.post("/api/tts", json={"text": "Hello."}).status_code == 400
        assert client.post("/api/tts", json={"model": "claude"}).status_code == 400

    def test_synthesis_failure(self, client, synthesizer):
        synthesizer.synthesize.side_effect = RuntimeError("quota")
        response = client.post("/api/tts", json={"text": "Hello.", "model": "claude"})
        assert response.status_code == 500


class TestAccessGate:
    @pytest.fixture(autouse=True)
    def password(self, monkeypatch):
        monkeypatch.delenv("AUTH_DISABLED", raising=False)
        monkeypatch.setenv("ROUNDTABLE_ACCESS_PASSWORD", "hunter2")

    def test_api_requires_cookie(self, client):
        assert client.get("/api/conversations").status_code == 401

    def test_public_paths(self, client):
        assert client.get("/health").status_code == 200

    def test_pages_redirect_to_login(self, client):
        response = client.get("/docs", follow_redirects=False)
        assert response.status_code == 307
        assert response.headers["location"] == "/login"

    def test_login_flow(self, client):
        assert client.post("/api/auth", json={}).status_code == 400
        assert client.post("/api/auth", json={"password": "wrong"}).status_code == 401

        response = client.post("/api/auth", json={"password": "hunter2"})
        assert response.status_code == 200
        assert "roundtable-auth" in response.cookies
        assert client.get("/api/conversations").status_code == 200

        client.delete("/api/auth")
        assert client.get("/api/conversations").status_code == 401


class TestGateWithoutPassword:
    @pytest.fixture(autouse=True)
    def no_opt_out(self, monkeypatch):
        monkeypatch.delenv("AUTH_DISABLED", raising=False)

    def test_api_locked(self, client):
        assert client.get("/api/conversations").status_code == 401

    def test_no_provider_spend(self, client, factory, store, conversation):
        create = client.post("/api/conversation", json={
            "augmented_prompt": "Will fusion be commercial by 2040?",
            "models": ["claude", "gpt"],
        })
        assert create.status_code == 401

        body = {"conversation_id": conversation.id, "round": 1}
        assert client.post("/api/conversation/round", json=body).status_code == 401
        assert factory.total_calls == 0
        assert store.get_round_responses(conversation.id, 1) == []

    def test_pages_redirect_to_login(self, client):
        response = client.get("/docs", follow_redirects=False)
        assert response.status_code == 307
        assert response.headers["location"] == "/login"

    def test_no_password_logs_in(self, client):
        assert client.post("/api/auth", json={"password": "anything"}).status_code == 401


class TestRateLimit:
    def test_limit_enforced(self, tmp_path, store, factory, mock_llm, synthesizer):
        app = create_app(
            settings=Settings(data_dir=tmp_path, rate_limit_per_minute=2),
            store=store,
            client_factory=factory,
            augmenter=Augmenter(mock_llm),
            tts=TextToSpeech(synthesizer, AudioCache(tmp_path / "audio")),
        )
        with TestClient(app) as client:
            codes = [client.post("/api/augment", json={"raw_input": "Fusion"}).status_code for _ in range(3)]
        assert codes == [200, 200, 429]

    def test_idle_clients_forgotten(self, client):
        rate_limit._request_log["10.0.0.9"] = [time.time() - 120]
        assert client.post("/api/augment", json={"raw_input": "Fusion"}).status_code == 200
        assert "10.0.0.9" not in rate_limit._request_log
        assert list(rate_limit._request_log) == ["testclient"]
