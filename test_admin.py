"""Tests for the admin console, driven through Flask's test client."""

from __future__ import annotations

from pathlib import Path

import pytest

from admin import ITEMS_PER_PAGE, LoopRunner, create_app, get_page_links
from call_log import CallLogger
from conftest import FakeEmbedder
from memory_store import MemoryStore


@pytest.fixture(scope="module")
def runner() -> LoopRunner:
    return LoopRunner()


@pytest.fixture
def client(store: MemoryStore, embedder: FakeEmbedder, call_logger: CallLogger, runner: LoopRunner):
    app = create_app(store, embedder, call_logger, runner)
    app.config["TESTING"] = True
    return app.test_client()


def add(client, user_id: str, question: str, answer: str = "a") -> dict:
    response = client.post(f"/api/memories/{user_id}", json={"question": question, "answer": answer})
    assert response.status_code == 200
    return response.get_json()


class TestPageLinks:
    def test_short_range(self):
        assert get_page_links(1, 5) == [1, 2, 3, 4, 5]

    def test_no_pages(self):
        assert get_page_links(1, 0) == []

    def test_ellipsis(self):
        assert get_page_links(10, 20) == [1, 2, 3, "...", 9, 10, 11, "...", 18, 19, 20]


class TestPages:
    def test_root_redirects(self, client):
        response = client.get("/")
        assert response.status_code == 302
        assert response.headers["Location"].endswith("/setting")

    def test_setting_lists_users(self, client):
        add(client, "alice", "What is my cat called?", "Miso")
        response = client.get("/setting?user=alice")
        assert response.status_code == 200
        page = response.get_data(as_text=True)
        assert "alice" in page
        assert "What is my cat called?" in page

    def test_setting_with_unreadable_collection(self, client, data_dir: Path):
        (data_dir / "broken.json").write_text("{not json", encoding="utf-8")
        response = client.get("/setting?user=broken")
        assert response.status_code == 500
        page = response.get_data(as_text=True)
        assert "Cannot load memories" in page
        assert "broken.json" in page

    def test_setting_without_user(self, client):
        response = client.get("/setting/")
        assert response.status_code == 200
        assert "Select a user above" in response.get_data(as_text=True)


class TestMemoriesApi:
    def test_add_then_list(self, client, store: MemoryStore):
        result = add(client, "alice", "q1", "a1")
        assert result["success"] is True
        assert result["user_id"] == "alice"
        assert "embedding" not in result

        listed = client.get("/api/memories/alice").get_json()
        assert [m["question"] for m in listed] == ["q1"]
        assert "embedding" not in listed[0]
        assert store.count("alice") == 1

    def test_add_requires_question_and_answer(self, client, embedder: FakeEmbedder):
        response = client.post("/api/memories/alice", json={"question": "  ", "answer": "a"})
        assert response.status_code == 400
        assert response.get_json()["success"] is False
        assert embedder.calls == []

    def test_add_with_provider_down(self, client, embedder: FakeEmbedder, store: MemoryStore):
        embedder.fail = True
        response = client.post("/api/memories/alice", json={"question": "q", "answer": "a"})
        assert response.status_code == 500
        assert "fake provider is down" in response.get_json()["message"]
        assert store.count("alice") == 0

    def test_pagination(self, client):
        for i in range(ITEMS_PER_PAGE + 3):
            add(client, "alice", f"q{i}")
        second = client.get("/api/memories/alice?page=2").get_json()
        assert [m["question"] for m in second] == [f"q{i}" for i in range(ITEMS_PER_PAGE, ITEMS_PER_PAGE + 3)]
        small = client.get("/api/memories/alice?page=3&per_page=2").get_json()
        assert [m["question"] for m in small] == ["q4", "q5"]

    def test_unknown_user_is_empty(self, client):
        assert client.get("/api/memories/nobody").get_json() == []

    def test_unreadable_collection(self, client, data_dir: Path):
        (data_dir / "broken.json").write_text("{not json", encoding="utf-8")
        response = client.get("/api/memories/broken")
        assert response.status_code == 500
        assert response.get_json()["success"] is False

    def test_delete(self, client, store: MemoryStore):
        memory_id = add(client, "alice", "q")["id"]

        first = client.delete(f"/api/memories/alice/{memory_id}").get_json()
        assert first["success"] is True
        assert store.get("alice", memory_id) is None

        second = client.delete(f"/api/memories/alice/{memory_id}").get_json()
        assert second["success"] is False

    def test_delete_is_scoped_to_user(self, client, store: MemoryStore):
        memory_id = add(client, "alice", "q")["id"]
        result = client.delete(f"/api/memories/mallory/{memory_id}").get_json()
        assert result["success"] is False
        assert store.get("alice", memory_id) is not None


class TestSearchApi:
    def test_returns_raw_scores(self, client, embedder: FakeEmbedder):
        embedder.set_pair("favourite colour?", "blue", [1.0, 1.0, 1.0, 0.0])
        embedder.set("colour", [1.0, 1.0, 0.0, 0.0])
        add(client, "alice", "favourite colour?", "blue")

        [hit] = client.get("/api/search/alice?q=colour").get_json()
        assert hit["question"] == "favourite colour?"
        assert hit["score"] == pytest.approx(0.8164965809)

    def test_query_required(self, client):
        response = client.get("/api/search/alice?q=")
        assert response.status_code == 400

    def test_limit_must_be_positive(self, client):
        response = client.get("/api/search/alice?q=x&limit=0")
        assert response.status_code == 400

    def test_limit_respected(self, client):
        for i in range(4):
            add(client, "alice", f"q{i}")
        assert len(client.get("/api/search/alice?q=anything&limit=3").get_json()) == 3


class TestStatusApi:
    def test_health(self, client, embedder: FakeEmbedder):
        data = client.get("/api/health").get_json()
        assert data == {"status": "ok", "embedding_ok": True, "host": "memory://fake", "model": "fake-embedding"}

        embedder.healthy = False
        assert client.get("/api/health").get_json()["embedding_ok"] is False

    def test_stats_and_users(self, client):
        add(client, "alice", "q1")
        add(client, "alice", "q2")
        add(client, "bob", "q3")

        assert client.get("/api/stats").get_json() == {
            "total_users": 2,
            "total_memories": 3,
            "model": "fake-embedding",
        }
        assert sorted(client.get("/api/users").get_json()) == ["alice", "bob"]

    def test_logs_record_admin_calls(self, client):
        memory_id = add(client, "alice", "q")["id"]
        client.delete(f"/api/memories/alice/{memory_id}")

        entries = client.get("/api/logs").get_json()
        assert [e["method"] for e in entries] == ["delete_message", "add_message"]
        assert all(e["request"]["source"] == "admin" for e in entries)
        assert all(e["request"]["userId"] == "alice" for e in entries)
        assert len(client.get("/api/logs?limit=1").get_json()) == 1
