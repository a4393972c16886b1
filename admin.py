#!/usr/bin/env python3
"""Admin console for memories - browse users, add, search and delete in the browser.

Runs on its own thread next to the MCP server. Every store call is submitted to
the server's event loop, so the store is only ever touched from one loop.
"""

from __future__ import annotations

import asyncio
import sys
import threading
from collections.abc import Awaitable, Callable
from concurrent.futures import Future
from typing import Any, TypeVar

from flask import Flask, jsonify, redirect, render_template_string, request
from werkzeug.serving import make_server

from call_log import CallLogger, Timer
from embeddings import EmbeddingProvider
from errors import MemoryStoreError
from memory_store import MemoryStore

T = TypeVar("T")

ITEMS_PER_PAGE = 10


class LoopRunner:
    """Run coroutines on an event loop owned by another thread.

    With no loop given, a private loop is started on a daemon thread.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        if loop is None:
            loop = asyncio.new_event_loop()
            threading.Thread(target=loop.run_forever, name="admin-loop", daemon=True).start()
        self.loop = loop

    def __call__(self, coro: Awaitable[T]) -> T:
        future: Future[T] = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result()

    def call(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a plain function on the loop thread."""

        async def _invoke() -> T:
            return fn(*args)

        return self(_invoke())


def get_page_links(current: int, total: int) -> list:
    """Generate smart pagination links with ellipsis for gaps."""
    if total <= 7:
        return list(range(1, total + 1))

    links = []
    for p in range(1, total + 1):
        show_page = (
            p <= 3  # First 3 pages
            or p >= total - 2  # Last 3 pages
            or abs(p - current) <= 1  # Pages around current
        )
        if show_page:
            links.append(p)
        elif links[-1] != "...":
            links.append("...")
    return links


HTML = """
<!DOCTYPE html>
<html>
<head>
    <title>Memory Admin</title>
    <style>
        body { font-family: system-ui; max-width: 960px; margin: 0 auto; padding: 20px; background: #1a1a2e; color: #eee; }
        h1 { color: #00d9ff; }
        h2 { color: #00d9ff; font-size: 18px; }
        .header { display: flex; justify-content: space-between; align-items: center; margin-bottom: 20px; flex-wrap: wrap; gap: 10px; }
        .status { font-size: 13px; color: #888; }
        .status .ok { color: #2ecc71; }
        .status .down { color: #e74c3c; }
        .tabs { display: flex; gap: 6px; margin-bottom: 16px; }
        .tabs button, .users a { padding: 6px 12px; background: #0f3460; color: #00d9ff; border: none; border-radius: 5px; cursor: pointer; text-decoration: none; }
        .tabs button.active, .users a.current { background: #00d9ff; color: #1a1a2e; font-weight: bold; }
        .users { display: flex; gap: 6px; flex-wrap: wrap; margin-bottom: 16px; }
        .pagination { display: flex; gap: 6px; align-items: center; flex-wrap: wrap; }
        .pagination a, .pagination span { padding: 6px 12px; background: #0f3460; color: #00d9ff; text-decoration: none; border-radius: 5px; display: inline-block; }
        .pagination a:hover { background: #16213e; }
        .pagination span.current { background: #00d9ff; color: #1a1a2e; font-weight: bold; }
        .pagination span.ellipsis { color: #888; background: transparent; }
        .memory { background: #16213e; padding: 15px; margin: 10px 0; border-radius: 8px; border-left: 4px solid #00d9ff; }
        .memory .q { font-weight: bold; }
        .memory button { float: right; background: #e74c3c; color: #fff; border: none; border-radius: 4px; padding: 4px 10px; cursor: pointer; }
        .meta { color: #888; font-size: 12px; margin-top: 8px; }
        .score { background: #1abc9c; padding: 2px 6px; border-radius: 3px; font-size: 11px; }
        .log.fail { border-left-color: #e74c3c; }
        .error { color: #e74c3c; }
        input, textarea { padding: 10px; width: 100%; box-sizing: border-box; border-radius: 5px; border: none; background: #0f3460; color: #fff; margin-bottom: 8px; }
        .panel { display: none; }
        .panel.active { display: block; }
        form button, .search button { padding: 8px 16px; background: #00d9ff; color: #1a1a2e; border: none; border-radius: 5px; cursor: pointer; }
    </style>
</head>
<body>
    <div class="header">
        <h1>Memory Admin</h1>
        <div class="status">
            {{ total_users }} users | {{ total_memories }} memories |
            embeddings: <span id="health">checking...</span>
        </div>
    </div>
    <div class="users">
        {% for u in users %}
        <a href="/setting?user={{ u|urlencode }}" class="{{ 'current' if u == user else '' }}">{{ u }}</a>
        {% endfor %}
    </div>
    <div class="tabs">
        <button class="active" onclick="switchTab('memories', this)">Memories</button>
        <button onclick="switchTab('add', this)">Add</button>
        <button onclick="switchTab('search', this)">Search</button>
        <button onclick="switchTab('logs', this)">Call Log</button>
    </div>

    <div id="memories" class="panel active">
        {% if user %}
        <div class="header">
            <h2>{{ user }} ({{ user_total }} memories)</h2>
            <div class="pagination">
                {% for p in page_links %}
                {% if p == "..." %}
                <span class="ellipsis">...</span>
                {% elif p == page %}
                <span class="current">{{ p }}</span>
                {% else %}
                <a href="/setting?user={{ user|urlencode }}&page={{ p }}">{{ p }}</a>
                {% endif %}
                {% endfor %}
            </div>
        </div>
        {% if error %}
        <p class="error">Cannot load memories: {{ error }}</p>
        {% else %}
        {% for m in memories %}
        <div class="memory">
            <button onclick="deleteMemory('{{ m.id }}')">Delete</button>
            <div class="q">Q: {{ m.question }}</div>
            <div>A: {{ m.answer }}</div>
            <div class="meta">{{ m.id }} | {{ m.created_at[:19] }}</div>
        </div>
        {% else %}
        <p>No memories yet.</p>
        {% endfor %}
        {% endif %}
        {% else %}
        <p>Select a user above, or add a memory for a new user.</p>
        {% endif %}
    </div>

    <div id="add" class="panel">
        <form onsubmit="addMemory(event)">
            <input id="add-user" placeholder="User ID" value="{{ user or '' }}" required>
            <textarea id="add-question" placeholder="Question" rows="2" required></textarea>
            <textarea id="add-answer" placeholder="Answer" rows="4" required></textarea>
            <button type="submit">Add memory</button>
        </form>
    </div>

    <div id="search" class="panel">
        <div class="search">
            <input id="search-user" placeholder="User ID" value="{{ user or '' }}">
            <input id="search-query" placeholder="Search query...">
            <button onclick="testSearch()">Search</button>
        </div>
        <div id="search-results"></div>
    </div>

    <div id="logs" class="panel">
        <div id="log-entries"></div>
    </div>

    <script>
        function escapeHtml(text) {
            const div = document.createElement('div');
            div.textContent = text == null ? '' : String(text);
            return div.innerHTML;
        }
        function switchTab(name, button) {
            document.querySelectorAll('.panel').forEach(el => el.classList.toggle('active', el.id === name));
            document.querySelectorAll('.tabs button').forEach(el => el.classList.toggle('active', el === button));
            if (name === 'logs') loadLogs();
        }
        async function checkHealth() {
            const el = document.getElementById('health');
            try {
                const data = await (await fetch('/api/health')).json();
                el.className = data.embedding_ok ? 'ok' : 'down';
                el.textContent = (data.embedding_ok ? 'OK ' : 'DOWN ') + data.model + ' @ ' + data.host;
            } catch (e) {
                el.className = 'down';
                el.textContent = 'unknown';
            }
        }
        async function deleteMemory(id) {
            if (!confirm('Delete this memory?')) return;
            const user = encodeURIComponent({{ (user or '')|tojson }});
            const res = await fetch('/api/memories/' + user + '/' + encodeURIComponent(id), { method: 'DELETE' });
            const data = await res.json();
            if (data.success) location.reload(); else alert(data.message);
        }
        async function addMemory(event) {
            event.preventDefault();
            const user = document.getElementById('add-user').value.trim();
            const res = await fetch('/api/memories/' + encodeURIComponent(user), {
                method: 'POST',
                headers: { 'Content-Type': 'application/json' },
                body: JSON.stringify({
                    question: document.getElementById('add-question').value,
                    answer: document.getElementById('add-answer').value,
                }),
            });
            const data = await res.json();
            if (data.success) location.href = '/setting?user=' + encodeURIComponent(user); else alert(data.message);
        }
        async function testSearch() {
            const user = document.getElementById('search-user').value.trim();
            const q = document.getElementById('search-query').value.trim();
            const out = document.getElementById('search-results');
            if (!user || !q) return;
            const res = await fetch('/api/search/' + encodeURIComponent(user) + '?q=' + encodeURIComponent(q));
            const data = await res.json();
            if (!Array.isArray(data)) { out.innerHTML = '<p>' + escapeHtml(data.message) + '</p>'; return; }
            out.innerHTML = data.length ? data.map(r =>
                '<div class="memory"><span class="score">' + r.score.toFixed(2) + '</span>' +
                '<div class="q">Q: ' + escapeHtml(r.question) + '</div>' +
                '<div>A: ' + escapeHtml(r.answer) + '</div>' +
                '<div class="meta">' + escapeHtml(r.id) + '</div></div>'
            ).join('') : '<p>No results above the similarity threshold.</p>';
        }
        async function loadLogs() {
            const data = await (await fetch('/api/logs?limit=100')).json();
            document.getElementById('log-entries').innerHTML = data.map(l =>
                '<div class="memory log ' + (l.success ? '' : 'fail') + '">' +
                '<b>' + escapeHtml(l.method) + '</b> (' + l.duration_ms + 'ms)' +
                (l.error ? ' - ' + escapeHtml(l.error) : '') +
                '<div class="meta">' + escapeHtml(l.timestamp) + ' | ' + escapeHtml(JSON.stringify(l.request)) + '</div></div>'
            ).join('') || '<p>No calls logged.</p>';
        }
        checkHealth();
    </script>
</body>
</html>
"""


def create_app(
    store: MemoryStore,
    embedder: EmbeddingProvider,
    call_logger: CallLogger,
    runner: LoopRunner,
) -> Flask:
    app = Flask(__name__)

    def _error(message: str, status: int):
        return jsonify({"success": False, "message": message}), status

    @app.route("/")
    def root():
        return redirect("/setting")

    @app.route("/setting")
    @app.route("/setting/")
    def setting():
        users = sorted(runner.call(store.list_users))
        user = request.args.get("user") or None
        page = max(request.args.get("page", 1, type=int), 1)

        error = None
        user_memories = []
        if user:
            try:
                user_memories = runner.call(store.list, user)
            except MemoryStoreError as e:
                error = str(e)
        user_total = len(user_memories)
        total_pages = (user_total + ITEMS_PER_PAGE - 1) // ITEMS_PER_PAGE
        start = (page - 1) * ITEMS_PER_PAGE
        newest_first = list(reversed(user_memories))

        return render_template_string(
            HTML,
            users=users,
            user=user,
            memories=newest_first[start : start + ITEMS_PER_PAGE],
            page=page,
            page_links=get_page_links(page, total_pages),
            user_total=user_total,
            total_users=len(users),
            total_memories=runner.call(store.count),
            error=error,
        ), (500 if error else 200)

    @app.get("/api/health")
    def health():
        return jsonify(
            {
                "status": "ok",
                "embedding_ok": runner(embedder.health()),
                "host": embedder.host,
                "model": embedder.model,
            }
        )

    @app.get("/api/stats")
    def stats():
        return jsonify(
            {
                "total_users": len(runner.call(store.list_users)),
                "total_memories": runner.call(store.count),
                "model": embedder.model,
            }
        )

    @app.get("/api/users")
    def users():
        return jsonify(runner.call(store.list_users))

    @app.get("/api/memories/<user_id>")
    def list_memories(user_id: str):
        try:
            memories = runner.call(store.list, user_id)
        except MemoryStoreError as e:
            return _error(str(e), 500)
        if "page" in request.args:
            page = max(request.args.get("page", 1, type=int), 1)
            per_page = max(request.args.get("per_page", ITEMS_PER_PAGE, type=int), 1)
            memories = memories[(page - 1) * per_page : page * per_page]
        return jsonify([m.model_dump() for m in memories])

    @app.post("/api/memories/<user_id>")
    def add_memory(user_id: str):
        body = request.get_json(silent=True) or {}
        question = str(body.get("question") or "").strip()
        answer = str(body.get("answer") or "").strip()
        call = {"userId": user_id, "question": question, "answer": answer, "source": "admin"}
        timer = Timer()

        if not question or not answer:
            message = "question and answer are required"
            call_logger.record("add_message", call, {"success": False}, timer.elapsed_ms(), False, message)
            return _error(message, 400)

        try:
            memory = runner(store.add(user_id, question, answer))
        except MemoryStoreError as e:
            call_logger.record("add_message", call, {"success": False}, timer.elapsed_ms(), False, str(e))
            return _error(str(e), 500)

        result = {"success": True, "message": "Memory added", **memory.view().model_dump()}
        call_logger.record("add_message", call, result, timer.elapsed_ms(), True)
        return jsonify(result)

    @app.delete("/api/memories/<user_id>/<memory_id>")
    def delete_memory(user_id: str, memory_id: str):
        call = {"userId": user_id, "id": memory_id, "source": "admin"}
        timer = Timer()
        try:
            deleted = runner(store.delete(user_id, memory_id))
        except MemoryStoreError as e:
            call_logger.record("delete_message", call, {"success": False}, timer.elapsed_ms(), False, str(e))
            return _error(str(e), 500)

        result = {
            "success": deleted,
            "message": "Memory deleted" if deleted else "Memory not found",
            "user_id": user_id,
            "id": memory_id,
        }
        call_logger.record(
            "delete_message", call, result, timer.elapsed_ms(), deleted, None if deleted else "memory not found"
        )
        return jsonify(result)

    @app.get("/api/search/<user_id>")
    def search(user_id: str):
        query = request.args.get("q", "").strip()
        limit = request.args.get("limit", 5, type=int)
        if not query:
            return _error("q is required", 400)
        if limit <= 0:
            return _error("limit must be positive", 400)

        try:
            results = runner(store.search(user_id, query, limit))
        except MemoryStoreError as e:
            return _error(str(e), 500)
        return jsonify(
            [
                {
                    "id": r.memory.id,
                    "question": r.memory.question,
                    "answer": r.memory.answer,
                    "score": r.score,
                    "created_at": r.memory.created_at,
                }
                for r in results
            ]
        )

    @app.get("/api/logs")
    def logs():
        limit = request.args.get("limit", type=int)
        return jsonify([entry.model_dump() for entry in call_logger.read_entries(limit)])

    return app


def start_admin_server(
    store: MemoryStore,
    embedder: EmbeddingProvider,
    call_logger: CallLogger,
    runner: LoopRunner,
    host: str = "0.0.0.0",
    port: int = 9502,
) -> threading.Thread:
    """Serve the admin console from a daemon thread."""
    server = make_server(host, port, create_app(store, embedder, call_logger, runner), threaded=True)
    thread = threading.Thread(target=server.serve_forever, name="admin-http", daemon=True)
    thread.start()
    print(f"[my-mem-mcp] Admin console: http://{host}:{port}/setting", file=sys.stderr)
    return thread


if __name__ == "__main__":
    from config import CONFIG
    from embeddings import create_embedder

    _embedder = create_embedder(CONFIG)
    _runner = LoopRunner()
    _store = _runner.call(MemoryStore.from_config, CONFIG, _embedder)
    _app = create_app(_store, _embedder, CallLogger(CONFIG.log_path, CONFIG.log_enabled), _runner)
    print(f"Open http://localhost:{CONFIG.admin_port}/setting in your browser")
    _app.run(port=CONFIG.admin_port)
