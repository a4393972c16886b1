#!/usr/bin/env python3
"""
My-Mem MCP Server - per-user question/answer memory with semantic search

Provides three MCP tools (add_message, search_message, delete_message) using:
- FastMCP for clean, idiomatic MCP server patterns (stdio or SSE transport)
- Ollama/bge-m3 for local embeddings (1024-dim), Google GenAI as an alternative
- Flat per-user JSON collections with cosine-similarity search
- A Flask admin console on a side port
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import sys
from pathlib import Path
from typing import Any, TypeVar

import uvicorn
from mcp.server.fastmcp import FastMCP
from mcp.server.sse import SseServerTransport
from pydantic import BaseModel, ValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Mount, Route

from call_log import CallLogger, Timer
from config import CONFIG, Config
from embeddings import EmbeddingProvider, create_embedder
from errors import (
    MemoryStoreError,
    MissingRequiredFieldError,
    MissingUserIdError,
    RequestValidationError,
)
from memory_store import MemoryStore
from models import AddMessageRequest, DeleteMessageRequest, SearchMessageRequest

R = TypeVar("R", bound=BaseModel)

# =============================================================================
# User ID Resolution
# =============================================================================


def resolve_user_id(
    session_user_id: str | None, default_user_id: str | None, param_user_id: str | None
) -> str | None:
    """Effective user id: session-bound, then process default, then the call's own."""
    for candidate in (session_user_id, default_user_id, param_user_id):
        if candidate and candidate.strip():
            return candidate.strip()
    return None


def _describe_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in error.errors()
    )


def _to_text(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2)


# =============================================================================
# MCP Tools
# =============================================================================


class MemoryTools:
    """The MCP tool handlers, bound to one store and one (optional) session user."""

    def __init__(
        self,
        store: MemoryStore,
        call_logger: CallLogger,
        config: Config = CONFIG,
        session_user_id: str | None = None,
        default_user_id: str | None = None,
    ) -> None:
        self.store = store
        self.call_logger = call_logger
        self.config = config
        self.session_user_id = session_user_id
        self.default_user_id = default_user_id

    def user_id_description(self) -> str:
        if self.session_user_id:
            return f"This session is bound to user '{self.session_user_id}'; the userId argument is ignored."
        if self.default_user_id:
            return f"The server default user is '{self.default_user_id}'; the userId argument is ignored."
        return "userId is required unless the server sets DEFAULT_USER_ID."

    def _validate(self, request_cls: type[R], user_id: str | None, **fields: Any) -> R:
        effective = resolve_user_id(self.session_user_id, self.default_user_id, user_id)
        if effective is None:
            raise MissingUserIdError()
        try:
            return request_cls(
                user_id=effective, **{k: v for k, v in fields.items() if v is not None}
            )
        except ValidationError as e:
            missing = [
                str(err["loc"][0])
                for err in e.errors()
                if err["type"] in {"missing", "string_too_short"}
            ]
            if missing:
                raise MissingRequiredFieldError(*missing) from e
            raise RequestValidationError(_describe_validation_error(e)) from e

    def _fail(self, method: str, request: dict[str, Any], error: Exception, timer: Timer) -> str:
        message = f"Error: {error}"
        self.call_logger.record(method, request, message, timer.elapsed_ms(), False, str(error))
        return message

    async def add_message(self, question: str, answer: str, userId: str | None = None) -> str:  # noqa: N803
        """Add a question/answer memory, stored as a vector for later semantic search.

        Args:
            question: The question text
            answer: The answer text
            userId: Owner of the memory (each user's data is isolated)
        """
        timer = Timer()
        request = {"userId": userId, "question": question, "answer": answer}
        try:
            req = self._validate(AddMessageRequest, userId, question=question, answer=answer)
            request["userId"] = req.user_id
            memory = await self.store.add(req.user_id, req.question, req.answer)
        except MemoryStoreError as e:
            return self._fail("add_message", request, e, timer)

        result = {
            "success": True,
            "message": "Memory added",
            "id": memory.id,
            "userId": memory.user_id,
            "question": memory.question,
            "answer": memory.answer,
            "createdAt": memory.created_at,
        }
        self.call_logger.record("add_message", request, result, timer.elapsed_ms(), True)
        return _to_text(result)

    async def search_message(
        self, query: str, userId: str | None = None, limit: int | None = None  # noqa: N803
    ) -> str:
        """Semantic search over one user's question/answer memories.

        Args:
            query: Search query
            userId: Whose memories to search
            limit: Max results (default 5, larger values are capped at 50)
        """
        timer = Timer()
        request = {"userId": userId, "query": query, "limit": limit}
        try:
            if limit is None:
                limit = self.config.default_limit
            req = self._validate(SearchMessageRequest, userId, query=query, limit=limit)
            request["userId"] = req.user_id
            results = await self.store.search(
                req.user_id, req.query, min(req.limit, self.config.max_limit)
            )
        except MemoryStoreError as e:
            return self._fail("search_message", request, e, timer)

        result = {
            "success": True,
            "userId": req.user_id,
            "query": req.query,
            "count": len(results),
            "results": [
                {
                    "id": r.memory.id,
                    "userId": r.memory.user_id,
                    "question": r.memory.question,
                    "answer": r.memory.answer,
                    "score": round(r.score, 2),
                    "createdAt": r.memory.created_at,
                }
                for r in results
            ],
        }
        self.call_logger.record("search_message", request, result, timer.elapsed_ms(), True)
        return _to_text(result)

    async def delete_message(self, id: str, userId: str | None = None) -> str:  # noqa: A002, N803
        """Delete one of the user's memories by ID.

        Args:
            id: The ID of the memory to delete
            userId: Owner of the memory (other users' memories are never touched)
        """
        timer = Timer()
        request = {"userId": userId, "id": id}
        try:
            req = self._validate(DeleteMessageRequest, userId, id=id)
            request["userId"] = req.user_id
            deleted = await self.store.delete(req.user_id, req.id)
        except MemoryStoreError as e:
            return self._fail("delete_message", request, e, timer)

        result = {
            "success": deleted,
            "message": "Memory deleted" if deleted else "Memory not found for this user",
            "userId": req.user_id,
            "id": req.id,
        }
        self.call_logger.record(
            "delete_message",
            request,
            result,
            timer.elapsed_ms(),
            deleted,
            None if deleted else "memory not found",
        )
        return _to_text(result)

    def register(self, mcp: FastMCP) -> None:
        note = self.user_id_description()
        mcp.tool(
            name="add_message",
            description=f"Add a question/answer memory for later semantic search. {note}",
            annotations={"readOnlyHint": False, "destructiveHint": False, "idempotentHint": False},
        )(self.add_message)
        mcp.tool(
            name="search_message",
            description=f"Find the user's memories most similar to a query. {note}",
            annotations={"readOnlyHint": True, "destructiveHint": False, "idempotentHint": True},
        )(self.search_message)
        mcp.tool(
            name="delete_message",
            description=f"Delete one of the user's memories by ID. {note}",
            annotations={"readOnlyHint": False, "destructiveHint": True, "idempotentHint": True},
        )(self.delete_message)


def create_server(
    store: MemoryStore,
    call_logger: CallLogger,
    config: Config = CONFIG,
    session_user_id: str | None = None,
    default_user_id: str | None = None,
) -> FastMCP:
    """Build a FastMCP server whose tools are bound to `session_user_id`."""
    mcp = FastMCP(
        "my-mem-mcp",
        instructions="Per-user question/answer memory with embedding-based semantic search",
    )
    MemoryTools(store, call_logger, config, session_user_id, default_user_id).register(mcp)
    return mcp


# =============================================================================
# SSE Transport
# =============================================================================


def create_sse_app(
    store: MemoryStore,
    call_logger: CallLogger,
    config: Config = CONFIG,
    default_user_id: str | None = None,
) -> Starlette:
    """Starlette app serving one MCP session per SSE connection.

    The user can be bound per connection with /sse/{user_id} or /sse?userId=...
    """
    sse = SseServerTransport("/messages/")
    active = {"sessions": 0}

    async def handle_sse(request: Request) -> Response:
        session_user_id = (
            request.path_params.get("user_id") or request.query_params.get("userId") or None
        )
        server = create_server(store, call_logger, config, session_user_id, default_user_id)
        low_level = server._mcp_server
        print(f"[my-mem-mcp] SSE client connected (user: {session_user_id or '-'})", file=sys.stderr)
        active["sessions"] += 1
        try:
            async with sse.connect_sse(request.scope, request.receive, request._send) as streams:
                await low_level.run(streams[0], streams[1], low_level.create_initialization_options())
        finally:
            active["sessions"] -= 1
            print(f"[my-mem-mcp] SSE client disconnected (user: {session_user_id or '-'})", file=sys.stderr)
        return Response()

    async def health(request: Request) -> JSONResponse:
        return JSONResponse(
            {"status": "ok", "mode": "sse", "port": config.sse_port, "active_sessions": active["sessions"]}
        )

    return Starlette(
        routes=[
            Route("/health", health),
            Route("/sse", handle_sse),
            Route("/sse/{user_id:path}", handle_sse),
            Mount("/messages/", app=sse.handle_post_message),
        ]
    )


# =============================================================================
# Server Entry Point
# =============================================================================


async def print_startup_info(
    store: MemoryStore, embedder: EmbeddingProvider, default_user_id: str | None, source: str
) -> None:
    print("=" * 60, file=sys.stderr)
    print("[my-mem-mcp] Starting...", file=sys.stderr)
    if await embedder.health():
        print(f"[my-mem-mcp] Embedding provider OK: {embedder.host} ({embedder.model})", file=sys.stderr)
    else:
        print(f"[my-mem-mcp] WARNING: embedding provider unreachable at {embedder.host}", file=sys.stderr)
    print(f"[my-mem-mcp] Memories: {store.count()} | Users: {len(store.list_users())}", file=sys.stderr)
    if default_user_id:
        print(f"[my-mem-mcp] Default user: {default_user_id} (from {source})", file=sys.stderr)
    else:
        print("[my-mem-mcp] No default user configured", file=sys.stderr)
    print("=" * 60, file=sys.stderr)


async def run_server(config: Config, default_user_id: str | None, source: str) -> None:
    """Run the MCP server (stdio or SSE) with the admin console alongside."""
    from admin import LoopRunner, start_admin_server

    embedder = create_embedder(config)
    store = MemoryStore.from_config(config, embedder)
    call_logger = CallLogger(config.log_path, config.log_enabled)
    await print_startup_info(store, embedder, default_user_id, source)

    if config.admin_enabled:
        runner = LoopRunner(asyncio.get_running_loop())
        start_admin_server(store, embedder, call_logger, runner, port=config.admin_port)

    if config.transport_mode.lower() == "sse":
        app = create_sse_app(store, call_logger, config, default_user_id)
        print(f"[my-mem-mcp] SSE endpoint: http://0.0.0.0:{config.sse_port}/sse/{{user_id}}", file=sys.stderr)
        server = uvicorn.Server(
            uvicorn.Config(app, host="0.0.0.0", port=config.sse_port, log_level="warning")
        )
        await server.serve()
    else:
        # stdio has exactly one session, bound to the process default user
        mcp = create_server(store, call_logger, config, default_user_id, default_user_id)
        await mcp.run_stdio_async()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Per-user question/answer memory MCP server")
    parser.add_argument("--transport", choices=["stdio", "sse"], help="Transport mode (default: TRANSPORT_MODE or stdio)")
    parser.add_argument("--port", type=int, help="SSE port (default: SSE_PORT or 3000)")
    parser.add_argument("--user-id", help="Default user id for every call (default: DEFAULT_USER_ID)")
    parser.add_argument("--data-dir", type=Path, help="Directory of per-user collections (default: DATA_DIR)")
    parser.add_argument("--no-admin", action="store_true", help="Do not start the admin console")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace, base: Config = CONFIG) -> tuple[Config, str | None, str]:
    """Apply command-line overrides; returns (config, default user id, its source)."""
    overrides: dict[str, Any] = {}
    if args.transport:
        overrides["transport_mode"] = args.transport
    if args.port:
        overrides["sse_port"] = args.port
    if args.data_dir:
        overrides["data_dir"] = args.data_dir
    if args.no_admin:
        overrides["admin_enabled"] = False
    if args.user_id:
        overrides["default_user_id"] = args.user_id
    config = dataclasses.replace(base, **overrides)

    source = "command line" if args.user_id else "environment"
    return config, config.default_user_id or None, source


def main() -> None:
    """Entry point."""
    config, default_user_id, source = build_config(parse_args())
    asyncio.run(run_server(config, default_user_id, source))


if __name__ == "__main__":
    main()
