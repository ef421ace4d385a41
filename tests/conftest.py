"""Shared test configuration for workflows-resume tests.

Configures test environment including:
- Isolated state directory (SQLite stores never touch ~/.workflows)
- Engine services wired with in-memory stores (pause store, wait registry)
- HTTP mock servers for notification webhooks and the approval chat model
- Mock MCP context for calling tools directly
"""

import json
from collections.abc import AsyncIterator, Iterator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
from pytest_httpserver import HTTPServer
from test_utils import (
    api_graph,
    approval_graph,
    branching_graph,
    failing_after_approval_graph,
    parent_graph,
    schedule_graph,
    two_wait_graph,
    webhook_graph,
)
from werkzeug.wrappers import Request, Response

from workflows_resume.context import AppContext
from workflows_resume.engine import (
    ApprovalChat,
    EngineSettings,
    ExecutionLogStore,
    InMemoryPauseStore,
    InMemoryWaitRegistry,
    ResumeCoordinator,
    RuntimeContext,
    SQLitePauseStore,
    WorkflowRegistry,
    WorkflowRunner,
    create_default_registry,
)

BASE_URL = "http://resume.test"


@pytest.fixture(autouse=True)
def isolated_state_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Point WORKFLOWS_STATE_DIR at a per-test directory."""
    state_dir = tmp_path / "state"
    monkeypatch.setenv("WORKFLOWS_STATE_DIR", str(state_dir))
    yield state_dir


@pytest.fixture
def settings() -> EngineSettings:
    """Engine settings with fast notification retries and no background scheduler."""
    return EngineSettings(
        base_url=BASE_URL,
        wait_timeout=5.0,
        scheduler_interval=0,
        notification_max_retries=1,
        notification_initial_delay=0.01,
        notification_timeout=5.0,
    )


@pytest.fixture
def registry() -> WorkflowRegistry:
    """Workflow registry holding every scenario graph from test_utils."""
    registry = WorkflowRegistry()
    for workflow in (
        approval_graph(),
        api_graph(),
        webhook_graph(),
        webhook_graph("webhook-sync", secret=None, synchronous=True),
        schedule_graph(),
        two_wait_graph(),
        branching_graph(),
        failing_after_approval_graph(),
        parent_graph(),
    ):
        registry.register(workflow)
    return registry


@pytest.fixture
def pause_store() -> InMemoryPauseStore:
    return InMemoryPauseStore(base_url=BASE_URL)


@pytest.fixture
async def sqlite_pause_store(tmp_path: Path) -> AsyncIterator[SQLitePauseStore]:
    """SQLite pause store on a temporary database."""
    store = SQLitePauseStore(tmp_path / "paused.db", base_url=BASE_URL)
    await store.init()
    yield store
    await store.close()


@pytest.fixture
async def log_store(tmp_path: Path) -> ExecutionLogStore:
    store = ExecutionLogStore(tmp_path / "executions.db")
    await store.init()
    return store


@pytest.fixture
def wait_registry() -> InMemoryWaitRegistry:
    return InMemoryWaitRegistry(timeout=5.0)


@pytest.fixture
def runtime(
    registry: WorkflowRegistry,
    pause_store: InMemoryPauseStore,
    wait_registry: InMemoryWaitRegistry,
    log_store: ExecutionLogStore,
    settings: EngineSettings,
) -> RuntimeContext:
    """Runtime dependencies shared by runner and coordinator."""
    return RuntimeContext(
        workflow_registry=registry,
        handler_registry=create_default_registry(),
        pause_store=pause_store,
        wait_registry=wait_registry,
        log_store=log_store,
        settings=settings,
    )


@pytest.fixture
def runner(runtime: RuntimeContext) -> WorkflowRunner:
    return WorkflowRunner(runtime)


@pytest.fixture
def coordinator(runtime: RuntimeContext) -> ResumeCoordinator:
    return ResumeCoordinator(runtime)


@pytest.fixture
def app_context(
    runtime: RuntimeContext, coordinator: ResumeCoordinator, settings: EngineSettings
) -> AppContext:
    """AppContext without the background scheduler."""
    assert runtime.pause_store is not None
    assert runtime.wait_registry is not None
    assert runtime.log_store is not None
    return AppContext(
        registry=runtime.workflow_registry,
        runtime=runtime,
        pause_store=runtime.pause_store,
        wait_registry=runtime.wait_registry,
        log_store=runtime.log_store,
        coordinator=coordinator,
        approval_chat=ApprovalChat(coordinator, settings, api_key="sk-test", max_retries=1),
        settings=settings,
    )


@pytest.fixture
def mock_context(app_context: AppContext) -> MagicMock:
    """Create mock MCP context with AppContext for calling tools directly."""
    mock_ctx = MagicMock()
    mock_ctx.request_context.lifespan_context = app_context
    return mock_ctx


@pytest.fixture
def notification_receiver(httpserver: HTTPServer) -> list[dict[str, Any]]:
    """
    Local HTTP server that records notification webhooks sent by wait blocks.

    POST /notify answers 200 and appends {"json", "headers", "args"} to the
    returned list. POST /flaky answers 503 and POST /rejected answers 400.

    Usage in tests:
        url = httpserver.url_for("/notify")
        graph = webhook_graph(webhookSendUrl=url, webhookSendBody={...})
    """
    received: list[dict[str, Any]] = []

    def notify_handler(request: Request) -> Response:
        received.append(
            {
                "json": request.get_json(silent=True),
                "data": request.data.decode() if request.data else "",
                "headers": {k.lower(): v for k, v in request.headers},
                "args": dict(request.args),
            }
        )
        return Response(json.dumps({"ok": True}), content_type="application/json")

    httpserver.expect_request("/notify", method="POST").respond_with_handler(notify_handler)
    httpserver.expect_request("/flaky", method="POST").respond_with_data("busy", status=503)
    httpserver.expect_request("/rejected", method="POST").respond_with_data("nope", status=400)
    return received


@pytest.fixture
def llm_mock(httpserver: HTTPServer) -> HTTPServer:
    """
    Local LLM mock server that mimics the OpenAI-compatible chat completion API.

    Answers POST /v1/chat/completions with "Reviewed: <last user message>" and
    keeps the request bodies on httpserver.chat_requests.
    """
    requests: list[dict[str, Any]] = []

    def chat_completion_handler(request: Request) -> Response:
        request_data = dict(request.get_json(silent=True) or {})
        requests.append(request_data)
        messages = request_data.get("messages", [])
        user_message = next(
            (msg["content"] for msg in reversed(messages) if msg.get("role") == "user"), ""
        )
        response_data = {
            "id": "chatcmpl-mock123",
            "object": "chat.completion",
            "created": 1234567890,
            "model": request_data.get("model", "gpt-4o-mini"),
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": f"Reviewed: {user_message}"},
                    "finish_reason": "stop",
                }
            ],
            "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
        }
        return Response(json.dumps(response_data), content_type="application/json")

    httpserver.expect_request("/v1/chat/completions", method="POST").respond_with_handler(
        chat_completion_handler
    )
    httpserver.chat_requests = requests  # type: ignore[attr-defined]
    return httpserver
