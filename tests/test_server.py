"""Tests for server wiring: template loading, transports and the app context."""

from pathlib import Path

import pytest

from workflows_resume.engine import (
    EngineSettings,
    InMemoryPauseStore,
    InMemoryWaitRegistry,
    SQLitePauseStore,
    WorkflowRegistry,
)
from workflows_resume.server import close_app_context, create_app_context, get_transport, load_workflows

BUILT_IN = [
    "api-resume",
    "approval-parent",
    "expense-approval",
    "scheduled-followup",
    "webhook-callback",
]


class TestLoadWorkflows:
    def test_built_in_templates(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("WORKFLOWS_TEMPLATE_PATHS", raising=False)
        registry = WorkflowRegistry()

        load_workflows(registry)

        assert registry.list_names() == BUILT_IN

    def test_user_templates_override_built_ins(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        (tmp_path / "override.yaml").write_text(
            "name: expense-approval\n"
            "description: Company override\n"
            "blocks:\n"
            "  - {id: start, type: starter}\n"
        )
        monkeypatch.setenv("WORKFLOWS_TEMPLATE_PATHS", f" {tmp_path}, ,{tmp_path / 'missing'}")
        registry = WorkflowRegistry()

        load_workflows(registry)

        assert registry.list_names() == BUILT_IN
        assert registry.get("expense-approval").description == "Company override"


class TestGetTransport:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [(None, "stdio"), ("SSE", "sse"), ("streamable-http", "streamable-http"), ("carrier-pigeon", "stdio")],
    )
    def test_transport(
        self, monkeypatch: pytest.MonkeyPatch, value: str | None, expected: str
    ) -> None:
        if value is None:
            monkeypatch.delenv("WORKFLOWS_TRANSPORT", raising=False)
        else:
            monkeypatch.setenv("WORKFLOWS_TRANSPORT", value)

        assert get_transport() == expected


class TestAppContext:
    async def test_defaults_from_settings(self, isolated_state_dir: Path) -> None:
        app_context = await create_app_context(EngineSettings(scheduler_interval=0))
        try:
            assert isinstance(app_context.pause_store, SQLitePauseStore)
            assert isinstance(app_context.wait_registry, InMemoryWaitRegistry)
            assert app_context.registry.list_names() == BUILT_IN
            assert app_context.coordinator.pause_store is app_context.pause_store
            assert app_context.scheduler is not None
            assert app_context.scheduler.running is False
            assert list(isolated_state_dir.rglob("paused.db"))
        finally:
            await close_app_context(app_context)

    async def test_injected_services_are_used(
        self, registry: WorkflowRegistry, settings: EngineSettings
    ) -> None:
        pause_store = InMemoryPauseStore(base_url=settings.base_url)
        wait_registry = InMemoryWaitRegistry(timeout=1.0)

        app_context = await create_app_context(
            settings, registry=registry, pause_store=pause_store, wait_registry=wait_registry
        )
        try:
            assert app_context.pause_store is pause_store
            assert app_context.runtime.wait_registry is wait_registry
            assert app_context.registry is registry

            run = await app_context.create_runner().run(registry.get("expense-approval"), {"amount": 3})
            assert run.receipt is not None
            assert await pause_store.load(run.execution_id) is not None
        finally:
            await close_app_context(app_context)
