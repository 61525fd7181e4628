"""Tests for server configuration and startup wiring."""

import json

import pytest

from autoflow import server
from autoflow.engine import RunScheduler, SQLiteRunStore


class TestEnvironmentConfig:
    @pytest.mark.parametrize(
        "raw, expected", [(None, 5), ("12", 12), ("0", 1), ("99999", 1000), ("lots", 5)]
    )
    def test_max_concurrent_runs(self, monkeypatch, raw, expected):
        if raw is None:
            monkeypatch.delenv("AUTOFLOW_MAX_CONCURRENT_RUNS", raising=False)
        else:
            monkeypatch.setenv("AUTOFLOW_MAX_CONCURRENT_RUNS", raw)

        assert server.get_max_concurrent_runs() == expected

    @pytest.mark.parametrize(
        "raw, expected", [(None, 1.0), ("0.25", 0.25), ("0", 0.05), ("600", 60.0), ("x", 1.0)]
    )
    def test_poll_interval(self, monkeypatch, raw, expected):
        if raw is None:
            monkeypatch.delenv("AUTOFLOW_POLL_INTERVAL", raising=False)
        else:
            monkeypatch.setenv("AUTOFLOW_POLL_INTERVAL", raw)

        assert server.get_poll_interval() == expected

    @pytest.mark.parametrize("raw, expected", [("true", True), ("TRUE", True), ("false", False)])
    def test_scheduler_enabled(self, monkeypatch, raw, expected):
        monkeypatch.setenv("AUTOFLOW_SCHEDULER_ENABLED", raw)
        assert server.scheduler_enabled() is expected

    def test_workflow_paths_skip_missing_directories(self, monkeypatch, tmp_path):
        present = tmp_path / "flows"
        present.mkdir()
        monkeypatch.setenv(
            "AUTOFLOW_WORKFLOW_PATHS", f"{present}, {tmp_path / 'absent'},,"
        )

        assert server.get_workflow_paths() == [present]

    def test_invalid_log_level_falls_back(self, monkeypatch, capsys):
        monkeypatch.setenv("AUTOFLOW_LOG_LEVEL", "chatty")

        server.configure_logging()

        assert "Invalid AUTOFLOW_LOG_LEVEL 'CHATTY'" in capsys.readouterr().err


def write_workflow(directory, workflow_id: str) -> None:
    document = {
        "id": workflow_id,
        "name": workflow_id.title(),
        "nodes": [{"id": "a", "actionId": "split-string"}],
    }
    (directory / f"{workflow_id}.json").write_text(json.dumps(document))


class TestStartup:
    @pytest.mark.asyncio
    async def test_import_workflows(self, memory_store, tmp_path):
        first = tmp_path / "one"
        second = tmp_path / "two"
        first.mkdir()
        second.mkdir()
        write_workflow(first, "alpha")
        write_workflow(second, "beta")
        (second / "broken.yaml").write_text("nodes: [")

        imported = await server.import_workflows(memory_store, [first, second, tmp_path / "gone"])

        assert imported == 2
        assert {w.id for w in await memory_store.list_workflows()} == {"alpha", "beta"}

    @pytest.mark.asyncio
    async def test_create_app_context(self, monkeypatch, tmp_path, isolated_state_dir):
        flows = tmp_path / "flows"
        flows.mkdir()
        write_workflow(flows, "alpha")
        monkeypatch.setenv("AUTOFLOW_WORKFLOW_PATHS", str(flows))
        monkeypatch.setenv("AUTOFLOW_MAX_CONCURRENT_RUNS", "7")

        app_context = await server.create_app_context(with_scheduler=True)
        try:
            assert isinstance(app_context.store, SQLiteRunStore)
            assert app_context.store.db_path.parent == isolated_state_dir
            assert app_context.registry.has("run-command")
            assert app_context.driver.store is app_context.store
            assert isinstance(app_context.scheduler, RunScheduler)
            assert app_context.scheduler.get_stats()["max_concurrent_runs"] == 7
            assert await app_context.store.get_workflow("alpha") is not None
        finally:
            await app_context.store.close()

    @pytest.mark.asyncio
    async def test_create_app_context_without_scheduler(self, monkeypatch):
        monkeypatch.delenv("AUTOFLOW_WORKFLOW_PATHS", raising=False)

        app_context = await server.create_app_context(with_scheduler=False)

        assert app_context.scheduler is None
        await app_context.store.close()
