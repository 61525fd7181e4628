"""Tests for the persistence gateway (SQLite and in-memory)."""

from datetime import UTC, datetime, timedelta

import pytest
from workflow_factory import make_workflow, node

from autoflow.engine import (
    AwaitingChildren,
    AwaitingInput,
    CyclicWorkflowError,
    InMemoryRunStore,
    RunNotFoundError,
    RunPatch,
    RunStatus,
    SQLiteRunStore,
    StepExecutionState,
    StepNotPausedError,
    StepStatus,
    UserLogEntry,
    WorkflowRun,
    Workspace,
)
from autoflow.engine.store import INTERRUPTED_STEP_ERROR


def new_run(run_id: str = "run_1", **fields) -> WorkflowRun:
    return WorkflowRun(id=run_id, workflow_id="wf", workspace_id="ws", **fields)


def paused_step(step_id: str = "ask", **fields) -> StepExecutionState:
    return StepExecutionState(
        step_id=step_id,
        status=StepStatus.PAUSED,
        pause_state=AwaitingInput(prompt="Branch?", field_name="branch"),
        **fields,
    )


class TestWorkflows:
    @pytest.mark.asyncio
    async def test_save_and_get(self, store):
        workflow = make_workflow(
            [node("a", "run-command", command="echo"), node("b", "split-string")],
            edges=[("a", "b")],
            inputs=[{"name": "repo", "type": "text", "defaultValue": "x"}],
        )
        await store.save_workflow(workflow)

        loaded = await store.get_workflow("wf")

        assert loaded is not None
        assert loaded.name == "Test Workflow"
        assert [n.id for n in loaded.nodes] == ["a", "b"]
        assert loaded.nodes[0].input_mappings["command"].value == "echo"
        assert loaded.edges[0].source == "a"
        assert loaded.inputs[0].default_value == "x"

    @pytest.mark.asyncio
    async def test_cyclic_workflow_is_rejected(self, store):
        workflow = make_workflow(
            [node("a", "split-string"), node("b", "split-string")],
            edges=[("a", "b"), ("b", "a")],
        )

        with pytest.raises(CyclicWorkflowError):
            await store.save_workflow(workflow)

        assert await store.get_workflow("wf") is None

    @pytest.mark.asyncio
    async def test_resave_keeps_created_at(self, store):
        first = await store.save_workflow(make_workflow([node("a", "split-string")]))
        replacement = make_workflow([node("b", "split-string")])
        replacement.created_at = first.created_at + timedelta(days=1)

        second = await store.save_workflow(replacement)
        loaded = await store.get_workflow("wf")

        assert second.created_at == first.created_at
        assert loaded is not None
        assert loaded.created_at == first.created_at
        assert [n.id for n in loaded.nodes] == ["b"]

    @pytest.mark.asyncio
    async def test_list_and_delete(self, store):
        await store.save_workflow(make_workflow([node("a", "split-string")], workflow_id="one"))
        await store.save_workflow(make_workflow([node("a", "split-string")], workflow_id="two"))

        assert {w.id for w in await store.list_workflows()} == {"one", "two"}
        assert await store.delete_workflow("one") is True
        assert await store.delete_workflow("one") is False
        assert [w.id for w in await store.list_workflows()] == ["two"]


class TestWorkspacesAndSettings:
    @pytest.mark.asyncio
    async def test_workspace_roundtrip(self, store, tmp_path):
        await store.save_workspace(Workspace(id="b", name="Beta", working_directory=str(tmp_path)))
        await store.save_workspace(Workspace(id="a", name="Alpha", working_directory="/srv/a"))

        loaded = await store.get_workspace("b")

        assert loaded is not None
        assert loaded.working_directory == str(tmp_path)
        assert [w.id for w in await store.list_workspaces()] == ["a", "b"]
        assert await store.get_workspace("missing") is None

    @pytest.mark.asyncio
    async def test_settings(self, store):
        assert await store.get_setting("openai_api_key") is None

        await store.set_setting("openai_api_key", "sk-1")
        await store.set_setting("openai_api_key", "sk-2")

        assert await store.get_setting("openai_api_key") == "sk-2"


class TestRuns:
    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        await store.create_run(new_run(input_values={"repo": "r"}, parent_run_id="run_p"))

        run = await store.get_run("run_1")

        assert run is not None
        assert run.status == RunStatus.RUNNING
        assert run.input_values == {"repo": "r"}
        assert run.parent_run_id == "run_p"
        assert run.revision == 0
        assert await store.get_run("run_missing") is None

    @pytest.mark.asyncio
    async def test_duplicate_create_is_rejected(self, store):
        await store.create_run(new_run())

        with pytest.raises(ValueError, match="already exists"):
            await store.create_run(new_run())

    @pytest.mark.asyncio
    async def test_partial_save_merges(self, store):
        await store.create_run(
            new_run(
                steps={"a": StepExecutionState(step_id="a", status=StepStatus.SUCCESS)},
                variables={"x": 1},
            )
        )

        updated = await store.save_run_partial(
            "run_1",
            RunPatch(
                steps={"b": StepExecutionState(step_id="b", status=StepStatus.RUNNING)},
                variables={"y": 2},
                description="Checkout of widgets",
                append_user_logs=[UserLogEntry(content="**started**")],
            ),
        )

        assert updated is not None
        run = await store.get_run("run_1")
        assert run is not None
        assert set(run.steps) == {"a", "b"}
        assert run.variables == {"x": 1, "y": 2}
        assert run.description == "Checkout of widgets"
        assert [log.content for log in run.user_logs] == ["**started**"]
        assert run.revision == 1

    @pytest.mark.asyncio
    async def test_partial_save_of_missing_run(self, store):
        assert await store.save_run_partial("run_missing", RunPatch(description="x")) is None

    @pytest.mark.asyncio
    async def test_terminal_status_is_sticky(self, store):
        await store.create_run(new_run())

        completed = await store.update_run_status("run_1", RunStatus.COMPLETED)
        assert completed is not None
        assert completed.end_time is not None

        await store.update_run_status("run_1", RunStatus.RUNNING)
        await store.save_run_partial("run_1", RunPatch(status=RunStatus.FAILED))
        await store.cancel_run("run_1")

        run = await store.get_run("run_1")
        assert run is not None
        assert run.status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel(self, store):
        await store.create_run(new_run(status=RunStatus.PAUSED))

        run = await store.cancel_run("run_1")

        assert run.status == RunStatus.CANCELLED
        assert run.end_time is not None
        assert await store.list_active_run_ids() == []

    @pytest.mark.asyncio
    async def test_cancel_missing_run(self, store):
        with pytest.raises(RunNotFoundError):
            await store.cancel_run("run_missing")

    @pytest.mark.asyncio
    async def test_list_runs_filters_and_orders(self, store):
        base = datetime(2026, 1, 1, tzinfo=UTC)
        await store.create_run(new_run("run_old", start_time=base))
        await store.create_run(
            new_run("run_new", start_time=base + timedelta(hours=1), status=RunStatus.FAILED)
        )
        await store.create_run(
            WorkflowRun(id="run_other", workflow_id="wf", workspace_id="other", start_time=base)
        )

        assert [r.id for r in await store.list_runs(workspace_id="ws")] == ["run_new", "run_old"]
        assert [r.id for r in await store.list_runs(status=RunStatus.FAILED)] == ["run_new"]
        assert len(await store.list_runs(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_active_ids_running_first_then_oldest(self, store):
        base = datetime(2026, 1, 1, tzinfo=UTC)
        await store.create_run(new_run("run_p1", status=RunStatus.PAUSED, start_time=base))
        await store.create_run(new_run("run_r2", start_time=base + timedelta(minutes=2)))
        await store.create_run(new_run("run_r1", start_time=base + timedelta(minutes=1)))
        await store.create_run(new_run("run_done", status=RunStatus.COMPLETED, start_time=base))

        assert await store.list_active_run_ids() == ["run_r1", "run_r2", "run_p1"]

    @pytest.mark.asyncio
    async def test_append_user_log(self, store):
        await store.create_run(new_run())

        await store.append_user_log("run_1", "first", step_id="log")
        await store.append_user_log("run_1", "second")

        run = await store.get_run("run_1")
        assert run is not None
        assert [(log.step_id, log.content) for log in run.user_logs] == [
            ("log", "first"),
            ("run-log", "second"),
        ]


class TestStepCompareAndSet:
    @pytest.mark.asyncio
    async def test_unconditional_write(self, store):
        await store.create_run(new_run())

        applied = await store.update_step(
            "run_1", StepExecutionState(step_id="a", status=StepStatus.RUNNING)
        )

        run = await store.get_run("run_1")
        assert applied is True
        assert run is not None
        assert run.step_status("a") == StepStatus.RUNNING

    @pytest.mark.asyncio
    async def test_expected_status_matches(self, store):
        await store.create_run(new_run())

        applied = await store.update_step(
            "run_1",
            StepExecutionState(step_id="a", status=StepStatus.RUNNING),
            expected_status=StepStatus.PENDING,
        )

        assert applied is True

    @pytest.mark.asyncio
    async def test_expected_status_mismatch_leaves_step_untouched(self, store):
        await store.create_run(
            new_run(steps={"a": StepExecutionState(step_id="a", status=StepStatus.SUCCESS)})
        )

        applied = await store.update_step(
            "run_1",
            StepExecutionState(step_id="a", status=StepStatus.FAILED, error="late"),
            expected_status=StepStatus.RUNNING,
        )

        run = await store.get_run("run_1")
        assert applied is False
        assert run is not None
        assert run.steps["a"].status == StepStatus.SUCCESS
        assert run.steps["a"].error is None
        assert run.revision == 0

    @pytest.mark.asyncio
    async def test_missing_run(self, store):
        state = StepExecutionState(step_id="a", status=StepStatus.RUNNING)
        assert await store.update_step("run_missing", state) is False


class TestResumeStep:
    @pytest.mark.asyncio
    async def test_resume_paused_step(self, store):
        await store.create_run(
            new_run(
                status=RunStatus.PAUSED,
                steps={"ask": paused_step(outputs={"partial": 1}, logs=["Waiting"])},
            )
        )

        run = await store.resume_step("run_1", "ask", outputs={"branch": "main"})

        step = run.steps["ask"]
        assert run.status == RunStatus.RUNNING
        assert step.status == StepStatus.SUCCESS
        assert step.outputs == {"partial": 1, "branch": "main"}
        assert step.pause_state is None
        assert step.end_time is not None
        assert step.logs == ["Waiting", "Resumed by user (success)"]

    @pytest.mark.asyncio
    async def test_resume_as_failed(self, store):
        await store.create_run(new_run(status=RunStatus.PAUSED, steps={"ask": paused_step()}))

        run = await store.resume_step("run_1", "ask", status=StepStatus.FAILED, error="Rejected")

        assert run.steps["ask"].status == StepStatus.FAILED
        assert run.steps["ask"].error == "Rejected"

    @pytest.mark.asyncio
    async def test_resume_step_being_repolled(self, store):
        """A re-entrant step mid re-invocation is still waiting on the human."""
        repolling = paused_step().model_copy(update={"status": StepStatus.RUNNING})
        await store.create_run(new_run(steps={"ask": repolling}))

        run = await store.resume_step("run_1", "ask", outputs={"branch": "dev"})

        assert run.steps["ask"].status == StepStatus.SUCCESS

    @pytest.mark.parametrize("status", [StepStatus.SUCCESS, StepStatus.RUNNING])
    @pytest.mark.asyncio
    async def test_resume_step_not_waiting(self, store, status):
        await store.create_run(
            new_run(steps={"a": StepExecutionState(step_id="a", status=status)})
        )

        with pytest.raises(StepNotPausedError):
            await store.resume_step("run_1", "a")

        run = await store.get_run("run_1")
        assert run is not None
        assert run.steps["a"].status == status
        assert run.revision == 0

    @pytest.mark.parametrize(
        "waiting",
        [
            {"pause_state": AwaitingChildren(child_run_ids=["run_child"])},
            {"outputs": {"childRunIds": ["run_child"]}},
        ],
    )
    @pytest.mark.asyncio
    async def test_fan_out_step_cannot_be_resumed(self, store, waiting):
        step = StepExecutionState(step_id="fan", status=StepStatus.PAUSED, **waiting)
        await store.create_run(new_run(status=RunStatus.PAUSED, steps={"fan": step}))

        with pytest.raises(StepNotPausedError, match="waiting on child runs"):
            await store.resume_step("run_1", "fan", outputs={"totalProcessed": 1})

        run = await store.get_run("run_1")
        assert run is not None
        assert run.steps["fan"].status == StepStatus.PAUSED
        assert run.status == RunStatus.PAUSED

    @pytest.mark.asyncio
    async def test_resume_unknown_step(self, store):
        await store.create_run(new_run())

        with pytest.raises(StepNotPausedError, match="not started"):
            await store.resume_step("run_1", "nope")

    @pytest.mark.asyncio
    async def test_resume_cancelled_run(self, store):
        await store.create_run(new_run(status=RunStatus.CANCELLED, steps={"ask": paused_step()}))

        with pytest.raises(StepNotPausedError):
            await store.resume_step("run_1", "ask")

    @pytest.mark.asyncio
    async def test_resume_missing_run(self, store):
        with pytest.raises(RunNotFoundError):
            await store.resume_step("run_missing", "ask")

    @pytest.mark.asyncio
    async def test_resume_rejects_non_final_status(self, store):
        await store.create_run(new_run(steps={"ask": paused_step()}))

        with pytest.raises(ValueError, match="success or failed"):
            await store.resume_step("run_1", "ask", status=StepStatus.PAUSED)


class TestRecovery:
    @pytest.mark.asyncio
    async def test_interrupted_steps_are_repaired(self, store):
        repolling = paused_step("ask").model_copy(update={"status": StepStatus.RUNNING})
        await store.create_run(
            new_run(
                steps={
                    "cmd": StepExecutionState(step_id="cmd", status=StepStatus.RUNNING),
                    "ask": repolling,
                    "done": StepExecutionState(step_id="done", status=StepStatus.SUCCESS),
                }
            )
        )
        await store.create_run(
            new_run(
                "run_finished",
                status=RunStatus.FAILED,
                steps={"x": StepExecutionState(step_id="x", status=StepStatus.RUNNING)},
            )
        )

        repaired = await store.recover_interrupted_steps()

        run = await store.get_run("run_1")
        finished = await store.get_run("run_finished")
        assert repaired == 2
        assert run is not None
        assert run.steps["cmd"].status == StepStatus.FAILED
        assert run.steps["cmd"].error == INTERRUPTED_STEP_ERROR
        assert run.steps["ask"].status == StepStatus.PAUSED
        assert run.steps["ask"].pause_state is not None
        assert run.steps["done"].status == StepStatus.SUCCESS
        assert finished is not None
        assert finished.steps["x"].status == StepStatus.RUNNING

    @pytest.mark.asyncio
    async def test_live_steps_are_left_alone(self, store):
        now = datetime.now(UTC)
        live = StepExecutionState(
            step_id="live", status=StepStatus.RUNNING, claimed_by="engine_b", heartbeat_at=now
        )
        stale = StepExecutionState(
            step_id="stale",
            status=StepStatus.RUNNING,
            claimed_by="engine_gone",
            heartbeat_at=now - timedelta(minutes=5),
        )
        await store.create_run(new_run(steps={"live": live, "stale": stale}))

        repaired = await store.recover_interrupted_steps(lease_seconds=60)

        run = await store.get_run("run_1")
        assert repaired == 1
        assert run is not None
        assert run.steps["live"].status == StepStatus.RUNNING
        assert run.steps["stale"].status == StepStatus.FAILED
        assert run.steps["stale"].error == INTERRUPTED_STEP_ERROR

    @pytest.mark.asyncio
    async def test_touch_step_refreshes_only_own_claim(self, store):
        old = datetime(2026, 1, 1, tzinfo=UTC)
        claimed = StepExecutionState(
            step_id="a", status=StepStatus.RUNNING, claimed_by="engine_a", heartbeat_at=old
        )
        await store.create_run(new_run(steps={"a": claimed}))

        assert await store.touch_step("run_1", "a", "engine_other") is False
        assert await store.touch_step("run_1", "a", "engine_a") is True

        run = await store.get_run("run_1")
        assert run is not None
        assert run.steps["a"].heartbeat_at > old

        await store.update_step("run_1", claimed.model_copy(update={"status": StepStatus.SUCCESS}))
        assert await store.touch_step("run_1", "a", "engine_a") is False

    @pytest.mark.asyncio
    async def test_nothing_to_recover(self, store):
        await store.create_run(new_run())
        assert await store.recover_interrupted_steps() == 0


class TestSQLitePersistence:
    @pytest.mark.asyncio
    async def test_state_survives_reopen(self, tmp_path):
        db_path = tmp_path / "persist.db"
        first = SQLiteRunStore(db_path)
        await first.init()
        await first.create_run(new_run(status=RunStatus.PAUSED, steps={"ask": paused_step()}))
        await first.set_setting("max_concurrent_runs", "3")
        await first.close()

        second = SQLiteRunStore(db_path)
        await second.init()
        run = await second.get_run("run_1")

        assert run is not None
        assert isinstance(run.steps["ask"].pause_state, AwaitingInput)
        assert run.steps["ask"].pause_state.field_name == "branch"
        assert await second.get_setting("max_concurrent_runs") == "3"
        assert await second.list_active_run_ids() == ["run_1"]

    @pytest.mark.asyncio
    async def test_default_path_comes_from_state_dir(self, isolated_state_dir):
        store = SQLiteRunStore()
        await store.init()

        assert store.db_path.parent == isolated_state_dir
        assert store.db_path.exists()

    @pytest.mark.asyncio
    async def test_in_memory_store_isolates_callers(self):
        store = InMemoryRunStore()
        run = new_run()
        await store.create_run(run)

        run.status = RunStatus.FAILED
        fetched = await store.get_run("run_1")
        assert fetched is not None
        fetched.steps["x"] = StepExecutionState(step_id="x")

        again = await store.get_run("run_1")
        assert again is not None
        assert again.status == RunStatus.RUNNING
        assert again.steps == {}
