"""Persistence Gateway: workflows, workspaces, runs and settings.

The gateway is the only component that mutates a run's stored
representation. Every run mutation is one read-merge-write transaction
(``_mutate_run``) that bumps the run's ``revision``; the Step Executor's
final write is a compare-and-set on the step status so a human resolving a
paused step mid-invocation is never overwritten.

Implementations:
    SQLiteRunStore: one row per aggregate, structured columns plus a JSON
        ``data`` column, WAL mode, blocking calls in a thread pool
    InMemoryRunStore: same semantics on deep-copied models (tests, embedding)

Storage layout (SQLite):
    workflows(id, name, description, data{nodes,edges,inputs}, createdAt, updatedAt)
    workspaces(id, name, workingDirectory, createdAt)
    runs(id, workflowId, workspaceId, status, startTime, endTime, description,
         parentRunId, revision, data{steps,variables,userLogs,inputValues,...})
    settings(key, value)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, TypeVar

from .dag import ensure_acyclic
from .exceptions import RunNotFoundError, StepNotPausedError
from .models import (
    AwaitingChildren,
    RunPatch,
    StepExecutionState,
    UserLogEntry,
    Workflow,
    WorkflowRun,
    Workspace,
    utc_now,
)
from .state_config import StateConfig
from .status import RunStatus, StepStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fields of a run kept in the JSON blob rather than in columns
RUN_DATA_KEYS = ("steps", "variables", "userLogs", "inputValues", "parentStepId")

INTERRUPTED_STEP_ERROR = "Step interrupted by engine restart"

# A running step whose heartbeat is older than this is considered abandoned
STEP_LEASE_SECONDS = 60.0

RunMutation = Callable[[WorkflowRun], bool]


def apply_run_status(run: WorkflowRun, status: RunStatus) -> bool:
    """
    Move a run to ``status`` in place.

    Terminal statuses are sticky: once completed, failed or cancelled, the
    run never changes status again. Entering a terminal status stamps the
    end time.

    Returns:
        True if the run changed
    """
    if run.status == status:
        return False
    if run.status.is_terminal():
        logger.debug(f"Run {run.id} is {run.status.value}; ignoring transition to {status.value}")
        return False
    run.status = status
    if status.is_terminal():
        run.end_time = utc_now()
    return True


def apply_run_patch(run: WorkflowRun, patch: RunPatch) -> bool:
    """Merge a partial update into a run in place. Returns True if anything was set."""
    changed = False
    if patch.steps:
        run.steps.update(patch.steps)
        changed = True
    if patch.description is not None:
        run.description = patch.description
        changed = True
    if patch.user_logs is not None:
        run.user_logs = list(patch.user_logs)
        changed = True
    if patch.append_user_logs:
        run.user_logs.extend(patch.append_user_logs)
        changed = True
    if patch.variables:
        run.variables.update(patch.variables)
        changed = True
    if patch.status is not None:
        changed = apply_run_status(run, patch.status) or changed
    if patch.end_time is not None:
        run.end_time = patch.end_time
        changed = True
    return changed


class RunStore(ABC):
    """
    Async persistence gateway.

    Subclasses provide storage primitives; run mutation semantics (patch
    merging, sticky terminal statuses, compare-and-set, resumption) are
    implemented once here on top of ``_mutate_run``.
    """

    async def init(self) -> None:
        """Prepare storage. Must be called before use."""

    async def close(self) -> None:
        """Release storage resources."""

    # ------------------------------------------------------------------
    # Storage primitives
    # ------------------------------------------------------------------

    @abstractmethod
    async def _mutate_run(self, run_id: str, mutate: RunMutation) -> WorkflowRun | None:
        """
        Atomically load a run, apply ``mutate`` and persist it if it returns True.

        The revision is bumped on every persisted change. Exceptions raised by
        ``mutate`` abort the transaction and propagate.

        Returns:
            The run after mutation, or None if it does not exist
        """

    @abstractmethod
    async def _put_workflow(self, workflow: Workflow) -> None: ...

    @abstractmethod
    async def get_workflow(self, workflow_id: str) -> Workflow | None: ...

    @abstractmethod
    async def list_workflows(self) -> list[Workflow]: ...

    @abstractmethod
    async def delete_workflow(self, workflow_id: str) -> bool: ...

    @abstractmethod
    async def save_workspace(self, workspace: Workspace) -> Workspace: ...

    @abstractmethod
    async def get_workspace(self, workspace_id: str) -> Workspace | None: ...

    @abstractmethod
    async def list_workspaces(self) -> list[Workspace]: ...

    @abstractmethod
    async def create_run(self, run: WorkflowRun) -> WorkflowRun:
        """Insert a new run.

        Raises:
            ValueError: If a run with the same id exists
        """

    @abstractmethod
    async def get_run(self, run_id: str) -> WorkflowRun | None: ...

    @abstractmethod
    async def list_runs(
        self,
        status: RunStatus | None = None,
        workspace_id: str | None = None,
        limit: int = 100,
    ) -> list[WorkflowRun]:
        """Runs, most recently started first."""

    @abstractmethod
    async def list_active_run_ids(self) -> list[str]:
        """Ids of running/paused runs: running before paused, then oldest start first."""

    @abstractmethod
    async def get_setting(self, key: str) -> str | None: ...

    @abstractmethod
    async def set_setting(self, key: str, value: str) -> None: ...

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    async def save_workflow(self, workflow: Workflow) -> Workflow:
        """
        Create or replace a workflow definition.

        Raises:
            CyclicWorkflowError: If the graph contains a cycle
        """
        ensure_acyclic(workflow)
        existing = await self.get_workflow(workflow.id)
        stored = workflow.model_copy(
            update={
                "created_at": existing.created_at if existing else workflow.created_at,
                "updated_at": utc_now(),
            }
        )
        await self._put_workflow(stored)
        return stored

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def save_run_partial(self, run_id: str, patch: RunPatch) -> WorkflowRun | None:
        """Merge ``patch`` into the run (see ``RunPatch``). Returns None if missing."""
        return await self._mutate_run(run_id, lambda run: apply_run_patch(run, patch))

    async def update_run_status(self, run_id: str, status: RunStatus) -> WorkflowRun | None:
        """Set run status, honouring sticky terminal statuses."""
        return await self._mutate_run(run_id, lambda run: apply_run_status(run, status))

    async def update_step(
        self,
        run_id: str,
        state: StepExecutionState,
        expected_status: StepStatus | None = None,
    ) -> bool:
        """
        Write one step's state.

        Args:
            run_id: Run to update
            state: New step state (keyed by ``state.step_id``)
            expected_status: If given, only write when the stored step currently
                has this status (compare-and-set)

        Returns:
            True if the write was applied
        """
        applied = False

        def mutate(run: WorkflowRun) -> bool:
            nonlocal applied
            if expected_status is not None and run.step_status(state.step_id) != expected_status:
                return False
            run.steps[state.step_id] = state
            applied = True
            return True

        await self._mutate_run(run_id, mutate)
        return applied

    async def resume_step(
        self,
        run_id: str,
        step_id: str,
        outputs: dict[str, Any] | None = None,
        status: StepStatus = StepStatus.SUCCESS,
        error: str | None = None,
    ) -> WorkflowRun:
        """
        Resolve a step waiting on a human.

        The step must be paused (or mid re-poll with its pause state intact)
        on a confirmation or an input request. Steps waiting on child runs are
        resolved by their children only.
        Outputs are merged over the step's partial outputs, the pause state is
        cleared and a paused run is flipped back to running so the driver
        re-evaluates readiness.

        Raises:
            RunNotFoundError: Unknown run
            StepNotPausedError: Step is not waiting
            ValueError: ``status`` is not success or failed
        """
        if status not in (StepStatus.SUCCESS, StepStatus.FAILED):
            raise ValueError(f"A step can only be resumed as success or failed, not {status.value}")

        def mutate(run: WorkflowRun) -> bool:
            step = run.steps.get(step_id)
            waiting = step is not None and (
                step.status == StepStatus.PAUSED
                or (step.status == StepStatus.RUNNING and step.pause_state is not None)
            )
            if step is None or not waiting or run.status.is_terminal():
                raise StepNotPausedError(run_id, step_id, step.status.value if step else None)
            if isinstance(step.pause_state, AwaitingChildren) or (
                step.pause_state is None and step.outputs.get("childRunIds")
            ):
                raise StepNotPausedError(
                    run_id, step_id, step.status.value, reason="waiting on child runs"
                )

            run.steps[step_id] = step.model_copy(
                update={
                    "status": status,
                    "outputs": {**step.outputs, **(outputs or {})},
                    "error": error if status == StepStatus.FAILED else None,
                    "pause_state": None,
                    "end_time": utc_now(),
                    "logs": [*step.logs, f"Resumed by user ({status.value})"],
                }
            )
            apply_run_status(run, RunStatus.RUNNING)
            return True

        run = await self._mutate_run(run_id, mutate)
        if run is None:
            raise RunNotFoundError(run_id)
        logger.info(f"Run {run_id} step {step_id} resumed as {status.value}")
        return run

    async def cancel_run(self, run_id: str) -> WorkflowRun:
        """
        Force a run to ``cancelled``; it drops out of scheduling.

        Already-terminal runs are returned unchanged.

        Raises:
            RunNotFoundError: Unknown run
        """
        run = await self.update_run_status(run_id, RunStatus.CANCELLED)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def append_user_log(self, run_id: str, content: str, step_id: str = "run-log") -> None:
        await self.save_run_partial(
            run_id, RunPatch(append_user_logs=[UserLogEntry(content=content, step_id=step_id)])
        )

    async def touch_step(self, run_id: str, step_id: str, owner_id: str) -> bool:
        """
        Refresh the heartbeat of a running step claimed by ``owner_id``.

        Returns:
            False once the step is no longer running under that claim
        """
        touched = False

        def mutate(run: WorkflowRun) -> bool:
            nonlocal touched
            step = run.steps.get(step_id)
            if step is None or step.status != StepStatus.RUNNING or step.claimed_by != owner_id:
                return False
            run.steps[step_id] = step.model_copy(update={"heartbeat_at": utc_now()})
            touched = True
            return True

        await self._mutate_run(run_id, mutate)
        return touched

    async def recover_interrupted_steps(self, lease_seconds: float = STEP_LEASE_SECONDS) -> int:
        """
        Repair steps left ``running`` by a process that died mid-step.

        Only steps whose heartbeat is older than ``lease_seconds`` (or that
        carry none) are touched, so steps executed by another live engine
        process sharing the store are left alone. A step with a pause state
        goes back to ``paused`` (its action is re-entrant); any other step is
        marked failed rather than replayed.

        Returns:
            Number of steps repaired
        """
        repaired = 0
        expired_before = utc_now() - timedelta(seconds=lease_seconds)

        def mutate(run: WorkflowRun) -> bool:
            nonlocal repaired
            changed = False
            for step_id, step in list(run.steps.items()):
                if step.status != StepStatus.RUNNING:
                    continue
                if step.heartbeat_at is not None and step.heartbeat_at > expired_before:
                    continue
                if step.pause_state is not None:
                    run.steps[step_id] = step.model_copy(update={"status": StepStatus.PAUSED})
                else:
                    run.steps[step_id] = step.model_copy(
                        update={
                            "status": StepStatus.FAILED,
                            "error": INTERRUPTED_STEP_ERROR,
                            "end_time": utc_now(),
                        }
                    )
                repaired += 1
                changed = True
            return changed

        for run_id in await self.list_active_run_ids():
            await self._mutate_run(run_id, mutate)

        if repaired:
            logger.warning(f"Recovered {repaired} step(s) interrupted by a previous engine")
        return repaired


# ============================================================================
# SQLite
# ============================================================================


def _ts(value: datetime | None) -> str | None:
    """Fixed-width UTC ISO timestamp (sorts lexicographically)."""
    if value is None:
        return None
    return value.astimezone(UTC).isoformat(timespec="microseconds")


class SQLiteRunStore(RunStore):
    """SQLite-backed gateway.

    Supports concurrent access from several engine processes via WAL mode;
    within one process, writes are serialised by a lock and each run
    mutation runs inside ``BEGIN IMMEDIATE``.

    Example:
        store = SQLiteRunStore()
        await store.init()
        run = await store.get_run("run_abc123")
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        self._db_path = Path(db_path) if db_path else StateConfig.get_db_path()
        self._lock = threading.Lock()

    @property
    def db_path(self) -> Path:
        return self._db_path

    async def init(self) -> None:
        await self._run_in_executor(self._init_db)
        logger.info(f"SQLiteRunStore initialized: db={self._db_path}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create schema (runs in thread pool)."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS workflows (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT,
                    data TEXT NOT NULL,
                    createdAt TEXT NOT NULL,
                    updatedAt TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS workspaces (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    workingDirectory TEXT NOT NULL,
                    createdAt TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    id TEXT PRIMARY KEY,
                    workflowId TEXT NOT NULL,
                    workspaceId TEXT NOT NULL,
                    status TEXT NOT NULL,
                    startTime TEXT NOT NULL,
                    endTime TEXT,
                    description TEXT,
                    parentRunId TEXT,
                    revision INTEGER NOT NULL DEFAULT 0,
                    data TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)

            conn.execute("CREATE INDEX IF NOT EXISTS idx_runs_status ON runs(status, startTime)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_runs_workspace ON runs(workspaceId)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_runs_parent ON runs(parentRunId)")
        finally:
            conn.close()

        logger.debug("Database schema initialized with WAL mode")

    # -- row mapping -----------------------------------------------------

    @staticmethod
    def _row_to_run(row: sqlite3.Row) -> WorkflowRun:
        data = json.loads(row["data"])
        return WorkflowRun.model_validate(
            {
                **data,
                "id": row["id"],
                "workflowId": row["workflowId"],
                "workspaceId": row["workspaceId"],
                "status": row["status"],
                "startTime": row["startTime"],
                "endTime": row["endTime"],
                "description": row["description"],
                "parentRunId": row["parentRunId"],
                "revision": row["revision"],
            }
        )

    @staticmethod
    def _run_params(run: WorkflowRun) -> tuple[Any, ...]:
        document = run.to_document()
        data = {key: document[key] for key in RUN_DATA_KEYS}
        return (
            run.workflow_id,
            run.workspace_id,
            run.status.value,
            _ts(run.start_time),
            _ts(run.end_time),
            run.description,
            run.parent_run_id,
            run.revision,
            json.dumps(data, ensure_ascii=False),
            run.id,
        )

    @staticmethod
    def _row_to_workflow(row: sqlite3.Row) -> Workflow:
        data = json.loads(row["data"])
        return Workflow.model_validate(
            {
                **data,
                "id": row["id"],
                "name": row["name"],
                "description": row["description"],
                "createdAt": row["createdAt"],
                "updatedAt": row["updatedAt"],
            }
        )

    # -- runs --------------------------------------------------------------

    async def _mutate_run(self, run_id: str, mutate: RunMutation) -> WorkflowRun | None:
        def _transaction() -> WorkflowRun | None:
            with self._lock:
                conn = self._connect()
                try:
                    conn.execute("BEGIN IMMEDIATE")
                    row = conn.execute("SELECT * FROM runs WHERE id = ?", (run_id,)).fetchone()
                    if row is None:
                        conn.execute("ROLLBACK")
                        return None

                    run = self._row_to_run(row)
                    if mutate(run):
                        run.revision += 1
                        conn.execute(
                            """
                            UPDATE runs SET workflowId = ?, workspaceId = ?, status = ?,
                                startTime = ?, endTime = ?, description = ?, parentRunId = ?,
                                revision = ?, data = ?
                            WHERE id = ?
                        """,
                            self._run_params(run),
                        )
                    conn.execute("COMMIT")
                    return run
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
                finally:
                    conn.close()

        return await self._run_in_executor(_transaction)

    async def create_run(self, run: WorkflowRun) -> WorkflowRun:
        def _insert() -> None:
            with self._lock:
                conn = self._connect()
                try:
                    conn.execute(
                        """
                        INSERT INTO runs (workflowId, workspaceId, status, startTime, endTime,
                            description, parentRunId, revision, data, id)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                        self._run_params(run),
                    )
                except sqlite3.IntegrityError as e:
                    raise ValueError(f"Run already exists: {run.id}") from e
                finally:
                    conn.close()

        await self._run_in_executor(_insert)
        return run

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        def _query() -> WorkflowRun | None:
            conn = self._connect()
            try:
                row = conn.execute("SELECT * FROM runs WHERE id = ?", (run_id,)).fetchone()
            finally:
                conn.close()
            return self._row_to_run(row) if row else None

        return await self._run_in_executor(_query)

    async def list_runs(
        self,
        status: RunStatus | None = None,
        workspace_id: str | None = None,
        limit: int = 100,
    ) -> list[WorkflowRun]:
        def _query() -> list[WorkflowRun]:
            clauses: list[str] = []
            params: list[Any] = []
            if status is not None:
                clauses.append("status = ?")
                params.append(RunStatus(status).value)
            if workspace_id is not None:
                clauses.append("workspaceId = ?")
                params.append(workspace_id)
            where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

            conn = self._connect()
            try:
                rows = conn.execute(
                    f"SELECT * FROM runs {where} ORDER BY startTime DESC LIMIT ?",
                    (*params, limit),
                ).fetchall()
            finally:
                conn.close()
            return [self._row_to_run(row) for row in rows]

        return await self._run_in_executor(_query)

    async def list_active_run_ids(self) -> list[str]:
        def _query() -> list[str]:
            conn = self._connect()
            try:
                rows = conn.execute(
                    """
                    SELECT id FROM runs
                    WHERE status IN ('running', 'paused')
                    ORDER BY CASE status WHEN 'running' THEN 0 ELSE 1 END, startTime ASC
                """
                ).fetchall()
            finally:
                conn.close()
            return [row["id"] for row in rows]

        return await self._run_in_executor(_query)

    # -- workflows -------------------------------------------------------

    async def _put_workflow(self, workflow: Workflow) -> None:
        document = workflow.to_document()
        data = {key: document[key] for key in ("nodes", "edges", "inputs")}

        def _write() -> None:
            with self._lock:
                conn = self._connect()
                try:
                    conn.execute(
                        "INSERT OR REPLACE INTO workflows VALUES (?, ?, ?, ?, ?, ?)",
                        (
                            workflow.id,
                            workflow.name,
                            workflow.description,
                            json.dumps(data, ensure_ascii=False),
                            _ts(workflow.created_at),
                            _ts(workflow.updated_at),
                        ),
                    )
                finally:
                    conn.close()

        await self._run_in_executor(_write)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        def _query() -> Workflow | None:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT * FROM workflows WHERE id = ?", (workflow_id,)
                ).fetchone()
            finally:
                conn.close()
            return self._row_to_workflow(row) if row else None

        return await self._run_in_executor(_query)

    async def list_workflows(self) -> list[Workflow]:
        def _query() -> list[Workflow]:
            conn = self._connect()
            try:
                rows = conn.execute("SELECT * FROM workflows ORDER BY updatedAt DESC").fetchall()
            finally:
                conn.close()
            return [self._row_to_workflow(row) for row in rows]

        return await self._run_in_executor(_query)

    async def delete_workflow(self, workflow_id: str) -> bool:
        def _delete() -> bool:
            with self._lock:
                conn = self._connect()
                try:
                    cursor = conn.execute("DELETE FROM workflows WHERE id = ?", (workflow_id,))
                finally:
                    conn.close()
                return cursor.rowcount > 0

        return await self._run_in_executor(_delete)

    # -- workspaces ------------------------------------------------------

    async def save_workspace(self, workspace: Workspace) -> Workspace:
        def _write() -> None:
            with self._lock:
                conn = self._connect()
                try:
                    conn.execute(
                        "INSERT OR REPLACE INTO workspaces VALUES (?, ?, ?, ?)",
                        (
                            workspace.id,
                            workspace.name,
                            workspace.working_directory,
                            _ts(workspace.created_at),
                        ),
                    )
                finally:
                    conn.close()

        await self._run_in_executor(_write)
        return workspace

    async def get_workspace(self, workspace_id: str) -> Workspace | None:
        def _query() -> Workspace | None:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT * FROM workspaces WHERE id = ?", (workspace_id,)
                ).fetchone()
            finally:
                conn.close()
            return Workspace.model_validate(dict(row)) if row else None

        return await self._run_in_executor(_query)

    async def list_workspaces(self) -> list[Workspace]:
        def _query() -> list[Workspace]:
            conn = self._connect()
            try:
                rows = conn.execute("SELECT * FROM workspaces ORDER BY name").fetchall()
            finally:
                conn.close()
            return [Workspace.model_validate(dict(row)) for row in rows]

        return await self._run_in_executor(_query)

    # -- settings --------------------------------------------------------

    async def get_setting(self, key: str) -> str | None:
        def _query() -> str | None:
            conn = self._connect()
            try:
                row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
            finally:
                conn.close()
            return row["value"] if row else None

        return await self._run_in_executor(_query)

    async def set_setting(self, key: str, value: str) -> None:
        def _write() -> None:
            with self._lock:
                conn = self._connect()
                try:
                    conn.execute("INSERT OR REPLACE INTO settings VALUES (?, ?)", (key, value))
                finally:
                    conn.close()

        await self._run_in_executor(_write)

    async def _run_in_executor(self, func: Callable[[], T]) -> T:
        """Run blocking function in thread pool executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func)


# ============================================================================
# In-memory
# ============================================================================


class InMemoryRunStore(RunStore):
    """
    Process-local gateway with the same semantics as SQLiteRunStore.

    Models are deep-copied on the way in and out so callers never share
    state with the store. Each operation completes without awaiting, which
    makes it atomic with respect to other coroutines.
    """

    def __init__(self) -> None:
        self._workflows: dict[str, Workflow] = {}
        self._workspaces: dict[str, Workspace] = {}
        self._runs: dict[str, WorkflowRun] = {}
        self._settings: dict[str, str] = {}

    async def _mutate_run(self, run_id: str, mutate: RunMutation) -> WorkflowRun | None:
        stored = self._runs.get(run_id)
        if stored is None:
            return None
        run = stored.model_copy(deep=True)
        if mutate(run):
            run.revision += 1
            self._runs[run_id] = run.model_copy(deep=True)
        return run

    async def _put_workflow(self, workflow: Workflow) -> None:
        self._workflows[workflow.id] = workflow.model_copy(deep=True)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        workflow = self._workflows.get(workflow_id)
        return workflow.model_copy(deep=True) if workflow else None

    async def list_workflows(self) -> list[Workflow]:
        ordered = sorted(self._workflows.values(), key=lambda w: w.updated_at, reverse=True)
        return [workflow.model_copy(deep=True) for workflow in ordered]

    async def delete_workflow(self, workflow_id: str) -> bool:
        return self._workflows.pop(workflow_id, None) is not None

    async def save_workspace(self, workspace: Workspace) -> Workspace:
        self._workspaces[workspace.id] = workspace.model_copy(deep=True)
        return workspace

    async def get_workspace(self, workspace_id: str) -> Workspace | None:
        workspace = self._workspaces.get(workspace_id)
        return workspace.model_copy(deep=True) if workspace else None

    async def list_workspaces(self) -> list[Workspace]:
        ordered = sorted(self._workspaces.values(), key=lambda w: w.name)
        return [workspace.model_copy(deep=True) for workspace in ordered]

    async def create_run(self, run: WorkflowRun) -> WorkflowRun:
        if run.id in self._runs:
            raise ValueError(f"Run already exists: {run.id}")
        self._runs[run.id] = run.model_copy(deep=True)
        return run

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def list_runs(
        self,
        status: RunStatus | None = None,
        workspace_id: str | None = None,
        limit: int = 100,
    ) -> list[WorkflowRun]:
        runs = [
            run
            for run in self._runs.values()
            if (status is None or run.status == status)
            and (workspace_id is None or run.workspace_id == workspace_id)
        ]
        runs.sort(key=lambda run: run.start_time, reverse=True)
        return [run.model_copy(deep=True) for run in runs[:limit]]

    async def list_active_run_ids(self) -> list[str]:
        active = [run for run in self._runs.values() if run.status.is_active()]
        active.sort(key=lambda run: (run.status != RunStatus.RUNNING, run.start_time))
        return [run.id for run in active]

    async def get_setting(self, key: str) -> str | None:
        return self._settings.get(key)

    async def set_setting(self, key: str, value: str) -> None:
        self._settings[key] = value


__all__ = [
    "INTERRUPTED_STEP_ERROR",
    "InMemoryRunStore",
    "RunStore",
    "SQLiteRunStore",
    "apply_run_patch",
    "apply_run_status",
]
