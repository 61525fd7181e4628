"""
Run driving: one poll-driven forward-progress cycle per ``process_run`` call.

Each cycle:
1. Load run, workflow and workspace (missing workflow/workspace → run failed)
2. Execute every ready step concurrently
3. Re-execute every paused step (the action decides whether to stay paused)
4. Reload the run and settle its status (failed / completed / running)

The driver keeps no state between cycles; everything it needs is read back
from the persistence gateway, which is what makes restarts safe.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from .action_base import ActionRegistry
from .dag import next_steps
from .exceptions import WorkflowNotFoundError, WorkspaceNotFoundError
from .models import Workflow, WorkflowRun, Workspace, new_run_id
from .status import RunStatus, StepStatus
from .step_executor import StepExecutor
from .store import RunStore

logger = logging.getLogger(__name__)


def settle_run_status(run: WorkflowRun, workflow: Workflow) -> RunStatus | None:
    """
    Run status implied by the step states after a cycle.

    Returns:
        The status to move to, or None to leave the run as it is
    """
    statuses = [run.step_status(node.id) for node in workflow.nodes]
    any_running = StepStatus.RUNNING in statuses
    any_paused = StepStatus.PAUSED in statuses

    if StepStatus.FAILED in statuses and not any_running:
        return RunStatus.FAILED
    if not any_running and not any_paused and all(status.is_done() for status in statuses):
        return RunStatus.COMPLETED
    if run.status == RunStatus.PAUSED and not any_paused:
        return RunStatus.RUNNING
    if run.status == RunStatus.RUNNING and any_paused and not any_running:
        return RunStatus.PAUSED
    return None


class RunDriver:
    """
    Advances runs one cycle at a time.

    Example:
        driver = RunDriver(store, create_default_registry())
        status = await driver.process_run("run_abc123")
    """

    def __init__(self, store: RunStore, registry: ActionRegistry):
        self.store = store
        self.registry = registry
        self.executor = StepExecutor(store, registry)

    async def process_run(self, run_id: str) -> RunStatus | None:
        """
        Drive one cycle of a run.

        Args:
            run_id: Run to advance

        Returns:
            Run status after the cycle, or None if the run does not exist
        """
        run = await self.store.get_run(run_id)
        if run is None:
            logger.warning(f"Run {run_id} not found; nothing to drive")
            return None
        if not run.status.is_active():
            return run.status

        workflow = await self.store.get_workflow(run.workflow_id)
        workspace = await self.store.get_workspace(run.workspace_id)
        if workflow is None or workspace is None:
            if workflow is None:
                missing = f"workflow {run.workflow_id}"
            else:
                missing = f"workspace {run.workspace_id}"
            logger.error(f"Run {run_id}: {missing} not found; marking run failed")
            await self.store.update_run_status(run_id, RunStatus.FAILED)
            return RunStatus.FAILED

        try:
            Path(workspace.working_directory).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Run {run_id}: cannot create working directory: {e}")
            await self.store.append_user_log(run_id, f"Cannot create working directory: {e}")
            await self.store.update_run_status(run_id, RunStatus.FAILED)
            return RunStatus.FAILED

        ready = next_steps(run, workflow)
        await self._execute_all(ready, run, workflow, workspace)

        run = await self.store.get_run(run_id)
        if run is None or not run.status.is_active():
            return run.status if run else None

        paused = {
            step_id
            for step_id, state in run.steps.items()
            if state.status == StepStatus.PAUSED
            and step_id not in ready
            and workflow.get_node(step_id) is not None
        }
        await self._execute_all(paused, run, workflow, workspace)

        run = await self.store.get_run(run_id)
        if run is None or not run.status.is_active():
            return run.status if run else None

        settled = settle_run_status(run, workflow)
        if settled is None or settled == run.status:
            return run.status

        updated = await self.store.update_run_status(run_id, settled)
        final_status = updated.status if updated else settled
        if final_status.is_terminal():
            logger.info(f"Run {run_id} ({workflow.name}) {final_status.value}")
        return final_status

    async def _execute_all(
        self,
        step_ids: set[str],
        run: WorkflowRun,
        workflow: Workflow,
        workspace: Workspace,
    ) -> None:
        """Execute steps concurrently; sibling order is not defined."""
        nodes = [workflow.get_node(step_id) for step_id in sorted(step_ids)]
        await asyncio.gather(
            *(
                self.executor.execute_step(node.id, node, run, workflow, workspace)
                for node in nodes
                if node is not None
            )
        )


async def launch_run(
    store: RunStore,
    workflow_id: str,
    workspace_id: str,
    input_values: dict[str, Any] | None = None,
    description: str | None = None,
) -> WorkflowRun:
    """
    Create a new ``running`` run; the scheduler picks it up on its next scan.

    Declared inputs missing from ``input_values`` get their defaults, and
    ``number``/``boolean`` inputs supplied as strings are coerced.

    Raises:
        WorkflowNotFoundError: Unknown workflow
        WorkspaceNotFoundError: Unknown workspace
    """
    workflow = await store.get_workflow(workflow_id)
    if workflow is None:
        raise WorkflowNotFoundError(workflow_id)
    workspace = await store.get_workspace(workspace_id)
    if workspace is None:
        raise WorkspaceNotFoundError(workspace_id)

    run = WorkflowRun(
        id=new_run_id(),
        workflow_id=workflow.id,
        workspace_id=workspace.id,
        status=RunStatus.RUNNING,
        input_values=workflow.prepare_inputs(input_values),
        description=description,
    )
    await store.create_run(run)
    logger.info(f"Launched run {run.id} of '{workflow.name}' in workspace {workspace.id}")
    return run


__all__ = ["RunDriver", "launch_run", "settle_run_status"]
