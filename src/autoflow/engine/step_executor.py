"""Step execution: one invocation of one node's action within a run.

The step executor wraps ``action.execute()`` calls to:
1. Resolve the node's inputs against the run and workspace
2. Persist a ``running`` state (keeping partial outputs/logs of re-entrant steps)
3. Catch every action exception → failed result carrying the message
4. Append result logs to whatever the step holds now (never overwrite)
5. Persist the final state with a compare-and-set on ``running``
6. Propagate pause/resume to the run status

While an action runs, the claim carries this process's owner id and a
heartbeat refreshed every ``heartbeat_interval`` seconds, so crash recovery
in another engine process can tell a live step from an abandoned one.

This is the bridge between actions (which return ActionResult or raise) and
the run driver (which only looks at persisted step statuses).
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .action_base import ActionRegistry
from .action_context import ActionContext
from .action_result import ActionResult
from .exceptions import UnknownActionError
from .models import (
    StepExecutionState,
    Workflow,
    WorkflowNode,
    WorkflowRun,
    Workspace,
    new_owner_id,
    utc_now,
)
from .resolver import resolve_inputs
from .status import RunStatus, StepStatus

if TYPE_CHECKING:
    from .store import RunStore

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 10.0


class StepExecutor:
    """
    Executes single steps against the persistence gateway.

    Responsibilities:
    - Input resolution and the running/final state writes
    - Unknown action → failed without invoking anything
    - Exception capture (including input validation errors)
    - Run status flips: paused step → run paused; resolved step → run running
    """

    def __init__(
        self,
        store: RunStore,
        registry: ActionRegistry,
        owner_id: str | None = None,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
    ):
        """
        Initialize step executor.

        Args:
            store: Persistence gateway
            registry: Action catalog used to look up implementations
            owner_id: Identity recorded on claimed steps (generated if omitted)
            heartbeat_interval: Seconds between liveness updates of a running step
        """
        self.store = store
        self.registry = registry
        self.owner_id = owner_id or new_owner_id()
        self.heartbeat_interval = heartbeat_interval

    async def execute_step(
        self,
        step_id: str,
        node: WorkflowNode,
        run: WorkflowRun,
        workflow: Workflow,
        workspace: Workspace,
    ) -> StepExecutionState | None:
        """
        Execute one step and persist its outcome.

        Args:
            step_id: Node id of the step
            node: Node definition
            run: Run snapshot used for input resolution
            workflow: Workflow the node belongs to
            workspace: Workspace of the run

        Returns:
            The final step state as computed by this invocation, or None if the
            step changed status before it could be claimed. If the step was
            resolved externally while the action ran, that state wins in the
            store and the returned one is discarded.
        """
        prior = run.steps.get(step_id)
        input_values = resolve_inputs(node, run, workspace)

        running_state = StepExecutionState(
            step_id=step_id,
            status=StepStatus.RUNNING,
            input_values=input_values,
            outputs=dict(prior.outputs) if prior else {},
            logs=list(prior.logs) if prior else [],
            start_time=prior.start_time if prior and prior.start_time else utc_now(),
            pause_state=prior.pause_state if prior else None,
            claimed_by=self.owner_id,
            heartbeat_at=utc_now(),
        )
        # Claim the step; a concurrent resume or another driver wins if it got there first
        expected = prior.status if prior else StepStatus.PENDING
        if not await self.store.update_step(run.id, running_state, expected_status=expected):
            logger.debug(f"Run {run.id}: step {step_id} is no longer {expected.value}; skipping")
            return None

        logger.info(f"Run {run.id} ({workflow.name}): executing step {step_id} [{node.action_id}]")

        context = ActionContext(
            gateway=self.store,
            workspace=workspace,
            workflow_id=workflow.id,
            run_id=run.id,
            step_id=step_id,
            step_state=prior,
        )
        heartbeat = asyncio.create_task(self._heartbeat(run.id, step_id))
        try:
            result = await self._invoke(node, input_values, context)
        finally:
            heartbeat.cancel()

        # Another actor may have appended logs while the action ran
        current = await self.store.get_run(run.id)
        current_step = current.steps.get(step_id) if current else None
        base_logs = current_step.logs if current_step else running_state.logs

        final_state = running_state.model_copy(
            update={
                "status": result.step_status,
                "outputs": {**running_state.outputs, **result.outputs},
                "logs": [*base_logs, *result.logs],
                "error": result.error,
                "end_time": None if result.status == "paused" else utc_now(),
                "pause_state": result.pause_state,
            }
        )

        applied = await self.store.update_step(
            run.id, final_state, expected_status=StepStatus.RUNNING
        )
        if not applied:
            logger.info(
                f"Run {run.id}: step {step_id} was resolved externally; "
                f"discarding {result.status} result"
            )
            return final_state

        if result.status == "paused":
            await self.store.update_run_status(run.id, RunStatus.PAUSED)
        elif (
            current is not None
            and current.status == RunStatus.PAUSED
            and not any(
                state.status == StepStatus.PAUSED
                for other_id, state in current.steps.items()
                if other_id != step_id
            )
        ):
            await self.store.update_run_status(run.id, RunStatus.RUNNING)

        if result.status == "failed":
            logger.warning(f"Run {run.id}: step {step_id} failed: {result.error}")
        else:
            logger.debug(f"Run {run.id}: step {step_id} → {result.status}")

        return final_state

    async def _heartbeat(self, run_id: str, step_id: str) -> None:
        """Refresh the claim until cancelled; stops once the step is no longer ours."""
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                if not await self.store.touch_step(run_id, step_id, self.owner_id):
                    return
            except Exception:
                logger.warning(f"Run {run_id}: heartbeat for step {step_id} failed", exc_info=True)

    async def _invoke(
        self, node: WorkflowNode, input_values: dict, context: ActionContext
    ) -> ActionResult:
        """Look up and run the action; never raises."""
        try:
            action = self.registry.get(node.action_id)
        except UnknownActionError as e:
            return ActionResult.failed(str(e), logs=[f"Error: {e}"])

        try:
            inputs = action.parse_inputs(input_values)
            return await action.execute(inputs, context)
        except Exception as e:
            logger.exception(f"Action {node.action_id} raised in run {context.run_id}")
            message = str(e) or type(e).__name__
            return ActionResult.failed(message, logs=[f"Error: {message}"])


__all__ = ["StepExecutor"]
