"""
Child-run fan-out actions - for-each-list and for-each-folder.

A fan-out step is a persisted two-phase state machine:

Phase A (no child runs recorded on the step):
    Create one child Run per item in the persistence gateway, record their
    ids on the step and pause.

Phase B (child runs recorded):
    Poll every child's status. Still running → pause again (re-persisting
    the status snapshot); any failed or missing → fail; otherwise succeed.

Children are ordinary Run rows (``parentRunId``/``parentStepId`` set), so the
scheduler drives them like any other run; nothing recurses in memory. The
step is safe to re-invoke every poll cycle without re-spawning children.
"""

from __future__ import annotations

import json
import logging
from abc import abstractmethod
from pathlib import Path
from typing import Any, ClassVar

from pydantic import Field

from .action_base import (
    ActionCapabilities,
    ActionDefinition,
    ActionInput,
    ActionParameter,
    ActionPort,
    ActionSecurityLevel,
    WorkflowAction,
)
from .action_context import ActionContext
from .action_result import ActionResult
from .models import AwaitingChildren, WorkflowRun, new_run_id
from .status import RunStatus

logger = logging.getLogger(__name__)


class FanOutInput(ActionInput):
    """Inputs shared by fan-out actions."""

    workflow_id: str = Field(description="Child workflow to run for each item")
    item_variable_name: str = Field(default="item")
    additional_input: dict[str, Any] | str | None = Field(
        default=None, description="JSON object merged into every child's inputs"
    )


def parse_additional_input(value: dict[str, Any] | str | None, logs: list[str]) -> dict[str, Any]:
    """Extra child inputs; unparsable JSON is logged and ignored."""
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip():
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as e:
            logs.append(f"Ignoring additionalInput (invalid JSON: {e})")
            return {}
        if isinstance(parsed, dict):
            return parsed
        logs.append("Ignoring additionalInput (not a JSON object)")
    return {}


def recorded_child_run_ids(context: ActionContext) -> list[str]:
    """Child run ids from the step's previous invocation, if any."""
    state = context.step_state
    if state is None:
        return []
    if isinstance(state.pause_state, AwaitingChildren):
        return list(state.pause_state.child_run_ids)
    return list(state.outputs.get("childRunIds") or [])


class ChildRunFanOutAction(WorkflowAction):
    """Base class: spawn one child run per item, then wait for all of them."""

    input_type: ClassVar[type[ActionInput]] = FanOutInput

    security_level: ClassVar[ActionSecurityLevel] = ActionSecurityLevel.TRUSTED
    capabilities: ClassVar[ActionCapabilities] = ActionCapabilities(can_spawn_runs=True)

    @abstractmethod
    async def collect_items(self, inputs: Any, context: ActionContext) -> list[Any]:
        """Items to fan out over.

        Raises:
            ValueError: If the items input is unusable
        """

    async def execute(self, inputs: Any, context: ActionContext) -> ActionResult:
        child_run_ids = recorded_child_run_ids(context)
        if child_run_ids:
            return await self._poll_children(child_run_ids, context)
        return await self._spawn_children(inputs, context)

    async def _spawn_children(self, inputs: FanOutInput, context: ActionContext) -> ActionResult:
        logs = [f"Executing action: {self.action_id}"]
        items = await self.collect_items(inputs, context)

        if not items:
            logs.append("No items to process.")
            return ActionResult.success({"totalProcessed": 0, "childRunIds": []}, logs=logs)

        child_workflow = await context.get_workflow(inputs.workflow_id)
        if child_workflow is None:
            return ActionResult.failed(f"Child workflow not found: {inputs.workflow_id}", logs=logs)

        extra_inputs = parse_additional_input(inputs.additional_input, logs)
        logs.append(f"Spawning {len(items)} child workflows...")

        child_run_ids: list[str] = []
        for index, item in enumerate(items):
            child = WorkflowRun(
                id=new_run_id(),
                workflow_id=child_workflow.id,
                workspace_id=context.workspace.id,
                status=RunStatus.RUNNING,
                input_values=child_workflow.prepare_inputs(
                    {**extra_inputs, inputs.item_variable_name: item}
                ),
                description=f"Child of {context.run_id} (Item {index + 1})",
                parent_run_id=context.run_id,
                parent_step_id=context.step_id,
            )
            await context.create_run(child)
            child_run_ids.append(child.id)

        logger.info(
            f"Run {context.run_id} step {context.step_id} spawned {len(child_run_ids)} "
            f"child runs of '{child_workflow.name}'"
        )
        logs.append(f"Spawned {len(child_run_ids)} runs. Waiting for completion...")
        return ActionResult.paused(
            AwaitingChildren(child_run_ids=child_run_ids),
            outputs={"childRunIds": child_run_ids},
            logs=logs,
        )

    async def _poll_children(self, child_run_ids: list[str], context: ActionContext) -> ActionResult:
        child_statuses: dict[str, str] = {}
        running = failed = 0

        for child_id in child_run_ids:
            child = await context.get_run(child_id)
            if child is None:
                child_statuses[child_id] = "missing"
                failed += 1
            elif child.status == RunStatus.FAILED:
                child_statuses[child_id] = child.status.value
                failed += 1
            elif child.status.is_terminal():
                # completed or cancelled
                child_statuses[child_id] = child.status.value
            else:
                child_statuses[child_id] = child.status.value
                running += 1

        outputs = {"childRunIds": child_run_ids, "childStatuses": child_statuses}

        if running:
            pause_state = AwaitingChildren(child_run_ids=child_run_ids)
            return ActionResult.paused(pause_state, outputs=outputs)

        if failed:
            return ActionResult.failed(
                f"{failed} child workflows failed.",
                outputs=outputs,
                logs=[f"{failed} children failed."],
            )

        return ActionResult.success(
            {"totalProcessed": len(child_run_ids), **outputs},
            logs=["All child workflows completed."],
        )


# ============================================================================
# For Each List
# ============================================================================


class ForEachListInput(FanOutInput):
    items: list[Any] | str = Field(description="Array of items, or a newline-separated string")


class ForEachListAction(ChildRunFanOutAction):
    """Run a child workflow once per list item."""

    definition: ClassVar[ActionDefinition] = ActionDefinition(
        id="for-each-list",
        name="For Each Item",
        description="Iterate through a list of items and run a child workflow for each.",
        parameters=[
            ActionParameter(
                name="items",
                label="Items List",
                type="json",
                required=True,
                description="Array of items",
            ),
            ActionParameter(name="workflowId", label="Run Workflow", type="workflow-id", required=True),
            ActionParameter(
                name="itemVariableName",
                label="Item Variable Name",
                default_value="item",
                description="Name of the input variable in child workflow",
            ),
            ActionParameter(
                name="additionalInput",
                label="Additional Input",
                type="json",
                description="JSON object to pass as inputs",
            ),
        ],
        outputs=[
            ActionPort(name="totalProcessed", type="number"),
            ActionPort(name="childRunIds", type="json"),
            ActionPort(name="childStatuses", type="json"),
        ],
    )
    input_type: ClassVar[type[ActionInput]] = ForEachListInput

    async def collect_items(  # type: ignore[override]
        self, inputs: ForEachListInput, context: ActionContext
    ) -> list[Any]:
        if isinstance(inputs.items, list):
            return inputs.items
        return [line.strip() for line in inputs.items.split("\n") if line.strip()]


# ============================================================================
# For Each Folder
# ============================================================================


class ForEachFolderInput(FanOutInput):
    base_path: str | None = Field(default=None, description="Directory to scan (default: workspace)")
    pattern: str = Field(default="*", description="Glob pattern for sub-directories")
    item_variable_name: str = Field(default="folder")


class ForEachFolderAction(ChildRunFanOutAction):
    """Run a child workflow once per sub-directory matching a glob pattern."""

    definition: ClassVar[ActionDefinition] = ActionDefinition(
        id="for-each-folder",
        name="For Each Folder",
        description="Iterate over folders matching a pattern and run a sub-workflow",
        parameters=[
            ActionParameter(name="pattern", label="Glob Pattern", required=True, default_value="*"),
            ActionParameter(name="workflowId", label="Run Workflow", type="workflow-id", required=True),
            ActionParameter(name="itemVariableName", label="Item Variable Name", default_value="folder"),
            ActionParameter(name="additionalInput", label="Additional Input", type="json"),
        ],
        inputs=[ActionPort(name="basePath", required=True)],
        outputs=[
            ActionPort(name="totalProcessed", type="number"),
            ActionPort(name="childRunIds", type="json"),
            ActionPort(name="childStatuses", type="json"),
        ],
    )
    input_type: ClassVar[type[ActionInput]] = ForEachFolderInput

    security_level: ClassVar[ActionSecurityLevel] = ActionSecurityLevel.TRUSTED
    capabilities: ClassVar[ActionCapabilities] = ActionCapabilities(
        can_read_files=True, can_spawn_runs=True
    )

    async def collect_items(  # type: ignore[override]
        self, inputs: ForEachFolderInput, context: ActionContext
    ) -> list[Any]:
        base = Path(inputs.base_path or context.working_directory)
        if not base.is_dir():
            raise ValueError(f"Base path is not a directory: {base}")
        return sorted(str(path) for path in base.glob(inputs.pattern) if path.is_dir())
