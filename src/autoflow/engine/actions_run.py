"""Run bookkeeping actions - set-description and add-log.

Side-effect-only: they mutate the current run through the context gateway
and succeed with no outputs.
"""

from typing import ClassVar

from .action_base import ActionDefinition, ActionInput, ActionParameter, WorkflowAction
from .action_context import ActionContext
from .action_result import ActionResult
from .models import RunPatch, UserLogEntry


class SetDescriptionInput(ActionInput):
    description: str = ""


class SetDescriptionAction(WorkflowAction):
    """Replace the run's human-readable description (markdown)."""

    definition: ClassVar[ActionDefinition] = ActionDefinition(
        id="set-description",
        name="Set Workflow Description",
        description="Update the description of the current workflow (Markdown supported)",
        parameters=[
            ActionParameter(
                name="description",
                label="Description Text",
                type="text",
                required=True,
                description="Markdown allowed",
            ),
        ],
    )
    input_type: ClassVar[type[ActionInput]] = SetDescriptionInput

    async def execute(  # type: ignore[override]
        self, inputs: SetDescriptionInput, context: ActionContext
    ) -> ActionResult:
        await context.update_run(RunPatch(description=inputs.description))
        return ActionResult.success(logs=[f"Description updated ({len(inputs.description)} chars)"])


class AddLogInput(ActionInput):
    content: str = ""


class AddLogAction(WorkflowAction):
    """Append a markdown entry to the run's user-facing log."""

    definition: ClassVar[ActionDefinition] = ActionDefinition(
        id="add-log",
        name="Add Log Entry",
        description="Append a markdown log entry to the run view",
        parameters=[
            ActionParameter(
                name="content",
                label="Log Content",
                type="text",
                required=True,
                description="Markdown allowed",
            ),
        ],
    )
    input_type: ClassVar[type[ActionInput]] = AddLogInput

    async def execute(  # type: ignore[override]
        self, inputs: AddLogInput, context: ActionContext
    ) -> ActionResult:
        entry = UserLogEntry(content=inputs.content, step_id=context.step_id)
        await context.update_run(RunPatch(append_user_logs=[entry]))
        return ActionResult.success(logs=["Log entry added"])
