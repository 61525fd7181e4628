"""Human-in-the-loop actions - confirm and user-input.

Both actions always pause. They never resolve themselves: a human resumes the
step through the gateway (``RunStore.resume_step``), which records the
outputs and marks the step ``success`` (or ``failed`` for a rejected
confirmation). Until then the Run Driver re-polls the step every cycle and the
action simply reports that it is still waiting.
"""

from __future__ import annotations

from typing import ClassVar

from pydantic import Field

from .action_base import ActionDefinition, ActionInput, ActionParameter, ActionPort, WorkflowAction
from .action_context import ActionContext
from .action_result import ActionResult
from .models import AwaitingConfirmation, AwaitingInput


def _already_waiting(context: ActionContext, kind: str) -> bool:
    state = context.step_state
    return state is not None and state.pause_state is not None and state.pause_state.kind == kind


# ============================================================================
# Confirm
# ============================================================================


class ConfirmInput(ActionInput):
    message: str = Field(default="", description="Question shown to the user")


class ConfirmAction(WorkflowAction):
    """Pause until a human confirms (``{"confirmed": true}``) or rejects the step."""

    definition: ClassVar[ActionDefinition] = ActionDefinition(
        id="confirm",
        name="Confirmation",
        description="Pause workflow and ask for user confirmation",
        parameters=[ActionParameter(name="message", label="Message", required=True)],
        outputs=[ActionPort(name="confirmed", type="boolean")],
    )
    input_type: ClassVar[type[ActionInput]] = ConfirmInput

    async def execute(  # type: ignore[override]
        self, inputs: ConfirmInput, context: ActionContext
    ) -> ActionResult:
        pause_state = AwaitingConfirmation(message=inputs.message)
        if _already_waiting(context, pause_state.kind):
            return ActionResult.paused(pause_state)

        return ActionResult.paused(
            pause_state,
            logs=[f"Executing action: {self.action_id}", "Waiting for user confirmation..."],
        )


# ============================================================================
# User Input
# ============================================================================


class UserInputInput(ActionInput):
    prompt: str = Field(default="", description="Prompt message shown to the user")
    field_name: str = Field(default="userInput")
    context_data: str | None = Field(default=None, description="Optional context to show user")


class UserInputAction(WorkflowAction):
    """Pause until a human supplies a value (``{"value": ...}``)."""

    definition: ClassVar[ActionDefinition] = ActionDefinition(
        id="user-input",
        name="User Input",
        description="Request input from the user",
        parameters=[
            ActionParameter(name="prompt", label="Prompt Message", required=True),
            ActionParameter(name="fieldName", label="Field Name", default_value="userInput"),
        ],
        inputs=[ActionPort(name="contextData", description="Optional context to show user")],
        outputs=[ActionPort(name="value")],
    )
    input_type: ClassVar[type[ActionInput]] = UserInputInput

    async def execute(  # type: ignore[override]
        self, inputs: UserInputInput, context: ActionContext
    ) -> ActionResult:
        pause_state = AwaitingInput(prompt=inputs.prompt, field_name=inputs.field_name)
        if _already_waiting(context, pause_state.kind):
            return ActionResult.paused(pause_state)

        logs = [f"Executing action: {self.action_id}", "Waiting for user input..."]
        if inputs.context_data:
            logs.append(f"Context: {inputs.context_data}")
        return ActionResult.paused(pause_state, logs=logs)
