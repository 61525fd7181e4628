"""Result returned by every action implementation."""

from typing import Any, Literal

from pydantic import BaseModel, Field

from .models import PauseState
from .status import StepStatus

ActionStatus = Literal["success", "failed", "paused"]


class ActionResult(BaseModel):
    """
    Outcome of one action invocation.

    ``outputs`` is recorded on the step as-is. A paused result may expose
    partial outputs (e.g. spawned child run ids) and should carry a typed
    ``pause_state`` describing what it waits for.
    """

    status: ActionStatus
    outputs: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    logs: list[str] = Field(default_factory=list)
    pause_state: PauseState | None = None

    @property
    def step_status(self) -> StepStatus:
        """Map the action status onto the step lifecycle."""
        return StepStatus(self.status)

    @classmethod
    def success(
        cls, outputs: dict[str, Any] | None = None, logs: list[str] | None = None
    ) -> "ActionResult":
        """Create a successful result."""
        return cls(status="success", outputs=outputs or {}, logs=logs or [])

    @classmethod
    def failed(
        cls,
        error: str,
        logs: list[str] | None = None,
        outputs: dict[str, Any] | None = None,
    ) -> "ActionResult":
        """Create a failed result. Outputs are optional (run-command keeps stdout/stderr)."""
        return cls(status="failed", error=error, outputs=outputs or {}, logs=logs or [])

    @classmethod
    def paused(
        cls,
        pause_state: PauseState | None = None,
        outputs: dict[str, Any] | None = None,
        logs: list[str] | None = None,
    ) -> "ActionResult":
        """Create a paused result; the step will be re-invoked on the next poll."""
        return cls(status="paused", pause_state=pause_state, outputs=outputs or {}, logs=logs or [])
