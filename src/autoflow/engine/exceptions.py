"""Engine exceptions.

Action failures are never raised past the Step Executor; these exceptions
cover lookups, graph validation and gateway contract violations.
"""

from __future__ import annotations


class AutoflowError(Exception):
    """Base class for engine errors."""


class WorkflowNotFoundError(AutoflowError):
    """Workflow id does not exist in the store."""

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class WorkspaceNotFoundError(AutoflowError):
    """Workspace id does not exist in the store."""

    def __init__(self, workspace_id: str):
        self.workspace_id = workspace_id
        super().__init__(f"Workspace not found: {workspace_id}")


class RunNotFoundError(AutoflowError):
    """Run id does not exist in the store."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")


class UnknownActionError(AutoflowError):
    """Node references an action type missing from the catalog."""

    def __init__(self, action_id: str, available: list[str] | None = None):
        self.action_id = action_id
        self.available = available or []
        message = f"Unknown action: {action_id}"
        if self.available:
            message += f". Available: {sorted(self.available)}"
        super().__init__(message)


class CyclicWorkflowError(AutoflowError):
    """
    Workflow graph contains a cycle.

    Raised at save time; a cyclic graph would starve forever in the
    readiness evaluator because no node on the cycle can ever become ready.

    Attributes:
        workflow_id: Workflow that was rejected
        cycle: Node ids forming the cycle, first node repeated at the end
    """

    def __init__(self, workflow_id: str, cycle: list[str]):
        self.workflow_id = workflow_id
        self.cycle = cycle
        super().__init__(
            f"Workflow '{workflow_id}' contains a cycle: {' → '.join(cycle)}"
        )


class StepNotPausedError(AutoflowError):
    """Attempt to resume a step that is not waiting."""

    def __init__(
        self, run_id: str, step_id: str, status: str | None, reason: str | None = None
    ):
        self.run_id = run_id
        self.step_id = step_id
        self.status = status
        self.reason = reason
        if reason:
            message = f"Step '{step_id}' of run {run_id} cannot be resumed: {reason}"
        else:
            message = (
                f"Step '{step_id}' of run {run_id} is not paused "
                f"(status: {status or 'not started'})"
            )
        super().__init__(message)


class CommandTimeoutError(AutoflowError):
    """
    External process exceeded its wall-clock limit and was terminated.

    Carries whatever output was captured before termination.
    """

    def __init__(self, argv: list[str], timeout: float, stdout: str = "", stderr: str = ""):
        self.argv = argv
        self.timeout = timeout
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"Command timed out after {timeout:g} seconds: {' '.join(argv)}")

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"CommandTimeoutError(argv={self.argv!r}, timeout={self.timeout!r})"


__all__ = [
    "AutoflowError",
    "CommandTimeoutError",
    "CyclicWorkflowError",
    "RunNotFoundError",
    "StepNotPausedError",
    "UnknownActionError",
    "WorkflowNotFoundError",
    "WorkspaceNotFoundError",
]
