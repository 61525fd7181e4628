"""
Execution context handed to action implementations.

Provides access to:
- The workspace the run executes against
- Workflow/run/step identifiers
- The step's state from the previous invocation (re-entrant actions)
- Narrow persistence capabilities (update/create/get runs, get workflows, settings)

Actions never reach a process-wide store: the gateway is injected here, so the
same action code runs against SQLite, memory or anything implementing
``RunGateway``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .models import RunPatch, StepExecutionState, Workflow, WorkflowRun, Workspace


class RunGateway(Protocol):
    """Subset of the persistence gateway actions are allowed to use."""

    async def get_run(self, run_id: str) -> WorkflowRun | None: ...

    async def create_run(self, run: WorkflowRun) -> WorkflowRun: ...

    async def save_run_partial(self, run_id: str, patch: RunPatch) -> WorkflowRun | None: ...

    async def get_workflow(self, workflow_id: str) -> Workflow | None: ...

    async def get_setting(self, key: str) -> str | None: ...


class ActionContext:
    """
    Context injected into every action invocation.

    Design:
    - One instance per step invocation, discarded afterwards
    - ``step_state`` is the persisted state before this invocation started
      (``None`` on the first call); re-entrant actions read their phase from it
    """

    def __init__(
        self,
        gateway: RunGateway,
        workspace: Workspace,
        workflow_id: str,
        run_id: str,
        step_id: str,
        step_state: StepExecutionState | None = None,
    ):
        """
        Initialize action context.

        Args:
            gateway: Persistence capabilities
            workspace: Workspace of the run
            workflow_id: Workflow being executed
            run_id: Run being driven
            step_id: Node id of the step being executed
            step_state: Step state from the previous invocation, if any
        """
        self.gateway = gateway
        self.workspace = workspace
        self.workflow_id = workflow_id
        self.run_id = run_id
        self.step_id = step_id
        self.step_state = step_state

    @property
    def working_directory(self) -> str:
        return self.workspace.working_directory

    async def update_run(self, patch: RunPatch, run_id: str | None = None) -> WorkflowRun | None:
        """Merge a partial update into a run (this run by default)."""
        return await self.gateway.save_run_partial(run_id or self.run_id, patch)

    async def create_run(self, run: WorkflowRun) -> WorkflowRun:
        """Persist a new run (child runs spawned by fan-out actions)."""
        return await self.gateway.create_run(run)

    async def get_run(self, run_id: str | None = None) -> WorkflowRun | None:
        """Fetch a run (this run by default)."""
        return await self.gateway.get_run(run_id or self.run_id)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        return await self.gateway.get_workflow(workflow_id)

    async def get_setting(self, key: str, default: Any = None) -> Any:
        """Read a user setting (API keys, limits), falling back to ``default``."""
        value = await self.gateway.get_setting(key)
        return default if value in (None, "") else value


__all__ = ["ActionContext", "RunGateway"]
