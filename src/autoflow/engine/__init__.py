"""Workflow execution engine.

Key Components:

- next_steps / DAGResolver: readiness evaluation and save-time cycle detection
- resolve_inputs: input mappings and ``{{ path }}`` substitution
- WorkflowAction / ActionRegistry: the action contract and catalog
- StepExecutor: one invocation of one step, persisted
- RunDriver: one poll-driven cycle of a run (``process_run``)
- RunScheduler: poller with concurrency cap and in-flight tracking
- RunStore: persistence gateway (SQLite or in-memory)
- LoadResult: value-or-error result for workflow import

Architecture:
- Runs, steps and child runs live only in the store; nothing recurses in memory
- Actions receive the gateway through ActionContext, never a global
- Paused steps are re-invoked every cycle; the action decides whether to resume
- Final step writes are compare-and-set, so human resumption is never lost
"""

from .action_base import (
    ActionDefinition,
    ActionInput,
    ActionRegistry,
    WorkflowAction,
    create_default_registry,
)
from .action_context import ActionContext, RunGateway
from .action_result import ActionResult
from .dag import DAGResolver, ensure_acyclic, find_cycle, next_steps
from .exceptions import (
    AutoflowError,
    CommandTimeoutError,
    CyclicWorkflowError,
    RunNotFoundError,
    StepNotPausedError,
    UnknownActionError,
    WorkflowNotFoundError,
    WorkspaceNotFoundError,
)
from .load_result import LoadResult
from .loader import discover_workflows, load_workflow_from_file, load_workflow_from_yaml
from .models import (
    AwaitingChildren,
    AwaitingConfirmation,
    AwaitingInput,
    InputMapping,
    RunPatch,
    StepExecutionState,
    UserLogEntry,
    Workflow,
    WorkflowEdge,
    WorkflowInput,
    WorkflowNode,
    WorkflowRun,
    Workspace,
)
from .resolver import resolve_inputs, substitute_variables
from .run_driver import RunDriver, launch_run
from .scheduler import RunScheduler
from .status import RunStatus, StepStatus
from .step_executor import StepExecutor
from .store import InMemoryRunStore, RunStore, SQLiteRunStore

__all__ = [
    # Models
    "AwaitingChildren",
    "AwaitingConfirmation",
    "AwaitingInput",
    "InputMapping",
    "RunPatch",
    "RunStatus",
    "StepExecutionState",
    "StepStatus",
    "UserLogEntry",
    "Workflow",
    "WorkflowEdge",
    "WorkflowInput",
    "WorkflowNode",
    "WorkflowRun",
    "Workspace",
    # Graph and resolution
    "DAGResolver",
    "ensure_acyclic",
    "find_cycle",
    "next_steps",
    "resolve_inputs",
    "substitute_variables",
    # Actions
    "ActionContext",
    "ActionDefinition",
    "ActionInput",
    "ActionRegistry",
    "ActionResult",
    "RunGateway",
    "WorkflowAction",
    "create_default_registry",
    # Execution
    "RunDriver",
    "RunScheduler",
    "StepExecutor",
    "launch_run",
    # Persistence
    "InMemoryRunStore",
    "RunStore",
    "SQLiteRunStore",
    # Loading
    "LoadResult",
    "discover_workflows",
    "load_workflow_from_file",
    "load_workflow_from_yaml",
    # Errors
    "AutoflowError",
    "CommandTimeoutError",
    "CyclicWorkflowError",
    "RunNotFoundError",
    "StepNotPausedError",
    "UnknownActionError",
    "WorkflowNotFoundError",
    "WorkspaceNotFoundError",
]
