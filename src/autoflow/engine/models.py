"""
Pydantic v2 models for workflows, workspaces and runs.

Documents are exchanged with the editor in camelCase (``actionId``,
``inputMappings``, ``workingDirectory``...). Every model accepts both the
camelCase alias and the Python field name, and the store persists by alias so
stored documents keep the editor's shape.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .status import RunStatus, StepStatus


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def new_run_id() -> str:
    return f"run_{uuid.uuid4().hex[:12]}"


def new_owner_id() -> str:
    """Identity of one engine process for step claims."""
    return f"engine_{uuid.uuid4().hex[:12]}"


def _coerce_input(value: Any, input_type: str) -> Any:
    if not isinstance(value, str):
        return value
    if input_type == "number":
        try:
            number = float(value)
        except ValueError:
            return value
        return int(number) if number.is_integer() else number
    if input_type == "boolean":
        lower = value.strip().lower()
        if lower in ("true", "1", "yes"):
            return True
        if lower in ("false", "0", "no", ""):
            return False
    return value


class DocumentModel(BaseModel):
    """Base for persisted documents (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict using editor keys."""
        return self.model_dump(mode="json", by_alias=True)


# ============================================================================
# Workflow definition
# ============================================================================


class InputMapping(DocumentModel):
    """
    Where one action parameter gets its value from.

    - ``constant``: literal value; strings go through ``{{ path }}`` substitution
    - ``context``: ``workingDir`` or ``workspaceId``
    - ``variable``: ``"<stepId>.<outputKey>"``, read straight from that step's outputs
    """

    type: Literal["constant", "variable", "context"] = "constant"
    value: Any = None


class WorkflowNode(DocumentModel):
    """One configured action instance in the graph."""

    id: str
    action_id: str
    label: str = ""
    input_mappings: dict[str, InputMapping] = Field(default_factory=dict)
    position: dict[str, float] | None = None

    @model_validator(mode="before")
    @classmethod
    def lift_editor_data(cls, value: Any) -> Any:
        """Accept the editor's ``{id, position, data: {...}}`` node shape."""
        if isinstance(value, dict) and isinstance(value.get("data"), dict):
            flattened = {k: v for k, v in value.items() if k not in ("data", "type")}
            for key, item in value["data"].items():
                flattened.setdefault(key, item)
            return flattened
        return value


class WorkflowEdge(DocumentModel):
    """Directed dependency: ``target`` runs only after ``source`` succeeded."""

    id: str | None = None
    source: str
    target: str


class WorkflowInput(DocumentModel):
    """Run-level input declared by a workflow, readable as ``{{ input.<name> }}``."""

    name: str
    label: str | None = None
    type: Literal["text", "number", "boolean", "image"] = "text"
    default_value: Any = None


class Workflow(DocumentModel):
    """Workflow graph. Read-only to the engine."""

    id: str
    name: str
    description: str | None = None
    nodes: list[WorkflowNode] = Field(default_factory=list)
    edges: list[WorkflowEdge] = Field(default_factory=list)
    inputs: list[WorkflowInput] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def check_edges_reference_nodes(self) -> Workflow:
        """Every edge endpoint must be a node of this workflow."""
        node_ids = {node.id for node in self.nodes}
        if len(node_ids) != len(self.nodes):
            raise ValueError(f"Workflow '{self.id}' has duplicate node ids")
        for edge in self.edges:
            missing = [end for end in (edge.source, edge.target) if end not in node_ids]
            if missing:
                raise ValueError(
                    f"Edge {edge.source} → {edge.target} references unknown node(s): {missing}"
                )
        return self

    def get_node(self, node_id: str) -> WorkflowNode | None:
        """Look up a node by id."""
        return next((node for node in self.nodes if node.id == node_id), None)

    def prepare_inputs(self, values: dict[str, Any] | None) -> dict[str, Any]:
        """
        Launch input values with declared defaults filled in.

        ``number`` and ``boolean`` inputs supplied as strings (form fields,
        CLI arguments) are coerced; values that do not parse are kept as-is.
        Undeclared keys pass through untouched.
        """
        prepared = dict(values or {})
        for declared in self.inputs:
            if prepared.get(declared.name) is None and declared.default_value is not None:
                prepared[declared.name] = declared.default_value
            if declared.name in prepared:
                prepared[declared.name] = _coerce_input(prepared[declared.name], declared.type)
        return prepared


class Workspace(DocumentModel):
    """Execution context: an id plus the directory runs work in."""

    id: str
    name: str = ""
    working_directory: str
    created_at: datetime = Field(default_factory=utc_now)


# ============================================================================
# Pause states (tagged variants persisted on the step)
# ============================================================================


class AwaitingConfirmation(DocumentModel):
    """Confirm action is waiting for a human yes/no."""

    kind: Literal["awaiting_confirmation"] = "awaiting_confirmation"
    message: str = ""


class AwaitingInput(DocumentModel):
    """User-input action is waiting for a value."""

    kind: Literal["awaiting_input"] = "awaiting_input"
    prompt: str = ""
    field_name: str = "userInput"


class AwaitingChildren(DocumentModel):
    """Fan-out action is waiting for its child runs to finish."""

    kind: Literal["awaiting_children"] = "awaiting_children"
    child_run_ids: list[str] = Field(default_factory=list)


PauseState = Annotated[
    AwaitingConfirmation | AwaitingInput | AwaitingChildren,
    Field(discriminator="kind"),
]


# ============================================================================
# Runs
# ============================================================================


class StepExecutionState(DocumentModel):
    """Execution record of one node within one run."""

    step_id: str
    status: StepStatus = StepStatus.PENDING
    input_values: dict[str, Any] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)
    logs: list[str] = Field(default_factory=list)
    start_time: datetime | None = None
    end_time: datetime | None = None
    error: str | None = None
    pause_state: PauseState | None = None
    # Engine process executing the step and its last liveness signal
    claimed_by: str | None = None
    heartbeat_at: datetime | None = None


class UserLogEntry(DocumentModel):
    """User-facing markdown log line, separate from technical step logs."""

    timestamp: datetime = Field(default_factory=utc_now)
    content: str
    step_id: str = "run-log"


class WorkflowRun(DocumentModel):
    """Mutable execution record of one workflow against one workspace."""

    id: str
    workflow_id: str
    workspace_id: str
    status: RunStatus = RunStatus.RUNNING
    start_time: datetime = Field(default_factory=utc_now)
    end_time: datetime | None = None
    steps: dict[str, StepExecutionState] = Field(default_factory=dict)
    variables: dict[str, Any] = Field(default_factory=dict)
    input_values: dict[str, Any] = Field(default_factory=dict)
    description: str | None = None
    user_logs: list[UserLogEntry] = Field(default_factory=list)
    parent_run_id: str | None = None
    parent_step_id: str | None = None
    revision: int = 0

    def step_status(self, step_id: str) -> StepStatus:
        """Status of a step, ``pending`` when it was never started."""
        state = self.steps.get(step_id)
        return state.status if state else StepStatus.PENDING


class RunPatch(DocumentModel):
    """
    Partial update applied by the gateway in one read-merge-write.

    ``steps`` merge per step id, ``variables`` merge per key,
    ``user_logs`` replaces the list while ``append_user_logs`` appends.
    Unset fields are left untouched.
    """

    steps: dict[str, StepExecutionState] | None = None
    description: str | None = None
    user_logs: list[UserLogEntry] | None = None
    append_user_logs: list[UserLogEntry] | None = None
    variables: dict[str, Any] | None = None
    status: RunStatus | None = None
    end_time: datetime | None = None


__all__ = [
    "AwaitingChildren",
    "AwaitingConfirmation",
    "AwaitingInput",
    "InputMapping",
    "PauseState",
    "RunPatch",
    "StepExecutionState",
    "UserLogEntry",
    "Workflow",
    "WorkflowEdge",
    "WorkflowInput",
    "WorkflowNode",
    "WorkflowRun",
    "Workspace",
    "new_owner_id",
    "new_run_id",
    "utc_now",
]
