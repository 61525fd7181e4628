"""MCP tool implementations: the outer control surface of the engine.

Tools never drive runs themselves. ``start_run`` and ``resume_step`` only
write to the store; the scheduler (embedded or in ``autoflow-worker``) picks
the change up on its next scan.

Following official Anthropic MCP Python SDK patterns:
- Tool functions decorated with @mcp.tool()
- Flat parameter signatures with Annotated types for validation
- Clear docstrings (become tool descriptions)
"""

import json
from typing import Annotated, Any, Literal

from mcp.types import ToolAnnotations
from pydantic import Field, ValidationError

from .context import AppContextType
from .engine import (
    CyclicWorkflowError,
    RunNotFoundError,
    RunStatus,
    StepNotPausedError,
    StepStatus,
    Workflow,
    WorkflowNotFoundError,
    Workspace,
    WorkspaceNotFoundError,
    launch_run,
)
from .formatting import (
    blocking_steps,
    format_not_found_error,
    format_run_markdown,
    format_workflow_list_markdown,
    run_summary,
)
from .server import mcp

# =============================================================================
# Catalog and Workflows
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="List Actions",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def list_actions(*, ctx: AppContextType) -> list[dict[str, Any]]:
    """List the action catalog: ids, parameters, outputs and input schemas. No parameters."""
    app_ctx = ctx.request_context.lifespan_context
    registry = app_ctx.registry
    return [registry.get(action_id).describe() for action_id in registry.list_types()]


@mcp.tool(
    annotations=ToolAnnotations(
        title="List Workflows",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def list_workflows(
    format: Annotated[  # noqa: A002
        Literal["json", "markdown"],
        Field(description="Output format"),
    ] = "json",
    *,
    ctx: AppContextType,
) -> str:
    """List stored workflows. Optional: format (json|markdown)."""
    app_ctx = ctx.request_context.lifespan_context
    workflows = await app_ctx.store.list_workflows()

    if format == "markdown":
        return format_workflow_list_markdown(workflows)
    return json.dumps([workflow.to_document() for workflow in workflows])


@mcp.tool(
    annotations=ToolAnnotations(
        title="Save Workflow",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def save_workflow(
    workflow: Annotated[
        dict[str, Any],
        Field(description="Workflow document: {id, name, nodes, edges, inputs}"),
    ],
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Create or replace a workflow. Rejects invalid documents and cyclic graphs."""
    app_ctx = ctx.request_context.lifespan_context

    try:
        parsed = Workflow.model_validate(workflow)
    except ValidationError as e:
        return {"status": "failure", "error": f"Invalid workflow: {e}"}

    unknown = sorted(
        {node.action_id for node in parsed.nodes if not app_ctx.registry.has(node.action_id)}
    )

    try:
        saved = await app_ctx.store.save_workflow(parsed)
    except CyclicWorkflowError as e:
        return {"status": "failure", "error": str(e), "cycle": e.cycle}

    response: dict[str, Any] = {"status": "success", "workflow": saved.to_document()}
    if unknown:
        response["warnings"] = [f"Unknown action ids (steps will fail): {', '.join(unknown)}"]
    return response


@mcp.tool(
    annotations=ToolAnnotations(
        title="Delete Workflow",
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def delete_workflow(
    workflow_id: Annotated[str, Field(description="Workflow id", min_length=1, max_length=200)],
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Delete a stored workflow. Existing runs keep their records. Required: workflow_id."""
    app_ctx = ctx.request_context.lifespan_context
    store = app_ctx.store

    if not await store.delete_workflow(workflow_id):
        available = [workflow.id for workflow in await store.list_workflows()]
        return format_not_found_error("Workflow", workflow_id, available)
    return {"status": "success", "message": f"Workflow {workflow_id} deleted"}


# =============================================================================
# Workspaces
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="List Workspaces",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def list_workspaces(*, ctx: AppContextType) -> list[dict[str, Any]]:
    """List workspaces (id, name, working directory). No parameters."""
    app_ctx = ctx.request_context.lifespan_context
    return [workspace.to_document() for workspace in await app_ctx.store.list_workspaces()]


@mcp.tool(
    annotations=ToolAnnotations(
        title="Create Workspace",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def create_workspace(
    id: Annotated[str, Field(description="Workspace id", min_length=1, max_length=200)],  # noqa: A002
    working_directory: Annotated[
        str, Field(description="Directory runs execute in (created on first run)", min_length=1)
    ],
    name: Annotated[str, Field(description="Display name")] = "",
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Create or update a workspace. Required: id, working_directory."""
    app_ctx = ctx.request_context.lifespan_context
    workspace = Workspace(id=id, name=name or id, working_directory=working_directory)
    await app_ctx.store.save_workspace(workspace)
    return {"status": "success", "workspace": workspace.to_document()}


# =============================================================================
# Runs
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="Start Run",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=True,
    )
)
async def start_run(
    workflow_id: Annotated[str, Field(description="Workflow to run", min_length=1)],
    workspace_id: Annotated[str, Field(description="Workspace to run against", min_length=1)],
    inputs: Annotated[
        dict[str, Any] | None,
        Field(description="Run inputs, readable as {{ input.<name> }}"),
    ] = None,
    description: Annotated[str | None, Field(description="Run description")] = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Launch a run. Required: workflow_id, workspace_id. Optional: inputs, description."""
    app_ctx = ctx.request_context.lifespan_context
    store = app_ctx.store

    try:
        run = await launch_run(store, workflow_id, workspace_id, inputs, description)
    except WorkflowNotFoundError:
        return format_not_found_error(
            "Workflow", workflow_id, [w.id for w in await store.list_workflows()]
        )
    except WorkspaceNotFoundError:
        return format_not_found_error(
            "Workspace", workspace_id, [w.id for w in await store.list_workspaces()]
        )

    message = "Run started. Use get_run() to follow progress."
    if app_ctx.scheduler is None:
        message = "Run queued. No scheduler in this process: start autoflow-worker to drive it."
    return {"status": "success", "run_id": run.id, "message": message}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Get Run",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def get_run(
    run_id: str,
    format: Annotated[  # noqa: A002
        Literal["json", "markdown"],
        Field(description="Output format"),
    ] = "json",
    *,
    ctx: AppContextType,
) -> dict[str, Any] | str:
    """Get a run with its steps, outputs and logs. Required: run_id."""
    app_ctx = ctx.request_context.lifespan_context
    run = await app_ctx.store.get_run(run_id)
    if run is None:
        return {"status": "failure", "error": f"Run not found: {run_id}"}

    if format == "markdown":
        workflow = await app_ctx.store.get_workflow(run.workflow_id)
        return format_run_markdown(run, workflow)

    response = run.to_document()
    if run.status == RunStatus.PAUSED:
        response["waitingOn"] = blocking_steps(run)
    return response


@mcp.tool(
    annotations=ToolAnnotations(
        title="List Runs",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def list_runs(
    status: str | None = None,
    workspace_id: str | None = None,
    limit: Annotated[int, Field(ge=1, le=1000)] = 100,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """List runs, most recent first. Optional: status, workspace_id, limit (default 100)."""
    app_ctx = ctx.request_context.lifespan_context

    status_filter = None
    if status:
        try:
            status_filter = RunStatus(status.lower())
        except ValueError:
            return {
                "status": "failure",
                "error": f"Invalid status: {status}. "
                f"Valid values: {', '.join(s.value for s in RunStatus)}",
                "runs": [],
            }

    runs = await app_ctx.store.list_runs(
        status=status_filter, workspace_id=workspace_id, limit=limit
    )
    return {"runs": [run_summary(run) for run in runs], "filtered": len(runs)}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Resume Step",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=False,
    )
)
async def resume_step(
    run_id: str,
    step_id: str,
    outputs: Annotated[
        dict[str, Any] | None,
        Field(description='Step outputs, e.g. {"value": "..."} or {"confirmed": true}'),
    ] = None,
    approved: Annotated[
        bool,
        Field(description="False rejects the step (it fails and the run fails)"),
    ] = True,
    error: Annotated[str | None, Field(description="Rejection reason")] = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Resolve a paused confirm/user-input step. Required: run_id, step_id."""
    app_ctx = ctx.request_context.lifespan_context

    status = StepStatus.SUCCESS if approved else StepStatus.FAILED
    if not approved and not error:
        error = "Rejected by user"

    try:
        run = await app_ctx.store.resume_step(run_id, step_id, outputs, status=status, error=error)
    except (RunNotFoundError, StepNotPausedError) as e:
        return {"status": "failure", "error": str(e)}

    return {
        "status": "success",
        "run_id": run.id,
        "run_status": run.status.value,
        "step": run.steps[step_id].to_document(),
    }


@mcp.tool(
    annotations=ToolAnnotations(
        title="Cancel Run",
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def cancel_run(
    run_id: str,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Cancel a running or paused run. Required: run_id."""
    app_ctx = ctx.request_context.lifespan_context

    before = await app_ctx.store.get_run(run_id)
    if before is None:
        return {"status": "failure", "error": f"Run not found: {run_id}"}

    run = await app_ctx.store.cancel_run(run_id)
    cancelled = not before.status.is_terminal() and run.status == RunStatus.CANCELLED
    return {
        "run_id": run_id,
        "cancelled": cancelled,
        "run_status": run.status.value,
        "message": (
            "Run cancelled successfully" if cancelled else f"Run already {run.status.value}"
        ),
    }
