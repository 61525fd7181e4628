"""Shared formatting utilities for MCP tool responses.

Markdown output is for humans reading a run in a chat client; JSON output is
the run document itself, in the editor's camelCase shape.
"""

from typing import Any

from .engine import StepStatus, Workflow, WorkflowRun

# =============================================================================
# Run Summaries
# =============================================================================


def blocking_steps(run: WorkflowRun) -> list[dict[str, Any]]:
    """Steps a paused run is waiting on, with what each one waits for."""
    blocking = []
    for step_id, state in run.steps.items():
        if state.status != StepStatus.PAUSED:
            continue
        entry: dict[str, Any] = {"stepId": step_id}
        if state.pause_state is not None:
            entry["pauseState"] = state.pause_state.to_document()
        if "childStatuses" in state.outputs:
            entry["childStatuses"] = state.outputs["childStatuses"]
        blocking.append(entry)
    return blocking


def run_summary(run: WorkflowRun) -> dict[str, Any]:
    """Compact run view for listings (no step logs or outputs)."""
    document = run.to_document()
    return {
        "id": run.id,
        "workflowId": run.workflow_id,
        "workspaceId": run.workspace_id,
        "status": run.status.value,
        "description": run.description,
        "startTime": document["startTime"],
        "endTime": document["endTime"],
        "parentRunId": run.parent_run_id,
        "stepStatuses": {step_id: state.status.value for step_id, state in run.steps.items()},
    }


# =============================================================================
# Markdown Formatting Utilities
# =============================================================================


def format_workflow_list_markdown(workflows: list[Workflow]) -> str:
    """Format workflow list as markdown."""
    if not workflows:
        return "No workflows found"

    lines = [f"## Available Workflows ({len(workflows)})", ""]
    for workflow in workflows:
        line = f"- **{workflow.id}**: {workflow.name}"
        if workflow.description:
            line += f" - {workflow.description}"
        lines.append(line)
    return "\n".join(lines)


def format_run_markdown(run: WorkflowRun, workflow: Workflow | None = None) -> str:
    """Format a run as markdown.

    Args:
        run: Run to render
        workflow: Its workflow, used for node labels and action ids when available

    Returns:
        Markdown with status, steps, blocking steps and user logs
    """
    title = workflow.name if workflow else run.workflow_id
    lines = [
        f"# Run: {run.id}",
        "",
        f"**Workflow**: {title}",
        f"**Status**: {run.status.value}",
        f"**Started**: {run.start_time:%Y-%m-%d %H:%M:%S}",
    ]
    if run.end_time:
        lines.append(f"**Ended**: {run.end_time:%Y-%m-%d %H:%M:%S}")
    if run.description:
        lines.append(f"**Description**: {run.description}")

    lines.append("")
    lines.append("## Steps")
    node_ids = [node.id for node in workflow.nodes] if workflow else list(run.steps)
    for node_id in node_ids:
        node = workflow.get_node(node_id) if workflow else None
        label = f"{node.label or node.id} ({node.action_id})" if node else node_id
        state = run.steps.get(node_id)
        status = state.status.value if state else StepStatus.PENDING.value
        line = f"- **{label}**: {status}"
        if state and state.error:
            line += f" - {state.error}"
        lines.append(line)

    blocking = blocking_steps(run)
    if blocking:
        lines.append("")
        lines.append("## Waiting On")
        for entry in blocking:
            pause = entry.get("pauseState") or {}
            detail = pause.get("message") or pause.get("prompt") or pause.get("kind", "")
            lines.append(f"- **{entry['stepId']}**: {detail}")
            for child_id, child_status in (entry.get("childStatuses") or {}).items():
                lines.append(f"  - {child_id}: {child_status}")

    if run.user_logs:
        lines.append("")
        lines.append("## Log")
        for log in run.user_logs:
            lines.append(f"- {log.timestamp:%H:%M:%S} {log.content}")

    return "\n".join(lines)


# =============================================================================
# Error Formatting Utilities
# =============================================================================


def format_not_found_error(kind: str, identifier: str, available: list[str]) -> dict[str, Any]:
    """Lookup failure with the ids that do exist."""
    return {
        "status": "failure",
        "error": f"{kind} not found: {identifier}",
        f"available_{kind.lower()}s": available,
    }


__all__ = [
    "blocking_steps",
    "format_not_found_error",
    "format_run_markdown",
    "format_workflow_list_markdown",
    "run_summary",
]
