"""
Input resolution for workflow steps.

Turns a node's declared input mappings into the concrete value map handed to
its action. Resolution never raises: an unresolvable reference yields ``None``
(or an empty string inside a larger template) and the action decides whether
the input was required.

Template paths:
    input.<name>                  run-level launch input
    workspace.id                  workspace id
    workspace.workingDirectory    workspace directory
    <stepId>.outputs.<key>        a step's recorded output
    <stepId>.<key>                shorthand for the above
"""

import json
import re
from typing import Any

from .models import InputMapping, WorkflowNode, WorkflowRun, Workspace

# One {{ path }} token anywhere in a string
INTERPOLATION_PATTERN = re.compile(r"\{\{\s*([a-zA-Z0-9_\-\.]+)\s*\}\}")

# A string that is exactly one token resolves to the typed value
SINGLE_TOKEN_PATTERN = re.compile(r"^\{\{\s*([a-zA-Z0-9_\-\.]+)\s*\}\}$")

CONTEXT_KEYS = ("workingDir", "workspaceId")


def resolve_path(path: str, run: WorkflowRun, workspace: Workspace) -> Any:
    """
    Resolve one dotted template path against run and workspace state.

    Returns:
        The referenced value, or None when nothing matches
    """
    parts = path.split(".")
    root = parts[0]
    key = parts[1] if len(parts) > 1 else None

    if root == "input":
        return run.input_values.get(key) if key else None

    if root == "workspace":
        if key == "id":
            return workspace.id
        if key == "workingDirectory":
            return workspace.working_directory

    step = run.steps.get(root)
    if step is None or key is None:
        return None

    if key == "outputs" and len(parts) > 2:
        return step.outputs.get(parts[2])
    return step.outputs.get(key)


def substitute_variables(text: str, run: WorkflowRun, workspace: Workspace) -> Any:
    """
    Expand ``{{ path }}`` tokens in a string.

    A string consisting of exactly one token returns the referenced value
    unchanged (numbers stay numbers, lists stay lists). Any other string has
    each token replaced by ``str(value)``, or ``""`` when unresolved.
    """
    single = SINGLE_TOKEN_PATTERN.match(text)
    if single:
        return resolve_path(single.group(1), run, workspace)

    def replace(match: re.Match[str]) -> str:
        value = resolve_path(match.group(1), run, workspace)
        return "" if value is None else _stringify(value)

    return INTERPOLATION_PATTERN.sub(replace, text)


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return ",".join(_stringify(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value)
    return str(value)


def resolve_mapping(mapping: InputMapping, run: WorkflowRun, workspace: Workspace) -> Any:
    """Resolve a single input mapping."""
    if mapping.type == "constant":
        if isinstance(mapping.value, str):
            return substitute_variables(mapping.value, run, workspace)
        return mapping.value

    if mapping.type == "context":
        if mapping.value == "workingDir":
            return workspace.working_directory
        if mapping.value == "workspaceId":
            return workspace.id
        return None

    # variable: literally "<stepId>.<outputKey>", no templating; extra segments are ignored
    # the same way template paths ignore them
    if isinstance(mapping.value, str) and "." in mapping.value:
        step_id, output_key = mapping.value.split(".")[:2]
        step = run.steps.get(step_id)
        if step is not None:
            return step.outputs.get(output_key)
    return None


def resolve_inputs(node: WorkflowNode, run: WorkflowRun, workspace: Workspace) -> dict[str, Any]:
    """
    Produce the concrete input value map for one step.

    Args:
        node: Node whose input mappings are resolved
        run: Current run (launch inputs and step outputs)
        workspace: Workspace the run executes against

    Returns:
        Parameter name to resolved value (``None`` for unresolved references)
    """
    return {
        name: resolve_mapping(mapping, run, workspace)
        for name, mapping in node.input_mappings.items()
    }
