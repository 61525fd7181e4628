"""
Workflow definition loader.

Workflows are authored in the editor and exported as JSON documents; the
same documents can be written by hand in YAML. Both are parsed with
``yaml.safe_load`` (JSON is a YAML subset) and validated into ``Workflow``.

Features:
- Load workflows from files or strings
- Validation errors reported through LoadResult instead of raised
- Cycles rejected at load time
- Directory discovery for startup import
"""

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .dag import find_cycle
from .load_result import LoadResult
from .models import Workflow

logger = logging.getLogger(__name__)

WORKFLOW_FILE_PATTERNS = ("*.yaml", "*.yml", "*.json")


def load_workflow_from_file(file_path: str | Path) -> LoadResult[Workflow]:
    """
    Load and validate a workflow from a YAML or JSON file.

    Args:
        file_path: Path to workflow file

    Returns:
        LoadResult.success(Workflow) if valid
        LoadResult.failure(error_message) otherwise

    Example:
        result = load_workflow_from_file("workflows/deploy.yaml")
        if result.is_success:
            await store.save_workflow(result.value)
    """
    path = Path(file_path)

    if not path.exists():
        return LoadResult.failure(f"Workflow file not found: {file_path}")

    if not path.is_file():
        return LoadResult.failure(f"Path is not a file: {file_path}")

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return LoadResult.failure(f"Failed to read file '{file_path}': {e}")

    return load_workflow_from_yaml(content, source=str(file_path))


def load_workflow_from_yaml(content: str, source: str = "<string>") -> LoadResult[Workflow]:
    """
    Load and validate a workflow from a YAML/JSON string.

    Args:
        content: Document text
        source: Source identifier for error messages

    Example:
        result = load_workflow_from_yaml('''
        id: hello
        name: Hello
        nodes:
          - id: greet
            actionId: run-command
            inputMappings:
              command: {type: constant, value: echo}
              args: {type: constant, value: "hello {{ input.who }}"}
        inputs:
          - {name: who, defaultValue: world}
        ''')
    """
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        return LoadResult.failure(f"Invalid YAML syntax in {source}: {e}")

    if not isinstance(data, dict):
        return LoadResult.failure(
            f"Workflow {source} must be a mapping, got {type(data).__name__}"
        )

    try:
        workflow = Workflow.model_validate(data)
    except ValidationError as e:
        return LoadResult.failure(f"Workflow validation failed in {source}:\n{e}")

    cycle = find_cycle(workflow)
    if cycle is not None:
        return LoadResult.failure(
            f"Workflow {source} contains a cycle: {' → '.join(cycle)}",
            metadata={"cycle": cycle},
        )

    return LoadResult.success(workflow, metadata={"source": source})


def discover_workflows(directory: str | Path) -> LoadResult[list[Workflow]]:
    """
    Load every workflow file in a directory.

    Invalid files are skipped with warnings and don't fail the operation.

    Returns:
        LoadResult.success(list[Workflow]) with valid workflows
        LoadResult.failure(error_message) if the directory doesn't exist
    """
    dir_path = Path(directory)

    if not dir_path.exists():
        return LoadResult.failure(f"Directory not found: {directory}")

    if not dir_path.is_dir():
        return LoadResult.failure(f"Path is not a directory: {directory}")

    workflows: list[Workflow] = []
    errors: list[str] = []

    files = sorted(path for pattern in WORKFLOW_FILE_PATTERNS for path in dir_path.glob(pattern))
    for workflow_file in files:
        result = load_workflow_from_file(workflow_file)
        if result.is_success and result.value is not None:
            workflows.append(result.value)
        else:
            errors.append(f"{workflow_file.name}: {result.error}")

    if errors:
        logger.warning(f"{len(errors)} workflow(s) failed to load:")
        for error in errors:
            logger.warning(f"  - {error}")

    return LoadResult.success(workflows)


__all__ = ["discover_workflows", "load_workflow_from_file", "load_workflow_from_yaml"]
