"""
Graph helpers for workflow execution.

This module is intentionally SYNCHRONOUS: readiness and cycle checks are pure
in-memory graph walks over a handful of nodes, called by the async Run Driver
between persistence round-trips.

- ``next_steps()``: readiness evaluation for one drive cycle
- ``DAGResolver``: Kahn's algorithm, used at save time to reject cycles
"""

from collections import deque

from .exceptions import CyclicWorkflowError
from .load_result import LoadResult
from .models import Workflow, WorkflowRun
from .status import StepStatus


def incoming_sources(workflow: Workflow) -> dict[str, list[str]]:
    """Map every node id to the source ids of its incoming edges."""
    incoming: dict[str, list[str]] = {node.id: [] for node in workflow.nodes}
    for edge in workflow.edges:
        incoming.setdefault(edge.target, []).append(edge.source)
    return incoming


def next_steps(run: WorkflowRun, workflow: Workflow) -> set[str]:
    """
    Node ids that are ready to start in this cycle.

    A node is ready when it has never been started and every incoming edge's
    source reached ``success``. Nodes with no incoming edges are entry points.
    A failed node blocks its dependents forever; there is no retry.

    Args:
        run: Current run state (only step statuses are read)
        workflow: Workflow graph

    Returns:
        Set of ready node ids, unordered (siblings may run concurrently)
    """
    incoming = incoming_sources(workflow)
    ready: set[str] = set()

    for node in workflow.nodes:
        if run.step_status(node.id).is_started():
            continue
        if all(run.step_status(source) == StepStatus.SUCCESS for source in incoming[node.id]):
            ready.add(node.id)

    return ready


class DAGResolver:
    """Resolves execution order for workflow nodes based on their edges."""

    def __init__(self, nodes: list[str], dependencies: dict[str, list[str]]):
        """
        Initialize DAG resolver.

        Args:
            nodes: List of node ids
            dependencies: Dict mapping node id to the node ids it depends on
        """
        self.nodes = nodes
        self.dependencies = dependencies

    @classmethod
    def from_workflow(cls, workflow: Workflow) -> "DAGResolver":
        """Build a resolver from a workflow's nodes and edges."""
        return cls([node.id for node in workflow.nodes], incoming_sources(workflow))

    def topological_sort(self) -> LoadResult[list[str]]:
        """
        Perform topological sort to determine execution order.

        Returns:
            Result containing ordered node ids, or an error naming the cycle
        """
        in_degree = {node: 0 for node in self.nodes}
        adj_list: dict[str, list[str]] = {node: [] for node in self.nodes}

        for node, deps in self.dependencies.items():
            if node not in in_degree:
                return LoadResult.failure(f"Node '{node}' in dependencies but not in nodes list")
            for dep in deps:
                if dep not in in_degree:
                    return LoadResult.failure(
                        f"Dependency '{dep}' for node '{node}' not found in nodes list"
                    )
                adj_list[dep].append(node)
                in_degree[node] += 1

        # Kahn's algorithm
        queue = deque(node for node in self.nodes if in_degree[node] == 0)
        result = []

        while queue:
            current = queue.popleft()
            result.append(current)
            for neighbor in adj_list[current]:
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    queue.append(neighbor)

        if len(result) != len(self.nodes):
            leftover = {node for node in self.nodes if in_degree[node] > 0}
            return LoadResult.failure(
                "Cyclic dependency detected in workflow",
                metadata={"cycle": self._trace_cycle(leftover)},
            )

        return LoadResult.success(result)

    def _trace_cycle(self, leftover: set[str]) -> list[str]:
        """Walk dependencies among nodes Kahn could not order until one repeats."""
        current = min(leftover)
        path: list[str] = []
        seen: dict[str, int] = {}

        while current not in seen:
            seen[current] = len(path)
            path.append(current)
            current = next(dep for dep in self.dependencies.get(current, []) if dep in leftover)

        cycle = path[seen[current] :]
        cycle.reverse()
        return [*cycle, cycle[0]]


def find_cycle(workflow: Workflow) -> list[str] | None:
    """Return one cycle as a closed node-id path, or None if the graph is acyclic."""
    result = DAGResolver.from_workflow(workflow).topological_sort()
    if result.is_success:
        return None
    return result.metadata.get("cycle") or []


def ensure_acyclic(workflow: Workflow) -> None:
    """
    Reject cyclic workflows.

    Raises:
        CyclicWorkflowError: If the graph contains a cycle
    """
    cycle = find_cycle(workflow)
    if cycle is not None:
        raise CyclicWorkflowError(workflow.id, cycle)
