"""Run and step lifecycle states."""

from enum import Enum


class RunStatus(str, Enum):
    """
    Lifecycle of a workflow run.

    running ⇄ paused, then one of the terminal states. ``cancelled`` is only
    ever set from outside the engine and removes the run from polling.
    """

    RUNNING = "running"
    """Being driven; steps may be ready or executing."""

    PAUSED = "paused"
    """At least one step is waiting on an external event."""

    COMPLETED = "completed"
    """Every node reached success or skipped."""

    FAILED = "failed"
    """A step failed (or the workflow/workspace disappeared)."""

    CANCELLED = "cancelled"
    """Externally stopped."""

    def is_terminal(self) -> bool:
        """Check if the run can no longer change status."""
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)

    def is_active(self) -> bool:
        """Check if the scheduler should keep driving the run."""
        return self in (RunStatus.RUNNING, RunStatus.PAUSED)


class StepStatus(str, Enum):
    """Per-node execution state within a run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    PAUSED = "paused"
    SKIPPED = "skipped"

    def is_started(self) -> bool:
        """Check if readiness must never select this step again."""
        return self != StepStatus.PENDING

    def is_done(self) -> bool:
        """Check if the step counts towards run completion."""
        return self in (StepStatus.SUCCESS, StepStatus.SKIPPED)


__all__ = ["RunStatus", "StepStatus"]
