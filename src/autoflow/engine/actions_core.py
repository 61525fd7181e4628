"""Core actions - run-command, git-checkout, new-temp-folder, split-string."""

import asyncio
import logging
import os
import shlex
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from pydantic import Field, field_validator

from .action_base import (
    ActionCapabilities,
    ActionDefinition,
    ActionInput,
    ActionParameter,
    ActionPort,
    ActionSecurityLevel,
    WorkflowAction,
)
from .action_context import ActionContext
from .action_result import ActionResult
from .exceptions import CommandTimeoutError

logger = logging.getLogger(__name__)

# Hard wall-clock ceiling for any spawned process
MAX_COMMAND_TIMEOUT = 600.0

# Grace period between SIGTERM and SIGKILL
KILL_GRACE_SECONDS = 5.0

# Captured bytes kept per stream (oldest data dropped)
MAX_CAPTURED_BYTES = 1024 * 1024

_READ_CHUNK = 64 * 1024


# ============================================================================
# Process helper
# ============================================================================


class _TailBuffer:
    """Byte buffer that keeps only the most recent ``limit`` bytes."""

    def __init__(self, limit: int):
        self.limit = limit
        self.truncated = False
        self._data = bytearray()

    def feed(self, chunk: bytes) -> None:
        self._data += chunk
        overflow = len(self._data) - self.limit
        if overflow > 0:
            del self._data[:overflow]
            self.truncated = True

    def text(self) -> str:
        return self._data.decode("utf-8", errors="replace")


@dataclass
class ProcessResult:
    """Outcome of a finished process."""

    exit_code: int
    stdout: str
    stderr: str
    stdout_truncated: bool = False
    stderr_truncated: bool = False


async def _pump(stream: asyncio.StreamReader | None, buffer: _TailBuffer) -> None:
    if stream is None:
        return
    while chunk := await stream.read(_READ_CHUNK):
        buffer.feed(chunk)


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """SIGTERM, then SIGKILL if the process outlives the grace period."""
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=KILL_GRACE_SECONDS)
    except TimeoutError:
        logger.warning(f"Process {process.pid} ignored SIGTERM, killing")
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()


async def run_process(
    argv: list[str],
    cwd: str | Path | None = None,
    timeout: float = MAX_COMMAND_TIMEOUT,
    max_output: int = MAX_CAPTURED_BYTES,
) -> ProcessResult:
    """
    Run a process from an argv vector (never through a shell).

    Args:
        argv: Program and arguments
        cwd: Working directory
        timeout: Wall-clock limit in seconds, capped at MAX_COMMAND_TIMEOUT
        max_output: Bytes of stdout/stderr tail kept per stream

    Returns:
        ProcessResult with exit code and captured output

    Raises:
        CommandTimeoutError: If the process exceeded the timeout (it is terminated)
        FileNotFoundError: If the program does not exist
    """
    timeout = min(timeout, MAX_COMMAND_TIMEOUT)
    stdout_buf = _TailBuffer(max_output)
    stderr_buf = _TailBuffer(max_output)

    process = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        env=dict(os.environ),
    )

    async def communicate() -> int:
        await asyncio.gather(_pump(process.stdout, stdout_buf), _pump(process.stderr, stderr_buf))
        return await process.wait()

    try:
        exit_code = await asyncio.wait_for(communicate(), timeout=timeout)
    except TimeoutError:
        await _terminate(process)
        raise CommandTimeoutError(argv, timeout, stdout=stdout_buf.text(), stderr=stderr_buf.text())

    return ProcessResult(
        exit_code=exit_code,
        stdout=stdout_buf.text(),
        stderr=stderr_buf.text(),
        stdout_truncated=stdout_buf.truncated,
        stderr_truncated=stderr_buf.truncated,
    )


# ============================================================================
# Run Command
# ============================================================================


class RunCommandInput(ActionInput):
    """Input model for run-command."""

    command: str = Field(description="Program followed by optional arguments, shell-quoted")
    args: str | int | float | list[str | int | float] | None = Field(
        default=None, description="Extra arguments (string parsed with shell quoting, or list)"
    )
    working_dir: str | None = Field(default=None, description="Directory to run in")
    timeout: float = Field(default=MAX_COMMAND_TIMEOUT, gt=0)

    @field_validator("timeout")
    @classmethod
    def _cap_timeout(cls, v: float) -> float:
        return min(v, MAX_COMMAND_TIMEOUT)


def build_argv(command: str, args: str | int | float | list | None) -> list[str]:
    """
    Split ``command`` with shell-like quoting and append ``args``.

    Raises:
        ValueError: On unbalanced quotes or an empty command
    """
    argv = shlex.split(command)
    if isinstance(args, str):
        argv.extend(shlex.split(args))
    elif isinstance(args, list):
        argv.extend(str(arg) for arg in args)
    elif args is not None:
        argv.append(str(args))
    if not argv:
        raise ValueError("Command is empty")
    return argv


class RunCommandAction(WorkflowAction):
    """
    Run an external program without a shell.

    Exit code 0 is success; any other exit code fails the step. stdout,
    stderr and exitCode are reported in both cases.
    """

    definition: ClassVar[ActionDefinition] = ActionDefinition(
        id="run-command",
        name="Run Command",
        description="Execute a command (no shell; arguments are parsed with shell quoting)",
        parameters=[
            ActionParameter(name="command", label="Command", required=True),
            ActionParameter(name="args", label="Arguments"),
        ],
        inputs=[ActionPort(name="workingDir", description="Directory to run in")],
        outputs=[
            ActionPort(name="stdout"),
            ActionPort(name="stderr"),
            ActionPort(name="exitCode", type="number"),
        ],
    )
    input_type: ClassVar[type[ActionInput]] = RunCommandInput

    security_level: ClassVar[ActionSecurityLevel] = ActionSecurityLevel.PRIVILEGED
    capabilities: ClassVar[ActionCapabilities] = ActionCapabilities(
        can_execute_commands=True,
        can_read_files=True,
        can_write_files=True,
        can_network=True,
    )

    async def execute(  # type: ignore[override]
        self, inputs: RunCommandInput, context: ActionContext
    ) -> ActionResult:
        logs = [f"Executing action: {self.action_id}"]

        try:
            argv = build_argv(inputs.command, inputs.args)
        except ValueError as e:
            return ActionResult.failed(f"Invalid command: {e}", logs=logs)

        cwd = inputs.working_dir or context.working_directory
        if not Path(cwd).is_dir():
            return ActionResult.failed(f"Working directory does not exist: {cwd}", logs=logs)

        logs.append(f"Running command: {shlex.join(argv)}")
        logs.append(f"cwd: {cwd}")

        try:
            result = await run_process(argv, cwd=cwd, timeout=inputs.timeout)
        except CommandTimeoutError as e:
            logs.append(str(e))
            return ActionResult.failed(
                str(e),
                logs=logs,
                outputs={"stdout": e.stdout, "stderr": e.stderr, "exitCode": None},
            )

        truncation = (("stdout", result.stdout_truncated), ("stderr", result.stderr_truncated))
        for name, truncated in truncation:
            if truncated:
                logs.append(f"{name} truncated to the last {MAX_CAPTURED_BYTES} bytes")

        outputs = {"stdout": result.stdout, "stderr": result.stderr, "exitCode": result.exit_code}
        logs.append(f"Exit code: {result.exit_code}")

        if result.exit_code != 0:
            return ActionResult.failed(
                f"Command exited with code {result.exit_code}", logs=logs, outputs=outputs
            )
        return ActionResult.success(outputs, logs=logs)


# ============================================================================
# Git Checkout
# ============================================================================


class GitCheckoutInput(ActionInput):
    """Input model for git-checkout."""

    repo_url: str = Field(description="Repository URL")
    branch: str = Field(default="main")
    target_dir: str | None = Field(
        default=None, description="Destination (default: <workspace>/<repo name>)"
    )


def repo_name_from_url(url: str) -> str:
    """Derive a directory name from a clone URL (``https://h/o/name.git`` -> ``name``)."""
    tail = url.rstrip("/").rsplit("/", 1)[-1].rsplit(":", 1)[-1]
    return tail.removesuffix(".git") or "repo"


class GitCheckoutAction(WorkflowAction):
    """
    Shallow-clone a repository, or fast-forward an existing clone.

    Fails closed when the destination exists, is non-empty and is not a git
    repository. git is always invoked with an argv vector.
    """

    definition: ClassVar[ActionDefinition] = ActionDefinition(
        id="git-checkout",
        name="Checkout Git Repository",
        description="Clone a git repository to the working directory",
        parameters=[
            ActionParameter(name="repoUrl", label="Repository URL", required=True),
            ActionParameter(name="branch", label="Branch", default_value="main"),
            ActionParameter(name="targetDir", label="Target Directory"),
        ],
        outputs=[
            ActionPort(name="repoPath", description="Absolute path to the checked out repo"),
        ],
    )
    input_type: ClassVar[type[ActionInput]] = GitCheckoutInput

    security_level: ClassVar[ActionSecurityLevel] = ActionSecurityLevel.PRIVILEGED
    capabilities: ClassVar[ActionCapabilities] = ActionCapabilities(
        can_execute_commands=True,
        can_write_files=True,
        can_network=True,
    )

    async def execute(  # type: ignore[override]
        self, inputs: GitCheckoutInput, context: ActionContext
    ) -> ActionResult:
        logs = [f"Executing action: {self.action_id}"]
        repo_url = inputs.repo_url.strip()

        if not repo_url:
            return ActionResult.failed("Repository URL is empty", logs=logs)
        if repo_url.startswith("-") or inputs.branch.startswith("-"):
            return ActionResult.failed("Repository URL and branch must not start with '-'", logs=logs)

        base = Path(context.working_directory)
        dest = Path(inputs.target_dir) if inputs.target_dir else base / repo_name_from_url(repo_url)
        if not dest.is_absolute():
            dest = base / dest
        dest = dest.resolve()

        if (dest / ".git").exists():
            logs.append(f"Updating existing clone at {dest} ({inputs.branch})")
            argv = ["git", "-C", str(dest), "pull", "--ff-only", "origin", inputs.branch]
        elif dest.exists() and (not dest.is_dir() or any(dest.iterdir())):
            return ActionResult.failed(
                f"Destination exists and is not a git repository: {dest}", logs=logs
            )
        else:
            logs.append(f"Cloning {repo_url} ({inputs.branch}) to {dest}")
            dest.parent.mkdir(parents=True, exist_ok=True)
            argv = ["git", "clone", "--depth", "1", "--branch", inputs.branch]
            argv += ["--", repo_url, str(dest)]

        result = await run_process(argv, cwd=base if base.is_dir() else None)
        if result.stderr.strip():
            logs.append(result.stderr.strip())

        if result.exit_code != 0:
            return ActionResult.failed(
                f"git exited with code {result.exit_code}: {result.stderr.strip()}", logs=logs
            )

        logs.append(f"Checked out branch: {inputs.branch}")
        return ActionResult.success({"repoPath": str(dest)}, logs=logs)


# ============================================================================
# New Temp Folder
# ============================================================================


class NewTempFolderAction(WorkflowAction):
    """Create a fresh temporary directory."""

    definition: ClassVar[ActionDefinition] = ActionDefinition(
        id="new-temp-folder",
        name="New Temp Folder",
        description="Create a new temporary folder",
        outputs=[ActionPort(name="path", description="Absolute path to the new temp folder")],
    )

    security_level: ClassVar[ActionSecurityLevel] = ActionSecurityLevel.TRUSTED
    capabilities: ClassVar[ActionCapabilities] = ActionCapabilities(can_write_files=True)

    async def execute(self, inputs: ActionInput, context: ActionContext) -> ActionResult:
        path = tempfile.mkdtemp(prefix="autoflow-")
        return ActionResult.success({"path": path}, logs=[f"Created temp folder {path}"])


# ============================================================================
# Split String
# ============================================================================


class SplitStringInput(ActionInput):
    delimiter: str = ","
    input_string: str = ""


class SplitStringAction(WorkflowAction):
    """Split a string into trimmed, non-empty parts."""

    definition: ClassVar[ActionDefinition] = ActionDefinition(
        id="split-string",
        name="Split String",
        description="Split a string by a delimiter into a list of strings",
        parameters=[
            ActionParameter(name="delimiter", label="Delimiter", required=True, default_value=","),
        ],
        inputs=[ActionPort(name="inputString", required=True)],
        outputs=[ActionPort(name="strings", type="json")],
    )
    input_type: ClassVar[type[ActionInput]] = SplitStringInput

    async def execute(  # type: ignore[override]
        self, inputs: SplitStringInput, context: ActionContext
    ) -> ActionResult:
        delimiter = inputs.delimiter or ","
        parts = [part.strip() for part in inputs.input_string.split(delimiter)]
        strings = [part for part in parts if part]

        preview = inputs.input_string[:50] + ("..." if len(inputs.input_string) > 50 else "")
        logs = [
            f'Splitting string of length {len(inputs.input_string)} with delimiter "{delimiter}"',
            f"Input preview: {preview}",
            f"Resulting parts: {len(strings)}",
        ]
        return ActionResult.success({"strings": strings}, logs=logs)
