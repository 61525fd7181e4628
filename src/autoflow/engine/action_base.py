"""Action catalog: definitions, the action contract and the registry.

Actions are stateless singletons implementing one action type. They are:
- Stateless: persisted step state is the only memory between invocations
- Reusable: a single instance serves every node of its type
- Type-safe: each declares a Pydantic input model validated before execute()
- Opaque to the engine: the Step Executor only sees ``ActionResult``
"""

import inspect
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from pydantic.alias_generators import to_camel

from .action_context import ActionContext
from .action_result import ActionResult
from .exceptions import UnknownActionError

logger = logging.getLogger(__name__)

ParameterType = Literal["string", "text", "number", "boolean", "json", "workflow-id"]


class ActionSecurityLevel(Enum):
    """Security level classification for actions."""

    SAFE = "safe"  # Pure data transformation or run bookkeeping
    TRUSTED = "trusted"  # Local file system access
    PRIVILEGED = "privileged"  # Processes, git, network


class ActionCapabilities(BaseModel):
    """Capability flags declared by an action for audit."""

    can_read_files: bool = False
    can_write_files: bool = False
    can_execute_commands: bool = False
    can_network: bool = False
    can_spawn_runs: bool = False


class ActionParameter(BaseModel):
    """Configurable parameter shown in the editor's property panel."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    label: str
    type: ParameterType = "string"
    required: bool = False
    default_value: Any = None
    description: str | None = None


class ActionPort(BaseModel):
    """Declared input or output slot of an action."""

    name: str
    type: ParameterType = "string"
    required: bool = False
    description: str | None = None


class ActionDefinition(BaseModel):
    """Static description of an action type, consumed by the editor."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    description: str
    parameters: list[ActionParameter] = Field(default_factory=list)
    inputs: list[ActionPort] = Field(default_factory=list)
    outputs: list[ActionPort] = Field(default_factory=list)


class ActionInput(BaseModel):
    """Base class for action input validation.

    Resolved inputs arrive keyed by the editor's camelCase parameter names;
    unknown keys are ignored since mappings may carry stale parameters.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class WorkflowAction(ABC):
    """Base class for action implementations.

    Subclasses must:
    1. Set ``definition`` and ``input_type``
    2. Implement execute()
    3. Optionally override security attributes

    Example:
        class SplitStringAction(WorkflowAction):
            definition = ActionDefinition(id="split-string", ...)
            input_type = SplitStringInput

            async def execute(self, inputs, context):
                parts = [p.strip() for p in inputs.input_string.split(inputs.delimiter)]
                return ActionResult.success({"strings": [p for p in parts if p]})
    """

    definition: ClassVar[ActionDefinition]
    input_type: ClassVar[type[ActionInput]] = ActionInput

    security_level: ClassVar[ActionSecurityLevel] = ActionSecurityLevel.SAFE
    capabilities: ClassVar[ActionCapabilities] = ActionCapabilities()

    @property
    def action_id(self) -> str:
        return self.definition.id

    def parse_inputs(self, raw: dict[str, Any]) -> ActionInput:
        """Validate resolved inputs; unresolved (None) values fall back to defaults.

        Raises:
            pydantic.ValidationError: If a required input is missing or mistyped
        """
        return self.input_type.model_validate({k: v for k, v in raw.items() if v is not None})

    @abstractmethod
    async def execute(self, inputs: Any, context: ActionContext) -> ActionResult:
        """Execute action logic with validated inputs.

        Args:
            inputs: Validated input model instance (type matches input_type)
            context: Per-invocation context (workspace, ids, gateway)

        Returns:
            ActionResult with status success, failed or paused

        Raises:
            Exception: Any exception is converted to a failed step by the Step Executor
        """

    def get_capabilities(self) -> dict[str, Any]:
        """Get action capabilities for security audit."""
        return {
            "type": self.action_id,
            "security_level": self.security_level.value,
            "capabilities": self.capabilities.model_dump(),
        }

    def describe(self) -> dict[str, Any]:
        """Definition plus input schema, as listed to clients."""
        return {
            **self.definition.model_dump(mode="json", by_alias=True),
            "inputSchema": self.input_type.model_json_schema(by_alias=True),
            **self.get_capabilities(),
        }


class ActionRegistry(BaseModel):
    """
    Registry of actions.

    Maps action type ids to action instances. Legacy ids can be registered
    as aliases of a canonical id.
    """

    model_config = {"arbitrary_types_allowed": True}

    _actions: dict[str, WorkflowAction] = PrivateAttr(default_factory=dict)
    _aliases: dict[str, str] = PrivateAttr(default_factory=dict)

    def register(self, action: WorkflowAction, aliases: list[str] | None = None) -> None:
        """Register action using action.definition.id as key."""
        if action.action_id in self._actions:
            raise ValueError(f"Action already registered: {action.action_id}")
        self._actions[action.action_id] = action
        for alias in aliases or []:
            self._aliases[alias] = action.action_id

    def get(self, action_id: str) -> WorkflowAction:
        """Get action by type id.

        Raises:
            UnknownActionError: If no action is registered under this id
        """
        canonical = self._aliases.get(action_id, action_id)
        if canonical not in self._actions:
            raise UnknownActionError(action_id, self.list_types())
        return self._actions[canonical]

    def has(self, action_id: str) -> bool:
        """Check if action type is registered."""
        return self._aliases.get(action_id, action_id) in self._actions

    def list_types(self) -> list[str]:
        """List registered action ids (aliases excluded)."""
        return list(self._actions.keys())

    def list_definitions(self) -> list[ActionDefinition]:
        """Definitions of every registered action, for the editor."""
        return [action.definition for action in self._actions.values()]

    def discover_entry_points(self, group: str = "autoflow.actions") -> int:
        """Register WorkflowAction subclasses published under an entry point group.

        Returns:
            Number of actions discovered and registered
        """
        from importlib.metadata import entry_points

        discovered = 0
        for entry_point in entry_points().select(group=group):
            try:
                action_class = entry_point.load()
                if not (inspect.isclass(action_class) and issubclass(action_class, WorkflowAction)):
                    logger.warning(f"Entry point {entry_point.name} is not a WorkflowAction")
                    continue
                self.register(action_class())
                discovered += 1
            except Exception as e:
                logger.warning(f"Failed to load action plugin {entry_point.name}: {e}")

        return discovered


def create_default_registry() -> ActionRegistry:
    """Create ActionRegistry with all built-in actions registered.

    Each caller gets its own registry (tests build isolated ones).

    Returns:
        ActionRegistry instance with all built-in actions registered
    """
    from .actions_core import (
        GitCheckoutAction,
        NewTempFolderAction,
        RunCommandAction,
        SplitStringAction,
    )
    from .actions_interactive import ConfirmAction, UserInputAction
    from .actions_llm import AskChatGPTAction, AskGeminiAction
    from .actions_run import AddLogAction, SetDescriptionAction
    from .actions_workflow import ForEachFolderAction, ForEachListAction

    registry = ActionRegistry()

    # Core actions
    registry.register(GitCheckoutAction())
    registry.register(RunCommandAction())
    registry.register(NewTempFolderAction())
    registry.register(SplitStringAction())

    # Human-in-the-loop actions
    registry.register(ConfirmAction())
    registry.register(UserInputAction())

    # Run bookkeeping actions
    registry.register(SetDescriptionAction())
    registry.register(AddLogAction())

    # Child-run fan-out actions
    registry.register(ForEachListAction(), aliases=["foreach-list"])
    registry.register(ForEachFolderAction(), aliases=["foreach-folder"])

    # LLM actions
    registry.register(AskChatGPTAction())
    registry.register(AskGeminiAction())

    return registry
