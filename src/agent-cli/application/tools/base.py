"""Base types for local tools the model can invoke.

Every tool declares:
- name / description exposed to the model
- an arguments model (pydantic) from which the JSON schema is derived
- whether the user must confirm each invocation

`Tool.execute` receives the raw JSON argument text exactly as the model
produced it, validates it against the arguments model and delegates to
`run`. Failures are raised as `ToolExecutionError`; the conversation agent
turns them into tool result text so the model can recover.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, ValidationError

from application.agents.llm_provider import LlmToolDefinition

logger = logging.getLogger(__name__)


class ToolExecutionError(Exception):
    """Raised when a tool cannot complete its operation.

    Attributes:
        message: Human-readable error message
        tool_name: Name of the failing tool
        details: Additional error context
    """

    def __init__(self, message: str, tool_name: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.tool_name = tool_name
        self.details = details or {}


class ToolArguments(BaseModel):
    """Base class for tool argument models."""

    model_config = ConfigDict(extra="ignore")


class Tool(ABC):
    """A named local capability the model can request."""

    name: ClassVar[str]
    description: ClassVar[str]
    requires_confirmation: ClassVar[bool] = False
    arguments_model: ClassVar[type[ToolArguments]] = ToolArguments

    @property
    def parameters(self) -> dict[str, Any]:
        """JSON schema of the arguments, in function-calling form."""
        schema = self.arguments_model.model_json_schema()
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        schema.setdefault("properties", {})
        schema["type"] = "object"
        return schema

    def definition(self) -> LlmToolDefinition:
        """Provider-agnostic definition advertised to the model."""
        return LlmToolDefinition(name=self.name, description=self.description, parameters=self.parameters)

    def parse_arguments(self, arguments: str) -> ToolArguments:
        """Validate the raw argument text.

        An empty string is treated as an empty JSON object.

        Raises:
            ToolExecutionError: If the text is not valid JSON or misses required fields
        """
        try:
            return self.arguments_model.model_validate_json(arguments.strip() or "{}")
        except ValidationError as e:
            problems = "; ".join(f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}" for err in e.errors())
            raise ToolExecutionError(f"invalid arguments for {self.name}: {problems}", tool_name=self.name)

    async def execute(self, arguments: str) -> str:
        """Parse the arguments and run the tool.

        Args:
            arguments: Raw JSON argument text from the model

        Returns:
            Result text handed back to the model

        Raises:
            ToolExecutionError: If arguments are invalid or the operation fails
        """
        args = self.parse_arguments(arguments)
        logger.debug(f"Executing tool {self.name} with {args!r}")
        return await self.run(args)

    @abstractmethod
    async def run(self, args: Any) -> str:
        """Perform the operation with validated arguments."""
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, requires_confirmation={self.requires_confirmation})"
