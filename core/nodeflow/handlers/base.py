"""
Node handler protocol.

A handler executes one node type. It owns a pydantic model describing the
node's ``parameters``; the model is validated eagerly when a graph is loaded
and again at run start after secret markers have been resolved, so a
handler's ``execute`` only ever sees a well-formed configuration.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar

import pydantic
from pydantic import ConfigDict

from nodeflow.errors import ConfigurationError
from nodeflow.graph.node import CamelModel, NodeResult, NodeSpec

if TYPE_CHECKING:
    from nodeflow.graph.context import RunContext


class HandlerConfig(CamelModel):
    """Base for handler parameter models. Unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")


class NodeHandler(ABC):
    """
    Executes nodes of one type.

    Subclasses set ``config_model`` and implement ``execute``. Raising a
    NodeflowError from ``execute`` fails the node with that error's kind;
    the dispatcher catches everything else and reports NodeExecutionError.
    """

    config_model: ClassVar[type[HandlerConfig]] = HandlerConfig

    def parse_config(self, node: NodeSpec, parameters: dict[str, Any] | None = None) -> Any:
        """Validate ``parameters`` (default: the node's own) against ``config_model``."""
        data = node.parameters if parameters is None else parameters
        try:
            return self.config_model.model_validate(data)
        except pydantic.ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigurationError(
                f"Invalid parameters for {node.type} node '{node.id}': {problems}",
                node_id=node.id,
            ) from e

    def validate_run(self, ctx: "RunContext", node: NodeSpec) -> None:  # noqa: B027
        """Run-start checks against the resolved context (tools, providers).

        Raises:
            ConfigurationError: the node cannot run with this context
        """

    @abstractmethod
    async def execute(self, ctx: "RunContext", node: NodeSpec) -> NodeResult:
        """Run the node and return its result."""
