"""
Error taxonomy for the graph engine.

- ValidationError: malformed or cyclic graph, rejected at load time
- ConfigurationError: unknown node type, bad parameters, unresolved secret
- NodeExecutionError: handler-level failure (template, provider, timeout)
- ToolInvocationError: tool/MCP transport or protocol failure

Load-time and run-start errors are raised to the caller before any node
executes. Node-level errors are captured into that node's NodeResult.
"""

# Kinds reported in NodeResult.error and ExecutionResponse.error
PUBLIC_KINDS = frozenset(
    {"ValidationError", "ConfigurationError", "NodeExecutionError", "ToolInvocationError"}
)


class NodeflowError(Exception):
    """Base class for all engine errors."""

    @property
    def kind(self) -> str:
        """Name of the closest public error class.

        Refinements (ProviderError, template failures) report the kind they
        specialise, so callers only ever see the documented names.
        """
        for cls in type(self).__mro__:
            if cls.__name__ in PUBLIC_KINDS and cls.__module__ == __name__:
                return cls.__name__
        return type(self).__name__


class ValidationError(NodeflowError):
    """The graph document is malformed, inconsistent or cyclic."""

    def __init__(self, message: str, node_id: str | None = None, edge_id: str | None = None):
        super().__init__(message)
        self.node_id = node_id
        self.edge_id = edge_id


class ConfigurationError(NodeflowError):
    """A node, tool or secret is misconfigured."""

    def __init__(self, message: str, node_id: str | None = None):
        super().__init__(message)
        self.node_id = node_id


class NodeExecutionError(NodeflowError):
    """A handler failed while executing a node.

    Args:
        message: Human-readable reason
        retryable: True when the failure came from an external call that may
            succeed on a second attempt (provider hiccup, HTTP 5xx, ...)
    """

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class ProviderError(NodeExecutionError):
    """A chat capability failed to produce a response."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message, retryable=retryable)


class ToolInvocationError(NodeflowError):
    """A tool could not be invoked or returned a protocol-level error."""

    def __init__(self, message: str, tool_name: str | None = None):
        super().__init__(message)
        self.tool_name = tool_name
