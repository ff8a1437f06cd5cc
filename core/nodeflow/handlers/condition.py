"""
Condition node: selects the branch label(s) for its outgoing edges.

Three mutually exclusive modes:

- ``expression``: boolean expression; selects "true" or "false"
- ``branches``: ordered ``[{label, when}]``; first truthy ``when`` wins,
  else ``default`` (no label at all when there is no default)
- ``value``: template whose rendering is the label

Expressions see the same namespace as templates (``input.*``, ``nodes.*``)
and are evaluated by the restricted evaluator in ``nodeflow.graph.safe_eval``.
"""

import ast
import logging

from pydantic import Field, field_validator, model_validator

from nodeflow.errors import NodeExecutionError
from nodeflow.graph.node import NodeResult, NodeSpec
from nodeflow.graph.safe_eval import UnsafeExpressionError, safe_eval
from nodeflow.graph.template import render
from nodeflow.handlers.base import HandlerConfig, NodeHandler

logger = logging.getLogger(__name__)


def _check_syntax(expression: str) -> str:
    try:
        ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise ValueError(f"invalid expression {expression!r}: {e.msg}") from e
    return expression


class Branch(HandlerConfig):
    label: str = Field(min_length=1)
    when: str = Field(min_length=1)

    @field_validator("when")
    @classmethod
    def check_when_syntax(cls, v: str) -> str:
        return _check_syntax(v)


class ConditionConfig(HandlerConfig):
    expression: str | None = None
    branches: list[Branch] | None = None
    default: str | None = None
    value: str | None = None

    @field_validator("expression")
    @classmethod
    def check_expression_syntax(cls, v: str | None) -> str | None:
        return _check_syntax(v) if v is not None else v

    @model_validator(mode="after")
    def check_single_mode(self) -> "ConditionConfig":
        modes = [m for m in ("expression", "branches", "value") if getattr(self, m) is not None]
        if len(modes) != 1:
            raise ValueError("exactly one of 'expression', 'branches' or 'value' is required")
        if self.default is not None and self.branches is None:
            raise ValueError("'default' only applies to 'branches'")
        return self


class ConditionHandler(NodeHandler):
    config_model = ConditionConfig

    @staticmethod
    def _evaluate(expression: str, scope: dict) -> bool:
        try:
            return bool(safe_eval(expression, scope))
        except UnsafeExpressionError as e:
            raise NodeExecutionError(f"Condition '{expression}' failed: {e}") from e

    async def execute(self, ctx, node: NodeSpec) -> NodeResult:
        config: ConditionConfig = ctx.config_for(node.id)
        scope = ctx.scope()

        if config.expression is not None:
            label: str | None = "true" if self._evaluate(config.expression, scope) else "false"
        elif config.branches is not None:
            label = next(
                (b.label for b in config.branches if self._evaluate(b.when, scope)),
                config.default,
            )
        else:
            label = render(config.value, scope).strip()

        if label is None:
            logger.info(f"Condition '{node.id}' matched no branch")
        else:
            logger.info(f"Condition '{node.id}' selected '{label}'", extra={"event": "branch"})
        ctx.record_io(node.id, response=label)
        return NodeResult.success(node.id, label)
