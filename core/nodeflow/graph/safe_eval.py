"""Safe evaluation of condition expressions.

Condition nodes decide branches with small Python-like expressions such as::

    nodes.classify.label == "refund" and input.amount > 100

Expressions are parsed with ``ast`` and evaluated by walking a whitelist of
node types. There are no function calls, no comprehensions, no lambdas and
no access to private attributes; anything outside the whitelist raises
UnsafeExpressionError.
"""

import ast
import operator
from collections.abc import Mapping, Sequence
from typing import Any


class UnsafeExpressionError(ValueError):
    """The expression uses syntax outside the allowed subset or fails to evaluate."""


_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_UNARY_OPS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

_CONSTANTS = {"true": True, "false": False, "null": None, "none": None}

MAX_EXPRESSION_LENGTH = 2000


class _Evaluator:
    def __init__(self, context: Mapping[str, Any]):
        self.context = context

    def visit(self, node: ast.AST) -> Any:
        if isinstance(node, ast.Expression):
            return self.visit(node.body)

        if isinstance(node, ast.Constant):
            return node.value

        if isinstance(node, ast.Name):
            if node.id in self.context:
                return self.context[node.id]
            if node.id.lower() in _CONSTANTS:
                return _CONSTANTS[node.id.lower()]
            raise UnsafeExpressionError(f"Unknown name '{node.id}'")

        if isinstance(node, ast.Attribute):
            if node.attr.startswith("_"):
                raise UnsafeExpressionError(f"Access to private attribute '{node.attr}'")
            return self._lookup(self.visit(node.value), node.attr)

        if isinstance(node, ast.Subscript):
            target = self.visit(node.value)
            key = self.visit(node.slice)
            try:
                return target[key]
            except (KeyError, IndexError, TypeError):
                return None

        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                result: Any = True
                for value in node.values:
                    result = self.visit(value)
                    if not result:
                        return result
                return result
            result = False
            for value in node.values:
                result = self.visit(value)
                if result:
                    return result
            return result

        if isinstance(node, ast.UnaryOp):
            op = _UNARY_OPS.get(type(node.op))
            if op is None:
                raise UnsafeExpressionError(f"Operator {type(node.op).__name__} not allowed")
            return op(self.visit(node.operand))

        if isinstance(node, ast.BinOp):
            op = _BIN_OPS.get(type(node.op))
            if op is None:
                raise UnsafeExpressionError(f"Operator {type(node.op).__name__} not allowed")
            return op(self.visit(node.left), self.visit(node.right))

        if isinstance(node, ast.Compare):
            left = self.visit(node.left)
            for op_node, comparator in zip(node.ops, node.comparators, strict=True):
                op = _COMPARE_OPS.get(type(op_node))
                if op is None:
                    raise UnsafeExpressionError(
                        f"Comparison {type(op_node).__name__} not allowed"
                    )
                right = self.visit(comparator)
                if not op(left, right):
                    return False
                left = right
            return True

        if isinstance(node, ast.IfExp):
            return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

        if isinstance(node, ast.List | ast.Tuple | ast.Set):
            items = [self.visit(elt) for elt in node.elts]
            return set(items) if isinstance(node, ast.Set) else items

        if isinstance(node, ast.Dict):
            return {
                self.visit(k): self.visit(v)
                for k, v in zip(node.keys, node.values, strict=True)
                if k is not None
            }

        raise UnsafeExpressionError(f"Expression element {type(node).__name__} not allowed")

    @staticmethod
    def _lookup(target: Any, name: str) -> Any:
        # Dotted access into dicts: nodes.classify.label
        if isinstance(target, Mapping):
            return target.get(name)
        if isinstance(target, Sequence) and not isinstance(target, str):
            return None
        return getattr(target, name, None)


def safe_eval(expression: str, context: Mapping[str, Any]) -> Any:
    """
    Evaluate ``expression`` against ``context`` using the whitelisted subset.

    Missing dict keys and attributes evaluate to None so that
    ``nodes.review.score > 3`` is simply falsy when the key is absent, while
    unknown top-level names raise.

    Raises:
        UnsafeExpressionError: for disallowed syntax, unknown names or
            runtime errors such as comparing incompatible types
    """
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise UnsafeExpressionError("Expression too long")
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise UnsafeExpressionError(f"Invalid expression syntax: {e.msg}") from e

    try:
        return _Evaluator(context).visit(tree)
    except UnsafeExpressionError:
        raise
    except (TypeError, ValueError, ArithmeticError) as e:
        raise UnsafeExpressionError(f"Expression evaluation failed: {e}") from e
