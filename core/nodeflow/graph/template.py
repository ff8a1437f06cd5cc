"""Prompt/parameter templates with dotted-path variable resolution.

Templates reference values with ``{{ path }}`` placeholders. A path starts
with one of two roots:

- ``input.<key>...``   the execution request's input payload
- ``nodes.<id>...``    the payload of an already-completed node

Remaining segments index into dicts (by key), sequences (by integer) or
objects (by attribute). A path that cannot be resolved raises TemplateError
instead of silently rendering an empty string.
"""

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any

from nodeflow.errors import NodeExecutionError

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][\w\-]*(?:\.[\w\-]+)*)\s*\}\}")
ROOTS = ("input", "nodes")

_MISSING = object()


class TemplateError(NodeExecutionError):
    """A template referenced a path that does not resolve."""


def build_scope(input_data: Mapping[str, Any], node_payloads: Mapping[str, Any]) -> dict:
    """Build the variable namespace shared by templates and condition expressions."""
    return {"input": dict(input_data), "nodes": dict(node_payloads)}


def _step(current: Any, segment: str) -> Any:
    if isinstance(current, Mapping):
        return current.get(segment, _MISSING)
    if isinstance(current, Sequence) and not isinstance(current, str | bytes):
        if segment.lstrip("-").isdigit():
            index = int(segment)
            if -len(current) <= index < len(current):
                return current[index]
        return _MISSING
    if segment.startswith("_"):
        return _MISSING
    return getattr(current, segment, _MISSING)


def resolve_path(path: str, scope: Mapping[str, Any]) -> Any:
    """Resolve a dotted path such as ``nodes.classify.label`` against ``scope``."""
    segments = path.split(".")
    if segments[0] not in ROOTS:
        raise TemplateError(
            f"Unknown template root '{segments[0]}' in '{path}' (use input.* or nodes.*)"
        )
    if segments[0] == "nodes" and len(segments) < 2:
        raise TemplateError(f"Template path '{path}' must name a node: nodes.<id>")

    current: Any = scope.get(segments[0], _MISSING)
    for depth, segment in enumerate(segments[1:], start=1):
        current = _step(current, segment)
        if current is _MISSING:
            if segments[0] == "nodes" and depth == 1:
                raise TemplateError(
                    f"Template path '{path}' refers to node '{segment}' which has no "
                    f"completed output"
                )
            raise TemplateError(f"Template path '{path}' does not resolve at '{segment}'")
    return current


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


def render(template: str, scope: Mapping[str, Any]) -> str:
    """Substitute every placeholder in ``template``; non-strings are JSON-encoded."""
    return PLACEHOLDER_PATTERN.sub(lambda m: _stringify(resolve_path(m.group(1), scope)), template)


def render_value(value: Any, scope: Mapping[str, Any]) -> Any:
    """Render templates found anywhere inside a parameter value.

    A string consisting of exactly one placeholder is replaced by the raw
    resolved value, so ``{"items": "{{nodes.search}}"}`` keeps a list a list.
    """
    if isinstance(value, str):
        whole = PLACEHOLDER_PATTERN.fullmatch(value.strip())
        if whole:
            return resolve_path(whole.group(1), scope)
        return render(value, scope)
    if isinstance(value, Mapping):
        return {k: render_value(v, scope) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [render_value(v, scope) for v in value]
    return value


def referenced_paths(template: str) -> list[str]:
    """List the paths a template refers to, in order of appearance."""
    return PLACEHOLDER_PATTERN.findall(template)
