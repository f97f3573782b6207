"""Runtime expressions: ``$$`` references, ``{{ }}`` blocks and operators."""

from __future__ import annotations

import ast
import json
import operator
import re
from typing import Any

import jq
import structlog

LOGGER = structlog.get_logger("doc_detective", component="expressions")

META_VALUE_PATTERN = re.compile(r"\$\$([\w\.\[\]]+(?:#\/[\w\/\[\]]+)*)")
EMBEDDED_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")
OPERATOR_PATTERN = re.compile(r"jq\(|extract\(")
_INDEXED_PART = re.compile(r"^([\w$]+)\[(\d+)\]$")
_NEEDS_QUOTES = re.compile(r"[\s\(\)\[\]\{\}\,\;\:\.\+\-\*\/\|\&\!\?\<\>\=]")
_BARE_EXTRACT_ARGS = re.compile(r"extract\(([^,]+),\s*([^,]+)\)")
_LITERAL_NAMES = {"true": True, "false": False, "null": None, "undefined": None}
_COMPARISONS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
}
_MISSING = object()


def contains_operators(expression: str) -> bool:
    return bool(OPERATOR_PATTERN.search(expression))


def _stringify(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _nested_property(obj: Any, path: str) -> Any:
    if obj is None or not path:
        return _MISSING
    current = obj
    for part in path.split("."):
        if current is None:
            return _MISSING
        indexed = _INDEXED_PART.match(part)
        key, index = (indexed.group(1), int(indexed.group(2))) if indexed else (part, None)
        current = _child(current, key)
        if current is _MISSING:
            return _MISSING
        if index is not None:
            current = _child(current, index)
            if current is _MISSING:
                return _MISSING
    return current


def _child(value: Any, key: Any) -> Any:
    if isinstance(value, dict):
        return value.get(key, _MISSING) if not isinstance(key, int) else value.get(str(key), _MISSING)
    if isinstance(value, list):
        try:
            position = int(key)
        except (TypeError, ValueError):
            return _MISSING
        return value[position] if 0 <= position < len(value) else _MISSING
    return _MISSING


def get_meta_value(path: str, context: Any) -> Any:
    """Look up ``path`` (dot notation, optional ``#/json/pointer``) in ``context``.

    Returns ``None`` when nothing is found.
    """

    if not context:
        return None
    base_path, _, pointer = path.partition("#")
    value = _nested_property(context, base_path)
    if value is _MISSING:
        return None
    if pointer and value is not None:
        for key in [part for part in pointer.split("/") if part]:
            value = _child(value, key)
            if value is _MISSING:
                return None
    return value


def replace_meta_values(expression: str, context: Any) -> str:
    """Substitute every resolvable ``$$reference``; unknown ones stay as written."""

    has_operators = contains_operators(expression)

    def substitute(match: re.Match[str]) -> str:
        value = get_meta_value(match.group(1), context)
        if value is None:
            return match.group(0)
        if isinstance(value, str) and has_operators and _NEEDS_QUOTES.search(value):
            escaped = value.replace("\\", "\\\\").replace('"', '\\"')
            return f'"{escaped}"'
        return _stringify(value)

    return META_VALUE_PATTERN.sub(substitute, expression)


def _extract(haystack: Any, pattern: Any) -> Any:
    try:
        match = re.search(str(pattern), _stringify(haystack))
    except re.error as exc:
        LOGGER.error("extract_pattern_invalid", pattern=pattern, error=str(exc))
        return None
    if match is None:
        return None
    return match.group(1) if match.groups() else match.group(0)


def _jq(document: Any, query: Any) -> Any:
    if isinstance(document, str):
        try:
            document = json.loads(document)
        except json.JSONDecodeError:
            pass
    try:
        return jq.compile(str(query)).input_value(document).first()
    except (ValueError, StopIteration) as exc:
        LOGGER.error("jq_query_failed", query=query, error=str(exc))
        return None


_OPERATORS = {"extract": _extract, "jq": _jq}


def _quote_bare(argument: str) -> str:
    argument = argument.strip()
    if re.match(r"""^['"`]""", argument) or re.match(r"^[\d\{\[]", argument):
        return argument
    escaped = argument.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _preprocess(expression: str) -> str:
    return _BARE_EXTRACT_ARGS.sub(
        lambda match: f"extract({_quote_bare(match.group(1))}, {_quote_bare(match.group(2))})",
        expression,
    )


def _evaluate_node(node: ast.AST) -> Any:
    if isinstance(node, ast.Expression):
        return _evaluate_node(node.body)
    if isinstance(node, ast.Constant):
        return node.value
    if isinstance(node, ast.Name):
        return _LITERAL_NAMES.get(node.id, node.id)
    if isinstance(node, ast.List):
        return [_evaluate_node(item) for item in node.elts]
    if isinstance(node, ast.Dict):
        return {_evaluate_node(key): _evaluate_node(value) for key, value in zip(node.keys, node.values)}
    if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.USub):
        return -_evaluate_node(node.operand)
    if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and node.func.id in _OPERATORS:
        arguments = [_evaluate_node(argument) for argument in node.args]
        return _OPERATORS[node.func.id](*arguments)
    if isinstance(node, ast.Compare):
        left = _evaluate_node(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = _evaluate_node(comparator)
            compare = _COMPARISONS.get(type(op))
            if compare is None or not compare(left, right):
                return False
            left = right
        return True
    raise ValueError(f"unsupported syntax: {type(node).__name__}")


def evaluate_expression(expression: str) -> Any:
    """Evaluate an operator expression whose references were already substituted."""

    try:
        tree = ast.parse(_preprocess(expression).strip(), mode="eval")
        return _evaluate_node(tree)
    except (SyntaxError, ValueError, TypeError) as exc:
        LOGGER.error("expression_evaluation_failed", expression=expression, error=str(exc))
        return None


def resolve_embedded_expressions(text: str, context: Any) -> str:
    parts: list[str] = []
    last_index = 0
    for match in EMBEDDED_PATTERN.finditer(text):
        parts.append(text[last_index : match.start()])
        try:
            value = resolve_expression(match.group(1).strip(), context)
        except Exception as exc:  # pragma: no cover - resolve_expression guards itself
            LOGGER.error("embedded_expression_failed", expression=match.group(1), error=str(exc))
            parts.append(match.group(0))
        else:
            parts.append("" if value is None else _stringify(value))
        last_index = match.end()
    parts.append(text[last_index:])
    return "".join(parts)


def resolve_expression(expression: Any, context: Any) -> Any:
    """Resolve references and operators inside ``expression``.

    Non-string input is returned unchanged. Operator results that are
    objects come back JSON-serialized.
    """

    if not isinstance(expression, str):
        return expression
    try:
        if "{{" in expression and "}}" in expression:
            return resolve_embedded_expressions(expression, context)

        resolved = replace_meta_values(expression, context)
        if not contains_operators(resolved):
            return resolved

        value = evaluate_expression(resolved)
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return value
    except Exception as exc:
        LOGGER.error("expression_resolution_failed", expression=expression, error=str(exc))
        return expression


def evaluate_assertion(assertion: Any, context: Any) -> bool:
    """Coerce a resolved assertion to a boolean.

    Any non-empty string other than ``"false"`` is truthy, including
    references that could not be resolved.
    """

    try:
        resolved = resolve_expression(assertion, context)
        if isinstance(resolved, bool):
            return resolved
        if resolved == "true":
            return True
        if resolved == "false":
            return False
        return bool(resolved)
    except Exception as exc:
        LOGGER.error("assertion_evaluation_failed", assertion=assertion, error=str(exc))
        return False
