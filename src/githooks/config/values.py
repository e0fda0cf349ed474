"""
Value transforms for configuration entries.

Two prefixes change how a raw config value is interpreted:

- ``eval:EXPR``: EXPR is evaluated and its result replaces the value.
- ``file:PATH``: the text of PATH replaces the value.

Arbitrary code evaluation is deliberately not supported. ``eval:`` accepts a
small expression language parsed with :mod:`ast`:

- string and number literals, joined with ``+``
- ``env["NAME"]``, ``env.get("NAME", default)``, ``getenv("NAME", default)``
- the string methods ``lower()``, ``upper()`` and ``strip()``

Any other construct raises ConfigEvalError.
"""

import ast
import os
from collections.abc import Mapping
from pathlib import Path

__all__ = [
    "ConfigEvalError",
    "evaluate_expression",
    "resolve_value",
]

EVAL_PREFIX = "eval:"
FILE_PREFIX = "file:"

_STRING_METHODS = frozenset({"lower", "upper", "strip"})


class ConfigEvalError(Exception):
    """Error evaluating an ``eval:`` or ``file:`` configuration value."""

    def __init__(self, expression: str, reason: str) -> None:
        self.expression = expression
        self.reason = reason
        super().__init__(f"cannot evaluate '{expression}': {reason}")


class _RestrictedEvaluator:
    """Walks an expression AST allowing only a whitelisted set of nodes."""

    def __init__(self, expression: str, env: Mapping[str, str]) -> None:
        self.expression = expression
        self.env = env

    def _fail(self, reason: str) -> ConfigEvalError:
        return ConfigEvalError(self.expression, reason)

    def run(self) -> str:
        try:
            tree = ast.parse(self.expression.strip(), mode="eval")
        except SyntaxError as e:
            raise self._fail(f"syntax error: {e.msg}") from e
        value = self._visit(tree.body)
        return "" if value is None else str(value)

    def _visit(self, node: ast.AST):
        if isinstance(node, ast.Constant) and isinstance(node.value, (str, int, float)):
            return node.value

        if isinstance(node, ast.BinOp) and isinstance(node.op, ast.Add):
            left = self._visit(node.left)
            right = self._visit(node.right)
            if isinstance(left, str) or isinstance(right, str):
                return f"{'' if left is None else left}{'' if right is None else right}"
            return left + right

        if isinstance(node, ast.Subscript):
            if not (isinstance(node.value, ast.Name) and node.value.id == "env"):
                raise self._fail("only env[...] subscripts are allowed")
            name = self._visit(node.slice)
            if name not in self.env:
                raise self._fail(f"environment variable '{name}' is not set")
            return self.env[name]

        if isinstance(node, ast.Call):
            return self._visit_call(node)

        raise self._fail(f"unsupported expression '{type(node).__name__}'")

    def _visit_call(self, node: ast.Call):
        if node.keywords:
            raise self._fail("keyword arguments are not allowed")
        args = [self._visit(a) for a in node.args]
        func = node.func

        is_getenv = isinstance(func, ast.Name) and func.id == "getenv"
        is_env_get = (
            isinstance(func, ast.Attribute)
            and func.attr == "get"
            and isinstance(func.value, ast.Name)
            and func.value.id == "env"
        )
        if is_getenv or is_env_get:
            if not 1 <= len(args) <= 2:
                raise self._fail("getenv() takes one or two arguments")
            default = args[1] if len(args) == 2 else None
            return self.env.get(str(args[0]), default)

        if isinstance(func, ast.Attribute) and func.attr in _STRING_METHODS:
            if args:
                raise self._fail(f"{func.attr}() takes no arguments")
            target = self._visit(func.value)
            if not isinstance(target, str):
                raise self._fail(f"{func.attr}() needs a string")
            return getattr(target, func.attr)()

        raise self._fail("unsupported function call")


def evaluate_expression(expression: str, env: Mapping[str, str] | None = None) -> str:
    """Evaluate a restricted ``eval:`` expression.

    Args:
        expression: Expression text, without the ``eval:`` prefix.
        env: Environment mapping, defaults to ``os.environ``.

    Returns:
        The expression result as a string ("" for a missing value).

    Raises:
        ConfigEvalError: If the expression is invalid or uses unsupported syntax.
    """
    return _RestrictedEvaluator(expression, os.environ if env is None else env).run()


def resolve_value(
    value: str,
    env: Mapping[str, str] | None = None,
    base_dir: Path | None = None,
) -> str:
    """Apply the ``eval:``/``file:`` transform to a raw config value.

    Values without a known prefix are returned unchanged.

    Args:
        value: Raw configuration value.
        env: Environment mapping for ``eval:`` expressions.
        base_dir: Directory relative ``file:`` paths are resolved against.

    Returns:
        The transformed value.

    Raises:
        ConfigEvalError: If evaluation fails or the file cannot be read.
    """
    if value.startswith(EVAL_PREFIX):
        return evaluate_expression(value[len(EVAL_PREFIX):], env)

    if value.startswith(FILE_PREFIX):
        raw_path = value[len(FILE_PREFIX):].strip()
        path = Path(raw_path).expanduser()
        if not path.is_absolute() and base_dir is not None:
            path = base_dir / path
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigEvalError(value, f"cannot read file: {e.strerror or e}") from e

    return value
