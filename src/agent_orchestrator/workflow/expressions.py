"""
Safe evaluation of CONDITION node expressions.

Expressions are Python-style boolean expressions over the workflow's working
data, e.g. ``score >= 0.8 and status == 'ok'``. A few JavaScript spellings
(``&&``, ``||``, ``===``, ``!==``, ``true``/``false``/``null``) are accepted
as well. Only literals, names, key access, arithmetic, comparisons, boolean
operators, ternaries and a small set of builtins are allowed.
"""

from __future__ import annotations

import ast
import operator
import re
from typing import Any, Callable, Dict

from agent_orchestrator.errors import ExpressionError


# String literals are matched first so operators inside them are left alone
_JS_TOKENS = re.compile(
    r"""(?P<string>'(?:\\.|[^'\\])*'|"(?:\\.|[^"\\])*")"""
    r"|(?P<op>!==?|===?|&&|\|\|)"
)

_JS_OPERATORS = {"===": "==", "==": "==", "!==": "!=", "!=": "!=", "&&": " and ", "||": " or "}

_LITERAL_NAMES = {"true": True, "false": False, "null": None, "None": None, "True": True, "False": False}

_ALLOWED_NODES = (
    ast.Expression,
    ast.Constant,
    ast.Name,
    ast.Load,
    ast.Attribute,
    ast.Subscript,
    ast.Slice,
    ast.BinOp,
    ast.UnaryOp,
    ast.BoolOp,
    ast.Compare,
    ast.IfExp,
    ast.Call,
    ast.List,
    ast.Tuple,
    ast.Dict,
    ast.operator,
    ast.unaryop,
    ast.boolop,
    ast.cmpop,
)


def _rewrite_js_operators(source: str) -> str:
    def replace(match: re.Match) -> str:
        if match.group("string") is not None:
            return match.group("string")
        return _JS_OPERATORS[match.group("op")]

    return _JS_TOKENS.sub(replace, source)


class SafeExpressionEvaluator:
    """Evaluator for condition expressions that never calls ``eval``."""

    def __init__(self):
        self.builtins: Dict[str, Callable] = {
            "abs": abs,
            "round": round,
            "min": min,
            "max": max,
            "sum": sum,
            "len": len,
            "str": str,
            "int": int,
            "float": float,
            "bool": bool,
            "any": any,
            "all": all,
        }

        self.operators = {
            ast.Add: operator.add,
            ast.Sub: operator.sub,
            ast.Mult: operator.mul,
            ast.Div: operator.truediv,
            ast.FloorDiv: operator.floordiv,
            ast.Mod: operator.mod,
        }

        self.comparisons = {
            ast.Eq: operator.eq,
            ast.NotEq: operator.ne,
            ast.Lt: operator.lt,
            ast.LtE: operator.le,
            ast.Gt: operator.gt,
            ast.GtE: operator.ge,
            ast.Is: operator.is_,
            ast.IsNot: operator.is_not,
            ast.In: lambda x, y: x in y,
            ast.NotIn: lambda x, y: x not in y,
        }

        self.unary_ops = {
            ast.UAdd: operator.pos,
            ast.USub: operator.neg,
            ast.Not: operator.not_,
        }

    def parse(self, expression: str) -> ast.Expression:
        """
        Parse and statically check an expression.

        Raises:
            ExpressionError: If the expression is empty, malformed or uses
                unsupported syntax
        """
        if not expression or not expression.strip():
            raise ExpressionError("Expression is empty", expression)

        source = _rewrite_js_operators(expression.strip())

        try:
            tree = ast.parse(source, mode="eval")
        except SyntaxError as e:
            raise ExpressionError(f"Syntax error in expression: {e.msg}", expression) from e

        for node in ast.walk(tree):
            if not isinstance(node, _ALLOWED_NODES):
                raise ExpressionError(
                    f"Unsupported syntax: {type(node).__name__}", expression
                )
            if isinstance(node, ast.Call) and not (
                isinstance(node.func, ast.Name) and node.func.id in self.builtins
            ):
                raise ExpressionError("Only builtin functions may be called", expression)
        return tree

    def evaluate(self, expression: str, context: Dict[str, Any]) -> Any:
        """Evaluate an expression against a context mapping."""
        tree = self.parse(expression)
        try:
            return self._eval_node(tree.body, context)
        except ExpressionError:
            raise
        except Exception as e:
            raise ExpressionError(f"Expression evaluation failed: {e}", expression) from e

    def evaluate_bool(self, expression: str, context: Dict[str, Any]) -> bool:
        return bool(self.evaluate(expression, context))

    def _eval_node(self, node: ast.AST, context: Dict[str, Any]) -> Any:
        if isinstance(node, ast.Constant):
            return node.value

        elif isinstance(node, ast.Name):
            if node.id in context:
                return context[node.id]
            if node.id in _LITERAL_NAMES:
                return _LITERAL_NAMES[node.id]
            if node.id in self.builtins:
                return self.builtins[node.id]
            raise NameError(f"Name '{node.id}' is not defined")

        elif isinstance(node, ast.Attribute):
            # Dotted access reads mapping keys only
            obj = self._eval_node(node.value, context)
            if isinstance(obj, dict):
                return obj.get(node.attr)
            return None

        elif isinstance(node, ast.Subscript):
            obj = self._eval_node(node.value, context)
            key = self._eval_node(node.slice, context)
            if obj is None:
                return None
            if isinstance(obj, dict):
                return obj.get(key)
            if isinstance(obj, (list, tuple)) and isinstance(key, int):
                return obj[key] if -len(obj) <= key < len(obj) else None
            return obj[key]

        elif isinstance(node, ast.BinOp):
            op = self.operators.get(type(node.op))
            if op is None:
                raise ValueError(f"Unsupported binary operator: {type(node.op).__name__}")
            return op(self._eval_node(node.left, context), self._eval_node(node.right, context))

        elif isinstance(node, ast.UnaryOp):
            op = self.unary_ops.get(type(node.op))
            if op is None:
                raise ValueError(f"Unsupported unary operator: {type(node.op).__name__}")
            return op(self._eval_node(node.operand, context))

        elif isinstance(node, ast.BoolOp):
            value: Any = None
            for operand in node.values:
                value = self._eval_node(operand, context)
                if isinstance(node.op, ast.And) and not value:
                    return value
                if isinstance(node.op, ast.Or) and value:
                    return value
            return value

        elif isinstance(node, ast.Compare):
            left = self._eval_node(node.left, context)
            for op, right_node in zip(node.ops, node.comparators):
                right = self._eval_node(right_node, context)
                comparison = self.comparisons.get(type(op))
                if comparison is None:
                    raise ValueError(f"Unsupported comparison: {type(op).__name__}")
                if not comparison(left, right):
                    return False
                left = right
            return True

        elif isinstance(node, ast.IfExp):
            if self._eval_node(node.test, context):
                return self._eval_node(node.body, context)
            return self._eval_node(node.orelse, context)

        elif isinstance(node, ast.Call):
            # Calls resolve against builtins only; parse() guarantees a builtin name
            func = self.builtins[node.func.id]
            args = [self._eval_node(arg, context) for arg in node.args]
            return func(*args)

        elif isinstance(node, (ast.List, ast.Tuple)):
            return [self._eval_node(item, context) for item in node.elts]

        elif isinstance(node, ast.Dict):
            return {
                self._eval_node(k, context): self._eval_node(v, context)
                for k, v in zip(node.keys, node.values)
            }

        elif isinstance(node, ast.Slice):
            return slice(
                self._eval_node(node.lower, context) if node.lower else None,
                self._eval_node(node.upper, context) if node.upper else None,
                self._eval_node(node.step, context) if node.step else None,
            )

        raise ValueError(f"Unsupported node type: {type(node).__name__}")
