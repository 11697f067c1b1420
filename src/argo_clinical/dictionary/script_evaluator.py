"""Restricted evaluator for dictionary script restrictions.

Scripts are parsed with ``ast`` and walked node by node; nothing reaches
``eval`` or ``exec``. A script can only see its bound names (``row``,
``field``, ``name``), literals, the functions in ``SCRIPT_FUNCTIONS`` and the
read-only methods in ``ALLOWED_METHODS``. Any other node type, attribute or
name raises ``ScriptError`` before it is evaluated.
"""

import ast
import operator
from typing import Any, Callable, Dict, List, Tuple

# Functions a script may call by name
SCRIPT_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "abs": abs,
    "all": all,
    "any": any,
    "bool": bool,
    "dict": dict,
    "float": float,
    "int": int,
    "len": len,
    "list": list,
    "max": max,
    "min": min,
    "round": round,
    "set": set,
    "sorted": sorted,
    "str": str,
    "sum": sum,
}

SCRIPT_CONSTANTS: Dict[str, Any] = {"None": None, "True": True, "False": False}

# Methods callable on str, dict, list and tuple values
ALLOWED_METHODS = frozenset(
    {
        "count",
        "endswith",
        "get",
        "index",
        "isdigit",
        "items",
        "join",
        "keys",
        "lower",
        "lstrip",
        "replace",
        "rstrip",
        "split",
        "startswith",
        "strip",
        "upper",
        "values",
    }
)

METHOD_RECEIVERS = (str, dict, list, tuple)

MAX_LOOP_ITERATIONS = 10000
MAX_SEQUENCE_LENGTH = 10000

BINARY_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

COMPARE_OPS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda x, y: x in y,
    ast.NotIn: lambda x, y: x not in y,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

UNARY_OPS: Dict[type, Callable[[Any], Any]] = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}


class ScriptError(ValueError):
    """A script uses syntax, names or attributes outside the allowed subset."""


def _check_repeat(op: ast.operator, left: Any, right: Any) -> None:
    if not isinstance(op, ast.Mult):
        return
    for sequence, count in ((left, right), (right, left)):
        if isinstance(sequence, (str, list, tuple)) and isinstance(count, int):
            if len(sequence) * count > MAX_SEQUENCE_LENGTH:
                raise ScriptError("Sequence repetition is too large")


class _Evaluator:
    """Walks expression and statement nodes over one scope of local names."""

    def __init__(self, bindings: Dict[str, Any]):
        self.scope = dict(bindings)
        self.iterations = 0

    # -------------------------------------------------------------------------
    # Expressions
    # -------------------------------------------------------------------------

    def eval(self, node: ast.AST) -> Any:
        handler = getattr(self, f"_eval_{type(node).__name__}", None)
        if handler is None:
            raise ScriptError(f"Unsupported expression: {type(node).__name__}")
        return handler(node)

    def _eval_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def _eval_Name(self, node: ast.Name) -> Any:
        if node.id in self.scope:
            return self.scope[node.id]
        if node.id in SCRIPT_CONSTANTS:
            return SCRIPT_CONSTANTS[node.id]
        if node.id in SCRIPT_FUNCTIONS:
            return SCRIPT_FUNCTIONS[node.id]
        raise ScriptError(f"Unknown name: {node.id}")

    def _eval_Subscript(self, node: ast.Subscript) -> Any:
        value = self.eval(node.value)
        if isinstance(node.slice, ast.Slice):
            key: Any = slice(
                self.eval(node.slice.lower) if node.slice.lower else None,
                self.eval(node.slice.upper) if node.slice.upper else None,
                self.eval(node.slice.step) if node.slice.step else None,
            )
        else:
            key = self.eval(node.slice)
        return value[key]

    def _eval_Compare(self, node: ast.Compare) -> bool:
        left = self.eval(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            compare = COMPARE_OPS.get(type(op))
            if compare is None:
                raise ScriptError(f"Unsupported operator: {type(op).__name__}")
            right = self.eval(comparator)
            if not compare(left, right):
                return False
            left = right
        return True

    def _eval_BoolOp(self, node: ast.BoolOp) -> Any:
        result: Any = None
        for value in node.values:
            result = self.eval(value)
            if isinstance(node.op, ast.And) and not result:
                return result
            if isinstance(node.op, ast.Or) and result:
                return result
        return result

    def _eval_UnaryOp(self, node: ast.UnaryOp) -> Any:
        apply = UNARY_OPS.get(type(node.op))
        if apply is None:
            raise ScriptError(f"Unsupported operator: {type(node.op).__name__}")
        return apply(self.eval(node.operand))

    def _eval_BinOp(self, node: ast.BinOp) -> Any:
        apply = BINARY_OPS.get(type(node.op))
        if apply is None:
            raise ScriptError(f"Unsupported operator: {type(node.op).__name__}")
        left, right = self.eval(node.left), self.eval(node.right)
        if isinstance(node.op, ast.Mod) and isinstance(left, str):
            raise ScriptError("printf-style formatting is not allowed")
        _check_repeat(node.op, left, right)
        return apply(left, right)

    def _eval_IfExp(self, node: ast.IfExp) -> Any:
        return self.eval(node.body) if self.eval(node.test) else self.eval(node.orelse)

    def _eval_Dict(self, node: ast.Dict) -> Dict[Any, Any]:
        if any(key is None for key in node.keys):
            raise ScriptError("Dict unpacking is not allowed")
        return {self.eval(k): self.eval(v) for k, v in zip(node.keys, node.values)}

    def _eval_List(self, node: ast.List) -> List[Any]:
        return [self.eval(e) for e in node.elts]

    def _eval_Tuple(self, node: ast.Tuple) -> Tuple[Any, ...]:
        return tuple(self.eval(e) for e in node.elts)

    def _eval_Set(self, node: ast.Set) -> set:
        return {self.eval(e) for e in node.elts}

    def _eval_JoinedStr(self, node: ast.JoinedStr) -> str:
        return "".join(str(self.eval(value)) for value in node.values)

    def _eval_FormattedValue(self, node: ast.FormattedValue) -> str:
        value = self.eval(node.value)
        if node.conversion == ord("r"):
            value = repr(value)
        elif node.conversion in (ord("s"), ord("a")):
            value = str(value) if node.conversion == ord("s") else ascii(value)
        if node.format_spec is not None:
            raise ScriptError("Format specs are not allowed")
        return str(value)

    def _eval_Call(self, node: ast.Call) -> Any:
        if any(isinstance(a, ast.Starred) for a in node.args) or any(
            k.arg is None for k in node.keywords
        ):
            raise ScriptError("Argument unpacking is not allowed")

        if isinstance(node.func, ast.Name):
            if node.func.id in self.scope or node.func.id not in SCRIPT_FUNCTIONS:
                raise ScriptError(f"Calling {node.func.id} is not allowed")
            function = SCRIPT_FUNCTIONS[node.func.id]
        elif isinstance(node.func, ast.Attribute):
            method = node.func.attr
            if method.startswith("_") or method not in ALLOWED_METHODS:
                raise ScriptError(f"Calling method {method} is not allowed")
            receiver = self.eval(node.func.value)
            if not isinstance(receiver, METHOD_RECEIVERS):
                raise ScriptError(f"Methods of {type(receiver).__name__} are not allowed")
            function = getattr(receiver, method)
        else:
            raise ScriptError("Only named functions and methods can be called")

        args = [self.eval(a) for a in node.args]
        kwargs = {k.arg: self.eval(k.value) for k in node.keywords}
        return function(*args, **kwargs)

    # -------------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------------

    def run(self, statements: List[ast.stmt]) -> Tuple[bool, Any]:
        """Execute statements; returns (returned, value)."""
        for statement in statements:
            returned, value = self._run_statement(statement)
            if returned:
                return True, value
        return False, None

    def _assign(self, target: ast.expr, value: Any) -> None:
        if not isinstance(target, ast.Name):
            raise ScriptError("Only plain names can be assigned")
        self.scope[target.id] = value

    def _run_statement(self, node: ast.stmt) -> Tuple[bool, Any]:
        if isinstance(node, ast.Return):
            return True, self.eval(node.value) if node.value is not None else None
        if isinstance(node, ast.Assign):
            value = self.eval(node.value)
            for target in node.targets:
                self._assign(target, value)
            return False, None
        if isinstance(node, ast.AugAssign):
            apply = BINARY_OPS.get(type(node.op))
            if apply is None or not isinstance(node.target, ast.Name):
                raise ScriptError("Unsupported augmented assignment")
            current = self.eval(node.target)
            value = self.eval(node.value)
            _check_repeat(node.op, current, value)
            self._assign(node.target, apply(current, value))
            return False, None
        if isinstance(node, ast.If):
            return self.run(node.body if self.eval(node.test) else node.orelse)
        if isinstance(node, ast.For):
            if node.orelse:
                raise ScriptError("for/else is not supported")
            for item in self.eval(node.iter):
                self.iterations += 1
                if self.iterations > MAX_LOOP_ITERATIONS:
                    raise ScriptError("Script loops too long")
                self._assign(node.target, item)
                returned, value = self.run(node.body)
                if returned:
                    return True, value
            return False, None
        if isinstance(node, ast.Expr):
            self.eval(node.value)
            return False, None
        if isinstance(node, ast.Pass):
            return False, None
        raise ScriptError(f"Unsupported statement: {type(node).__name__}")


def _parse(source: str, mode: str) -> ast.AST:
    try:
        return ast.parse(source, mode=mode)
    except SyntaxError as e:
        raise ScriptError(f"Invalid script: {e}") from e


def evaluate_expression(source: str, bindings: Dict[str, Any]) -> Any:
    """
    Evaluate a single-expression script.

    Args:
        source: Expression text.
        bindings: Names visible to the expression.

    Raises:
        ScriptError: If the expression leaves the allowed subset.
    """
    tree = _parse(source, "eval")
    return _Evaluator(bindings).eval(tree.body)


def call_validate_function(source: str, row: Dict[str, Any], field: Any, name: str) -> Any:
    """
    Run a script that defines ``validate(row, field, name)`` and return its result.

    The script must consist of that one function, without decorators or
    default arguments.

    Raises:
        ScriptError: If the script has any other shape or leaves the allowed subset.
    """
    tree = _parse(source, "exec")
    if len(tree.body) != 1 or not isinstance(tree.body[0], ast.FunctionDef):
        raise ScriptError("script must define validate(row, field, name)")
    function = tree.body[0]
    arguments = function.args
    parameters = [a.arg for a in arguments.args]
    if (
        function.name != "validate"
        or function.decorator_list
        or len(parameters) != 3
        or arguments.vararg
        or arguments.kwarg
        or arguments.kwonlyargs
        or arguments.defaults
        or arguments.posonlyargs
    ):
        raise ScriptError("script must define validate(row, field, name)")

    _, value = _Evaluator(dict(zip(parameters, (row, field, name)))).run(function.body)
    return value
