"""Numeric evaluation and inspection of expression graphs."""

from typing import Any, Iterable, Mapping, Union
import numpy as np
from numpy.typing import NDArray

from linsens.graph.expressions import MX


def evaluate(
    exprs: Union[MX, Iterable[MX]],
    env: Mapping[Union[str, MX], Any],
) -> Union[NDArray, list[NDArray]]:
    """
    Evaluate expressions numerically.

    Shared subexpressions are evaluated once, so each solve node triggers
    exactly one factorization.

    Args:
        exprs: Expression or list of expressions
        env: Values of the symbols, keyed by node or by name

    Returns:
        Dense array (or list of arrays) of the expressions' shapes
    """
    cache: dict[int, NDArray] = {}
    if isinstance(exprs, MX):
        return _eval(exprs, env, cache)
    return [_eval(e, env, cache) for e in exprs]


def _eval(x: MX, env: Mapping[Any, Any], cache: dict[int, NDArray]) -> NDArray:
    key = id(x)
    if key in cache:
        return cache[key]

    op = x.op
    if op == "symbol":
        if x in env:
            value = env[x]
        elif x.data in env:
            value = env[x.data]
        else:
            raise KeyError(f"No value given for symbol '{x.data}'")
        value = np.asarray(value, dtype=float).reshape(x.shape)
        result = np.where(x.sparsity, value, 0.0)
    elif op == "zeros":
        result = np.zeros(x.shape)
    elif op == "constant":
        result = np.array(x.data)
    else:
        args = [_eval(a, env, cache) for a in x.args]
        if op == "add":
            result = args[0] + args[1]
        elif op == "sub":
            result = args[0] - args[1]
        elif op == "neg":
            result = -args[0]
        elif op == "transpose":
            result = args[0].T.copy()
        elif op == "mul":
            result = args[0] @ args[1]
            if x.data is not None:
                result = np.where(x.data, result, 0.0)
        elif op == "horzcat":
            result = np.hstack(args)
        elif op == "colslice":
            start, stop = x.data
            result = args[0][:, start:stop].copy()
        elif op == "solve":
            transpose, solver = x.data
            result = np.asarray(solver.solve_numeric(args[0], args[1], transpose))
        else:
            raise ValueError(f"Unknown operation '{op}'")

    cache[key] = result
    return result


def count_ops(exprs: Union[MX, Iterable[MX]], op: str) -> int:
    """Number of distinct nodes with operation ``op`` reachable from exprs."""
    roots = [exprs] if isinstance(exprs, MX) else list(exprs)
    seen: set[int] = set()
    stack = [r for r in roots if r is not None]
    count = 0
    while stack:
        node = stack.pop()
        if id(node) in seen:
            continue
        seen.add(id(node))
        if node.op == op:
            count += 1
        stack.extend(node.args)
    return count


def symbols(exprs: Union[MX, Iterable[MX]]) -> list[MX]:
    """Free symbols of the expressions, in discovery order."""
    roots = [exprs] if isinstance(exprs, MX) else list(exprs)
    seen: set[int] = set()
    found: list[MX] = []
    stack = list(reversed([r for r in roots if r is not None]))
    while stack:
        node = stack.pop()
        if id(node) in seen:
            continue
        seen.add(id(node))
        if node.op == "symbol":
            found.append(node)
        stack.extend(reversed(node.args))
    return found
