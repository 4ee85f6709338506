"""
tools/sandbox.py — Isolated Expression Runner

Function-kind tools carry a single Python expression. It is never
evaluated in the server process: each call spawns `python -I -S`, ships
{"expression", "params"} over stdin as JSON and reads a JSON verdict from
stdout.

Inside the child:
  - the expression is parsed in "eval" mode (statements, imports and
    lambdas-with-side-effects cannot appear)
  - any dunder name or attribute access is rejected before compilation
  - only a whitelist of pure builtins is reachable
  - the result must be JSON-serialisable
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Any

from orion.exceptions import ToolExecutionError
from orion.observability.logger import get_logger

log = get_logger(__name__)

_RUNNER = r'''
import ast, json, sys

SAFE = {
    "abs": abs, "all": all, "any": any, "bool": bool, "dict": dict,
    "enumerate": enumerate, "float": float, "int": int, "len": len,
    "list": list, "max": max, "min": min, "range": range, "round": round,
    "set": set, "sorted": sorted, "str": str, "sum": sum, "tuple": tuple,
    "zip": zip, "True": True, "False": False, "None": None,
}

def reject(node):
    for n in ast.walk(node):
        if isinstance(n, ast.Attribute) and n.attr.startswith("__"):
            raise ValueError("access to dunder attributes is not allowed")
        if isinstance(n, ast.Name) and n.id.startswith("__"):
            raise ValueError("access to dunder names is not allowed")

def main():
    try:
        req = json.loads(sys.stdin.read())
        tree = ast.parse(req["expression"], mode="eval")
        reject(tree)
        code = compile(tree, "<tool>", "eval")
        env = {"__builtins__": SAFE, "params": req.get("params", {})}
        result = eval(code, env)
        out = {"ok": True, "result": result}
        sys.stdout.write(json.dumps(out))
    except Exception as e:
        sys.stdout.write(json.dumps({"ok": False, "error": f"{type(e).__name__}: {e}"}))

main()
'''


async def run_expression(
    expression: str,
    params: dict[str, Any],
    timeout_seconds: float = 5.0,
) -> Any:
    """
    Evaluate `expression` against `params` in a fresh isolated interpreter.

    Raises:
        ToolExecutionError: on a rejected/failed expression, a non-JSON
                            result, a crashed child, or a timeout.
    """
    if not expression.strip():
        raise ToolExecutionError("Function tool execution failed: empty expression")

    payload = json.dumps({"expression": expression, "params": params}, default=str).encode()

    proc = await asyncio.create_subprocess_exec(
        sys.executable, "-I", "-S", "-c", _RUNNER,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(payload), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        raise ToolExecutionError(
            f"Function tool execution failed: timed out after {timeout_seconds}s"
        ) from None
    finally:
        # The child never outlives the call, including when the caller is cancelled.
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()

    try:
        verdict = json.loads(stdout.decode(errors="replace") or "{}")
    except json.JSONDecodeError:
        verdict = {}

    if not verdict:
        detail = stderr.decode(errors="replace").strip()[-500:] or f"exit code {proc.returncode}"
        log.error("sandbox.crashed", returncode=proc.returncode, stderr=detail)
        raise ToolExecutionError(f"Function tool execution failed: {detail}")

    if not verdict.get("ok"):
        raise ToolExecutionError(f"Function tool execution failed: {verdict.get('error')}")

    return verdict.get("result")
