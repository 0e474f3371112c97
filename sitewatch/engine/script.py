"""
Script Sandbox

Evaluates user validation scripts in an isolated V8 context.

Each evaluation gets a fresh context with no host bindings, so scripts have
no network, filesystem or process access. The wall-clock limit is enforced
by V8 itself and is independent of the network timeout.

V8 is not safe to drive from arbitrary threads, so every evaluation runs on
one dedicated worker thread and each context is closed when it finishes.
"""

from __future__ import annotations

import asyncio
import json
from concurrent.futures import ThreadPoolExecutor

import structlog
from py_mini_racer import JSEvalException, JSTimeoutException, MiniRacer

from sitewatch.engine.errors import ValidatorError

logger = structlog.get_logger(__name__)

DEFAULT_SCRIPT_TIMEOUT_SECONDS = 5.0

# All contexts are created, used and closed on this one thread.
_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sitewatch-script")

# `status`, `body` and `response` are read-only. A script either ends in an
# expression or defines validate(response); the latter wins when present.
_WRAPPER = """
(function () {
  const status = %(status)s;
  const body = %(body)s;
  const response = Object.freeze({ status: status, body: body });
  const __value = eval(%(script)s);
  if (typeof validate === "function") {
    return !!validate(response);
  }
  return !!__value;
})()
"""


def build_program(script: str, status: int, body: str) -> str:
    """Embed a user script and its bindings in the evaluation wrapper."""
    return _WRAPPER % {
        "status": int(status),
        "body": json.dumps(body),
        "script": json.dumps(script),
    }


class ScriptSandbox:
    """Runs validation scripts with a hard time limit."""

    def __init__(self, timeout_seconds: float = DEFAULT_SCRIPT_TIMEOUT_SECONDS) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self.timeout_seconds = timeout_seconds

    def evaluate_sync(self, script: str, status: int, body: str) -> bool:
        """
        Evaluate a script and return its truthiness.

        Raises:
            ValidatorError: On syntax errors, thrown exceptions or timeout.
        """
        program = build_program(script, status, body)
        with MiniRacer() as ctx:
            try:
                result = ctx.eval(program, timeout=int(self.timeout_seconds * 1000))
            except JSTimeoutException as e:
                raise ValidatorError(
                    f"script timed out after {self.timeout_seconds:g}s"
                ) from e
            except JSEvalException as e:
                raise ValidatorError(f"script error: {_first_line(str(e))}") from e
        return bool(result)

    async def evaluate(self, script: str, status: int, body: str) -> bool:
        """Evaluate a script on the sandbox thread, off the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            _executor, self.evaluate_sync, script, status, body
        )


def _first_line(message: str) -> str:
    """Keep the leading line of a V8 error (the rest is a stack trace)."""
    lines = [line.strip() for line in message.strip().splitlines() if line.strip()]
    for line in lines:
        # mini-racer prefixes the location ("<anonymous>:3: Error: boom")
        if "Error" in line:
            return line
    return lines[0] if lines else "unknown error"
