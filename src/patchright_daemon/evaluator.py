"""Evaluation of client-supplied Python expressions against a live page.

The ``exec`` command sends a single Python expression.  It is compiled with
top-level ``await`` enabled and evaluated in a namespace that binds exactly
three names:

* ``page``    -- the resolved patchright ``Page``
* ``context`` -- the ``BrowserContext`` owning that page
* ``browser`` -- the daemon's shared ``Browser``

For example ``await page.title()`` or ``[p.url for p in context.pages]``.
An expression that evaluates to an awaitable (``page.title()`` without the
``await``) is awaited as well.

There is no isolation beyond the namespace: whoever can reach the socket gets the
full capability of those handles and of the interpreter's builtins.
"""

from __future__ import annotations

import ast
import inspect
import json
from dataclasses import dataclass
from typing import Any

from patchright_daemon.protocol import error_message

NONE_MARKER = "None"
BINDINGS = ("page", "context", "browser")

_FILENAME = "<exec>"
_COMPILE_FLAGS = ast.PyCF_ALLOW_TOP_LEVEL_AWAIT


@dataclass(frozen=True)
class EvalResult:
    ok: bool
    value: str | None = None
    error: str | None = None


def serialize_result(value: Any) -> str:
    """Render an evaluation result as text.

    ``None`` becomes ``"None"``; dicts, lists and tuples are pretty-printed
    JSON, falling back to ``str()`` when they can't be encoded (cycles, NaN,
    engine handles); everything else is ``str(value)``.
    """
    if value is None:
        return NONE_MARKER
    if isinstance(value, (dict, list, tuple)):
        try:
            return json.dumps(value, indent=2, allow_nan=False)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


class Evaluator:
    """Compiles and runs ``exec`` expressions."""

    def compile(self, source: str) -> Any:
        """Compile *source* as one expression; raises ``SyntaxError``."""
        return compile(source, _FILENAME, "eval", flags=_COMPILE_FLAGS, dont_inherit=True)

    async def run(self, source: str, *, page: Any, context: Any, browser: Any) -> Any:
        """Evaluate *source* and return the raw value.  Exceptions propagate."""
        code = self.compile(source)
        namespace: dict[str, Any] = {"page": page, "context": context, "browser": browser}
        value = eval(code, namespace)  # noqa: S307
        if inspect.isawaitable(value):
            value = await value
        return value

    async def evaluate(
        self, source: str, *, page: Any, context: Any, browser: Any
    ) -> EvalResult:
        """Evaluate *source* and serialize the outcome.

        Nothing raised by the client's code escapes: syntax errors, runtime
        exceptions, engine timeouts and even ``SystemExit`` come back as a
        failed ``EvalResult``.
        """
        try:
            value = await self.run(source, page=page, context=context, browser=browser)
        except SyntaxError as exc:
            return EvalResult(ok=False, error=f"SyntaxError: {exc.msg}")
        except (Exception, SystemExit) as exc:
            return EvalResult(ok=False, error=error_message(exc))
        return EvalResult(ok=True, value=serialize_result(value))
