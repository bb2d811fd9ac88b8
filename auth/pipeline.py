"""
auth/pipeline.py -- Ordered, short-circuiting request steps.

A pipeline is a list of (name, step) pairs run against a frozen dataclass
context. Each step is an async callable that returns a dict of fields to
set on the context (or None for a pure check) and raises an AuthError to
end the request. Steps never see a partially failed context: the first
error stops the run.

Anything that is not an AuthError is an infrastructure failure. It is
logged with its traceback under the step's name and re-raised as an
InfrastructureError so the client only ever sees "An error occurred.".
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import replace
from typing import Any, TypeVar

from auth.errors import AuthError, InfrastructureError

C = TypeVar("C")

Step = Callable[[Any], Awaitable[dict[str, Any] | None]]


async def run_steps(steps: Sequence[tuple[str, Step]], context: C, log: logging.Logger) -> C:
    for name, step in steps:
        try:
            patch = await step(context)
        except AuthError:
            raise
        except Exception as exc:
            log.exception("Step '%s' failed", name)
            raise InfrastructureError() from exc
        if patch:
            context = replace(context, **patch)
    return context
